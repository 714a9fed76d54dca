"""
Pydantic models for assessment engine state.

EngineState is an immutable value: every transition returns a new state
and never mutates the one it was given. The answered-question log is the
authoritative history; ruled-out conditions, suspected conditions and red
flags are derived from it and can always be rebuilt by replay.
"""

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from assessment_engine.models.rule_models import AnswerEffects, Question, QuestionCategory


def utc_now() -> datetime:
    """Timezone-aware current time used for all engine timestamps."""
    return datetime.now(timezone.utc)


class CompletionReason(str, Enum):
    """Why an assessment ended."""
    EXHAUSTED = "exhausted"
    TERMINATED_EARLY = "terminated_early"
    RED_FLAG_STOP = "red_flag_stop"


class _StateModel(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# History entries
# ============================================================================

class AnsweredQuestion(_StateModel):
    """One entry of the append-only answer log."""
    question_id: str = Field(..., description="Answered question id")
    question_text: str = Field(..., description="Question text as presented")
    answer_value: str = Field(..., description="Selected or typed answer")
    effects_applied: AnswerEffects = Field(
        default_factory=AnswerEffects,
        description="Effects actually applied, including gating rule-outs",
    )
    timestamp: datetime = Field(default_factory=utc_now)
    condition_context: str = Field(..., description="Condition owning the question")
    category: QuestionCategory = Field(default=QuestionCategory.GENERAL)
    skipped: bool = Field(default=False, description="Caller skipped instead of answering")
    gated: bool = Field(default=False, description="Gating answer ruled out the owning condition")


class SuspectedCondition(_StateModel):
    """Accumulated evidence for a condition under investigation."""
    likelihood: int = Field(default=0, description="Relative ranking signal, not a probability")
    reasons: tuple[str, ...] = Field(default=())
    trigger_answers: tuple[str, ...] = Field(default=(), description="Question ids that touched it")
    triggered: bool = Field(default=False, description="Explicitly put under investigation")
    investigated: bool = Field(
        default=False,
        description="Raised or triggered at least once; a later decrease does not clear it",
    )

    @property
    def is_active(self) -> bool:
        """Counts as suspected for requiredConditions checks."""
        return self.triggered or self.investigated


class RedFlag(_StateModel):
    """A finding that needs urgent clinical attention."""
    question_id: str
    red_flag_text: str
    timestamp: datetime = Field(default_factory=utc_now)
    answer_value: str | None = None
    condition_context: str | None = None


# ============================================================================
# Engine State
# ============================================================================

class EngineState(_StateModel):
    """Serializable state threaded through every engine operation."""
    region: str = Field(..., description="Region of the active rule document")
    answered_questions: tuple[AnsweredQuestion, ...] = Field(default=())
    ruled_out_conditions: frozenset[str] = Field(default=frozenset())
    suspected_conditions: Mapping[str, SuspectedCondition] = Field(
        default_factory=lambda: MappingProxyType({})
    )
    red_flags: tuple[RedFlag, ...] = Field(default=())
    pending_jump: str | None = Field(default=None, description="Explicit branch target, if any")
    passed_over_questions: frozenset[str] = Field(
        default=frozenset(),
        description="Questions jumped over by skipToQuestionId; never offered in default order",
    )
    is_complete: bool = Field(default=False)
    completion_reason: CompletionReason | None = Field(default=None)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)
    revision: int = Field(default=0, ge=0, description="Bumped on every transition")

    @field_validator("suspected_conditions", mode="after")
    @classmethod
    def freeze_suspected(cls, v: Mapping[str, SuspectedCondition]) -> Mapping[str, SuspectedCondition]:
        return MappingProxyType(dict(v))

    @field_serializer("suspected_conditions")
    def serialize_suspected(self, value: Mapping[str, SuspectedCondition]) -> dict[str, SuspectedCondition]:
        return dict(value)

    @field_serializer("ruled_out_conditions", "passed_over_questions")
    def serialize_id_set(self, value: frozenset[str]) -> list[str]:
        return sorted(value)

    def __hash__(self) -> int:
        return hash(
            (
                self.region,
                self.answered_questions,
                self.ruled_out_conditions,
                tuple(sorted(self.suspected_conditions.items(), key=lambda item: item[0])),
                self.red_flags,
                self.pending_jump,
                self.passed_over_questions,
                self.is_complete,
                self.completion_reason,
                self.started_at,
                self.completed_at,
                self.revision,
            )
        )

    @property
    def answered_ids(self) -> frozenset[str]:
        return frozenset(entry.question_id for entry in self.answered_questions)

    @property
    def last_answer(self) -> AnsweredQuestion | None:
        return self.answered_questions[-1] if self.answered_questions else None

    @property
    def answered_count(self) -> int:
        """Log entries that carry a real answer."""
        return sum(1 for entry in self.answered_questions if not entry.skipped)

    @property
    def skipped_count(self) -> int:
        """Explicit skips plus passed-over questions that were never answered."""
        explicit = sum(1 for entry in self.answered_questions if entry.skipped)
        return explicit + len(self.passed_over_questions - self.answered_ids)

    def active_conditions(self) -> frozenset[str]:
        """Conditions currently suspected and not ruled out."""
        return frozenset(
            name
            for name, suspicion in self.suspected_conditions.items()
            if suspicion.is_active and name not in self.ruled_out_conditions
        )


class PresentedQuestion(BaseModel):
    """
    Read-only projection of the current question for display.

    Progress fields are computed on demand and never persisted.
    """
    model_config = ConfigDict(frozen=True)

    question: Question
    condition_name: str = Field(..., description="Condition under investigation")
    answered_count: int = Field(..., ge=0)
    skipped_count: int = Field(default=0, ge=0)
    total_questions: int = Field(..., ge=0)
    remaining_estimate: int = Field(..., ge=0)
    ruled_out_count: int = Field(default=0, ge=0)

    @property
    def id(self) -> str:
        return self.question.id


# ============================================================================
# Serialization helpers
# ============================================================================

def serialize_state(state: EngineState) -> str:
    """Serialize state to JSON for the persistence collaborator."""
    return state.model_dump_json()


def deserialize_state(payload: str | bytes | dict[str, Any]) -> EngineState:
    """Rebuild state from its JSON (or already-decoded) form."""
    if isinstance(payload, dict):
        return EngineState.model_validate(payload)
    return EngineState.model_validate_json(payload)


def state_fingerprint(state: EngineState) -> str:
    """
    Stable hash of the authoritative answer log.

    Two states with the same region and the same answers (ignoring
    timestamps) share a fingerprint.
    """
    canonical = {
        "region": state.region,
        "answers": [
            [entry.question_id, entry.answer_value, entry.skipped]
            for entry in state.answered_questions
        ],
        "completion_reason": state.completion_reason.value if state.completion_reason else None,
    }
    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()
