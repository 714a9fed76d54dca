"""
Assessment summaries for downstream collaborators.

Builds the clinician-facing summary (ranked conditions, rule-outs with
their reasons, red flags) and the flat question/answer payload handed to
the external analysis service once the assessment is complete.
"""

from typing import Any

from pydantic import BaseModel, Field

from assessment_engine import __version__
from assessment_engine.models.engine_models import (
    CompletionReason,
    EngineState,
    RedFlag,
    SuspectedCondition,
)
from assessment_engine.services.rule_index import RuleIndex

DIFFERENTIAL_SIZE = 3


class RankedCondition(BaseModel):
    """A condition still in play, with its accumulated evidence."""
    name: str
    likelihood: int = 0
    suspected: bool = False
    reasons: list[str] = Field(default_factory=list)
    trigger_answers: list[str] = Field(default_factory=list)


class RuledOutCondition(BaseModel):
    """A ruled-out condition and the answer that excluded it."""
    name: str
    question_id: str | None = None
    question: str | None = None
    answer: str | None = None


class QuestionAnswerPair(BaseModel):
    """Flat pair consumed by the analysis service."""
    question: str
    answer: str


class AssessmentSummary(BaseModel):
    """Summary of an assessment for review and hand-off."""
    region: str
    title: str = ""
    is_complete: bool = False
    completion_reason: CompletionReason | None = None
    total_questions_answered: int = 0
    total_questions_skipped: int = 0
    red_flags: list[RedFlag] = Field(default_factory=list)
    conditions_ruled_out: list[RuledOutCondition] = Field(default_factory=list)
    ranked_conditions: list[RankedCondition] = Field(default_factory=list)
    suspected_conditions: list[RankedCondition] = Field(default_factory=list)
    primary_suspicion: RankedCondition | None = None
    differential_diagnoses: list[RankedCondition] = Field(default_factory=list)


def rank_conditions(index: RuleIndex, state: EngineState) -> list[RankedCondition]:
    """
    Rank non-general conditions that are not ruled out.

    Highest likelihood first; ties keep authored order.
    """
    ranked = []
    for position, name in enumerate(index.condition_order):
        if name in index.general_conditions or name in state.ruled_out_conditions:
            continue
        suspicion = state.suspected_conditions.get(name) or SuspectedCondition()
        ranked.append(
            (
                -suspicion.likelihood,
                position,
                RankedCondition(
                    name=name,
                    likelihood=suspicion.likelihood,
                    suspected=suspicion.is_active,
                    reasons=list(suspicion.reasons),
                    trigger_answers=list(suspicion.trigger_answers),
                ),
            )
        )
    ranked.sort(key=lambda item: (item[0], item[1]))
    return [item[2] for item in ranked]


def ruled_out_with_reasons(state: EngineState) -> list[RuledOutCondition]:
    """Ruled-out conditions in the order they were excluded."""
    result: list[RuledOutCondition] = []
    seen: set[str] = set()
    for entry in state.answered_questions:
        for name in entry.effects_applied.rule_out:
            if name in seen:
                continue
            seen.add(name)
            result.append(
                RuledOutCondition(
                    name=name,
                    question_id=entry.question_id,
                    question=entry.question_text,
                    answer=entry.answer_value,
                )
            )
    for name in sorted(state.ruled_out_conditions - seen):
        result.append(RuledOutCondition(name=name))
    return result


def build_assessment_summary(index: RuleIndex, state: EngineState) -> AssessmentSummary:
    """Summarize a (usually completed) assessment."""
    ranked = rank_conditions(index, state)
    suspected = [condition for condition in ranked if condition.suspected]
    primary = suspected[0] if suspected else (ranked[0] if ranked else None)
    differential = [condition for condition in ranked if condition is not primary][:DIFFERENTIAL_SIZE]

    return AssessmentSummary(
        region=state.region,
        title=index.title,
        is_complete=state.is_complete,
        completion_reason=state.completion_reason,
        total_questions_answered=state.answered_count,
        total_questions_skipped=state.skipped_count,
        red_flags=list(state.red_flags),
        conditions_ruled_out=ruled_out_with_reasons(state),
        ranked_conditions=ranked,
        suspected_conditions=suspected,
        primary_suspicion=primary,
        differential_diagnoses=differential,
    )


def to_analysis_pairs(state: EngineState) -> list[QuestionAnswerPair]:
    """Flat question/answer pairs for the analysis service (skips excluded)."""
    return [
        QuestionAnswerPair(question=entry.question_text, answer=entry.answer_value)
        for entry in state.answered_questions
        if not entry.skipped
    ]


def prepare_analysis_payload(
    index: RuleIndex,
    state: EngineState,
    biodata: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Payload for the external analysis collaborator.

    Args:
        index: Compiled rule document.
        state: Completed engine state.
        biodata: Patient biodata snapshot supplied by the caller.

    Returns:
        JSON-serializable dict.
    """
    summary = build_assessment_summary(index, state)
    return {
        "region": state.region,
        "biodata": biodata or {},
        "symptom_data": [
            {
                "question_id": entry.question_id,
                "question": entry.question_text,
                "response": entry.answer_value,
                "question_category": entry.category.value,
                "condition_context": entry.condition_context,
                "skipped": entry.skipped,
            }
            for entry in state.answered_questions
        ],
        "question_answer_pairs": [pair.model_dump() for pair in to_analysis_pairs(state)],
        "red_flags": [flag.model_dump(mode="json") for flag in state.red_flags],
        "summary": summary.model_dump(mode="json"),
        "assessment_metadata": {
            "started_at": state.started_at.isoformat(),
            "completed_at": state.completed_at.isoformat() if state.completed_at else None,
            "total_questions_answered": summary.total_questions_answered,
            "total_questions_skipped": summary.total_questions_skipped,
            "completion_reason": state.completion_reason.value if state.completion_reason else None,
            "engine_version": __version__,
        },
    }
