"""
Pydantic models for region Rule Documents.

A Rule Document is produced offline from the authored clinical material
and consumed read-only by the engine. It lists the conditions under
investigation for one body region, each with its ordered questions and
per-answer effects. Rule JSON may use camelCase or snake_case keys.
"""

import re
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


GENERAL_CONDITION_NAMES = frozenset({"General Assessment", "Initial Assessment"})


# ============================================================================
# Enumerations
# ============================================================================

class QuestionCategory(str, Enum):
    """Closed taxonomy of question categories."""
    LOCATION = "location"
    TEMPORAL = "temporal"
    ONSET = "onset"
    STIFFNESS = "stiffness"
    NEUROLOGICAL = "neurological"
    RED_FLAG = "red_flag"
    PAIN_INTENSITY = "pain_intensity"
    RADIATION = "radiation"
    INFLAMMATION = "inflammation"
    MECHANICAL = "mechanical"
    FUNCTION = "function"
    DEMOGRAPHIC = "demographic"
    ACTIVITY = "activity"
    HISTORY = "history"
    GENERAL = "general"


class InputType(str, Enum):
    """How a question collects its answer."""
    SELECT = "select"
    TEXT = "text"


class _RuleModel(BaseModel):
    """Base for rule document models: immutable, tolerant of extra keys."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")


# ============================================================================
# Answer Options
# ============================================================================

class AnswerEffects(_RuleModel):
    """Effects bundle applied when an answer option is chosen."""
    rule_out: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "ruleOut", "rule_out", "excludedConditions", "excluded_conditions"
        ),
        description="Conditions excluded for the rest of the session",
    )
    increase_likelihood: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("increaseLikelihood", "increase_likelihood"),
    )
    decrease_likelihood: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("decreaseLikelihood", "decrease_likelihood"),
    )
    trigger_conditions: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices(
            "triggerConditions", "triggeredConditions", "trigger_conditions", "triggered_conditions"
        ),
        description="Conditions put under investigation without a likelihood change",
    )
    next_question_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("nextQuestionId", "next_question_id"),
        description="Explicit branch target overriding default ordering",
    )
    skip_to_question_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("skipToQuestionId", "skip_to_question_id"),
        description="Forward branch target; questions jumped over are marked skipped",
    )
    red_flag: bool = Field(default=False, validation_alias=AliasChoices("redFlag", "red_flag"))
    red_flag_text: str | None = Field(
        default=None, validation_alias=AliasChoices("redFlagText", "red_flag_text")
    )
    notes: str | None = Field(default=None, description="Observational note for clinicians")
    terminate_assessment: bool = Field(
        default=False,
        validation_alias=AliasChoices("terminateAssessment", "terminate_assessment"),
        description="Choosing this answer ends the assessment early",
    )

    @field_validator("rule_out", "increase_likelihood", "decrease_likelihood", "trigger_conditions")
    @classmethod
    def strip_condition_names(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        """Drop blank names and surrounding whitespace."""
        return tuple(name.strip() for name in v if name and name.strip())

    @field_validator("next_question_id", "skip_to_question_id", "red_flag_text", "notes")
    @classmethod
    def blank_to_none(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()

    @model_validator(mode="after")
    def red_flag_requires_text(self) -> "AnswerEffects":
        """A red flag must say what the clinical concern is."""
        if self.red_flag and not self.red_flag_text:
            raise ValueError("redFlag answers must carry redFlagText")
        return self

    @property
    def is_empty(self) -> bool:
        return self == EMPTY_EFFECTS

    @property
    def jump_target(self) -> str | None:
        """Branch target of this answer; nextQuestionId wins over skipToQuestionId."""
        return self.next_question_id or self.skip_to_question_id


EMPTY_EFFECTS = AnswerEffects()

_OPTION_LEVEL_KEYS = (
    ("nextQuestionId", "next_question_id"),
    ("skipToQuestionId", "skip_to_question_id"),
    ("terminateAssessment", "terminate_assessment"),
)


class AnswerOption(_RuleModel):
    """A selectable answer on a question."""
    value: str = Field(..., min_length=1, description="Display value shown to the patient")
    effects: AnswerEffects = Field(default_factory=AnswerEffects)

    @model_validator(mode="before")
    @classmethod
    def lift_option_level_effects(cls, data: Any) -> Any:
        """Accept jump/termination keys written directly on the option."""
        if not isinstance(data, dict):
            return data
        effects = dict(data.get("effects") or {})
        changed = False
        for aliases in _OPTION_LEVEL_KEYS:
            present = [key for key in aliases if data.get(key) is not None]
            if present and not any(key in effects for key in aliases):
                effects[aliases[0]] = data[present[0]]
                changed = True
        if not changed:
            return data
        return {**data, "effects": effects}

    @field_validator("value")
    @classmethod
    def strip_value(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Answer value cannot be empty")
        return v.strip()


# ============================================================================
# Questions and Conditions
# ============================================================================

class Question(_RuleModel):
    """A single question belonging to one condition."""
    id: str = Field(..., min_length=1, description="Stable id, unique within the region")
    text: str = Field(
        ...,
        validation_alias=AliasChoices("question", "questionText", "question_text", "text"),
        description="Question text",
    )
    category: QuestionCategory = Field(default=QuestionCategory.GENERAL)
    options: tuple[AnswerOption, ...] = Field(
        default=(), validation_alias=AliasChoices("answers", "options")
    )
    input_type: InputType = Field(
        default=InputType.SELECT, validation_alias=AliasChoices("inputType", "input_type")
    )
    is_gating: bool = Field(default=False, validation_alias=AliasChoices("isGating", "is_gating"))
    required_conditions: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("requiredConditions", "required_conditions"),
        description="Only surfaced while all of these are suspected",
    )
    excluded_if_conditions: tuple[str, ...] = Field(
        default=(),
        validation_alias=AliasChoices("excludedIfConditions", "excluded_if_conditions"),
        description="Suppressed once any of these is ruled out",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    source_line: int | None = Field(default=None, ge=0)

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("text")
    @classmethod
    def clean_text(cls, v: str) -> str:
        cleaned = re.sub(r"\s*\*+\s*$", "", v).strip()
        if not cleaned:
            raise ValueError("Question text cannot be empty")
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def derive_input_type(cls, data: Any) -> Any:
        """Questions without options collect free text."""
        if not isinstance(data, dict) or data.get("inputType") or data.get("input_type"):
            return data
        options = data.get("answers") or data.get("options")
        return {**data, "input_type": InputType.SELECT if options else InputType.TEXT}

    def find_option(self, answer_value: str) -> AnswerOption | None:
        """Match an answer value: exact first, then case-insensitive."""
        for option in self.options:
            if option.value == answer_value:
                return option
        folded = answer_value.casefold()
        for option in self.options:
            if option.value.casefold() == folded:
                return option
        return None


class EntryCriterion(_RuleModel):
    """Entry criterion for a condition (e.g., an age bracket)."""
    type: str = Field(default="general")
    description: str


class Condition(_RuleModel):
    """A clinical hypothesis investigated within a region."""
    name: str = Field(..., min_length=1)
    entry_criteria: tuple[EntryCriterion, ...] = Field(
        default=(), validation_alias=AliasChoices("entry_criteria", "entryCriteria")
    )
    questions: tuple[Question, ...] = Field(default=())
    recommended_tests: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("recommended_tests", "recommendedTests")
    )
    confirmation_methods: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("confirmation_methods", "confirmationMethods")
    )
    observations: tuple[str, ...] = Field(
        default=(), validation_alias=AliasChoices("observations", "observational_notes")
    )
    is_general: bool = Field(default=False, validation_alias=AliasChoices("is_general", "isGeneral"))

    @model_validator(mode="before")
    @classmethod
    def mark_general_intake(cls, data: Any) -> Any:
        """The intake pseudo-conditions are general even when not flagged."""
        if isinstance(data, dict) and str(data.get("name", "")).strip() in GENERAL_CONDITION_NAMES:
            if not (data.get("is_general") or data.get("isGeneral")):
                return {**data, "is_general": True}
        return data

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


# ============================================================================
# Rule Document
# ============================================================================

class RuleDocument(_RuleModel):
    """A region's complete rule set."""
    region: str = Field(..., min_length=1, description="Region identifier (e.g., 'lumbar')")
    title: str = Field(default="", description="Human-readable title")
    conditions: tuple[Condition, ...] = Field(..., min_length=1)
    source_file: str | None = Field(default=None)
    extracted_at: str | None = Field(default=None)

    def iter_questions(self):
        """Yield (condition, question) pairs in authored order."""
        for condition in self.conditions:
            for question in condition.questions:
                yield condition, question

    @property
    def condition_names(self) -> list[str]:
        return [condition.name for condition in self.conditions]

    @property
    def question_count(self) -> int:
        return sum(len(condition.questions) for condition in self.conditions)


class RulesIndexEntry(_RuleModel):
    """One region listed in the rules index."""
    region: str
    title: str = ""
    source_file: str | None = None
    json_file: str
    condition_count: int = Field(default=0, ge=0)
    question_count: int = Field(default=0, ge=0)


class RulesIndex(_RuleModel):
    """Index of all ingested region rule documents."""
    generated_at: str | None = None
    regions: tuple[RulesIndexEntry, ...] = Field(default=())
