"""
Answer processing for the branching assessment.

Computes the state transition for one answer: records it in the log and
applies its effects (rule-outs, likelihood shifts, red flags, jumps,
early termination). The input state is never modified; the new state is
fully built before it is returned, so a rejected answer leaves nothing
behind.
"""

from datetime import datetime
from types import MappingProxyType

from assessment_engine.config.logging_config import get_logger
from assessment_engine.exceptions import (
    AssessmentCompleteError,
    InvalidAnswerError,
    RegionMismatchError,
    StaleQuestionError,
)
from assessment_engine.models.engine_models import (
    AnsweredQuestion,
    CompletionReason,
    EngineState,
    RedFlag,
    SuspectedCondition,
    utc_now,
)
from assessment_engine.models.rule_models import (
    EMPTY_EFFECTS,
    AnswerEffects,
    AnswerOption,
    InputType,
    Question,
)
from assessment_engine.services.question_resolver import find_next_question_id
from assessment_engine.services.rule_index import RuleIndex

logger = get_logger(__name__)

# Likelihood is a relative ranking signal on an unbounded integer scale
LIKELIHOOD_STEP = 1

# Non-affirmative answers that close a gating question's condition
NEGATIVE_ANSWERS = frozenset({"no", "none", "never", "not applicable", "n/a"})

SKIPPED_ANSWER = "Skipped"


def is_negative_answer(answer_value: str) -> bool:
    return answer_value.strip().casefold() in NEGATIVE_ANSWERS


def match_option(question: Question, answer_value: str) -> AnswerOption | None:
    """Find the answer option for a value (exact match, then case-insensitive)."""
    return question.find_option(answer_value)


def apply_answer(
    index: RuleIndex,
    state: EngineState,
    question_id: str,
    answer_value: str,
    *,
    now: datetime | None = None,
) -> EngineState:
    """
    Apply an answer to the current question.

    Args:
        index: Compiled rule document for the state's region.
        state: Current engine state.
        question_id: Question being answered; must be the current question.
        answer_value: Selected option value, or free text for text questions.
        now: Timestamp for the log entry (defaults to current UTC time).

    Returns:
        New EngineState.

    Raises:
        StaleQuestionError: If question_id is not the current question.
        InvalidAnswerError: If the answer is empty or not an option of a
            select question.
    """
    question = _check_current(index, state, question_id)

    if not answer_value or not answer_value.strip():
        raise InvalidAnswerError(f"Empty answer for question {question_id!r}")

    # Unmatched free text is recorded as typed
    value = answer_value
    option = match_option(question, answer_value.strip())
    if option is None and question.input_type == InputType.SELECT and question.options:
        raise InvalidAnswerError(
            f"{answer_value!r} is not an answer option for question {question_id!r}"
        )
    if option is not None:
        value = option.value

    new_state = record_answer(index, state, question, value, option, now=now or utc_now())
    logger.debug(
        "Answer applied",
        region=index.region,
        question_id=question_id,
        answer=value,
        ruled_out=sorted(new_state.ruled_out_conditions),
        pending_jump=new_state.pending_jump,
        revision=new_state.revision,
    )
    return new_state


def skip_question(
    index: RuleIndex,
    state: EngineState,
    question_id: str,
    *,
    now: datetime | None = None,
) -> EngineState:
    """
    Skip the current question.

    The skip is logged like an answer so the question counts as visited,
    but it carries no effects and never triggers gating.
    """
    question = _check_current(index, state, question_id)
    new_state = record_answer(
        index, state, question, SKIPPED_ANSWER, None, now=now or utc_now(), skipped=True
    )
    logger.debug("Question skipped", region=index.region, question_id=question_id)
    return new_state


def record_answer(
    index: RuleIndex,
    state: EngineState,
    question: Question,
    answer_value: str,
    option: AnswerOption | None,
    *,
    now: datetime,
    skipped: bool = False,
) -> EngineState:
    """
    Append an answer to the log and apply its effects.

    Shared by forward answering and history replay; performs no
    precondition checks.
    """
    condition = index.condition_of(question.id)
    effects = option.effects if option is not None else EMPTY_EFFECTS

    rule_out = list(effects.rule_out)
    gated = False
    if not skipped and question.is_gating and is_negative_answer(answer_value):
        gated = True
        if condition not in rule_out:
            rule_out.append(condition)
    applied = effects.model_copy(update={"rule_out": tuple(rule_out)}) if gated else effects

    entry = AnsweredQuestion(
        question_id=question.id,
        question_text=question.text,
        answer_value=answer_value,
        effects_applied=applied,
        timestamp=now,
        condition_context=condition,
        category=question.category,
        skipped=skipped,
        gated=gated,
    )

    suspected = _apply_likelihood(dict(state.suspected_conditions), question, answer_value, applied)
    passed_over = _passed_over(index, question.id, applied)

    red_flags = state.red_flags
    if applied.red_flag:
        red_flags = red_flags + (
            RedFlag(
                question_id=question.id,
                red_flag_text=applied.red_flag_text,
                timestamp=now,
                answer_value=answer_value,
                condition_context=condition,
            ),
        )

    update = {
        "answered_questions": state.answered_questions + (entry,),
        "ruled_out_conditions": state.ruled_out_conditions.union(rule_out),
        "suspected_conditions": MappingProxyType(suspected),
        "red_flags": red_flags,
        "pending_jump": applied.jump_target,
        "passed_over_questions": state.passed_over_questions.union(passed_over),
        "revision": state.revision + 1,
    }
    if applied.terminate_assessment:
        update.update(
            is_complete=True,
            completion_reason=CompletionReason.TERMINATED_EARLY,
            completed_at=now,
        )
    return state.model_copy(update=update)


def _apply_likelihood(
    suspected: dict[str, SuspectedCondition],
    question: Question,
    answer_value: str,
    effects: AnswerEffects,
) -> dict[str, SuspectedCondition]:
    """Upsert suspected conditions for trigger/increase/decrease effects."""
    adjustments = (
        ("trigger", effects.trigger_conditions, 0),
        ("increase", effects.increase_likelihood, LIKELIHOOD_STEP),
        ("decrease", effects.decrease_likelihood, -LIKELIHOOD_STEP),
    )
    for kind, names, delta in adjustments:
        for name in names:
            current = suspected.get(name) or SuspectedCondition()
            suspected[name] = current.model_copy(
                update={
                    "likelihood": current.likelihood + delta,
                    "reasons": current.reasons + (f"{kind}: {question.text} -> {answer_value}",),
                    "trigger_answers": current.trigger_answers + (question.id,),
                    "triggered": current.triggered or kind == "trigger",
                    "investigated": current.investigated or kind != "decrease",
                }
            )
    return suspected


def _passed_over(index: RuleIndex, question_id: str, effects: AnswerEffects) -> frozenset[str]:
    """Questions strictly between an answer and its forward skipToQuestionId target."""
    target = effects.skip_to_question_id
    if effects.next_question_id or target is None:
        return frozenset()
    start, end = index.position(question_id), index.position(target)
    return frozenset(index.question_order[start + 1 : end])


def _check_current(index: RuleIndex, state: EngineState, question_id: str) -> Question:
    """Validate that question_id is answerable in this state."""
    if state.region != index.region:
        raise RegionMismatchError(index.region, state.region)
    if state.is_complete:
        raise AssessmentCompleteError(
            f"Assessment already complete ({state.completion_reason.value if state.completion_reason else 'unknown'})"
        )

    expected = find_next_question_id(index, state)
    if expected != question_id:
        logger.warning(
            "Stale answer submission",
            region=index.region,
            expected=expected,
            submitted=question_id,
            revision=state.revision,
        )
        raise StaleQuestionError(expected, question_id)
    return index.questions[question_id]
