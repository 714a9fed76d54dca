"""
Question resolution for the branching assessment.

A directed walk over the region's questions with two edge kinds (the
default sequential edge and the explicit answer-triggered jump) and three
pruning predicates (owning condition ruled out, required conditions not
suspected, excluded-if condition ruled out). Answered questions are never
offered again.
"""

from datetime import datetime

from assessment_engine.config.logging_config import get_logger
from assessment_engine.models.engine_models import EngineState, PresentedQuestion, utc_now
from assessment_engine.models.rule_models import Question
from assessment_engine.services.rule_index import RuleIndex

logger = get_logger(__name__)


def initialize_state(index: RuleIndex, *, now: datetime | None = None) -> EngineState:
    """
    Create the initial state for a new assessment session.

    All collections start empty. Deterministic apart from ``started_at``.
    """
    return EngineState(region=index.region, started_at=now or utc_now())


def can_present(index: RuleIndex, state: EngineState, question: Question) -> bool:
    """Whether a question survives the pruning predicates for this state."""
    ruled_out = state.ruled_out_conditions

    if index.condition_of(question.id) in ruled_out:
        return False

    if question.required_conditions:
        active = state.active_conditions()
        if not set(question.required_conditions) <= active:
            return False

    if ruled_out.intersection(question.excluded_if_conditions):
        return False

    return True


def find_next_question_id(index: RuleIndex, state: EngineState) -> str | None:
    """
    Id of the question to present next, or None when nothing is left.

    A pending explicit jump wins when its target can be presented;
    otherwise the walk continues in default order after the last answered
    question (or from the start when nothing has been answered), leaving
    out questions passed over by a skipToQuestionId answer.
    """
    if state.is_complete:
        return None

    answered = state.answered_ids

    if state.pending_jump:
        target = index.questions.get(state.pending_jump)
        if target is not None and target.id not in answered and can_present(index, state, target):
            return target.id
        logger.debug("Pending jump not presentable, using default order", target=state.pending_jump)

    last = state.last_answer
    start = index.position(last.question_id) + 1 if last is not None else 0

    for question_id in index.question_order[start:]:
        if question_id in answered or question_id in state.passed_over_questions:
            continue
        if can_present(index, state, index.questions[question_id]):
            return question_id

    return None


def estimate_remaining(index: RuleIndex, state: EngineState) -> int:
    """Unanswered questions that could still be presented in this state."""
    answered = state.answered_ids
    return sum(
        1
        for question_id in index.question_order
        if question_id not in answered
        and question_id not in state.passed_over_questions
        and can_present(index, state, index.questions[question_id])
    )


def resolve_current_question(index: RuleIndex, state: EngineState) -> PresentedQuestion | None:
    """
    Resolve the current question with its presentation metadata.

    Args:
        index: Compiled rule document.
        state: Current engine state.

    Returns:
        PresentedQuestion, or None when the assessment has no further
        question (completion).
    """
    question_id = find_next_question_id(index, state)
    if question_id is None:
        return None

    question = index.questions[question_id]
    return PresentedQuestion(
        question=question,
        condition_name=index.condition_of(question_id),
        answered_count=state.answered_count,
        skipped_count=state.skipped_count,
        total_questions=index.total_questions,
        remaining_estimate=estimate_remaining(index, state),
        ruled_out_count=len(state.ruled_out_conditions),
    )
