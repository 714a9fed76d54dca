"""
Completion detection for the branching assessment.

An assessment is complete when the resolver finds no further question
(``exhausted``), when an answer explicitly ended it
(``terminated_early``), or when the caller's policy stops it on a red
flag (``red_flag_stop``). The red-flag policy itself lives with the caller.
"""

from datetime import datetime

from assessment_engine.config.logging_config import get_logger
from assessment_engine.exceptions import AssessmentEngineError
from assessment_engine.models.engine_models import CompletionReason, EngineState, utc_now
from assessment_engine.services.question_resolver import find_next_question_id
from assessment_engine.services.rule_index import RuleIndex

logger = get_logger(__name__)


def detect_completion(index: RuleIndex, state: EngineState) -> CompletionReason | None:
    """Why the assessment is complete, or None while questions remain."""
    if state.is_complete:
        return state.completion_reason
    if find_next_question_id(index, state) is None:
        return CompletionReason.EXHAUSTED
    return None


def complete_assessment(
    index: RuleIndex,
    state: EngineState,
    reason: CompletionReason | None = None,
    *,
    now: datetime | None = None,
) -> EngineState:
    """
    Mark the assessment complete.

    Args:
        index: Compiled rule document.
        state: Current engine state.
        reason: Explicit reason (e.g. RED_FLAG_STOP from caller policy).
            Detected from the state when omitted.
        now: Completion timestamp.

    Returns:
        Completed state; an already-complete state is returned unchanged.

    Raises:
        AssessmentEngineError: If no reason is given and questions remain.
    """
    if state.is_complete:
        return state

    reason = reason or detect_completion(index, state)
    if reason is None:
        raise AssessmentEngineError(
            "Assessment still has questions; pass an explicit completion reason"
        )

    completed = state.model_copy(
        update={
            "is_complete": True,
            "completion_reason": reason,
            "completed_at": now or utc_now(),
            "pending_jump": None,
            "revision": state.revision + 1,
        }
    )
    logger.info(
        "Assessment complete",
        region=index.region,
        reason=reason.value,
        answered=len(state.answered_questions),
        red_flags=len(state.red_flags),
        ruled_out=len(state.ruled_out_conditions),
    )
    return completed
