"""
Backward navigation through the answer log.

Going back drops the last log entry and rebuilds every derived field
(rule-outs, suspected conditions, red flags, pending jump, passed-over
questions, completion) by replaying the remaining history from a fresh
state. Effects are never undone individually.
"""

from assessment_engine.config.logging_config import get_logger
from assessment_engine.exceptions import RegionMismatchError
from assessment_engine.models.engine_models import AnsweredQuestion, EngineState
from assessment_engine.services.answer_processor import match_option, record_answer
from assessment_engine.services.question_resolver import initialize_state
from assessment_engine.services.rule_index import RuleIndex

logger = get_logger(__name__)


def replay_history(
    index: RuleIndex,
    state: EngineState,
    entries: tuple[AnsweredQuestion, ...],
) -> EngineState:
    """
    Rebuild state from a log of answers.

    Keeps the original ``started_at`` and entry timestamps; the result's
    revision is one past the given state's.
    """
    rebuilt = initialize_state(index, now=state.started_at)
    for entry in entries:
        question = index.questions[entry.question_id]
        option = None if entry.skipped else match_option(question, entry.answer_value.strip())
        rebuilt = record_answer(
            index,
            rebuilt,
            question,
            entry.answer_value,
            option,
            now=entry.timestamp,
            skipped=entry.skipped,
        )
    return rebuilt.model_copy(update={"revision": state.revision + 1})


def go_to_previous_question(index: RuleIndex, state: EngineState) -> EngineState:
    """
    Undo the last answer.

    Returns the state unchanged when nothing has been answered yet.
    """
    if state.region != index.region:
        raise RegionMismatchError(index.region, state.region)
    if not state.answered_questions:
        return state

    removed = state.answered_questions[-1]
    new_state = replay_history(index, state, state.answered_questions[:-1])
    logger.debug(
        "Moved to previous question",
        region=index.region,
        removed_question=removed.question_id,
        answered=len(new_state.answered_questions),
        revision=new_state.revision,
    )
    return new_state
