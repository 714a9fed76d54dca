import pytest

from assessment_engine.exceptions import (
    AssessmentCompleteError,
    InvalidAnswerError,
    RegionMismatchError,
    StaleQuestionError,
)
from assessment_engine.models.engine_models import CompletionReason
from assessment_engine.services.answer_processor import SKIPPED_ANSWER, is_negative_answer
from assessment_engine.services.branching_engine import BranchingAssessmentEngine

from conftest import make_document, yes_no


def answer_intake(engine, state, onset="Gradually", bladder="No"):
    state = engine.apply_answer(state, "lumbar_q1", "42")
    state = engine.apply_answer(state, "lumbar_q2", bladder)
    return engine.apply_answer(state, "lumbar_q3", onset)


def test_rule_out_skips_straight_to_next_condition(ab_engine):
    state = ab_engine.initialize()
    assert ab_engine.resolve_current_question(state).id == "a1"

    state = ab_engine.apply_answer(state, "a1", "No")

    assert ab_engine.resolve_current_question(state).id == "b1"
    assert state.ruled_out_conditions == frozenset({"A"})


def test_affirmative_answer_keeps_condition(ab_engine):
    state = ab_engine.apply_answer(ab_engine.initialize(), "a1", "Yes")
    assert ab_engine.resolve_current_question(state).id == "a2"
    assert state.ruled_out_conditions == frozenset()


def test_answer_is_appended_to_log(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    entry = state.answered_questions[-1]
    assert entry.question_id == "lumbar_q1"
    assert entry.question_text == "How old are you?"
    assert entry.answer_value == "42"
    assert entry.condition_context == "General Assessment"
    assert entry.effects_applied.is_empty
    assert not entry.skipped
    assert state.revision == 1


def test_input_state_is_not_mutated(engine):
    initial = engine.initialize()
    snapshot = initial.model_dump()
    engine.apply_answer(initial, "lumbar_q1", "42")
    assert initial.model_dump() == snapshot
    assert initial.answered_questions == ()


def test_stale_question_is_rejected_without_changing_state(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    with pytest.raises(StaleQuestionError) as exc_info:
        engine.apply_answer(state, "lumbar_q1", "43")
    assert exc_info.value.expected_id == "lumbar_q2"
    assert exc_info.value.submitted_id == "lumbar_q1"
    assert len(state.answered_questions) == 1


def test_answering_a_future_question_is_stale(engine):
    with pytest.raises(StaleQuestionError):
        engine.apply_answer(engine.initialize(), "lumbar_q5", "Yes")


def test_red_flag_answer_appends_exactly_one_red_flag(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    state = engine.apply_answer(state, "lumbar_q2", "Yes")
    assert len(state.red_flags) == 1
    flag = state.red_flags[0]
    assert flag.question_id == "lumbar_q2"
    assert flag.red_flag_text == "Possible cauda equina syndrome"
    assert flag.answer_value == "Yes"


def test_non_red_flag_answer_adds_none(engine):
    state = answer_intake(engine, engine.initialize())
    assert state.red_flags == ()


def test_likelihood_moves_by_fixed_step(engine):
    state = answer_intake(engine, engine.initialize())
    state = engine.apply_answer(state, "lumbar_q4", "Yes")
    suspicion = state.suspected_conditions["Lumbar Disc Herniation"]
    assert suspicion.likelihood == 1
    assert suspicion.trigger_answers == ("lumbar_q4",)

    state = engine.apply_answer(state, "lumbar_q5", "No")
    suspicion = state.suspected_conditions["Lumbar Disc Herniation"]
    assert suspicion.likelihood == 0
    assert suspicion.trigger_answers == ("lumbar_q4", "lumbar_q5")
    assert len(suspicion.reasons) == 2
    assert suspicion.reasons[1].startswith("decrease:")


def test_decrease_can_go_negative():
    document = make_document(
        [
            {
                "name": "A",
                "questions": [
                    yes_no("q1", "One?", no={"decreaseLikelihood": ["A"]}),
                    yes_no("q2", "Two?", no={"decreaseLikelihood": ["A"]}),
                ],
            }
        ]
    )
    engine = BranchingAssessmentEngine(document)
    state = engine.apply_answer(engine.initialize(), "q1", "No")
    state = engine.apply_answer(state, "q2", "No")
    assert state.suspected_conditions["A"].likelihood == -2
    assert state.active_conditions() == frozenset()


def test_decrease_after_increase_keeps_condition_under_investigation():
    document = make_document(
        [
            {
                "name": "General Assessment",
                "questions": [
                    yes_no("g1", "Pain at night?", yes={"increaseLikelihood": ["C"]}),
                    yes_no("g2", "Pain eased by rest?", yes={"decreaseLikelihood": ["C"]}),
                ],
            },
            {
                "name": "C",
                "questions": [yes_no("c1", "Follow-up for C?", requiredConditions=["C"])],
            },
        ]
    )
    engine = BranchingAssessmentEngine(document)
    state = engine.apply_answer(engine.initialize(), "g1", "Yes")
    state = engine.apply_answer(state, "g2", "Yes")

    suspicion = state.suspected_conditions["C"]
    assert suspicion.likelihood == 0
    assert suspicion.investigated
    assert state.active_conditions() == frozenset({"C"})
    assert engine.resolve_current_question(state).id == "c1"


def test_trigger_marks_condition_suspected_without_likelihood(engine):
    state = answer_intake(engine, engine.initialize(), onset="After a fall")
    suspicion = state.suspected_conditions["Vertebral Fracture"]
    assert suspicion.triggered
    assert suspicion.likelihood == 0
    assert "Vertebral Fracture" in state.active_conditions()
    assert engine.resolve_current_question(state).id == "lumbar_q7"


def test_gating_negative_answer_rules_out_owning_condition(engine):
    state = answer_intake(engine, engine.initialize())
    state = engine.apply_answer(state, "lumbar_q4", "No")

    assert "Lumbar Disc Herniation" in state.ruled_out_conditions
    entry = state.answered_questions[-1]
    assert entry.gated
    assert entry.effects_applied.rule_out == ("Lumbar Disc Herniation",)
    assert engine.resolve_current_question(state).id == "lumbar_q6"


@pytest.mark.parametrize("value, expected", [("No", True), ("n/a", True), (" Never ", True), ("Yes", False)])
def test_is_negative_answer(value, expected):
    assert is_negative_answer(value) is expected


def test_answer_matching_is_case_insensitive(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    state = engine.apply_answer(state, "lumbar_q2", "yes")
    assert state.answered_questions[-1].answer_value == "Yes"
    assert len(state.red_flags) == 1


def test_unknown_option_on_select_question_is_rejected(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    with pytest.raises(InvalidAnswerError):
        engine.apply_answer(state, "lumbar_q2", "Sometimes")


def test_empty_answer_is_rejected(engine):
    with pytest.raises(InvalidAnswerError):
        engine.apply_answer(engine.initialize(), "lumbar_q1", "   ")


def test_free_text_answer_is_accepted_verbatim(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "  forty two ")
    assert state.answered_questions[-1].answer_value == "  forty two "
    assert state.answered_questions[-1].effects_applied.is_empty


def test_skip_counts_as_visited_without_effects(engine):
    state = answer_intake(engine, engine.initialize())
    state = engine.skip_question(state, "lumbar_q4")

    entry = state.answered_questions[-1]
    assert entry.skipped
    assert entry.answer_value == SKIPPED_ANSWER
    assert not entry.gated
    assert "Lumbar Disc Herniation" not in state.ruled_out_conditions
    assert state.skipped_count == 1
    assert engine.resolve_current_question(state).id == "lumbar_q5"


def test_skip_requires_current_question(engine):
    with pytest.raises(StaleQuestionError):
        engine.skip_question(engine.initialize(), "lumbar_q2")


def test_terminating_answer_ends_assessment(engine):
    state = answer_intake(engine, engine.initialize(), onset="After a fall")
    state = engine.apply_answer(state, "lumbar_q7", "Unbearable")

    assert state.is_complete
    assert state.completion_reason == CompletionReason.TERMINATED_EARLY
    assert state.completed_at is not None
    assert len(state.red_flags) == 1
    assert engine.resolve_current_question(state) is None


def test_answering_complete_assessment_is_rejected(engine):
    state = answer_intake(engine, engine.initialize(), onset="After a fall")
    state = engine.apply_answer(state, "lumbar_q7", "Unbearable")
    with pytest.raises(AssessmentCompleteError):
        engine.apply_answer(state, "lumbar_q8", "Yes")


def test_state_from_other_region_is_rejected(engine, ab_engine):
    with pytest.raises(RegionMismatchError):
        engine.apply_answer(ab_engine.initialize(), "a1", "Yes")


def test_rule_out_is_idempotent():
    document = make_document(
        [
            {
                "name": "A",
                "questions": [
                    yes_no("q1", "One?", yes={"ruleOut": ["B"]}),
                    yes_no("q2", "Two?", yes={"ruleOut": ["B"]}),
                ],
            },
            {"name": "B", "questions": [yes_no("b1", "B?")]},
        ]
    )
    engine = BranchingAssessmentEngine(document)
    state = engine.apply_answer(engine.initialize(), "q1", "Yes")
    state = engine.apply_answer(state, "q2", "Yes")
    assert state.ruled_out_conditions == frozenset({"B"})
    assert engine.resolve_current_question(state) is None
