import json

import pytest

from assessment_engine import __version__
from assessment_engine.exceptions import AssessmentEngineError
from assessment_engine.models.engine_models import (
    CompletionReason,
    SuspectedCondition,
    deserialize_state,
    serialize_state,
    state_fingerprint,
)


@pytest.fixture
def finished_state(engine):
    state = engine.initialize()
    for question_id, value in [
        ("lumbar_q1", "42"),
        ("lumbar_q2", "Yes"),
        ("lumbar_q3", "Gradually"),
        ("lumbar_q4", "Yes"),
        ("lumbar_q5", "Yes"),
    ]:
        state = engine.apply_answer(state, question_id, value)
    state = engine.skip_question(state, "lumbar_q6")
    return engine.complete(state)


def test_completed_state(finished_state):
    assert finished_state.is_complete
    assert finished_state.completion_reason == CompletionReason.EXHAUSTED
    assert finished_state.completed_at is not None


def test_summary_ranks_by_likelihood(engine, finished_state):
    summary = engine.summarize(finished_state)

    assert [condition.name for condition in summary.ranked_conditions] == [
        "Lumbar Disc Herniation",
        "Lumbar Strain",
    ]
    assert summary.primary_suspicion.name == "Lumbar Disc Herniation"
    assert summary.primary_suspicion.likelihood == 2
    assert [condition.name for condition in summary.differential_diagnoses] == ["Lumbar Strain"]
    assert [condition.name for condition in summary.suspected_conditions] == ["Lumbar Disc Herniation"]


def test_summary_lists_rule_outs_with_reasons(engine, finished_state):
    summary = engine.summarize(finished_state)
    assert len(summary.conditions_ruled_out) == 1
    ruled_out = summary.conditions_ruled_out[0]
    assert ruled_out.name == "Vertebral Fracture"
    assert ruled_out.question_id == "lumbar_q3"
    assert ruled_out.answer == "Gradually"


def test_summary_counts_and_red_flags(engine, finished_state):
    summary = engine.summarize(finished_state)
    assert summary.total_questions_answered == 5
    assert summary.total_questions_skipped == 1
    assert [flag.red_flag_text for flag in summary.red_flags] == ["Possible cauda equina syndrome"]


def test_summary_without_suspicion_falls_back_to_authored_order(engine):
    summary = engine.summarize(engine.initialize())
    assert summary.suspected_conditions == []
    assert summary.primary_suspicion.name == "Lumbar Disc Herniation"
    assert len(summary.differential_diagnoses) == 2


def test_analysis_pairs_exclude_skips(engine, finished_state):
    pairs = engine.analysis_pairs(finished_state)
    assert len(pairs) == 5
    assert pairs[0].question == "How old are you?"
    assert pairs[0].answer == "42"
    assert all(pair.answer != "Skipped" for pair in pairs)


def test_analysis_payload_is_json_serializable(engine, finished_state):
    payload = engine.analysis_payload(finished_state, {"age": 42, "sex": "female"})

    assert payload["region"] == "lumbar"
    assert payload["biodata"] == {"age": 42, "sex": "female"}
    assert len(payload["symptom_data"]) == 6
    assert payload["symptom_data"][-1]["skipped"] is True
    assert payload["symptom_data"][0]["question_category"] == "demographic"
    assert len(payload["question_answer_pairs"]) == 5
    assert payload["assessment_metadata"]["completion_reason"] == "exhausted"
    assert payload["assessment_metadata"]["engine_version"] == __version__
    json.dumps(payload)


def test_analysis_payload_requires_finished_assessment(engine):
    with pytest.raises(AssessmentEngineError):
        engine.analysis_payload(engine.initialize())


def test_explicit_red_flag_stop(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    state = engine.apply_answer(state, "lumbar_q2", "Yes")
    stopped = engine.complete(state, CompletionReason.RED_FLAG_STOP)
    assert stopped.completion_reason == CompletionReason.RED_FLAG_STOP
    assert stopped.pending_jump is None
    assert engine.resolve_current_question(stopped) is None
    assert engine.complete(stopped) is stopped


def test_state_survives_json_round_trip(finished_state):
    payload = serialize_state(finished_state)
    assert json.loads(payload)["ruled_out_conditions"] == ["Vertebral Fracture"]

    restored = deserialize_state(payload)
    assert restored == finished_state
    assert deserialize_state(json.loads(payload)) == finished_state


def test_restored_state_keeps_working(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    restored = deserialize_state(serialize_state(state))
    assert engine.resolve_current_question(restored).id == "lumbar_q2"
    assert engine.apply_answer(restored, "lumbar_q2", "No").revision == 2


def test_fingerprint_ignores_timestamps(engine):
    first = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    second = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    assert first.started_at != second.started_at
    assert state_fingerprint(first) == state_fingerprint(second)

    different = engine.apply_answer(engine.initialize(), "lumbar_q1", "43")
    assert state_fingerprint(different) != state_fingerprint(first)


def test_completed_state_does_not_share_suspected_conditions(engine):
    state = engine.apply_answer(engine.initialize(), "lumbar_q1", "42")
    state = engine.apply_answer(state, "lumbar_q2", "Yes")
    state = engine.apply_answer(state, "lumbar_q3", "Gradually")
    state = engine.apply_answer(state, "lumbar_q4", "Yes")
    before = dict(state.suspected_conditions)
    done = engine.complete(state, CompletionReason.RED_FLAG_STOP)

    with pytest.raises(TypeError):
        done.suspected_conditions["Lumbar Strain"] = SuspectedCondition(likelihood=9)
    with pytest.raises(TypeError):
        del done.suspected_conditions["Lumbar Disc Herniation"]
    assert dict(state.suspected_conditions) == before
    assert "Lumbar Strain" not in state.suspected_conditions


def test_states_are_hashable(finished_state):
    restored = deserialize_state(serialize_state(finished_state))
    assert hash(restored) == hash(finished_state)
    assert len({finished_state, restored}) == 1
