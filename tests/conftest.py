import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from assessment_engine.models.rule_models import RuleDocument
from assessment_engine.services.branching_engine import BranchingAssessmentEngine
from assessment_engine.services.rule_index import RuleIndex, build_rule_index


START = datetime(2025, 3, 1, 9, 30, tzinfo=timezone.utc)


class StepClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def yes_no(question_id: str, text: str, yes: dict | None = None, no: dict | None = None, **extra) -> dict:
    """Build a Yes/No question dict in rule-document JSON form."""
    return {
        "id": question_id,
        "question": text,
        "answers": [
            {"value": "Yes", "effects": yes or {}},
            {"value": "No", "effects": no or {}},
        ],
        **extra,
    }


def make_document(conditions: list[dict], region: str = "test") -> RuleDocument:
    return RuleDocument.model_validate({"region": region, "title": region.title(), "conditions": conditions})


@pytest.fixture(scope="session")
def data_dir() -> Path:
    """
    Path to `tests/data/` folder.
    """
    return Path(__file__).parent / "data"


@pytest.fixture(scope="session")
def lumbar_data(data_dir: Path) -> dict:
    with open(data_dir / "lumbar region.json", "r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def lumbar_document(lumbar_data: dict) -> RuleDocument:
    return RuleDocument.model_validate(lumbar_data)


@pytest.fixture
def lumbar_index(lumbar_document: RuleDocument) -> RuleIndex:
    return build_rule_index(lumbar_document)


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def engine(lumbar_document: RuleDocument, clock: StepClock) -> BranchingAssessmentEngine:
    return BranchingAssessmentEngine(lumbar_document, clock=clock)


@pytest.fixture
def ab_document() -> RuleDocument:
    """Two conditions where answering a1 -> No rules out A."""
    return make_document(
        [
            {
                "name": "A",
                "questions": [
                    {
                        "id": "a1",
                        "question": "Does A apply?",
                        "answers": [
                            {"value": "Yes", "effects": {"ruleOut": []}},
                            {"value": "No", "effects": {"ruleOut": ["A"]}},
                        ],
                    },
                    yes_no("a2", "Second A question?"),
                ],
            },
            {"name": "B", "questions": [yes_no("b1", "Does B apply?")]},
        ]
    )


@pytest.fixture
def ab_engine(ab_document: RuleDocument, clock: StepClock) -> BranchingAssessmentEngine:
    return BranchingAssessmentEngine(ab_document, clock=clock)
