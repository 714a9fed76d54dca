"""
Compiled lookup structures for a validated Rule Document.

Builds the question lookup map and the default linear traversal order:
general/intake conditions first, then the remaining conditions as
authored, questions within each condition in authored order.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from assessment_engine.models.rule_models import Question, RuleDocument


@dataclass(frozen=True)
class RuleIndex:
    """Read-only view of a rule document optimized for traversal."""

    document: RuleDocument
    questions: Mapping[str, Question]
    question_order: tuple[str, ...]
    question_condition: Mapping[str, str]
    condition_questions: Mapping[str, tuple[str, ...]]
    condition_order: tuple[str, ...]
    general_conditions: frozenset[str]
    _positions: Mapping[str, int] = field(init=False, repr=False, compare=False)

    @property
    def region(self) -> str:
        return self.document.region

    @property
    def title(self) -> str:
        return self.document.title

    @property
    def total_questions(self) -> int:
        return len(self.question_order)

    def position(self, question_id: str) -> int:
        """Index of a question in the default traversal order."""
        return self._positions[question_id]

    def default_successor(self, question_id: str) -> str | None:
        """Next question in default order, or None at the end."""
        nxt = self.position(question_id) + 1
        return self.question_order[nxt] if nxt < len(self.question_order) else None

    def condition_of(self, question_id: str) -> str:
        return self.question_condition[question_id]

    def __post_init__(self) -> None:
        positions = {qid: i for i, qid in enumerate(self.question_order)}
        object.__setattr__(self, "_positions", MappingProxyType(positions))


def traversal_conditions(document: RuleDocument) -> list[str]:
    """Condition names in traversal order (general conditions first, stable)."""
    general = [c.name for c in document.conditions if c.is_general]
    specific = [c.name for c in document.conditions if not c.is_general]
    return general + specific


def build_rule_index(document: RuleDocument) -> RuleIndex:
    """
    Build the lookup map and default traversal order for a document.

    Pure and deterministic. Assumes question ids are unique; run the
    validator first for documents from untrusted sources.

    Args:
        document: Parsed rule document.

    Returns:
        RuleIndex for the document.
    """
    by_name = {condition.name: condition for condition in document.conditions}
    condition_order = traversal_conditions(document)

    questions: dict[str, Question] = {}
    order: list[str] = []
    owner: dict[str, str] = {}
    per_condition: dict[str, tuple[str, ...]] = {}

    for name in condition_order:
        condition = by_name[name]
        ids = []
        for question in condition.questions:
            if question.id in questions:
                continue
            questions[question.id] = question
            order.append(question.id)
            owner[question.id] = name
            ids.append(question.id)
        per_condition[name] = tuple(ids)

    return RuleIndex(
        document=document,
        questions=MappingProxyType(questions),
        question_order=tuple(order),
        question_condition=MappingProxyType(owner),
        condition_questions=MappingProxyType(per_condition),
        condition_order=tuple(condition_order),
        general_conditions=frozenset(c.name for c in document.conditions if c.is_general),
    )
