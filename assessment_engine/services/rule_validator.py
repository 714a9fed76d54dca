"""
Structural validation for region Rule Documents.

Checks run once, before any session starts:
1. Question ids are unique within the region
2. Condition names are unique
3. Every jump target resolves to an existing question
4. Every condition reference names a defined condition
5. No question is trapped in a loop with no path to completion
6. Answer values carry no embedded clinical directives

Non-fatal findings (jump cycles that still have an exit, instructional
text in answers, empty conditions) are reported as warnings.
"""

import re
from collections import defaultdict, deque
from dataclasses import dataclass, field

from assessment_engine.config.logging_config import get_logger
from assessment_engine.exceptions import (
    RuleDocumentInvalid,
    UnknownConditionReference,
    ValidationIssue,
)
from assessment_engine.models.rule_models import RuleDocument
from assessment_engine.services.rule_index import traversal_conditions

logger = get_logger(__name__)

END = "__end__"

# Directive text that belongs in effects, not in the displayed value
DIRECTIVE_PATTERN = re.compile(r"\(\s*(?:rule\s*out|confirm|red\s*flag)\b[^)]*\)", re.IGNORECASE)

# Patterns that indicate instructional text rather than an answer
INSTRUCTIONAL_PATTERNS = [
    re.compile(r"^if\s+(yes|no|patient|the|this)\b", re.IGNORECASE),
    re.compile(r"^ask\s+", re.IGNORECASE),
    re.compile(r"^proceed\s+", re.IGNORECASE),
    re.compile(r"^rule\s+out", re.IGNORECASE),
    re.compile(r"^check\s+(if|for|whether)\b", re.IGNORECASE),
    re.compile(r"^note:", re.IGNORECASE),
    re.compile(r"^observe", re.IGNORECASE),
    re.compile(r"^palpate", re.IGNORECASE),
    re.compile(r"^perform", re.IGNORECASE),
    re.compile(r"^use\s+", re.IGNORECASE),
    re.compile(r"^confirm", re.IGNORECASE),
    re.compile(r"clinical\s+note", re.IGNORECASE),
    re.compile(r"^investigate", re.IGNORECASE),
    re.compile(r"special\s+", re.IGNORECASE),
    re.compile(r"confirmatory\s+test", re.IGNORECASE),
]

MAX_ANSWER_LENGTH = 100

# Graph checks need unique ids and resolvable jumps
GRAPH_BLOCKING_CODES = frozenset({"duplicate_question_id", "duplicate_condition", "dangling_jump"})


@dataclass
class ValidationReport:
    """Outcome of validating one rule document."""

    region: str
    issues: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    question_count: int = 0
    condition_count: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def add_issue(self, code: str, message: str, **location) -> None:
        self.issues.append(ValidationIssue(code=code, message=message, **location))

    def add_warning(self, code: str, message: str, **location) -> None:
        self.warnings.append(ValidationIssue(code=code, message=message, **location))

    def raise_for_issues(self) -> None:
        """
        Raise if the document has fatal issues.

        Raises:
            UnknownConditionReference: If every fatal issue is an undefined
                condition reference.
            RuleDocumentInvalid: For any other fatal issue.
        """
        if not self.issues:
            return
        if all(issue.code == "unknown_condition" for issue in self.issues):
            raise UnknownConditionReference(self.region, self.issues)
        raise RuleDocumentInvalid(self.region, self.issues)


def is_instructional_text(text: str) -> bool:
    """Heuristic check for clinician instructions authored as an answer."""
    trimmed = text.strip()
    if len(trimmed) > MAX_ANSWER_LENGTH:
        return True
    return any(pattern.search(trimmed) for pattern in INSTRUCTIONAL_PATTERNS)


def validate_rule_document(
    document: RuleDocument,
    strict_answer_values: bool = False,
) -> ValidationReport:
    """
    Validate a parsed rule document.

    Args:
        document: Parsed rule document.
        strict_answer_values: Report instructional answer text as an issue
            instead of a warning.

    Returns:
        ValidationReport with fatal issues and warnings.
    """
    report = ValidationReport(
        region=document.region,
        condition_count=len(document.conditions),
        question_count=document.question_count,
    )

    condition_names = _check_condition_names(document, report)
    question_ids = _check_question_ids(document, report)

    for condition, question in document.iter_questions():
        _check_question_references(condition.name, question, condition_names, question_ids, report)
        _check_answer_values(question, strict_answer_values, report)

    if not any(issue.code in GRAPH_BLOCKING_CODES for issue in report.issues):
        _check_termination(document, report)
        _check_jump_cycles(document, report)

    if report.issues:
        logger.warning(
            "Rule document failed validation",
            region=document.region,
            issues=len(report.issues),
            warnings=len(report.warnings),
        )
    else:
        logger.debug(
            "Rule document validated",
            region=document.region,
            questions=report.question_count,
            warnings=len(report.warnings),
        )
    return report


def ensure_valid(document: RuleDocument, strict_answer_values: bool = False) -> ValidationReport:
    """Validate and raise on fatal issues; returns the report otherwise."""
    report = validate_rule_document(document, strict_answer_values=strict_answer_values)
    report.raise_for_issues()
    return report


# ============================================================================
# Individual checks
# ============================================================================

def _check_condition_names(document: RuleDocument, report: ValidationReport) -> set[str]:
    seen: set[str] = set()
    for condition in document.conditions:
        if condition.name in seen:
            report.add_issue(
                "duplicate_condition",
                f"Condition {condition.name!r} is defined more than once",
                condition=condition.name,
            )
        seen.add(condition.name)
        if not condition.questions:
            report.add_warning(
                "empty_condition",
                "Condition has no questions",
                condition=condition.name,
            )
    return seen


def _check_question_ids(document: RuleDocument, report: ValidationReport) -> set[str]:
    seen: set[str] = set()
    for condition, question in document.iter_questions():
        if question.id in seen:
            report.add_issue(
                "duplicate_question_id",
                f"Question id {question.id!r} is not unique",
                question_id=question.id,
                condition=condition.name,
            )
        seen.add(question.id)
    return seen


def _check_question_references(
    condition_name: str,
    question,
    condition_names: set[str],
    question_ids: set[str],
    report: ValidationReport,
) -> None:
    for field_name in ("required_conditions", "excluded_if_conditions"):
        for name in getattr(question, field_name):
            if name not in condition_names:
                report.add_issue(
                    "unknown_condition",
                    f"{field_name} references undefined condition {name!r}",
                    question_id=question.id,
                    condition=condition_name,
                )

    values: set[str] = set()
    for option in question.options:
        effects = option.effects
        if option.value in values:
            report.add_warning(
                "duplicate_answer_value",
                f"Answer value {option.value!r} appears more than once",
                question_id=question.id,
                condition=condition_name,
            )
        values.add(option.value)

        for field_name in ("rule_out", "increase_likelihood", "decrease_likelihood", "trigger_conditions"):
            for name in getattr(effects, field_name):
                if name not in condition_names:
                    report.add_issue(
                        "unknown_condition",
                        f"Answer {option.value!r} {field_name} references undefined condition {name!r}",
                        question_id=question.id,
                        condition=condition_name,
                    )

        for target in (effects.next_question_id, effects.skip_to_question_id):
            if target is not None and target not in question_ids:
                report.add_issue(
                    "dangling_jump",
                    f"Answer {option.value!r} jumps to unknown question {target!r}",
                    question_id=question.id,
                    condition=condition_name,
                )


def _check_answer_values(question, strict: bool, report: ValidationReport) -> None:
    for option in question.options:
        if DIRECTIVE_PATTERN.search(option.value):
            report.add_issue(
                "embedded_directive",
                f"Answer value {option.value!r} embeds a clinical directive; move it into effects",
                question_id=question.id,
            )
        elif is_instructional_text(option.value):
            message = f"Answer value looks like instructional text: {option.value[:50]!r}"
            if strict:
                report.add_issue("instructional_text", message, question_id=question.id)
            else:
                report.add_warning("instructional_text", message, question_id=question.id)


def _build_flow_graph(document: RuleDocument) -> dict[str, set[str]]:
    """
    Question flow graph with default and answer-triggered edges.

    Every answer leads either to its explicit jump target, to END when it
    terminates the assessment, or to the default successor.
    """
    by_name = {condition.name: condition for condition in document.conditions}
    order = [
        question.id
        for name in traversal_conditions(document)
        for question in by_name[name].questions
    ]
    successor = {qid: (order[i + 1] if i + 1 < len(order) else END) for i, qid in enumerate(order)}

    edges: dict[str, set[str]] = {}
    for _, question in document.iter_questions():
        targets: set[str] = set()
        for option in question.options:
            effects = option.effects
            if effects.terminate_assessment:
                targets.add(END)
            elif effects.jump_target:
                targets.add(effects.jump_target)
            else:
                targets.add(successor[question.id])
        if not question.options:
            targets.add(successor[question.id])
        edges[question.id] = targets
    return edges


def _check_termination(document: RuleDocument, report: ValidationReport) -> None:
    """Every question must have some path to completion."""
    edges = _build_flow_graph(document)
    reverse: dict[str, set[str]] = defaultdict(set)
    for source, targets in edges.items():
        for target in targets:
            reverse[target].add(source)

    reaches_end = {END}
    queue = deque([END])
    while queue:
        node = queue.popleft()
        for source in reverse[node]:
            if source not in reaches_end:
                reaches_end.add(source)
                queue.append(source)

    for condition, question in document.iter_questions():
        if question.id not in reaches_end:
            report.add_issue(
                "unterminated_cycle",
                "Question is caught in a branching loop with no path to completion",
                question_id=question.id,
                condition=condition.name,
            )


def _check_jump_cycles(document: RuleDocument, report: ValidationReport) -> None:
    """Warn about explicit jump cycles that still have an exit."""
    jumps: dict[str, list[str]] = {
        question.id: sorted(
            {o.effects.jump_target for o in question.options if o.effects.jump_target}
        )
        for _, question in document.iter_questions()
    }
    white, grey, black = 0, 1, 2
    color = {qid: white for qid in jumps}
    reported: set[str] = set()

    for root in jumps:
        if color[root] != white:
            continue
        stack = [(root, iter(jumps[root]))]
        color[root] = grey
        while stack:
            node, children = stack[-1]
            child = next(children, None)
            if child is None:
                color[node] = black
                stack.pop()
            elif color.get(child) == grey:
                if child not in reported:
                    reported.add(child)
                    report.add_warning(
                        "jump_cycle",
                        f"Explicit jumps loop back to {child!r}; answered questions are never re-asked",
                        question_id=child,
                    )
            elif color.get(child) == white:
                color[child] = grey
                stack.append((child, iter(jumps[child])))
