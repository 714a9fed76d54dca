"""
Error taxonomy for the assessment engine.

Load-time errors (invalid or missing rule documents) abort session
creation. Transition errors are recoverable in-session and never leave a
partially updated state behind.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class ValidationIssue:
    """A single problem found while validating a rule document."""
    
    code: str
    message: str
    question_id: str | None = None
    condition: str | None = None
    
    def __str__(self) -> str:
        location = []
        if self.condition:
            location.append(f"condition={self.condition!r}")
        if self.question_id:
            location.append(f"question={self.question_id!r}")
        suffix = f" ({', '.join(location)})" if location else ""
        return f"[{self.code}] {self.message}{suffix}"


class AssessmentEngineError(Exception):
    """Base class for all engine errors."""


class RuleDocumentInvalid(AssessmentEngineError):
    """A rule document failed structural validation and must not be used."""
    
    def __init__(self, region: str | None, issues: list[ValidationIssue]):
        self.region = region
        self.issues = list(issues)
        lines = "; ".join(str(issue) for issue in self.issues[:5])
        more = f" (+{len(self.issues) - 5} more)" if len(self.issues) > 5 else ""
        super().__init__(
            f"Rule document for region {region!r} is invalid: {lines}{more}"
        )


class UnknownConditionReference(RuleDocumentInvalid):
    """A rule document references a condition name it never defines."""


class RuleDocumentNotFound(AssessmentEngineError):
    """No rule document exists for the requested region."""
    
    def __init__(self, region: str, path: str):
        self.region = region
        self.path = path
        super().__init__(f"No rule document for region {region!r} at {path}")


class StaleQuestionError(AssessmentEngineError):
    """
    The submitted question is not the currently resolvable question.
    
    Raised on double submits or concurrent edits. The caller should
    re-fetch the current question and let the user retry.
    """
    
    def __init__(self, expected_id: str | None, submitted_id: str):
        self.expected_id = expected_id
        self.submitted_id = submitted_id
        super().__init__(
            f"Answer submitted for {submitted_id!r} but current question is {expected_id!r}"
        )


class RegionMismatchError(AssessmentEngineError):
    """An engine state was presented to an engine bound to another region."""
    
    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Engine is bound to region {expected!r}, state belongs to {actual!r}")


class AssessmentCompleteError(AssessmentEngineError):
    """A transition was requested on an assessment that is already complete."""


class InvalidAnswerError(AssessmentEngineError, ValueError):
    """An answer is empty or is not one of a select question's options."""
