"""
Branching Assessment Engine.

Facade binding the engine operations to one validated region document.
The engine holds no session state: every call takes a full EngineState
and returns a new one, so a single instance can serve any number of
sessions. Callers serialize transitions per session (one in-flight
transition at a time, e.g. by checking ``state.revision`` when storing).

All branching decisions are deterministic; only timestamps depend on the
clock.
"""

from datetime import datetime
from typing import Any, Callable

from assessment_engine.config.logging_config import bind_session_context, get_logger
from assessment_engine.exceptions import RegionMismatchError
from assessment_engine.models.engine_models import (
    CompletionReason,
    EngineState,
    PresentedQuestion,
    utc_now,
)
from assessment_engine.models.rule_models import RuleDocument
from assessment_engine.services import answer_processor, completion, history_navigator
from assessment_engine.services import question_resolver, summary
from assessment_engine.services.rule_index import RuleIndex, build_rule_index
from assessment_engine.services.rule_loader import RuleRepository, get_rule_repository
from assessment_engine.services.rule_validator import ValidationReport, ensure_valid

logger = get_logger(__name__)


class BranchingAssessmentEngine:
    """
    Rule-driven assessment engine for one body region.

    Typical flow:
        engine = BranchingAssessmentEngine.for_region("lumbar")
        state = engine.initialize(session_id="s-1")
        while (current := engine.resolve_current_question(state)) is not None:
            state = engine.apply_answer(state, current.id, patient_answer)
        state = engine.complete(state)
    """

    def __init__(
        self,
        document: RuleDocument | RuleIndex,
        *,
        validate: bool = True,
        strict_answer_values: bool = False,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the engine.

        Args:
            document: Rule document (validated here) or a prebuilt index.
            validate: Validate a raw document before use.
            strict_answer_values: Treat instructional answer text as fatal.
            clock: Timestamp source, injectable for tests.

        Raises:
            RuleDocumentInvalid: If validation finds fatal issues.
        """
        self.report: ValidationReport | None = None
        if isinstance(document, RuleIndex):
            self.index = document
        else:
            if validate:
                self.report = ensure_valid(document, strict_answer_values=strict_answer_values)
            self.index = build_rule_index(document)
        self._clock = clock or utc_now

        logger.info(
            "Assessment engine initialized",
            region=self.index.region,
            conditions=len(self.index.condition_order),
            questions=self.index.total_questions,
        )

    @classmethod
    def for_region(
        cls,
        region: str,
        repository: RuleRepository | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> "BranchingAssessmentEngine":
        """Build an engine from the repository's validated document for a region."""
        repository = repository or get_rule_repository()
        return cls(repository.get_index(region), clock=clock)

    @property
    def region(self) -> str:
        return self.index.region

    # =========================================================================
    # Transitions
    # =========================================================================

    def initialize(self, session_id: str | None = None) -> EngineState:
        """
        Start a new assessment session.

        When a session id is given it is bound to the logging context, so
        every transition logged afterwards in this context carries it.
        """
        if session_id is not None:
            self.bind_session(session_id)
        state = question_resolver.initialize_state(self.index, now=self._clock())
        logger.info("Assessment started", region=self.index.region)
        return state

    def bind_session(self, session_id: str) -> None:
        """Bind a (new or resumed) session to the logging context."""
        bind_session_context(session_id, self.index.region)

    def resolve_current_question(self, state: EngineState) -> PresentedQuestion | None:
        """Current question with progress metadata, or None when complete."""
        self._check_region(state)
        return question_resolver.resolve_current_question(self.index, state)

    def apply_answer(self, state: EngineState, question_id: str, answer_value: str) -> EngineState:
        """Answer the current question."""
        return answer_processor.apply_answer(
            self.index, state, question_id, answer_value, now=self._clock()
        )

    def skip_question(self, state: EngineState, question_id: str) -> EngineState:
        """Skip the current question without applying any effects."""
        return answer_processor.skip_question(self.index, state, question_id, now=self._clock())

    def go_to_previous_question(self, state: EngineState) -> EngineState:
        """Undo the last answer by replaying the remaining history."""
        return history_navigator.go_to_previous_question(self.index, state)

    def detect_completion(self, state: EngineState) -> CompletionReason | None:
        self._check_region(state)
        return completion.detect_completion(self.index, state)

    def complete(self, state: EngineState, reason: CompletionReason | None = None) -> EngineState:
        """Mark the assessment complete (reason detected when omitted)."""
        self._check_region(state)
        return completion.complete_assessment(self.index, state, reason, now=self._clock())

    # =========================================================================
    # Hand-off
    # =========================================================================

    def summarize(self, state: EngineState) -> summary.AssessmentSummary:
        self._check_region(state)
        return summary.build_assessment_summary(self.index, state)

    def analysis_pairs(self, state: EngineState) -> list[summary.QuestionAnswerPair]:
        self._check_region(state)
        return summary.to_analysis_pairs(state)

    def analysis_payload(
        self,
        state: EngineState,
        biodata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Payload for the external analysis service.

        An incomplete state is completed first, which raises
        AssessmentEngineError if questions remain.
        """
        self._check_region(state)
        if not state.is_complete:
            state = self.complete(state)
        return summary.prepare_analysis_payload(self.index, state, biodata)

    def _check_region(self, state: EngineState) -> None:
        if state.region != self.index.region:
            raise RegionMismatchError(self.index.region, state.region)
