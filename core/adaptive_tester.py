"""
Adaptive Tester - Computerized Adaptive Testing (CAT) loop.

Features:
    - Maximum-information question selection with coverage priority
    - Full-history ability re-estimation after every response
    - Stopping rules (max questions, SE threshold + topic coverage)
    - Graceful ending when the item pool runs dry
"""

import random
from dataclasses import dataclass
from typing import Optional

from .assessment_session import (
    AssessmentConfig,
    AssessmentState,
    DiagnosticReport,
    NextQuestionResult,
    SessionStatus,
    TerminationCheck,
    TerminationReason,
    check_termination,
    complete_session,
    generate_diagnostic_report,
    get_next_question,
    initialize_session,
    process_response,
)
from .errors import InvalidSessionStateError
from .logging_config import get_logger


@dataclass(frozen=True)
class ResponseOutcome:
    """What the caller needs after one answer."""
    is_correct: bool
    correct_answer: Optional[str]
    theta: float
    se: float
    termination: TerminationCheck
    next_question: Optional[NextQuestionResult] = None

    @property
    def completed(self) -> bool:
        return self.termination.should_terminate


class AdaptiveTester:
    """
    Drives one assessment over an item repository.

    Holds the current state snapshot and the pending question. Both can be
    handed back in (``state=``, ``pending=``) to resume a persisted session.
    """

    def __init__(
        self,
        item_repository,
        jurisdiction_id: str,
        config: Optional[AssessmentConfig] = None,
        exposure_control: bool = True,
        randomness: float = 0.0,
        total_assessments: int = 1000,
        rng: Optional[random.Random] = None,
        log=None,
        state: Optional[AssessmentState] = None,
        pending: Optional[NextQuestionResult] = None,
    ):
        self.items = item_repository
        self.jurisdiction_id = jurisdiction_id
        self.config = config or (state.config if state else AssessmentConfig())
        self.exposure_control = exposure_control
        self.randomness = randomness
        self.total_assessments = total_assessments
        self.rng = rng or random.Random()
        self.log = log or get_logger("adaptive_tester", jurisdiction_id=jurisdiction_id)
        self.state = state
        self.pending = pending

    @property
    def is_complete(self) -> bool:
        return self.state is not None and self.state.status == SessionStatus.COMPLETED

    # ==================== Session Flow ====================

    def start(self, assessment_id: Optional[str] = None) -> Optional[NextQuestionResult]:
        """Open the session and return the first question (None if the pool is empty)."""
        if self.state is not None:
            raise InvalidSessionStateError(f"Assessment {self.state.assessment_id} already started")

        self.state = initialize_session(self.config, assessment_id=assessment_id, log=self.log)
        return self._advance()

    def submit_response(self, item_id: str, selected_answer: str, time_seconds: float = 0.0) -> ResponseOutcome:
        """
        Score the pending question, re-estimate, then either finish or pick the next one.

        Raises:
            InvalidSessionStateError: not started, already completed, or
                item_id is not the pending question
        """
        if self.state is None:
            raise InvalidSessionStateError("Assessment has not been started")
        if self.is_complete:
            raise InvalidSessionStateError(f"Assessment {self.state.assessment_id} is already completed")
        if self.pending is None or self.pending.item.id != item_id:
            raise InvalidSessionStateError(
                f"Item {item_id} is not the pending question for assessment {self.state.assessment_id}"
            )

        question = self.pending
        item = question.item
        self.state = process_response(
            self.state,
            item,
            selected_answer=selected_answer,
            correct_answer=item.correct_answer,
            time_seconds=time_seconds,
            information=question.information,
            log=self.log,
        )
        self.pending = None
        record = self.state.responses[-1]

        termination = check_termination(self.state)
        next_question = None
        if termination.should_terminate:
            self.state = complete_session(self.state, termination.reason, log=self.log)
        else:
            next_question = self._advance()
            if next_question is None:
                termination = check_termination(self.state)

        return ResponseOutcome(
            is_correct=record.is_correct,
            correct_answer=item.correct_answer,
            theta=self.state.current_theta,
            se=self.state.current_se,
            termination=termination,
            next_question=next_question,
        )

    def report(self) -> DiagnosticReport:
        if self.state is None:
            raise InvalidSessionStateError("Assessment has not been started")
        return generate_diagnostic_report(self.state, log=self.log)

    # ==================== Internals ====================

    def _advance(self) -> Optional[NextQuestionResult]:
        """Select the next question, or close the session when nothing is left."""
        question = get_next_question(
            self.state,
            self.items,
            self.jurisdiction_id,
            exposure_control=self.exposure_control,
            randomness=self.randomness,
            total_assessments=self.total_assessments,
            rng=self.rng,
            log=self.log,
        )

        if question is None:
            self.log.warning(
                "assessment_pool_exhausted",
                assessment_id=self.state.assessment_id,
                questions_asked=self.state.questions_asked,
            )
            self.state = complete_session(self.state, TerminationReason.NO_CONTENT, log=self.log)
            self.pending = None
            return None

        self.items.record_exposure(question.item.id)
        self.pending = question
        return question
