"""
Assessment Session - state machine for one adaptive assessment.

Flow:
    initialize -> select -> respond -> re-estimate -> check termination -> ... -> report

States move forward only: INITIALIZED -> IN_PROGRESS -> COMPLETED.
Every operation takes a state snapshot and returns a new one; persisting it
is the caller's job.
"""

import random
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import InvalidSessionStateError
from .irt_engine import (
    SE_SENTINEL,
    AbilityEstimate,
    ItemParams,
    ResponsePattern,
    estimate_ability,
)
from .logging_config import resolve_logger
from .question_selector import (
    CoverageConstraints,
    CoverageState,
    SelectableItem,
    SelectionOptions,
    filter_candidates,
    initialize_coverage_state,
    select_next_question,
    unmet_topics,
    update_coverage_state,
)


class SessionStatus(str, Enum):
    INITIALIZED = "INITIALIZED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TerminationReason(str, Enum):
    """Distinct reasons so the UI can explain why a test ended (or didn't)."""
    MAX_QUESTIONS = "max_questions_reached"
    CONVERGED = "precision_and_coverage_met"
    NO_CONTENT = "no_content_available"
    MIN_NOT_REACHED = "min_questions_not_reached"
    AWAITING_PRECISION = "awaiting_se_convergence"
    AWAITING_COVERAGE = "awaiting_topic_coverage"


class ReadinessLevel(str, Enum):
    NOT_READY = "NOT_READY"
    DEVELOPING = "DEVELOPING"
    READY = "READY"
    EXAM_READY = "EXAM_READY"


@dataclass(frozen=True)
class AssessmentConfig:
    min_questions: int = 10
    max_questions: int = 25
    se_threshold: float = 0.3
    starting_theta: float = 0.0
    topic_coverage: Dict[str, int] = field(default_factory=dict)  # {topic: min questions}
    weak_accuracy_threshold: float = 0.7
    strong_accuracy_threshold: float = 0.85

    def __post_init__(self):
        if self.min_questions < 0 or self.max_questions < 1:
            raise ValueError("Question limits must be positive")
        if self.min_questions > self.max_questions:
            raise ValueError(
                f"min_questions ({self.min_questions}) cannot exceed max_questions ({self.max_questions})"
            )
        if self.se_threshold <= 0:
            raise ValueError("se_threshold must be positive")
        if not 0.0 <= self.weak_accuracy_threshold <= self.strong_accuracy_threshold <= 1.0:
            raise ValueError("Need 0 <= weak_accuracy_threshold <= strong_accuracy_threshold <= 1")

    def coverage_constraints(self) -> CoverageConstraints:
        return CoverageConstraints(topic_minimums=dict(self.topic_coverage))


@dataclass(frozen=True)
class ResponseRecord:
    """Append-only audit entry. Re-estimation replays these."""
    sequence: int
    item_id: str
    topic: str
    cognitive: str
    difficulty: str
    item_params: ItemParams
    theta_before: float
    se_before: float
    information: float
    selected_answer: str
    correct_answer: str
    is_correct: bool
    time_seconds: float
    theta_after: float
    se_after: float


@dataclass(frozen=True)
class AssessmentState:
    assessment_id: str
    config: AssessmentConfig
    current_theta: float
    current_se: float
    questions_asked: int = 0
    responses: Tuple[ResponseRecord, ...] = ()
    coverage: CoverageState = field(default_factory=CoverageState)
    status: SessionStatus = SessionStatus.INITIALIZED
    termination_reason: Optional[TerminationReason] = None

    @property
    def used_item_ids(self) -> set:
        return {r.item_id for r in self.responses}


@dataclass(frozen=True)
class TerminationCheck:
    should_terminate: bool
    reason: TerminationReason
    met_criteria: List[str]
    message: str = ""


@dataclass(frozen=True)
class NextQuestionResult:
    item: SelectableItem
    reason: str
    information: float
    adjusted_score: float
    current_estimate: AbilityEstimate


@dataclass(frozen=True)
class TopicPerformance:
    topic: str
    questions_asked: int
    correct_count: int
    accuracy: float
    estimated_ability: float


@dataclass(frozen=True)
class WeakConcept:
    topic: str
    accuracy: float
    recommend_practice: bool = True


@dataclass(frozen=True)
class StrongConcept:
    topic: str
    accuracy: float


@dataclass(frozen=True)
class DiagnosticReport:
    assessment_id: str
    final_ability: float
    final_se: float
    confidence_interval_95: Tuple[float, float]
    questions_asked: int
    topic_performance: List[TopicPerformance]
    weak_concepts: List[WeakConcept]
    strong_concepts: List[StrongConcept]
    estimated_exam_score: float  # 0-100
    readiness_level: ReadinessLevel
    termination_reason: Optional[TerminationReason] = None


# ==================== Lifecycle ====================

def initialize_session(
    config: Optional[AssessmentConfig] = None,
    assessment_id: Optional[str] = None,
    log=None,
) -> AssessmentState:
    """Fresh session: θ = starting theta, SE = sentinel, nothing asked."""
    config = config or AssessmentConfig()
    assessment_id = assessment_id or uuid.uuid4().hex
    log = resolve_logger(log, "assessment_session")

    log.info(
        "assessment_initialized",
        assessment_id=assessment_id,
        min_questions=config.min_questions,
        max_questions=config.max_questions,
        se_threshold=config.se_threshold,
    )

    return AssessmentState(
        assessment_id=assessment_id,
        config=config,
        current_theta=config.starting_theta,
        current_se=SE_SENTINEL,
        coverage=initialize_coverage_state(),
    )


def _response_patterns(responses) -> List[ResponsePattern]:
    return [ResponsePattern(params=r.item_params, correct=r.is_correct) for r in responses]


def get_next_question(
    state: AssessmentState,
    item_repository,
    jurisdiction_id: str,
    exposure_control: bool = True,
    randomness: float = 0.0,
    total_assessments: int = 1000,
    rng: Optional[random.Random] = None,
    log=None,
) -> Optional[NextQuestionResult]:
    """
    Choose the next item for this session.

    Returns None when no unused active items remain. That is not a normal
    ending: the caller should close the session with NO_CONTENT.
    """
    log = resolve_logger(log, "assessment_session")

    if state.status == SessionStatus.COMPLETED:
        raise InvalidSessionStateError(f"Assessment {state.assessment_id} is already completed")

    used_ids = state.used_item_ids
    all_items = item_repository.find_active_items(jurisdiction_id, exclude_ids=used_ids)
    candidates = filter_candidates(all_items, used_ids)

    if not candidates:
        log.error(
            "no_available_items",
            assessment_id=state.assessment_id,
            jurisdiction_id=jurisdiction_id,
            questions_asked=state.questions_asked,
        )
        return None

    selection = select_next_question(
        candidates,
        SelectionOptions(
            current_theta=state.current_theta,
            coverage=state.coverage,
            constraints=state.config.coverage_constraints(),
            exposure_control=exposure_control,
            randomness=randomness,
            total_assessments=total_assessments,
        ),
        rng=rng,
        log=log,
    )
    if selection is None:
        return None

    return NextQuestionResult(
        item=selection.item,
        reason=selection.reason,
        information=selection.information,
        adjusted_score=selection.adjusted_score,
        current_estimate=AbilityEstimate(
            theta=state.current_theta,
            se=state.current_se,
            responses=len(state.responses),
        ),
    )


def process_response(
    state: AssessmentState,
    item: SelectableItem,
    selected_answer: str,
    correct_answer: str,
    time_seconds: float,
    information: float,
    log=None,
) -> AssessmentState:
    """
    Record a response and re-estimate ability over the whole history.

    Args:
        state: Current snapshot
        item: The administered item (its IRT triple is snapshotted)
        selected_answer: Student's answer
        correct_answer: Answer key
        time_seconds: Time spent on the item
        information: Item information when it was administered

    Returns:
        New snapshot with the response appended
    """
    log = resolve_logger(log, "assessment_session")

    if state.status == SessionStatus.COMPLETED:
        raise InvalidSessionStateError(f"Assessment {state.assessment_id} is already completed")
    if item.id in state.used_item_ids:
        raise InvalidSessionStateError(f"Item {item.id} was already administered in {state.assessment_id}")

    is_correct = selected_answer == correct_answer
    params = item.irt_params()

    log.info(
        "processing_response",
        assessment_id=state.assessment_id,
        sequence=state.questions_asked + 1,
        item_id=item.id,
        is_correct=is_correct,
        time_seconds=time_seconds,
    )

    patterns = _response_patterns(state.responses)
    patterns.append(ResponsePattern(params=params, correct=is_correct))
    estimate = estimate_ability(patterns, initial_theta=state.config.starting_theta, log=log)

    record = ResponseRecord(
        sequence=state.questions_asked + 1,
        item_id=item.id,
        topic=item.topic,
        cognitive=item.cognitive,
        difficulty=item.difficulty,
        item_params=params,
        theta_before=state.current_theta,
        se_before=state.current_se,
        information=information,
        selected_answer=selected_answer,
        correct_answer=correct_answer,
        is_correct=is_correct,
        time_seconds=time_seconds,
        theta_after=estimate.theta,
        se_after=estimate.se,
    )

    return replace(
        state,
        current_theta=estimate.theta,
        current_se=estimate.se,
        questions_asked=state.questions_asked + 1,
        responses=state.responses + (record,),
        coverage=update_coverage_state(state.coverage, item),
        status=SessionStatus.IN_PROGRESS,
    )


def check_termination(state: AssessmentState) -> TerminationCheck:
    """
    Decide whether the assessment should stop.

    - questions_asked >= max_questions: stop, whatever the precision
    - below min_questions: never stop
    - otherwise stop only when SE <= threshold AND topic coverage is met
    """
    config = state.config

    if state.status == SessionStatus.COMPLETED and state.termination_reason is not None:
        return TerminationCheck(
            should_terminate=True,
            reason=state.termination_reason,
            met_criteria=[],
            message="Assessment already completed",
        )

    if state.questions_asked >= config.max_questions:
        return TerminationCheck(
            should_terminate=True,
            reason=TerminationReason.MAX_QUESTIONS,
            met_criteria=["max_questions"],
            message="Maximum questions reached",
        )

    if state.questions_asked < config.min_questions:
        return TerminationCheck(
            should_terminate=False,
            reason=TerminationReason.MIN_NOT_REACHED,
            met_criteria=[],
            message="Minimum questions not yet met",
        )

    met_criteria = ["min_questions"]
    precise = state.current_se <= config.se_threshold
    if precise:
        met_criteria.append("se_threshold")

    missing_topics = unmet_topics(state.coverage, config.coverage_constraints())
    if not missing_topics:
        met_criteria.append("topic_coverage")

    if precise and not missing_topics:
        return TerminationCheck(
            should_terminate=True,
            reason=TerminationReason.CONVERGED,
            met_criteria=met_criteria,
            message="Ability estimate converged and coverage satisfied",
        )

    if not precise:
        return TerminationCheck(
            should_terminate=False,
            reason=TerminationReason.AWAITING_PRECISION,
            met_criteria=met_criteria,
            message=f"Waiting for SE convergence ({state.current_se:.3f} > {config.se_threshold})",
        )

    return TerminationCheck(
        should_terminate=False,
        reason=TerminationReason.AWAITING_COVERAGE,
        met_criteria=met_criteria,
        message="Waiting for topic coverage: " + ", ".join(sorted(missing_topics)),
    )


def complete_session(state: AssessmentState, reason: TerminationReason, log=None) -> AssessmentState:
    """Move the session to COMPLETED. Completing twice is an error."""
    log = resolve_logger(log, "assessment_session")

    if state.status == SessionStatus.COMPLETED:
        raise InvalidSessionStateError(f"Assessment {state.assessment_id} is already completed")

    log.info(
        "assessment_completed",
        assessment_id=state.assessment_id,
        reason=reason.value,
        questions_asked=state.questions_asked,
        final_theta=round(state.current_theta, 3),
        final_se=round(state.current_se, 3),
    )
    return replace(state, status=SessionStatus.COMPLETED, termination_reason=reason)


# ==================== Reporting ====================

def estimated_exam_score(theta: float) -> float:
    """θ 0 ≈ 70%, +1 ≈ 85%, -1 ≈ 55%, clamped to [0, 100]."""
    return max(0.0, min(100.0, 70.0 + theta * 15.0))


def readiness_for_score(score: float) -> ReadinessLevel:
    if score >= 85:
        return ReadinessLevel.EXAM_READY
    if score >= 75:
        return ReadinessLevel.READY
    if score >= 60:
        return ReadinessLevel.DEVELOPING
    return ReadinessLevel.NOT_READY


def generate_diagnostic_report(state: AssessmentState, log=None) -> DiagnosticReport:
    """Summarise a COMPLETED session: ability, CI, per-topic accuracy, readiness."""
    log = resolve_logger(log, "assessment_session")

    if state.status != SessionStatus.COMPLETED:
        raise InvalidSessionStateError(
            f"Assessment {state.assessment_id} is {state.status.value}; report needs COMPLETED"
        )

    config = state.config
    ci95 = (
        state.current_theta - 1.96 * state.current_se,
        state.current_theta + 1.96 * state.current_se,
    )

    by_topic: Dict[str, List[ResponseRecord]] = {}
    for response in state.responses:
        by_topic.setdefault(response.topic, []).append(response)

    topic_performance = []
    for topic, responses in by_topic.items():
        correct = sum(1 for r in responses if r.is_correct)
        topic_estimate = estimate_ability(
            _response_patterns(responses), initial_theta=config.starting_theta, log=log
        )
        topic_performance.append(TopicPerformance(
            topic=topic,
            questions_asked=len(responses),
            correct_count=correct,
            accuracy=correct / len(responses),
            estimated_ability=topic_estimate.theta,
        ))

    weak = [
        WeakConcept(topic=t.topic, accuracy=t.accuracy)
        for t in topic_performance
        if t.accuracy < config.weak_accuracy_threshold
    ]
    strong = [
        StrongConcept(topic=t.topic, accuracy=t.accuracy)
        for t in topic_performance
        if t.accuracy >= config.strong_accuracy_threshold
    ]

    score = estimated_exam_score(state.current_theta)
    readiness = readiness_for_score(score)

    log.info(
        "diagnostic_report_generated",
        assessment_id=state.assessment_id,
        final_theta=round(state.current_theta, 2),
        final_se=round(state.current_se, 3),
        weak_topics=len(weak),
        strong_topics=len(strong),
        readiness=readiness.value,
    )

    return DiagnosticReport(
        assessment_id=state.assessment_id,
        final_ability=state.current_theta,
        final_se=state.current_se,
        confidence_interval_95=ci95,
        questions_asked=state.questions_asked,
        topic_performance=topic_performance,
        weak_concepts=weak,
        strong_concepts=strong,
        estimated_exam_score=score,
        readiness_level=readiness,
        termination_reason=state.termination_reason,
    )
