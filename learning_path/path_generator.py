"""
Path Generator - personalized learning path from a diagnostic report.

Flow:
    1. No weak topics -> fixed exam-ready track
    2. Weak topics -> concepts -> prerequisite chains (deduplicated)
    3. One topological order across all chains, prerequisites first
    4. Per concept: CONCEPT_STUDY, then PRACTICE_SET when similar items exist
    5. CHECKPOINT once 6 steps have accumulated since the last one
    6. Final ASSESSMENT, milestones at 25% / 50% / 100%
    7. Timeline from daily goal and pace

Steps and rewards are tagged variants (``kind``) carrying only their own
fields. A generated path is never edited afterwards.
"""

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Literal, Optional, Sequence, Union

from core.assessment_session import DiagnosticReport
from core.errors import InvalidConceptGraphError
from core.knowledge_graph import ConceptNode, get_prerequisite_chain, topological_sort, validate_graph
from core.logging_config import get_logger


class Pace(str, Enum):
    SLOW = "SLOW"
    MEDIUM = "MEDIUM"
    FAST = "FAST"


PACE_MULTIPLIERS = {
    Pace.SLOW: 0.7,
    Pace.MEDIUM: 1.0,
    Pace.FAST: 1.3,
}

MINUTES_PER_PRACTICE_ITEM = 2
CHECKPOINT_MINUTES = 15
CHECKPOINT_ACCURACY = 0.80
FINAL_ASSESSMENT_MINUTES = 20


# ==================== Steps ====================

@dataclass(frozen=True)
class ConceptStudyStep:
    sequence: int
    title: str
    description: str
    estimated_minutes: int
    concept_id: Optional[str] = None
    kind: Literal["CONCEPT_STUDY"] = "CONCEPT_STUDY"


@dataclass(frozen=True)
class PracticeSetStep:
    sequence: int
    title: str
    description: str
    estimated_minutes: int
    concept_id: str
    item_ids: List[str]
    required_accuracy: float = 0.75
    kind: Literal["PRACTICE_SET"] = "PRACTICE_SET"


@dataclass(frozen=True)
class CheckpointStep:
    sequence: int
    title: str
    description: str
    estimated_minutes: int
    required_step_indices: List[int]
    required_accuracy: float = CHECKPOINT_ACCURACY
    kind: Literal["CHECKPOINT"] = "CHECKPOINT"


@dataclass(frozen=True)
class AssessmentStep:
    sequence: int
    title: str
    description: str
    estimated_minutes: int
    kind: Literal["ASSESSMENT"] = "ASSESSMENT"


PathStep = Union[ConceptStudyStep, PracticeSetStep, CheckpointStep, AssessmentStep]


# ==================== Rewards & Milestones ====================

@dataclass(frozen=True)
class BadgeReward:
    badge_id: str
    badge_name: str = "Achievement"
    kind: Literal["BADGE"] = "BADGE"


@dataclass(frozen=True)
class XpReward:
    xp: int = 100
    kind: Literal["XP"] = "XP"


@dataclass(frozen=True)
class ExamUnlockReward:
    exam_type: str
    kind: Literal["UNLOCK_EXAM"] = "UNLOCK_EXAM"


@dataclass(frozen=True)
class CertificateReward:
    certificate_type: str
    kind: Literal["CERTIFICATE"] = "CERTIFICATE"


Reward = Union[BadgeReward, XpReward, ExamUnlockReward, CertificateReward]


@dataclass(frozen=True)
class PathMilestone:
    id: str  # "{path_id}:m{sequence}"
    sequence: int
    title: str
    description: str
    required_step_indices: List[int]
    reward: Reward


@dataclass(frozen=True)
class StudentProfile:
    user_id: str
    theta: float = 0.0
    pace: Pace = Pace.MEDIUM
    daily_goal_minutes: int = 30

    def __post_init__(self):
        if self.daily_goal_minutes <= 0:
            raise ValueError("daily_goal_minutes must be positive")


@dataclass(frozen=True)
class PathGenerationOptions:
    items_per_concept: int = 10
    required_accuracy: float = 0.75
    include_milestones: bool = True
    min_similarity: float = 0.65
    checkpoint_interval: int = 6


@dataclass(frozen=True)
class GeneratedPath:
    path_id: str
    user_id: str
    jurisdiction_id: str
    name: str
    description: str
    estimated_days: int
    estimated_minutes: int
    steps: List[PathStep]
    milestones: List[PathMilestone] = field(default_factory=list)
    concept_ids: List[str] = field(default_factory=list)

    def step(self, index: int) -> PathStep:
        return self.steps[index]


def estimate_days(total_minutes: int, daily_goal_minutes: int, pace: Pace) -> int:
    """ceil(total / (daily goal x pace multiplier))."""
    return math.ceil(total_minutes / (daily_goal_minutes * PACE_MULTIPLIERS[Pace(pace)]))


def milestone_id(path_id: str, sequence: int) -> str:
    return f"{path_id}:m{sequence}"


class PathGenerator:
    """
    Builds learning paths over a concept repository and a similarity lookup.

    Usage:
        generator = PathGenerator(bundle.concepts, bundle.similarity)
        path = generator.generate_learning_path(report, profile, "ca")
    """

    def __init__(self, concept_repository, similarity_lookup, log=None):
        self.concepts = concept_repository
        self.similarity = similarity_lookup
        self.log = log or get_logger("path_generator")

    def generate_learning_path(
        self,
        report: DiagnosticReport,
        profile: StudentProfile,
        jurisdiction_id: str,
        options: Optional[PathGenerationOptions] = None,
        path_id: Optional[str] = None,
    ) -> GeneratedPath:
        """
        Generate a path for the student's weak topics.

        Raises:
            InvalidConceptGraphError: the jurisdiction's concept graph has
                cycles, dangling prerequisites or duplicate ids
        """
        options = options or PathGenerationOptions()
        path_id = path_id or uuid.uuid4().hex
        weak_topics = [weak.topic for weak in report.weak_concepts]

        self.log.info(
            "generating_learning_path",
            user_id=profile.user_id,
            path_id=path_id,
            weak_topics=len(weak_topics),
            student_ability=round(profile.theta, 2),
        )

        if not weak_topics:
            self.log.info("no_weak_topics_exam_ready", user_id=profile.user_id)
            return self._exam_ready_path(path_id, profile, jurisdiction_id)

        all_concepts = self.concepts.find_concepts(jurisdiction_id)
        validation = validate_graph(all_concepts, log=self.log)
        if not validation.is_valid:
            raise InvalidConceptGraphError(validation.errors)

        ordered = self._ordered_concepts(all_concepts, weak_topics)
        steps = self._build_steps(ordered, options)
        milestones = self._milestones(path_id, len(steps)) if options.include_milestones else []

        total_minutes = sum(step.estimated_minutes for step in steps)
        days = estimate_days(total_minutes, profile.daily_goal_minutes, profile.pace)

        path = GeneratedPath(
            path_id=path_id,
            user_id=profile.user_id,
            jurisdiction_id=jurisdiction_id,
            name=f"Personalized Path: {len(ordered)} Concepts",
            description=(
                f"Built from your assessment results. You will study {len(ordered)} concepts, "
                f"fundamentals first. Estimated completion: {days} days at your current pace."
            ),
            estimated_days=days,
            estimated_minutes=total_minutes,
            steps=steps,
            milestones=milestones,
            concept_ids=[c.id for c in ordered],
        )

        self.log.info(
            "learning_path_generated",
            user_id=profile.user_id,
            path_id=path_id,
            concepts=len(ordered),
            steps=len(steps),
            milestones=len(milestones),
            estimated_days=days,
            total_minutes=total_minutes,
        )
        return path

    # ==================== Ordering ====================

    def _ordered_concepts(self, all_concepts: Sequence[ConceptNode], weak_topics: List[str]) -> List[ConceptNode]:
        """Union of prerequisite chains for weak-topic concepts, in one topological order."""
        targets = [c for c in all_concepts if c.topic in set(weak_topics)]

        covered_topics = {c.topic for c in targets}
        for topic in weak_topics:
            if topic not in covered_topics:
                self.log.warning("no_concepts_for_weak_topic", topic=topic)

        to_learn: Dict[str, ConceptNode] = {}
        for concept in targets:
            for node in get_prerequisite_chain(concept.id, all_concepts, log=self.log):
                to_learn.setdefault(node.id, node)

        ordered = topological_sort(list(to_learn.values()), log=self.log)
        self.log.debug(
            "concepts_ordered",
            count=len(ordered),
            first_three=[c.name for c in ordered[:3]],
        )
        return ordered

    # ==================== Steps ====================

    def _build_steps(self, ordered: Sequence[ConceptNode], options: PathGenerationOptions) -> List[PathStep]:
        steps: List[PathStep] = []
        since_checkpoint = 0
        checkpoints = 0

        def emit(step):
            # A checkpoint follows every interval-th step, even mid-concept
            nonlocal since_checkpoint, checkpoints
            steps.append(step)
            since_checkpoint += 1
            if since_checkpoint < options.checkpoint_interval:
                return
            checkpoints += 1
            start = len(steps) - options.checkpoint_interval
            steps.append(CheckpointStep(
                sequence=len(steps),
                title=f"Checkpoint {checkpoints}",
                description="Review your progress and confirm mastery before continuing",
                estimated_minutes=CHECKPOINT_MINUTES,
                required_step_indices=list(range(start, len(steps))),
            ))
            since_checkpoint = 0

        for concept in ordered:
            emit(ConceptStudyStep(
                sequence=len(steps),
                title=f"Study: {concept.name}",
                description=concept.description or f"Learn the core ideas of {concept.name}",
                estimated_minutes=concept.estimated_minutes,
                concept_id=concept.id,
            ))

            item_ids = self.similarity.find_items_for_concept(
                concept.id,
                limit=options.items_per_concept,
                min_similarity=options.min_similarity,
            )
            if item_ids:
                emit(PracticeSetStep(
                    sequence=len(steps),
                    title=f"Practice: {concept.name}",
                    description=f"Complete {len(item_ids)} practice questions to reinforce your understanding",
                    estimated_minutes=len(item_ids) * MINUTES_PER_PRACTICE_ITEM,
                    concept_id=concept.id,
                    item_ids=list(item_ids),
                    required_accuracy=options.required_accuracy,
                ))
                self.log.debug("practice_set_added", concept_id=concept.id, item_count=len(item_ids))
            else:
                self.log.warning("no_practice_items_for_concept", concept_id=concept.id, concept_name=concept.name)

        steps.append(AssessmentStep(
            sequence=len(steps),
            title="Final Knowledge Check",
            description="Comprehensive assessment to validate your readiness",
            estimated_minutes=FINAL_ASSESSMENT_MINUTES,
        ))
        return steps

    # ==================== Milestones ====================

    def _milestones(self, path_id: str, step_count: int) -> List[PathMilestone]:
        quarter = max(1, math.floor(step_count * 0.25))
        half = max(1, math.floor(step_count * 0.5))

        return [
            PathMilestone(
                id=milestone_id(path_id, 0),
                sequence=0,
                title="Getting Started",
                description="You have completed 25% of your learning path!",
                required_step_indices=list(range(quarter)),
                reward=BadgeReward(badge_id="early-progress", badge_name="Quick Learner"),
            ),
            PathMilestone(
                id=milestone_id(path_id, 1),
                sequence=1,
                title="Halfway There",
                description="You have completed 50% of your learning path! Keep going!",
                required_step_indices=list(range(half)),
                reward=ExamUnlockReward(exam_type="PRACTICE_EXAM"),
            ),
            PathMilestone(
                id=milestone_id(path_id, 2),
                sequence=2,
                title="Path Completed!",
                description="Congratulations! You have completed your entire learning path.",
                required_step_indices=list(range(step_count)),
                reward=CertificateReward(certificate_type="PATH_COMPLETION"),
            ),
        ]

    def _exam_ready_path(self, path_id: str, profile: StudentProfile, jurisdiction_id: str) -> GeneratedPath:
        """Hand-authored track for students with no weak topics."""
        steps: List[PathStep] = [
            ConceptStudyStep(
                sequence=0,
                title="Exam Strategy & Tips",
                description="Learn proven test-taking strategies for the electrician exam",
                estimated_minutes=30,
            ),
            AssessmentStep(
                sequence=1,
                title="Full Practice Exam #1",
                description="Complete a timed practice exam under real conditions",
                estimated_minutes=120,
            ),
            ConceptStudyStep(
                sequence=2,
                title="Review Weak Areas",
                description="Review any topics you struggled with in the practice exam",
                estimated_minutes=60,
            ),
            AssessmentStep(
                sequence=3,
                title="Full Practice Exam #2",
                description="Final practice exam to validate readiness",
                estimated_minutes=120,
            ),
        ]
        total_minutes = sum(step.estimated_minutes for step in steps)

        return GeneratedPath(
            path_id=path_id,
            user_id=profile.user_id,
            jurisdiction_id=jurisdiction_id,
            name="Exam Preparation Track",
            description=(
                "Your assessment shows you are ready for the exam! "
                "This path focuses on exam strategy and full-length practice tests."
            ),
            estimated_days=estimate_days(total_minutes, profile.daily_goal_minutes, profile.pace),
            estimated_minutes=total_minutes,
            steps=steps,
            milestones=[
                PathMilestone(
                    id=milestone_id(path_id, 0),
                    sequence=0,
                    title="Exam Ready!",
                    description="You have completed your exam preparation. Schedule your exam!",
                    required_step_indices=[0, 1, 2, 3],
                    reward=CertificateReward(certificate_type="EXAM_READY"),
                ),
            ],
        )
