"""
Progress Tracker - step completion rules, path progress, streaks and
difficulty adjustment.

Completion rules:
    CONCEPT_STUDY  - any attempt marked correct ("marked as read")
    PRACTICE_SET   - accuracy over its attempts >= the step's required accuracy
    CHECKPOINT     - every required step completes
    ASSESSMENT     - at least one attempt
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

from core.errors import UnknownStepError
from core.logging_config import resolve_logger
from core.mastery_calculator import AttemptData, MasteryScore, calculate_concept_mastery

from .path_generator import GeneratedPath, PracticeSetStep


@dataclass(frozen=True)
class StepAttempt:
    """One attempt at a path step by one student."""
    step_index: int
    is_correct: bool
    time_seconds: float = 0.0
    attempted_at: datetime = datetime.min.replace(tzinfo=timezone.utc)
    item_id: Optional[str] = None


@dataclass(frozen=True)
class CompletionCheck:
    can_advance: bool
    reason: str
    current_accuracy: Optional[float] = None
    required_accuracy: Optional[float] = None
    attempts_count: Optional[int] = None


@dataclass(frozen=True)
class StudyStreak:
    current: int = 0
    longest: int = 0
    last_study_date: Optional[date] = None


@dataclass(frozen=True)
class PathProgress:
    path_id: str
    user_id: str
    overall_progress: float  # 0-100
    current_step_index: int
    steps_completed: int
    steps_total: int
    total_time_spent: int  # minutes
    estimated_time_remaining: int  # minutes
    concepts_mastered: int
    concepts_developing: int
    concepts_weak: int
    last_activity: Optional[datetime]
    current_streak: int
    milestones_unlocked: int
    milestones_total: int


@dataclass(frozen=True)
class DifficultyAdjustment:
    adjusted: bool
    old_difficulty: float
    new_difficulty: float
    reason: str


def _attempts_for(step_index: int, attempts: Iterable[StepAttempt]) -> List[StepAttempt]:
    return [a for a in attempts if a.step_index == step_index]


# ==================== Completion ====================

def can_advance_to_next_step(path: GeneratedPath, step_index: int, attempts: Sequence[StepAttempt]) -> CompletionCheck:
    """
    Whether the student has completed the given step.

    Raises:
        UnknownStepError: step_index is outside the path
    """
    if not 0 <= step_index < len(path.steps):
        raise UnknownStepError(path.path_id, step_index)

    step = path.steps[step_index]
    step_attempts = _attempts_for(step_index, attempts)

    if step.kind == "CONCEPT_STUDY":
        done = any(a.is_correct for a in step_attempts)
        return CompletionCheck(
            can_advance=done,
            reason="Concept study completed" if done else "Mark as read to continue",
        )

    if step.kind == "PRACTICE_SET":
        if not step_attempts:
            return CompletionCheck(can_advance=False, reason="No practice attempts yet", attempts_count=0)

        accuracy = sum(1 for a in step_attempts if a.is_correct) / len(step_attempts)
        met = accuracy >= step.required_accuracy
        return CompletionCheck(
            can_advance=met,
            reason="Accuracy requirement met" if met else f"Need {step.required_accuracy * 100:.0f}% accuracy",
            current_accuracy=accuracy,
            required_accuracy=step.required_accuracy,
            attempts_count=len(step_attempts),
        )

    if step.kind == "CHECKPOINT":
        required = [i for i in step.required_step_indices if 0 <= i < step_index]
        if not required:
            return CompletionCheck(can_advance=True, reason="No requirements for checkpoint")

        done = all(can_advance_to_next_step(path, i, attempts).can_advance for i in required)
        return CompletionCheck(
            can_advance=done,
            reason="All checkpoint requirements met" if done else "Complete required steps first",
        )

    # ASSESSMENT
    done = len(step_attempts) > 0
    return CompletionCheck(
        can_advance=done,
        reason="Assessment completed" if done else "Take assessment to continue",
        attempts_count=len(step_attempts),
    )


# ==================== Progress ====================

def concept_mastery_from_attempts(path: GeneratedPath, attempts: Sequence[StepAttempt], now=None) -> Dict[str, MasteryScore]:
    """Mastery per concept, from the attempts on that concept's steps."""
    by_concept: Dict[str, List[AttemptData]] = defaultdict(list)
    for attempt in sorted(attempts, key=lambda a: a.attempted_at):
        if not 0 <= attempt.step_index < len(path.steps):
            continue
        concept_id = getattr(path.steps[attempt.step_index], "concept_id", None)
        if concept_id:
            by_concept[concept_id].append(
                AttemptData(attempt.is_correct, attempt.time_seconds, attempt.attempted_at)
            )

    concept_ids = [cid for cid in path.concept_ids] or list(by_concept)
    return {cid: calculate_concept_mastery(by_concept.get(cid, []), now=now) for cid in concept_ids}


def calculate_path_progress(
    path: GeneratedPath,
    attempts: Sequence[StepAttempt],
    unlocked_milestones: Iterable[str] = (),
    mastery: Optional[Dict[str, MasteryScore]] = None,
    streak: Optional[StudyStreak] = None,
    log=None,
) -> PathProgress:
    """
    Progress through a path. Steps count as completed in order only: the
    first incomplete step stops the count.
    """
    log = resolve_logger(log, "progress_tracker")
    total_steps = len(path.steps)

    completed = 0
    current_index = 0
    for index in range(total_steps):
        if not can_advance_to_next_step(path, index, attempts).can_advance:
            break
        completed += 1
        current_index = min(index + 1, total_steps - 1)

    overall = (completed / total_steps) * 100 if total_steps else 0.0

    time_spent = round(sum(a.time_seconds for a in attempts) / 60)
    estimated_total = sum(step.estimated_minutes for step in path.steps)

    if mastery is None:
        mastery = concept_mastery_from_attempts(path, attempts)
    mastered = sum(1 for m in mastery.values() if m.overall >= 0.85)
    developing = sum(1 for m in mastery.values() if 0.4 <= m.overall < 0.85)
    weak = sum(1 for m in mastery.values() if m.overall < 0.4)

    milestone_ids = {m.id for m in path.milestones}
    unlocked = len(milestone_ids.intersection(unlocked_milestones))

    progress = PathProgress(
        path_id=path.path_id,
        user_id=path.user_id,
        overall_progress=overall,
        current_step_index=current_index,
        steps_completed=completed,
        steps_total=total_steps,
        total_time_spent=time_spent,
        estimated_time_remaining=max(0, estimated_total - time_spent),
        concepts_mastered=mastered,
        concepts_developing=developing,
        concepts_weak=weak,
        last_activity=max((a.attempted_at for a in attempts), default=None),
        current_streak=streak.current if streak else 0,
        milestones_unlocked=unlocked,
        milestones_total=len(path.milestones),
    )

    log.info(
        "path_progress_calculated",
        path_id=path.path_id,
        user_id=path.user_id,
        overall_progress=round(overall, 1),
        completed_steps=completed,
        total_steps=total_steps,
    )
    return progress


# ==================== Streaks ====================

def update_streak(streak: Optional[StudyStreak], now: Optional[datetime] = None) -> StudyStreak:
    """Same day: unchanged. Next day: +1. Any gap: back to 1."""
    today = (now or datetime.now(timezone.utc)).date()
    streak = streak or StudyStreak()

    if streak.last_study_date is None:
        current = 1
    else:
        gap = (today - streak.last_study_date).days
        if gap <= 0:
            return streak
        current = streak.current + 1 if gap == 1 else 1

    return StudyStreak(current=current, longest=max(current, streak.longest), last_study_date=today)


# ==================== Difficulty ====================

def adjust_step_difficulty(
    step,
    attempts: Sequence[StepAttempt],
    student_theta: float,
    log=None,
) -> DifficultyAdjustment:
    """
    Nudge the target difficulty of a practice set by ±0.3.

    Uses the last 10 attempts and needs at least 5. Harder when accuracy is
    above 0.9 and answers come faster than expected; easier below 0.5.
    Always within student_theta ± 1.0.
    """
    log = resolve_logger(log, "progress_tracker")

    recent = sorted(attempts, key=lambda a: a.attempted_at)[-10:]
    if not isinstance(step, PracticeSetStep) or len(recent) < 5:
        return DifficultyAdjustment(False, student_theta, student_theta, "Not enough data for adjustment")

    accuracy = sum(1 for a in recent if a.is_correct) / len(recent)
    avg_time = sum(a.time_seconds for a in recent) / len(recent)
    expected_time = step.estimated_minutes * 60 / max(1, len(step.item_ids))

    current = student_theta
    if accuracy > 0.9 and avg_time < expected_time:
        target = current + 0.3
        reason = "Performance too strong, increasing difficulty"
    elif accuracy < 0.5:
        target = current - 0.3
        reason = "Struggling with accuracy, decreasing difficulty"
    else:
        return DifficultyAdjustment(False, current, current, "Difficulty appropriate for current performance")

    target = max(student_theta - 1.0, min(student_theta + 1.0, target))

    log.info(
        "difficulty_adjusted",
        concept_id=step.concept_id,
        old_difficulty=round(current, 2),
        new_difficulty=round(target, 2),
        accuracy=round(accuracy, 2),
        reason=reason,
    )
    return DifficultyAdjustment(True, current, target, reason)
