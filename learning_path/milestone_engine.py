"""
Milestone Engine - XP, levels, badges and milestone rewards.

The ledger (StudentRewards) is passed in and a new one is returned; nothing
is mutated in place. Granting is idempotent: a milestone unlocks once, a
badge is owned once, and a step earns XP once per path.
"""

import copy
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from core.errors import UnknownStepError
from core.logging_config import resolve_logger

from .path_generator import (
    BadgeReward,
    CertificateReward,
    ExamUnlockReward,
    GeneratedPath,
    Reward,
    XpReward,
)
from .progress_tracker import StepAttempt, can_advance_to_next_step


XP_PER_LEVEL = 1000

STEP_BASE_XP = {
    "CONCEPT_STUDY": 10,
    "PRACTICE_SET": 25,
    "CHECKPOINT": 50,
    "ASSESSMENT": 100,
}


@dataclass(frozen=True)
class Badge:
    id: str
    name: str
    earned_at: datetime


@dataclass
class StudentRewards:
    """Reward ledger for one student."""
    user_id: str
    xp: int = 0
    level: int = 1
    badges: Dict[str, Badge] = field(default_factory=dict)
    unlocked_milestones: List[str] = field(default_factory=list)
    unlocked_exams: List[str] = field(default_factory=list)
    certificates: List[str] = field(default_factory=list)
    awarded_steps: List[str] = field(default_factory=list)  # "{path_id}:{step_index}"


@dataclass(frozen=True)
class MilestoneCheckResult:
    milestone_id: str
    unlocked: bool
    reward_awarded: bool
    reward: Optional[Reward] = None


@dataclass(frozen=True)
class StepAward:
    xp_awarded: int
    leveled_up: bool
    new_level: int
    already_awarded: bool = False


def level_for_xp(xp: int) -> int:
    return xp // XP_PER_LEVEL + 1


def calculate_step_xp(step_kind: str, accuracy: Optional[float] = None) -> int:
    """Base XP for the step type, x1.5 at >= 95% accuracy, x1.25 at >= 85%."""
    xp = float(STEP_BASE_XP.get(step_kind, 10))

    if accuracy:
        if accuracy >= 0.95:
            xp *= 1.5
        elif accuracy >= 0.85:
            xp *= 1.25

    # Half rounds up
    return int(math.floor(xp + 0.5))


# ==================== Ledger Updates ====================

def _add_xp(rewards: StudentRewards, xp: int, log) -> bool:
    old_level = rewards.level
    rewards.xp += xp
    rewards.level = level_for_xp(rewards.xp)

    if rewards.level > old_level:
        log.info(
            "student_leveled_up",
            user_id=rewards.user_id,
            old_level=old_level,
            new_level=rewards.level,
            total_xp=rewards.xp,
        )
        return True
    return False


def _award_badge(rewards: StudentRewards, badge_id: str, badge_name: str, now: datetime, log):
    if badge_id in rewards.badges:
        log.debug("badge_already_awarded", user_id=rewards.user_id, badge_id=badge_id)
        return
    rewards.badges[badge_id] = Badge(id=badge_id, name=badge_name, earned_at=now)
    log.info("badge_awarded", user_id=rewards.user_id, badge_id=badge_id, badge_name=badge_name)


def _apply_reward(rewards: StudentRewards, reward: Reward, now: datetime, log):
    if isinstance(reward, BadgeReward):
        _award_badge(rewards, reward.badge_id, reward.badge_name, now, log)
    elif isinstance(reward, XpReward):
        _add_xp(rewards, reward.xp, log)
    elif isinstance(reward, ExamUnlockReward):
        if reward.exam_type not in rewards.unlocked_exams:
            rewards.unlocked_exams.append(reward.exam_type)
            log.info("exam_unlocked", user_id=rewards.user_id, exam_type=reward.exam_type)
    elif isinstance(reward, CertificateReward):
        if reward.certificate_type not in rewards.certificates:
            rewards.certificates.append(reward.certificate_type)
        _award_badge(
            rewards,
            f"cert-{reward.certificate_type}",
            f"{reward.certificate_type} Certificate",
            now,
            log,
        )
    else:
        log.warning("unknown_reward_type", reward=repr(reward))


# ==================== Milestones ====================

def milestone_requirements_met(path: GeneratedPath, required_step_indices: Sequence[int], attempts) -> bool:
    """
    All required steps complete.

    Raises:
        UnknownStepError: a required index is outside the path
    """
    for index in required_step_indices:
        if not 0 <= index < len(path.steps):
            raise UnknownStepError(path.path_id, index)
    return all(can_advance_to_next_step(path, index, attempts).can_advance for index in required_step_indices)


def check_and_unlock_milestones(
    rewards: StudentRewards,
    path: GeneratedPath,
    attempts: Sequence[StepAttempt],
    now: Optional[datetime] = None,
    log=None,
) -> Tuple[StudentRewards, List[MilestoneCheckResult]]:
    """
    Unlock every locked milestone whose required steps are complete and
    grant its reward.

    Already-unlocked milestones are skipped, so calling this again with no
    new completions changes nothing.
    """
    log = resolve_logger(log, "milestone_engine")
    now = now or datetime.now(timezone.utc)
    updated = copy.deepcopy(rewards)
    results: List[MilestoneCheckResult] = []

    for milestone in sorted(path.milestones, key=lambda m: m.sequence):
        if milestone.id in updated.unlocked_milestones:
            continue

        if not milestone_requirements_met(path, milestone.required_step_indices, attempts):
            results.append(MilestoneCheckResult(milestone.id, unlocked=False, reward_awarded=False))
            continue

        updated.unlocked_milestones.append(milestone.id)
        _apply_reward(updated, milestone.reward, now, log)

        log.info(
            "milestone_unlocked",
            user_id=updated.user_id,
            path_id=path.path_id,
            milestone_id=milestone.id,
            title=milestone.title,
            reward_type=milestone.reward.kind,
        )
        results.append(MilestoneCheckResult(milestone.id, unlocked=True, reward_awarded=True, reward=milestone.reward))

    return updated, results


def award_step_completion(
    rewards: StudentRewards,
    path: GeneratedPath,
    step_index: int,
    attempts: Sequence[StepAttempt],
    log=None,
) -> Tuple[StudentRewards, StepAward]:
    """
    Grant XP for a completed step, once per (path, step).

    Nothing is awarded while the step's completion rule fails.
    """
    log = resolve_logger(log, "milestone_engine")
    key = f"{path.path_id}:{step_index}"

    if key in rewards.awarded_steps:
        return rewards, StepAward(0, False, rewards.level, already_awarded=True)

    check = can_advance_to_next_step(path, step_index, attempts)
    if not check.can_advance:
        return rewards, StepAward(0, False, rewards.level)

    step = path.steps[step_index]
    step_attempts = [a for a in attempts if a.step_index == step_index]
    accuracy = (
        sum(1 for a in step_attempts if a.is_correct) / len(step_attempts)
        if step_attempts else 0.0
    )
    xp = calculate_step_xp(step.kind, accuracy)

    updated = copy.deepcopy(rewards)
    updated.awarded_steps.append(key)
    leveled_up = _add_xp(updated, xp, log)

    log.info(
        "step_completion_awarded",
        user_id=updated.user_id,
        path_id=path.path_id,
        step_index=step_index,
        step_type=step.kind,
        xp_awarded=xp,
        leveled_up=leveled_up,
        new_level=updated.level,
    )
    return updated, StepAward(xp, leveled_up, updated.level)


def get_student_progress(rewards: StudentRewards) -> dict:
    return {
        "level": rewards.level,
        "xp": rewards.xp,
        "xp_to_next_level": rewards.level * XP_PER_LEVEL - rewards.xp,
        "badges": sorted(rewards.badges.values(), key=lambda b: b.earned_at),
        "unlocked_exams": list(rewards.unlocked_exams),
        "certificates": list(rewards.certificates),
    }
