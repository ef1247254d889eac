"""
Learning path module - path generation, progress tracking and rewards.

Components:
    - path_generator: Personalized path from a diagnostic report and the concept DAG
    - progress_tracker: Step completion rules, path progress, streaks, difficulty nudges
    - milestone_engine: XP, levels, badges, milestone unlocks (idempotent)
"""

from .path_generator import (
    PathGenerator,
    GeneratedPath,
    PathGenerationOptions,
    StudentProfile,
    Pace,
)
from .progress_tracker import StepAttempt, can_advance_to_next_step, calculate_path_progress
from .milestone_engine import StudentRewards, check_and_unlock_milestones, award_step_completion

__all__ = [
    "PathGenerator",
    "GeneratedPath",
    "PathGenerationOptions",
    "StudentProfile",
    "Pace",
    "StepAttempt",
    "can_advance_to_next_step",
    "calculate_path_progress",
    "StudentRewards",
    "check_and_unlock_milestones",
    "award_step_completion",
]
