"""Tests for learning_path/progress_tracker.py"""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import make_report
from core.errors import UnknownStepError
from learning_path.path_generator import PathGenerator, StudentProfile
from learning_path.progress_tracker import (
    StepAttempt,
    StudyStreak,
    adjust_step_difficulty,
    calculate_path_progress,
    can_advance_to_next_step,
    concept_mastery_from_attempts,
    update_streak,
)


NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def path(content_bundle):
    generator = PathGenerator(content_bundle.concepts, content_bundle.similarity)
    profile = StudentProfile(user_id="student-1")
    # ohms, ampacity, branch -> 6 study/practice steps, checkpoint, final assessment
    return generator.generate_learning_path(make_report("branch_circuits"), profile, "ca", path_id="p1")


def attempt(step_index, correct=True, seconds=60.0, minutes=0):
    return StepAttempt(step_index, correct, seconds, NOW + timedelta(minutes=minutes))


def complete_steps(*indices):
    return [attempt(i, minutes=n) for n, i in enumerate(indices)]


# ==================== Completion ====================

def test_concept_study_needs_a_correct_mark(path):
    assert not can_advance_to_next_step(path, 0, []).can_advance
    assert not can_advance_to_next_step(path, 0, [attempt(0, correct=False)]).can_advance
    assert can_advance_to_next_step(path, 0, [attempt(0)]).can_advance


def test_practice_set_accuracy_rule(path):
    passing = [attempt(1, c) for c in (True, True, True, False)]
    check = can_advance_to_next_step(path, 1, passing)
    assert check.can_advance
    assert check.current_accuracy == 0.75
    assert check.attempts_count == 4

    failing = [attempt(1, c) for c in (True, False)]
    check = can_advance_to_next_step(path, 1, failing)
    assert not check.can_advance
    assert check.reason == "Need 75% accuracy"

    assert can_advance_to_next_step(path, 1, []).attempts_count == 0


def test_checkpoint_needs_all_required_steps(path):
    attempts = complete_steps(0, 1, 2, 3, 4)
    assert not can_advance_to_next_step(path, 6, attempts).can_advance

    attempts += complete_steps(5)
    assert can_advance_to_next_step(path, 6, attempts).can_advance


def test_assessment_needs_one_attempt(path):
    assert not can_advance_to_next_step(path, 7, []).can_advance
    assert can_advance_to_next_step(path, 7, [attempt(7, correct=False)]).can_advance


def test_unknown_step_raises(path):
    with pytest.raises(UnknownStepError):
        can_advance_to_next_step(path, 8, [])
    with pytest.raises(UnknownStepError):
        can_advance_to_next_step(path, -1, [])


# ==================== Progress ====================

def test_progress_counts_steps_in_order(path):
    # step 3 is done but step 2 is not, so it does not count
    attempts = complete_steps(0, 1, 3)
    progress = calculate_path_progress(path, attempts, unlocked_milestones=["p1:m0", "other:m0"])

    assert progress.steps_completed == 2
    assert progress.current_step_index == 2
    assert progress.overall_progress == 25.0
    assert progress.steps_total == 8
    assert progress.total_time_spent == 3
    assert progress.estimated_time_remaining == 152 - 3
    assert progress.milestones_unlocked == 1
    assert progress.milestones_total == 3
    assert progress.last_activity == NOW + timedelta(minutes=2)


def test_progress_of_finished_path(path):
    attempts = complete_steps(*range(8))
    progress = calculate_path_progress(path, attempts, streak=StudyStreak(current=4, longest=6))

    assert progress.overall_progress == 100.0
    assert progress.current_step_index == 7
    assert progress.current_streak == 4


def test_progress_with_no_attempts(path):
    progress = calculate_path_progress(path, [])
    assert progress.overall_progress == 0.0
    assert progress.last_activity is None
    assert progress.concepts_weak == 3


def test_concept_mastery_from_step_attempts(path):
    attempts = [attempt(1, True, minutes=i) for i in range(10)]
    mastery = concept_mastery_from_attempts(path, attempts, now=NOW + timedelta(hours=1))

    assert set(mastery) == {"ohms", "ampacity", "branch"}
    assert mastery["ohms"].attempts_used == 10
    assert mastery["ohms"].overall > 0.9
    assert mastery["branch"].attempts_used == 0


# ==================== Streaks ====================

def test_streak_progression():
    first = update_streak(None, NOW)
    assert (first.current, first.longest, first.last_study_date) == (1, 1, date(2024, 6, 1))

    assert update_streak(first, NOW + timedelta(hours=5)) == first

    second = update_streak(first, NOW + timedelta(days=1))
    assert (second.current, second.longest) == (2, 2)

    broken = update_streak(second, NOW + timedelta(days=4))
    assert (broken.current, broken.longest) == (1, 2)


# ==================== Difficulty ====================

def test_fast_accurate_student_gets_harder_items(path):
    practice = path.steps[1]
    attempts = [attempt(1, True, seconds=30, minutes=i) for i in range(6)]

    adjustment = adjust_step_difficulty(practice, attempts, student_theta=0.2)

    assert adjustment.adjusted
    assert adjustment.new_difficulty == pytest.approx(0.5)


def test_struggling_student_gets_easier_items(path):
    practice = path.steps[1]
    attempts = [attempt(1, i == 0, minutes=i) for i in range(5)]

    adjustment = adjust_step_difficulty(practice, attempts, student_theta=0.0)

    assert adjustment.adjusted
    assert adjustment.new_difficulty == pytest.approx(-0.3)


def test_no_adjustment_without_enough_data(path):
    practice = path.steps[1]
    assert not adjust_step_difficulty(practice, [attempt(1)] * 4, 0.0).adjusted
    assert not adjust_step_difficulty(path.steps[0], [attempt(0)] * 8, 0.0).adjusted


def test_slow_accurate_student_keeps_difficulty(path):
    practice = path.steps[1]
    attempts = [attempt(1, True, seconds=600, minutes=i) for i in range(6)]
    adjustment = adjust_step_difficulty(practice, attempts, student_theta=0.0)
    assert not adjustment.adjusted
    assert adjustment.new_difficulty == 0.0
