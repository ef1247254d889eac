"""Tests for learning_path/milestone_engine.py"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import HealthCheck, given, settings, strategies as st

from conftest import make_report
from core.errors import UnknownStepError
from learning_path.milestone_engine import (
    StudentRewards,
    award_step_completion,
    calculate_step_xp,
    check_and_unlock_milestones,
    get_student_progress,
    level_for_xp,
    milestone_requirements_met,
)
from learning_path.path_generator import PathGenerator, StudentProfile
from learning_path.progress_tracker import StepAttempt


NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def path(content_bundle):
    generator = PathGenerator(content_bundle.concepts, content_bundle.similarity)
    return generator.generate_learning_path(
        make_report("branch_circuits"), StudentProfile(user_id="student-1"), "ca", path_id="p1"
    )


def completed(*indices):
    return [StepAttempt(i, True, 60.0, NOW + timedelta(minutes=n)) for n, i in enumerate(indices)]


# ==================== XP ====================

def test_step_xp_multipliers():
    assert calculate_step_xp("CONCEPT_STUDY") == 10
    assert calculate_step_xp("PRACTICE_SET", 0.8) == 25
    assert calculate_step_xp("PRACTICE_SET", 0.85) == 31
    assert calculate_step_xp("PRACTICE_SET", 0.95) == 38
    assert calculate_step_xp("CHECKPOINT", 0.0) == 50
    assert calculate_step_xp("ASSESSMENT", 1.0) == 150


def test_level_for_xp():
    assert level_for_xp(0) == 1
    assert level_for_xp(999) == 1
    assert level_for_xp(1000) == 2
    assert level_for_xp(2500) == 3


def test_step_award_only_after_completion(path):
    rewards = StudentRewards(user_id="student-1")

    unchanged, award = award_step_completion(rewards, path, 1, [StepAttempt(1, False)])
    assert award.xp_awarded == 0
    assert unchanged.xp == 0

    updated, award = award_step_completion(rewards, path, 0, completed(0))
    assert award.xp_awarded == 15  # perfect accuracy on a concept study
    assert updated.xp == 15
    assert updated.awarded_steps == ["p1:0"]
    assert rewards.xp == 0


def test_step_award_is_granted_once(path):
    rewards, _ = award_step_completion(StudentRewards(user_id="s"), path, 7, completed(7))
    again, award = award_step_completion(rewards, path, 7, completed(7, 7))

    assert award.already_awarded
    assert award.xp_awarded == 0
    assert again.xp == rewards.xp == 150


def test_level_up_is_reported(path):
    rewards = StudentRewards(user_id="s", xp=990, level=1)
    updated, award = award_step_completion(rewards, path, 0, completed(0))
    assert award.leveled_up
    assert award.new_level == 2
    assert updated.level == 2


# ==================== Milestones ====================

def test_quarter_milestone_unlocks_badge(path):
    rewards, results = check_and_unlock_milestones(StudentRewards(user_id="s"), path, completed(0, 1), now=NOW)

    unlocked = [r.milestone_id for r in results if r.unlocked]
    assert unlocked == ["p1:m0"]
    assert rewards.unlocked_milestones == ["p1:m0"]
    assert rewards.badges["early-progress"].name == "Quick Learner"
    assert rewards.badges["early-progress"].earned_at == NOW


def test_requirement_outside_path_is_an_error(path):
    with pytest.raises(UnknownStepError):
        milestone_requirements_met(path, [0, 99], completed(0))


def test_full_path_unlocks_everything(path):
    rewards, results = check_and_unlock_milestones(StudentRewards(user_id="s"), path, completed(*range(8)), now=NOW)

    assert all(r.unlocked for r in results)
    assert rewards.unlocked_exams == ["PRACTICE_EXAM"]
    assert rewards.certificates == ["PATH_COMPLETION"]
    assert set(rewards.badges) == {"early-progress", "cert-PATH_COMPLETION"}


def test_unlocked_milestones_are_not_regranted(path):
    first, _ = check_and_unlock_milestones(StudentRewards(user_id="s"), path, completed(0, 1), now=NOW)
    later = NOW + timedelta(days=1)
    second, results = check_and_unlock_milestones(first, path, completed(0, 1), now=later)

    assert second == first
    assert [r.milestone_id for r in results] == ["p1:m1", "p1:m2"]
    assert second.badges["early-progress"].earned_at == NOW


@settings(max_examples=60, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(done=st.lists(st.integers(min_value=0, max_value=7), max_size=12))
def test_repeated_checks_never_grant_twice(path, done):
    attempts = completed(*done)
    once, _ = check_and_unlock_milestones(StudentRewards(user_id="s"), path, attempts, now=NOW)
    twice, results = check_and_unlock_milestones(once, path, attempts, now=NOW)

    assert twice == once
    assert not any(r.unlocked for r in results)
    assert len(set(once.unlocked_milestones)) == len(once.unlocked_milestones)


def test_student_progress_summary():
    rewards = StudentRewards(user_id="s", xp=1250, level=2)
    summary = get_student_progress(rewards)
    assert summary["level"] == 2
    assert summary["xp_to_next_level"] == 750
    assert summary["badges"] == []
