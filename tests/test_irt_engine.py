"""Tests for core/irt_engine.py"""

import math
import random

import pytest
from hypothesis import given, settings, strategies as st

from core import irt_engine
from core.errors import InvalidItemParamsError
from core.irt_engine import (
    SE_SENTINEL,
    CalibrationResponse,
    ItemParams,
    ResponsePattern,
    calibrate_item,
    check_item_params,
    estimate_ability,
    expected_score,
    item_information,
    probability_correct,
    standard_error,
    validate_item_params,
)


valid_params = st.builds(
    ItemParams,
    a=st.floats(min_value=0.1, max_value=3.0),
    b=st.floats(min_value=-4.0, max_value=4.0),
    c=st.floats(min_value=0.0, max_value=0.5),
)
thetas = st.floats(min_value=-3.0, max_value=3.0)


# ==================== Probability & Information ====================

def test_probability_at_difficulty_is_midpoint_above_guessing():
    params = ItemParams(a=1.5, b=0.0, c=0.25)
    assert probability_correct(0.0, params) == pytest.approx(0.625)


def test_information_worked_example():
    # 1.5^2 * 0.375^2 * 0.375 / (0.75^2 * 0.625)
    params = ItemParams(a=1.5, b=0.0, c=0.25)
    assert item_information(0.0, params) == pytest.approx(0.3375)


def test_probability_extreme_inputs_do_not_overflow():
    params = ItemParams(a=3.0, b=-4.0, c=0.0)
    assert probability_correct(1000.0, params) == pytest.approx(1.0)
    assert probability_correct(-1000.0, params) == pytest.approx(0.0)


def test_information_zero_at_certainty():
    params = ItemParams(a=3.0, b=-4.0, c=0.2)
    assert item_information(500.0, params) == 0.0


@settings(max_examples=200, deadline=None)
@given(theta=thetas, params=valid_params)
def test_probability_bounded_by_guessing_and_one(theta, params):
    p = probability_correct(theta, params)
    assert params.c - 1e-12 <= p <= 1.0


@settings(max_examples=200, deadline=None)
@given(theta=thetas, params=valid_params)
def test_information_never_negative(theta, params):
    assert item_information(theta, params) >= 0.0


def test_test_information_sums_items():
    items = [ItemParams(1.0, 0.0, 0.2), ItemParams(1.5, 0.5, 0.25)]
    expected = item_information(0.3, items[0]) + item_information(0.3, items[1])
    assert irt_engine.test_information(0.3, items) == pytest.approx(expected)


def test_standard_error_sentinel_without_information():
    assert standard_error(0.0, []) == SE_SENTINEL


def test_standard_error_from_information():
    items = [ItemParams(1.5, 0.0, 0.25)] * 4
    assert standard_error(0.0, items) == pytest.approx(1.0 / math.sqrt(4 * 0.3375))


@settings(max_examples=100, deadline=None)
@given(theta=thetas, items=st.lists(valid_params, min_size=1, max_size=15))
def test_standard_error_never_grows_as_items_are_added(theta, items):
    previous = SE_SENTINEL
    for n in range(1, len(items) + 1):
        se = standard_error(theta, items[:n])
        assert se <= previous + 1e-9
        previous = se


def test_estimated_se_shrinks_with_more_responses_on_average():
    rng = random.Random(11)
    true_theta = 0.5
    bank = [ItemParams(1.2, -2.0 + 4.0 * i / 29, 0.2) for i in range(30)]
    lengths = (5, 10, 20, 30)
    totals = dict.fromkeys(lengths, 0.0)
    runs = 200

    for _ in range(runs):
        order = rng.sample(bank, len(bank))
        pattern = [ResponsePattern(p, rng.random() < probability_correct(true_theta, p)) for p in order]
        for n in lengths:
            totals[n] += estimate_ability(pattern[:n]).se

    means = [totals[n] / runs for n in lengths]
    assert all(later <= earlier for earlier, later in zip(means, means[1:]))
    assert means[-1] < 0.7


def test_expected_score():
    assert expected_score(0.0, []) == 0.0
    assert expected_score(0.0, [ItemParams(1.5, 0.0, 0.25)]) == pytest.approx(0.625)


# ==================== Validation ====================

def test_validate_item_params_ranges():
    assert validate_item_params(ItemParams(1.0, 0.0, 0.25))
    assert not validate_item_params(ItemParams(0.05, 0.0, 0.25))
    assert not validate_item_params(ItemParams(1.0, 4.5, 0.25))
    assert not validate_item_params(ItemParams(1.0, 0.0, 0.6))


def test_check_item_params_names_every_problem():
    with pytest.raises(InvalidItemParamsError) as excinfo:
        check_item_params(ItemParams(5.0, -9.0, 0.25))
    assert len(excinfo.value.problems) == 2
    assert excinfo.value.a == 5.0
    assert isinstance(excinfo.value, ValueError)


def test_defaults_from_difficulty_label():
    assert ItemParams.from_difficulty("HARD") == ItemParams(1.0, 0.5, 0.25)
    assert ItemParams.from_difficulty("easy").b == -0.5
    assert ItemParams.from_difficulty(None).b == 0.0
    assert ItemParams.from_difficulty("UNKNOWN").b == 0.0


# ==================== Estimation ====================

def test_no_responses_keeps_initial_theta():
    estimate = estimate_ability([], initial_theta=0.4)
    assert estimate.theta == 0.4
    assert estimate.se == SE_SENTINEL
    assert estimate.iterations == 0


def test_all_correct_settles_on_upper_bound():
    responses = [ResponsePattern(ItemParams(1.2, b, 0.2), True) for b in (-1.0, 0.0, 1.0, 2.0)]
    estimate = estimate_ability(responses)
    assert estimate.theta == pytest.approx(3.0)


def test_all_incorrect_settles_on_lower_bound():
    responses = [ResponsePattern(ItemParams(1.2, b, 0.2), False) for b in (-2.0, -1.0, 0.0, 1.0)]
    estimate = estimate_ability(responses)
    assert estimate.theta == pytest.approx(-3.0)


def test_mixed_pattern_lands_between_items():
    responses = [
        ResponsePattern(ItemParams(1.5, -1.0, 0.2), True),
        ResponsePattern(ItemParams(1.5, -0.5, 0.2), True),
        ResponsePattern(ItemParams(1.5, 0.5, 0.2), False),
        ResponsePattern(ItemParams(1.5, 1.0, 0.2), False),
    ]
    estimate = estimate_ability(responses)
    assert -1.0 < estimate.theta < 1.0
    assert estimate.se < SE_SENTINEL
    assert estimate.responses == 4


def test_estimate_respects_iteration_cap():
    responses = [ResponsePattern(ItemParams(1.0, 0.0, 0.2), True)]
    estimate = estimate_ability(responses, max_iterations=1)
    assert estimate.iterations == 1


@settings(max_examples=100, deadline=None)
@given(
    pattern=st.lists(st.tuples(valid_params, st.booleans()), min_size=1, max_size=20),
    initial=st.floats(min_value=-10.0, max_value=10.0),
)
def test_estimate_always_within_scale(pattern, initial):
    responses = [ResponsePattern(params, correct) for params, correct in pattern]
    estimate = estimate_ability(responses, initial_theta=initial)
    assert -3.0 <= estimate.theta <= 3.0
    assert estimate.se > 0


# ==================== Calibration ====================

def test_calibration_needs_ten_responses():
    responses = [CalibrationResponse(0.0, True)] * 9
    assert calibrate_item(responses) == ItemParams(1.0, 0.0, 0.25)


def test_calibration_hard_item_has_positive_b():
    responses = (
        [CalibrationResponse(1.5, True)] * 3
        + [CalibrationResponse(-0.5, False)] * 9
    )
    params = calibrate_item(responses)
    assert params.b > 0
    assert params.c == 0.25
    # mean gap 2.0 falls inside the allowed discrimination range
    assert params.a == pytest.approx(2.0)


def test_calibration_all_correct_uses_default_discrimination():
    params = calibrate_item([CalibrationResponse(0.0, True)] * 12)
    assert params.a == 1.0
    # -ln(99) falls below the difficulty range
    assert params.b == -4.0
