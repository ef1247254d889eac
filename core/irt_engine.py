"""
IRT Engine - 3-Parameter Logistic (3PL) model for adaptive testing.

Features:
    - Probability of a correct response and item information
    - Standard error from accumulated test information
    - Newton-Raphson maximum-likelihood ability estimation
    - Rough item calibration from prior responses (approximation only)

Model:
    P(θ) = c + (1 - c) / (1 + exp(-a(θ - b)))
    I(θ) = a² (P - c)² (1 - P) / ((1 - c)² P)

    θ (theta) = student ability (-3 to +3)
    a = discrimination, b = difficulty, c = guessing

All functions are pure and total over valid numeric input. Degenerate cases
return sentinels (information 0, SE 999) instead of raising.
"""

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from .errors import InvalidItemParamsError
from .logging_config import resolve_logger


# Ability scale
THETA_MIN = -3.0
THETA_MAX = 3.0

# "Infinite" uncertainty before any information is collected
SE_SENTINEL = 999.0

# Parameter ranges
A_RANGE = (0.1, 3.0)
B_RANGE = (-4.0, 4.0)
C_RANGE = (0.0, 0.5)

# Defaults for uncalibrated items, keyed by difficulty label
DEFAULT_DISCRIMINATION = 1.0
DEFAULT_GUESSING = 0.25  # 4-option multiple choice
DIFFICULTY_B = {
    "EASY": -0.5,
    "MEDIUM": 0.0,
    "HARD": 0.5,
}

# Calibration
MIN_CALIBRATION_RESPONSES = 10
CALIBRATION_A_RANGE = (0.5, 2.5)


@dataclass(frozen=True)
class ItemParams:
    """IRT triple for one item. Immutable once calibrated."""
    a: float  # Discrimination
    b: float  # Difficulty
    c: float  # Guessing

    @classmethod
    def from_difficulty(cls, difficulty: Optional[str]) -> "ItemParams":
        """Default parameters for an uncalibrated item."""
        label = (difficulty or "MEDIUM").upper()
        return cls(a=DEFAULT_DISCRIMINATION, b=DIFFICULTY_B.get(label, 0.0), c=DEFAULT_GUESSING)

    @classmethod
    def defaults(cls) -> "ItemParams":
        return cls(a=DEFAULT_DISCRIMINATION, b=0.0, c=DEFAULT_GUESSING)

    def to_dict(self) -> Dict[str, float]:
        return {"a": self.a, "b": self.b, "c": self.c}


@dataclass(frozen=True)
class ResponsePattern:
    """One scored response used for ability estimation."""
    params: ItemParams
    correct: bool


@dataclass(frozen=True)
class AbilityEstimate:
    """Ability estimate with uncertainty."""
    theta: float
    se: float
    responses: int = 0
    iterations: int = 0


@dataclass(frozen=True)
class CalibrationResponse:
    """A prior response with the responder's estimated ability."""
    student_ability: float
    correct: bool


# ==================== Validation ====================

def _param_problems(params: ItemParams) -> List[str]:
    problems = []
    if not A_RANGE[0] <= params.a <= A_RANGE[1]:
        problems.append(f"a must be within [{A_RANGE[0]}, {A_RANGE[1]}]")
    if not B_RANGE[0] <= params.b <= B_RANGE[1]:
        problems.append(f"b must be within [{B_RANGE[0]}, {B_RANGE[1]}]")
    if not C_RANGE[0] <= params.c <= C_RANGE[1]:
        problems.append(f"c must be within [{C_RANGE[0]}, {C_RANGE[1]}]")
    return problems


def validate_item_params(params: ItemParams) -> bool:
    """True if (a, b, c) lie in their allowed ranges."""
    return not _param_problems(params)


def check_item_params(params: ItemParams) -> ItemParams:
    """Return params unchanged, or raise InvalidItemParamsError."""
    problems = _param_problems(params)
    if problems:
        raise InvalidItemParamsError(params.a, params.b, params.c, problems)
    return params


def clamp_theta(theta: float) -> float:
    return max(THETA_MIN, min(THETA_MAX, theta))


# ==================== Probability & Information ====================

def _logistic(x: float) -> float:
    # Split by sign so exp() never overflows
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    ex = math.exp(x)
    return ex / (1.0 + ex)


def probability_correct(theta: float, params: ItemParams) -> float:
    """
    3PL probability of a correct response.

    Args:
        theta: Student ability (-3 to +3)
        params: Item parameters

    Returns:
        Probability in [0, 1]
    """
    logistic = _logistic(params.a * (theta - params.b))
    probability = params.c + (1.0 - params.c) * logistic
    return max(0.0, min(1.0, probability))


def item_information(theta: float, params: ItemParams) -> float:
    """
    Fisher information of an item at ability theta.

    Returns 0 when P sits on the guessing floor or at certainty, where the
    formula is numerically meaningless.
    """
    a, c = params.a, params.c
    p = probability_correct(theta, params)

    if p <= c or p >= 1.0:
        return 0.0

    numerator = a * a * (p - c) ** 2 * (1.0 - p)
    denominator = (1.0 - c) ** 2 * p
    return numerator / denominator


def test_information(theta: float, items: Sequence[ItemParams]) -> float:
    """Sum of item information over administered items."""
    return sum(item_information(theta, item) for item in items)


def standard_error(theta: float, items: Sequence[ItemParams]) -> float:
    """
    SE(θ) = 1 / sqrt(I(θ)).

    Returns SE_SENTINEL when there is no information yet.
    """
    info = test_information(theta, items)
    if info <= 0:
        return SE_SENTINEL
    return 1.0 / math.sqrt(info)


def expected_score(theta: float, items: Sequence[ItemParams]) -> float:
    """Expected proportion correct on a set of items."""
    if not items:
        return 0.0
    return sum(probability_correct(theta, item) for item in items) / len(items)


# ==================== Ability Estimation ====================

def _log_likelihood_derivatives(theta: float, responses: Sequence[ResponsePattern]):
    """First derivative and expected second derivative of the log-likelihood."""
    first = 0.0
    second = 0.0

    for response in responses:
        params = response.params
        p = probability_correct(theta, params)

        if p <= params.c or p >= 1.0:
            continue

        observed = 1.0 if response.correct else 0.0
        first += params.a * (observed - p) * (p - params.c) / (p * (1.0 - params.c))
        second -= item_information(theta, params)

    return first, second


def estimate_ability(
    responses: Sequence[ResponsePattern],
    initial_theta: float = 0.0,
    max_iterations: int = 20,
    convergence: float = 0.001,
    log=None,
) -> AbilityEstimate:
    """
    Maximum-likelihood ability estimate via Newton-Raphson (Fisher scoring).

    Each step divides by the expected second derivative, -Σ I(θ), rather than
    the observed one; the denominator is never positive.

    Re-estimates from the full response history every call. Theta is clamped
    to [-3, 3] on every iteration, so all-correct or all-incorrect patterns
    settle on the boundary instead of diverging.

    Args:
        responses: Full response pattern so far
        initial_theta: Starting point for the search
        max_iterations: Iteration cap
        convergence: Stop once |Δθ| falls below this

    Returns:
        AbilityEstimate (theta, se, responses used, iterations run)
    """
    if not responses:
        return AbilityEstimate(theta=initial_theta, se=SE_SENTINEL, responses=0, iterations=0)

    log = resolve_logger(log, "irt_engine")
    log.debug("estimating_ability", responses=len(responses), initial_theta=initial_theta)

    theta = clamp_theta(initial_theta)
    iterations = 0

    while iterations < max_iterations:
        first, second = _log_likelihood_derivatives(theta, responses)
        iterations += 1

        if second == 0:
            break

        new_theta = clamp_theta(theta - first / second)
        delta = new_theta - theta
        theta = new_theta

        if abs(delta) < convergence:
            break

    se = standard_error(theta, [r.params for r in responses])

    log.debug(
        "ability_estimated",
        theta=round(theta, 3),
        se=round(se, 3),
        iterations=iterations,
        responses=len(responses),
    )

    return AbilityEstimate(theta=theta, se=se, responses=len(responses), iterations=iterations)


# ==================== Calibration ====================

def calibrate_item(responses: Sequence[CalibrationResponse], log=None) -> ItemParams:
    """
    Rough (a, b) estimate from prior responses.

    Not an IRT calibration: b comes from the inverse logit of the p-value and
    a from the gap between mean abilities of correct and incorrect responders.
    Needs at least 10 responses; returns (1.0, 0.0, 0.25) otherwise.
    """
    log = resolve_logger(log, "irt_engine")

    if len(responses) < MIN_CALIBRATION_RESPONSES:
        log.warning("insufficient_calibration_data", responses=len(responses))
        return ItemParams.defaults()

    correct = [r.student_ability for r in responses if r.correct]
    incorrect = [r.student_ability for r in responses if not r.correct]

    p_value = len(correct) / len(responses)
    bounded = max(0.01, min(0.99, p_value))
    b = -math.log(bounded / (1.0 - bounded))
    b = max(B_RANGE[0], min(B_RANGE[1], b))

    if correct and incorrect:
        discrimination = abs(sum(correct) / len(correct) - sum(incorrect) / len(incorrect))
        a = max(CALIBRATION_A_RANGE[0], min(CALIBRATION_A_RANGE[1], discrimination))
    else:
        a = DEFAULT_DISCRIMINATION

    log.info(
        "item_calibrated",
        responses=len(responses),
        p_value=round(p_value, 3),
        a=round(a, 2),
        b=round(b, 2),
        c=DEFAULT_GUESSING,
    )

    return ItemParams(a=a, b=b, c=DEFAULT_GUESSING)
