"""
Mastery Calculator - multi-factor concept mastery from attempt history.

Mastery is derived on demand from the (student, concept) attempt list and
never stored as the source of truth.

    overall = 0.40 * recent_accuracy
            + 0.25 * overall_accuracy
            + 0.15 * time_efficiency
            + 0.10 * consistency
            + 0.10 * retention
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, Optional, Sequence

from .logging_config import resolve_logger


RECENT_WINDOW = 10
RECENT_DECAY = 0.9
RETENTION_DAYS = 14.0
DEFAULT_CONCEPT_TIME_SECONDS = 120.0

WEIGHTS = {
    "recent_accuracy": 0.40,
    "overall_accuracy": 0.25,
    "time_efficiency": 0.15,
    "consistency": 0.10,
    "retention": 0.10,
}


class MasteryLevel(str, Enum):
    NOVICE = "NOVICE"
    DEVELOPING = "DEVELOPING"
    PROFICIENT = "PROFICIENT"
    MASTERY = "MASTERY"


@dataclass(frozen=True)
class AttemptData:
    is_correct: bool
    time_seconds: float
    attempted_at: datetime


@dataclass(frozen=True)
class MasteryScore:
    overall: float
    recent_accuracy: float
    overall_accuracy: float
    time_efficiency: float
    consistency: float
    retention: float
    level: MasteryLevel
    attempts_used: int = 0
    last_attempt_at: Optional[datetime] = None


def _as_utc(moment: datetime) -> datetime:
    # Naive timestamps are taken as UTC
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


# ==================== Factors ====================

def recent_accuracy(attempts: Sequence[AttemptData], limit: int = RECENT_WINDOW) -> float:
    """Exponentially weighted accuracy over the last `limit` attempts, newest heaviest."""
    if not attempts:
        return 0.0

    recent = list(attempts)[-limit:]
    n = len(recent)
    weighted = 0.0
    total = 0.0
    for i, attempt in enumerate(recent):
        weight = RECENT_DECAY ** (n - 1 - i)
        total += weight
        if attempt.is_correct:
            weighted += weight
    return weighted / total if total > 0 else 0.0


def overall_accuracy(attempts: Sequence[AttemptData]) -> float:
    if not attempts:
        return 0.0
    return sum(1 for a in attempts if a.is_correct) / len(attempts)


def time_efficiency(attempts: Sequence[AttemptData], concept_avg_time_seconds: float) -> float:
    """min(1, concept average / student average); 1.0 when either average is missing."""
    if not attempts or not concept_avg_time_seconds:
        return 1.0

    student_avg = sum(a.time_seconds for a in attempts) / len(attempts)
    if student_avg <= 0:
        return 1.0
    return min(1.0, concept_avg_time_seconds / student_avg)


def consistency(attempts: Sequence[AttemptData], limit: int = RECENT_WINDOW) -> float:
    """1 - stddev/0.5 of recent correctness; fewer than 2 attempts count as consistent."""
    if len(attempts) < 2:
        return 1.0

    values = [1.0 if a.is_correct else 0.0 for a in list(attempts)[-limit:]]
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return max(0.0, 1.0 - math.sqrt(variance) / 0.5)


def retention(last_attempt_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """exp(-days / 14). Never practiced means nothing to decay."""
    if last_attempt_at is None:
        return 1.0

    now = _as_utc(now or datetime.now(timezone.utc))
    days = (now - _as_utc(last_attempt_at)).total_seconds() / 86400.0
    return math.exp(-max(0.0, days) / RETENTION_DAYS)


def mastery_level(score: float) -> MasteryLevel:
    if score >= 0.85:
        return MasteryLevel.MASTERY
    if score >= 0.70:
        return MasteryLevel.PROFICIENT
    if score >= 0.40:
        return MasteryLevel.DEVELOPING
    return MasteryLevel.NOVICE


# ==================== Scoring ====================

def calculate_concept_mastery(
    attempts: Sequence[AttemptData],
    concept_avg_time_seconds: float = DEFAULT_CONCEPT_TIME_SECONDS,
    now: Optional[datetime] = None,
    log=None,
) -> MasteryScore:
    """
    Score mastery of one concept from its chronologically ordered attempts.

    An empty history is a valid, minimal mastery: every factor 0, NOVICE.
    """
    log = resolve_logger(log, "mastery_calculator")

    if not attempts:
        log.debug("no_attempts_for_concept")
        return MasteryScore(
            overall=0.0,
            recent_accuracy=0.0,
            overall_accuracy=0.0,
            time_efficiency=0.0,
            consistency=0.0,
            retention=0.0,
            level=MasteryLevel.NOVICE,
        )

    last_attempt_at = attempts[-1].attempted_at
    factors = {
        "recent_accuracy": recent_accuracy(attempts),
        "overall_accuracy": overall_accuracy(attempts),
        "time_efficiency": time_efficiency(attempts, concept_avg_time_seconds),
        "consistency": consistency(attempts),
        "retention": retention(last_attempt_at, now),
    }
    overall = sum(WEIGHTS[name] * value for name, value in factors.items())
    overall = max(0.0, min(1.0, overall))
    level = mastery_level(overall)

    log.info(
        "concept_mastery_calculated",
        overall=round(overall, 3),
        level=level.value,
        attempts=len(attempts),
        **{name: round(value, 3) for name, value in factors.items()},
    )

    return MasteryScore(
        overall=overall,
        level=level,
        attempts_used=len(attempts),
        last_attempt_at=last_attempt_at,
        **factors,
    )


def summarize_mastery(scores: Iterable[MasteryScore]) -> Dict[str, int]:
    """Concept counts per mastery level, for a student profile summary."""
    summary = {"mastered": 0, "proficient": 0, "developing": 0, "novice": 0}
    keys = {
        MasteryLevel.MASTERY: "mastered",
        MasteryLevel.PROFICIENT: "proficient",
        MasteryLevel.DEVELOPING: "developing",
        MasteryLevel.NOVICE: "novice",
    }
    for score in scores:
        summary[keys[score.level]] += 1
    return summary


def mastery_map(scores: Dict[str, MasteryScore]) -> Dict[str, float]:
    """{concept_id: overall} for graph visualization."""
    return {concept_id: score.overall for concept_id, score in scores.items()}
