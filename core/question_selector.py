"""
Question Selector - picks the most informative next item.

Selection strategy:
    1. Information of each candidate at the current θ
    2. 2x boost for topics still under their coverage minimum
    3. Exposure-control penalty for over-used items
    4. Optional multiplicative jitter so sequences are not gameable
    5. Highest adjusted score wins (ties go to the earliest candidate)

Coverage state is an immutable counter snapshot; updating it returns a new one.
"""

import random
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Set

from .irt_engine import ItemParams, item_information
from .logging_config import resolve_logger


PRIORITY_BOOST = 2.0

# (usage rate above which the penalty applies, multiplier)
EXPOSURE_PENALTIES = (
    (0.20, 0.5),
    (0.15, 0.75),
)


@dataclass(frozen=True)
class SelectableItem:
    """Candidate item as provided by the item repository."""
    id: str
    topic: str
    cognitive: str = "LOOKUP"
    difficulty: str = "MEDIUM"
    irt_a: Optional[float] = None
    irt_b: Optional[float] = None
    irt_c: Optional[float] = None
    times_used: int = 0
    correct_answer: Optional[str] = None
    stem: str = ""
    options: Dict[str, str] = field(default_factory=dict)
    is_active: bool = True

    @property
    def is_calibrated(self) -> bool:
        return self.irt_a is not None and self.irt_b is not None and self.irt_c is not None

    def irt_params(self) -> ItemParams:
        """Calibrated triple, or defaults derived from the difficulty label."""
        if self.is_calibrated:
            return ItemParams(a=self.irt_a, b=self.irt_b, c=self.irt_c)
        return ItemParams.from_difficulty(self.difficulty)


@dataclass(frozen=True)
class CoverageConstraints:
    """Minimum question counts per topic / cognitive type."""
    topic_minimums: Dict[str, int] = field(default_factory=dict)
    cognitive_minimums: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CoverageState:
    """Counters of administered items. Only ever incremented."""
    topic_counts: Dict[str, int] = field(default_factory=dict)
    cognitive_counts: Dict[str, int] = field(default_factory=dict)
    difficulty_counts: Dict[str, int] = field(default_factory=dict)
    total_questions: int = 0


@dataclass(frozen=True)
class SelectionOptions:
    current_theta: float
    coverage: CoverageState
    constraints: CoverageConstraints = field(default_factory=CoverageConstraints)
    exposure_control: bool = True
    randomness: float = 0.0
    total_assessments: int = 1000

    def __post_init__(self):
        if not 0.0 <= self.randomness <= 1.0:
            raise ValueError(f"randomness must be within [0, 1], got {self.randomness}")


@dataclass(frozen=True)
class SelectionResult:
    item: SelectableItem
    information: float  # Raw information at current θ
    adjusted_score: float  # After boost / penalty / jitter
    reason: str


# ==================== Coverage ====================

def initialize_coverage_state() -> CoverageState:
    return CoverageState()


def _incremented(counts: Mapping[str, int], key: str) -> Dict[str, int]:
    updated = dict(counts)
    updated[key] = updated.get(key, 0) + 1
    return updated


def update_coverage_state(state: CoverageState, item: SelectableItem) -> CoverageState:
    """New coverage state with the administered item counted."""
    return CoverageState(
        topic_counts=_incremented(state.topic_counts, item.topic),
        cognitive_counts=_incremented(state.cognitive_counts, item.cognitive),
        difficulty_counts=_incremented(state.difficulty_counts, item.difficulty),
        total_questions=state.total_questions + 1,
    )


def unmet_topics(coverage: CoverageState, constraints: CoverageConstraints) -> Set[str]:
    """Topics still below their configured minimum."""
    return {
        topic
        for topic, minimum in constraints.topic_minimums.items()
        if coverage.topic_counts.get(topic, 0) < minimum
    }


def is_coverage_satisfied(coverage: CoverageState, constraints: CoverageConstraints) -> bool:
    if unmet_topics(coverage, constraints):
        return False
    for cognitive, minimum in constraints.cognitive_minimums.items():
        if coverage.cognitive_counts.get(cognitive, 0) < minimum:
            return False
    return True


# ==================== Exposure Control ====================

def exposure_penalty(times_used: int, total_assessments: int) -> float:
    """
    Multiplier for over-exposed items.

    Used in >20% of assessments: 0.5, >15%: 0.75, otherwise 1.0.
    """
    if total_assessments <= 0:
        return 1.0

    exposure_rate = times_used / total_assessments
    for threshold, multiplier in EXPOSURE_PENALTIES:
        if exposure_rate > threshold:
            return multiplier
    return 1.0


# ==================== Selection ====================

def filter_candidates(
    all_items: Iterable[SelectableItem],
    used_item_ids: Set[str],
    exclude_topics: Optional[Iterable[str]] = None,
    only_topics: Optional[Iterable[str]] = None,
) -> List[SelectableItem]:
    """Drop inactive, already-used and topic-filtered items."""
    excluded = set(exclude_topics or [])
    only = set(only_topics) if only_topics is not None else None

    candidates = []
    for item in all_items:
        if not item.is_active or item.id in used_item_ids:
            continue
        if item.topic in excluded:
            continue
        if only is not None and item.topic not in only:
            continue
        candidates.append(item)
    return candidates


def select_next_question(
    candidates: List[SelectableItem],
    options: SelectionOptions,
    rng: Optional[random.Random] = None,
    log=None,
) -> Optional[SelectionResult]:
    """
    Select the candidate with the highest adjusted information.

    Returns None when there are no candidates; the caller has to end the
    assessment, retrying will not help.
    """
    log = resolve_logger(log, "question_selector")

    if not candidates:
        log.warning("no_candidate_items")
        return None

    rng = rng or random.Random()
    priority_topics = unmet_topics(options.coverage, options.constraints)

    log.debug(
        "selecting_next_question",
        candidates=len(candidates),
        current_theta=round(options.current_theta, 2),
        total_questions=options.coverage.total_questions,
        priority_topics=sorted(priority_topics),
    )

    best: Optional[SelectionResult] = None

    for item in candidates:
        info = item_information(options.current_theta, item.irt_params())
        score = info
        prioritised = item.topic in priority_topics

        if prioritised:
            score *= PRIORITY_BOOST

        if options.exposure_control:
            score *= exposure_penalty(item.times_used, options.total_assessments)

        if options.randomness > 0:
            score *= 1.0 + (rng.random() - 0.5) * options.randomness

        if best is None or score > best.adjusted_score:
            best = SelectionResult(
                item=item,
                information=info,
                adjusted_score=score,
                reason=f"Priority topic: {item.topic}" if prioritised else "Maximum information",
            )

    log.info(
        "question_selected",
        item_id=best.item.id,
        topic=best.item.topic,
        difficulty=best.item.difficulty,
        information=round(best.information, 3),
        adjusted_score=round(best.adjusted_score, 3),
        reason=best.reason,
    )
    return best
