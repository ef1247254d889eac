"""
Repositories - content the engine reads but does not own.

The engine only talks to these protocols. In-memory versions back the CLI,
the API and the tests; ``load_content`` fills them from JSON bundles:

    {
        "jurisdiction": "ca",
        "concepts": [{"id", "name", "topic", "prerequisites", "estimated_minutes"}],
        "items": [{"id", "topic", "cognitive", "difficulty", "irt": {"a", "b", "c"},
                   "stem", "options", "correct_answer", "times_used"}],
        "similarity": {"<concept_id>": [["<item_id>", 0.91], ...]}
    }
"""

import json
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Set, Tuple

from .irt_engine import ItemParams, check_item_params
from .knowledge_graph import ConceptNode
from .logging_config import resolve_logger
from .question_selector import SelectableItem


class ItemRepository(Protocol):
    def find_active_items(self, jurisdiction_id: str, exclude_ids: Optional[Set[str]] = None) -> List[SelectableItem]:
        ...

    def get_item(self, item_id: str) -> Optional[SelectableItem]:
        ...

    def record_exposure(self, item_id: str) -> None:
        ...


class ConceptRepository(Protocol):
    def find_concepts(self, jurisdiction_id: str) -> List[ConceptNode]:
        ...


class ItemSimilarityLookup(Protocol):
    def find_items_for_concept(self, concept_id: str, limit: int = 10, min_similarity: float = 0.65) -> List[str]:
        """Item ids ranked by similarity, best first."""
        ...


class InMemoryItemRepository:
    """Items grouped by jurisdiction, in insertion order."""

    def __init__(self):
        self._items: Dict[str, SelectableItem] = {}
        self._jurisdiction: Dict[str, str] = {}

    def add(self, jurisdiction_id: str, item: SelectableItem):
        self._items[item.id] = item
        self._jurisdiction[item.id] = jurisdiction_id

    def find_active_items(self, jurisdiction_id: str, exclude_ids: Optional[Set[str]] = None) -> List[SelectableItem]:
        exclude_ids = exclude_ids or set()
        return [
            item for item_id, item in self._items.items()
            if self._jurisdiction[item_id] == jurisdiction_id
            and item.is_active
            and item_id not in exclude_ids
        ]

    def get_item(self, item_id: str) -> Optional[SelectableItem]:
        return self._items.get(item_id)

    def record_exposure(self, item_id: str) -> None:
        """Bump the usage counter that drives exposure control."""
        item = self._items.get(item_id)
        if item is not None:
            self._items[item_id] = replace(item, times_used=item.times_used + 1)

    def __len__(self):
        return len(self._items)


class InMemoryConceptRepository:
    def __init__(self):
        self._concepts: Dict[str, List[ConceptNode]] = {}

    def add(self, jurisdiction_id: str, concept: ConceptNode):
        self._concepts.setdefault(jurisdiction_id, []).append(concept)

    def find_concepts(self, jurisdiction_id: str) -> List[ConceptNode]:
        return list(self._concepts.get(jurisdiction_id, []))

    def jurisdictions(self) -> List[str]:
        return list(self._concepts)


class InMemorySimilarityLookup:
    """Precomputed (item id, cosine similarity) lists per concept."""

    def __init__(self, scores: Optional[Dict[str, Iterable[Tuple[str, float]]]] = None):
        self._scores: Dict[str, List[Tuple[str, float]]] = {}
        for concept_id, pairs in (scores or {}).items():
            self.set_scores(concept_id, pairs)

    def set_scores(self, concept_id: str, pairs: Iterable[Tuple[str, float]]):
        self._scores[concept_id] = sorted(
            ((item_id, float(score)) for item_id, score in pairs),
            key=lambda pair: pair[1],
            reverse=True,
        )

    def find_items_for_concept(self, concept_id: str, limit: int = 10, min_similarity: float = 0.65) -> List[str]:
        ranked = [item_id for item_id, score in self._scores.get(concept_id, []) if score >= min_similarity]
        return ranked[:limit]


@dataclass
class ContentBundle:
    items: InMemoryItemRepository = field(default_factory=InMemoryItemRepository)
    concepts: InMemoryConceptRepository = field(default_factory=InMemoryConceptRepository)
    similarity: InMemorySimilarityLookup = field(default_factory=InMemorySimilarityLookup)

    def jurisdictions(self) -> List[str]:
        return self.concepts.jurisdictions()


# ==================== Loading ====================

def _parse_item(raw: dict) -> SelectableItem:
    irt = raw.get("irt") or {}
    a, b, c = irt.get("a"), irt.get("b"), irt.get("c")
    if a is not None and b is not None and c is not None:
        check_item_params(ItemParams(a=a, b=b, c=c))

    return SelectableItem(
        id=raw["id"],
        topic=raw.get("topic", "general"),
        cognitive=raw.get("cognitive", "LOOKUP"),
        difficulty=raw.get("difficulty", "MEDIUM"),
        irt_a=a,
        irt_b=b,
        irt_c=c,
        times_used=raw.get("times_used", 0),
        correct_answer=raw.get("correct_answer"),
        stem=raw.get("stem", ""),
        options=dict(raw.get("options", {})),
        is_active=raw.get("is_active", True),
    )


def _parse_concept(raw: dict) -> ConceptNode:
    return ConceptNode(
        id=raw["id"],
        name=raw.get("name", raw["id"]),
        prerequisites=list(raw.get("prerequisites", [])),
        topic=raw.get("topic", "general"),
        estimated_minutes=raw.get("estimated_minutes", 30),
        description=raw.get("description", ""),
    )


def load_content(directory, bundle: Optional[ContentBundle] = None, log=None) -> ContentBundle:
    """
    Load every ``*.json`` bundle in a directory.

    Calibrated IRT triples are range-checked; a bad triple raises
    InvalidItemParamsError naming the item's values.
    """
    log = resolve_logger(log, "repositories")
    bundle = bundle or ContentBundle()
    content_dir = Path(directory)

    if not content_dir.exists():
        log.warning("content_dir_missing", content_dir=str(content_dir))
        return bundle

    for content_file in sorted(content_dir.glob("*.json")):
        with open(content_file, "r", encoding="utf-8") as f:
            data = json.load(f)

        jurisdiction = data.get("jurisdiction", "default")
        concepts = [_parse_concept(raw) for raw in data.get("concepts", [])]
        items = [_parse_item(raw) for raw in data.get("items", [])]

        for concept in concepts:
            bundle.concepts.add(jurisdiction, concept)
        for item in items:
            bundle.items.add(jurisdiction, item)
        for concept_id, pairs in data.get("similarity", {}).items():
            bundle.similarity.set_scores(concept_id, [tuple(pair) for pair in pairs])

        log.info(
            "content_loaded",
            file=content_file.name,
            jurisdiction=jurisdiction,
            concepts=len(concepts),
            items=len(items),
        )

    return bundle
