"""
Knowledge Graph - concept prerequisite DAG operations.

Features:
    - Cycle check before adding a prerequisite edge
    - Prerequisite chain (study order for one concept)
    - Topological sort across many concepts
    - Graph validation with structural stats
    - Mastery-based visualization

Concepts are addressed by id. The networkx graph is rebuilt from the
prerequisite id lists on every call; edges run prerequisite -> dependent.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import networkx as nx

from .errors import DanglingPrerequisiteError, GraphCycleError
from .logging_config import resolve_logger


@dataclass(frozen=True)
class ConceptNode:
    """One concept with the ids of its direct prerequisites."""
    id: str
    name: str
    prerequisites: List[str] = field(default_factory=list)
    topic: str = "general"
    estimated_minutes: int = 30
    description: str = ""


@dataclass
class GraphValidation:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    stats: Dict[str, int]


def build_graph(concepts: Sequence[ConceptNode]) -> nx.DiGraph:
    """DiGraph with one node per concept and an edge prereq -> concept for known prereqs."""
    graph = nx.DiGraph()
    for concept in concepts:
        graph.add_node(concept.id, name=concept.name, topic=concept.topic)

    for concept in concepts:
        for prereq in concept.prerequisites:
            if prereq in graph:
                graph.add_edge(prereq, concept.id)
    return graph


# ==================== Cycle Check ====================

def would_create_cycle(
    concept_id: str,
    proposed_prerequisite_id: str,
    concepts: Sequence[ConceptNode],
    log=None,
) -> bool:
    """
    True if making proposed_prerequisite_id a prerequisite of concept_id
    would close a loop.

    The new edge runs prerequisite -> concept, so it closes a loop exactly
    when the prerequisite is already reachable from the concept through
    its dependents.
    """
    log = resolve_logger(log, "knowledge_graph")

    if concept_id == proposed_prerequisite_id:
        log.warning("self_prerequisite_detected", concept_id=concept_id)
        return True

    graph = build_graph(concepts)
    if concept_id not in graph:
        return False

    visited = set()
    queue = deque([concept_id])

    while queue:
        current = queue.popleft()
        if current == proposed_prerequisite_id:
            log.warning(
                "cycle_detected",
                concept_id=concept_id,
                prerequisite_id=proposed_prerequisite_id,
                visited=len(visited),
            )
            return True
        if current in visited:
            continue
        visited.add(current)
        for dependent in graph.successors(current):
            if dependent not in visited:
                queue.append(dependent)

    log.debug("no_cycle_detected", concept_id=concept_id, prerequisite_id=proposed_prerequisite_id)
    return False


# ==================== Ordering ====================

def get_prerequisite_chain(concept_id: str, concepts: Sequence[ConceptNode], log=None) -> List[ConceptNode]:
    """
    All transitive prerequisites of a concept, then the concept itself.

    Post-order DFS, so each concept appears after everything it depends on.
    Shared prerequisites (diamonds) appear once. Unknown ids are skipped
    with a warning.
    """
    log = resolve_logger(log, "knowledge_graph")
    by_id = {c.id: c for c in concepts}
    visited = set()
    chain: List[ConceptNode] = []

    def visit(cid: str):
        if cid in visited:
            return
        visited.add(cid)

        concept = by_id.get(cid)
        if concept is None:
            log.warning("concept_not_found", concept_id=cid)
            return

        for prereq in concept.prerequisites:
            visit(prereq)
        chain.append(concept)

    visit(concept_id)

    log.debug("prerequisite_chain_computed", concept_id=concept_id, chain_length=len(chain))
    return chain


def _kahn_order(concepts: Sequence[ConceptNode]):
    """Kahn's algorithm over known prerequisites. Returns (sorted, unsorted ids)."""
    by_id = {c.id: c for c in concepts}
    graph = build_graph(list(by_id.values()))
    in_degree = {cid: graph.in_degree(cid) for cid in by_id}

    queue = deque(c.id for c in by_id.values() if in_degree[c.id] == 0)
    ordered: List[ConceptNode] = []

    while queue:
        current = queue.popleft()
        ordered.append(by_id[current])
        for dependent in graph.successors(current):
            in_degree[dependent] -= 1
            if in_degree[dependent] == 0:
                queue.append(dependent)

    placed = {c.id for c in ordered}
    unsorted = [cid for cid in by_id if cid not in placed]
    return ordered, unsorted, graph


def _dangling(concepts: Sequence[ConceptNode]):
    known = {c.id for c in concepts}
    return [(c.id, p) for c in concepts for p in c.prerequisites if p not in known]


def topological_sort(concepts: Sequence[ConceptNode], log=None) -> List[ConceptNode]:
    """
    Order concepts so every prerequisite precedes its dependents.

    Raises:
        DanglingPrerequisiteError: a prerequisite id is not in the input
        GraphCycleError: the prerequisites form a loop (never a partial order)
    """
    log = resolve_logger(log, "knowledge_graph")

    missing = _dangling(concepts)
    if missing:
        log.error("dangling_prerequisites", missing=missing)
        raise DanglingPrerequisiteError(missing)

    ordered, unsorted, graph = _kahn_order(concepts)

    if unsorted:
        try:
            cycle = nx.find_cycle(graph.subgraph(unsorted))
        except nx.NetworkXNoCycle:
            cycle = []
        log.error(
            "cycle_detected_in_graph",
            total_concepts=len(concepts),
            sorted_concepts=len(ordered),
            unsorted=unsorted,
        )
        raise GraphCycleError(unsorted, cycle)

    log.debug("topological_sort_completed", concept_count=len(ordered))
    return ordered


# ==================== Validation ====================

def validate_graph(concepts: Sequence[ConceptNode], log=None) -> GraphValidation:
    """
    Check the graph for cycles, dangling prerequisites and duplicate ids.

    Concepts with no dependents are reported as warnings. Stats: concept and
    edge counts, roots, leaves and max_depth (concepts on the longest
    prerequisite path; 0 when the graph has a cycle).
    """
    log = resolve_logger(log, "knowledge_graph")
    errors: List[str] = []
    warnings: List[str] = []

    seen = set()
    for concept in concepts:
        if concept.id in seen:
            errors.append(f'Duplicate concept id "{concept.id}"')
        seen.add(concept.id)

    _, unsorted, graph = _kahn_order(concepts)
    if unsorted:
        errors.append("Graph contains cycles (circular dependencies): " + ", ".join(sorted(unsorted)))

    for concept_id, prereq_id in _dangling(concepts):
        errors.append(f'Concept "{concept_id}" references non-existent prerequisite: {prereq_id}')

    roots = 0
    leaves = 0
    for concept_id in graph.nodes:
        if graph.in_degree(concept_id) == 0:
            roots += 1
        if graph.out_degree(concept_id) == 0:
            leaves += 1
            warnings.append(f'Concept "{concept_id}" has no dependents (leaf node)')

    if graph.number_of_nodes() and not unsorted:
        max_depth = nx.dag_longest_path_length(graph) + 1
    else:
        max_depth = 0

    result = GraphValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        stats={
            "total_concepts": len(concepts),
            "total_edges": sum(len(c.prerequisites) for c in concepts),
            "roots": roots,
            "leaves": leaves,
            "max_depth": max_depth,
        },
    )

    if errors:
        log.error("graph_validation_failed", errors=errors, **result.stats)
    else:
        log.info("graph_validation_complete", warnings=len(warnings), **result.stats)
    return result


# ==================== Visualization ====================

def mastery_status(score: Optional[float]) -> str:
    if score is None:
        return "unknown"
    if score < 0.4:
        return "weak"
    if score < 0.6:
        return "developing"
    return "mastered"


STATUS_COLORS = {
    "weak": "#ff6b6b",        # Red
    "developing": "#feca57",  # Yellow
    "mastered": "#5cd85c",    # Green
    "unknown": "#c8d6e5",     # Grey
}


def graph_visualization(concepts: Sequence[ConceptNode], mastery: Optional[Dict[str, float]] = None) -> dict:
    """Nodes (with depth level and mastery colour) and edges for a frontend."""
    mastery = mastery or {}
    ordered = topological_sort(concepts)

    level: Dict[str, int] = {}
    for concept in ordered:
        level[concept.id] = max((level[p] + 1 for p in concept.prerequisites), default=0)

    nodes = []
    for concept in concepts:
        score = mastery.get(concept.id)
        status = mastery_status(score)
        nodes.append({
            "id": concept.id,
            "label": concept.name,
            "topic": concept.topic,
            "level": level[concept.id],
            "status": status,
            "color": STATUS_COLORS[status],
            "score": score,
        })

    edges = [
        {"source": prereq, "target": concept.id}
        for concept in concepts
        for prereq in concept.prerequisites
    ]

    return {"nodes": nodes, "edges": edges}
