"""
Errors raised by the adaptive engine.

Numerical degeneracy (zero information, no responses yet) is never an error:
those cases return sentinel values. Everything here is a caller-contract
violation or a content-integrity problem that must reach the caller.
"""

from typing import List, Optional, Sequence, Tuple


class AdaptiveEngineError(Exception):
    """Base class for all engine errors."""


class InvalidItemParamsError(AdaptiveEngineError, ValueError):
    """IRT triple outside the allowed ranges."""

    def __init__(self, a: float, b: float, c: float, problems: Sequence[str]):
        self.a = a
        self.b = b
        self.c = c
        self.problems = list(problems)
        super().__init__(f"Invalid IRT parameters (a={a}, b={b}, c={c}): " + "; ".join(self.problems))


class NoContentAvailableError(AdaptiveEngineError):
    """No unused candidate items remain for an assessment."""

    def __init__(self, assessment_id: str, jurisdiction_id: Optional[str] = None):
        self.assessment_id = assessment_id
        self.jurisdiction_id = jurisdiction_id
        super().__init__(f"No questions available for assessment {assessment_id}")


class InvalidSessionStateError(AdaptiveEngineError):
    """Operation not allowed in the session's current state."""


class UnknownStepError(AdaptiveEngineError, IndexError):
    """Step index outside the generated path."""

    def __init__(self, path_id: str, step_index: int):
        self.path_id = path_id
        self.step_index = step_index
        super().__init__(f"Path {path_id} has no step {step_index}")


# ==================== Graph Integrity ====================

class GraphIntegrityError(AdaptiveEngineError):
    """Concept graph data cannot be used as a prerequisite DAG."""


class GraphCycleError(GraphIntegrityError):
    """Prerequisites form a loop."""

    def __init__(self, unsorted_ids: Sequence[str], cycle: Optional[Sequence[Tuple[str, str]]] = None):
        self.unsorted_ids = list(unsorted_ids)
        self.cycle = list(cycle or [])
        message = "Cycle detected in concept graph - prerequisites form a loop"
        if self.cycle:
            message += ": " + " -> ".join([edge[0] for edge in self.cycle] + [self.cycle[0][0]])
        super().__init__(message)


class DanglingPrerequisiteError(GraphIntegrityError):
    """A prerequisite id does not resolve to a known concept."""

    def __init__(self, missing: Sequence[Tuple[str, str]]):
        self.missing = list(missing)
        pairs = ", ".join(f"{cid} -> {pid}" for cid, pid in self.missing)
        super().__init__(f"Concepts reference non-existent prerequisites: {pairs}")


class InvalidConceptGraphError(GraphIntegrityError):
    """Graph validation failed; carries every error found."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Concept graph is invalid: " + "; ".join(self.errors))
