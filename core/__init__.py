"""
Core module - IRT math, adaptive assessment, concept graph and mastery.

Components:
    - irt_engine: 3PL probability, information, SE, ability estimation
    - question_selector: Maximum-information item selection with coverage/exposure control
    - assessment_session: Assessment state machine and diagnostic report
    - adaptive_tester: Computerized Adaptive Testing (CAT) loop over an item repository
    - knowledge_graph: Concept prerequisite DAG (cycle check, chains, topological sort)
    - mastery_calculator: Five-factor concept mastery
    - repositories: Content contracts, in-memory stores, JSON loader

Note: Learning paths, progress and rewards live in the learning_path/ module.
"""

from .errors import (
    AdaptiveEngineError,
    InvalidItemParamsError,
    NoContentAvailableError,
    InvalidSessionStateError,
    UnknownStepError,
    GraphIntegrityError,
    GraphCycleError,
    DanglingPrerequisiteError,
    InvalidConceptGraphError,
)
from .irt_engine import ItemParams, ResponsePattern, AbilityEstimate, estimate_ability
from .question_selector import SelectableItem
from .assessment_session import AssessmentConfig, AssessmentState, DiagnosticReport, TerminationReason
from .adaptive_tester import AdaptiveTester
from .knowledge_graph import ConceptNode
from .mastery_calculator import AttemptData, MasteryScore, MasteryLevel, calculate_concept_mastery
from .repositories import ContentBundle, load_content

__all__ = [
    "AdaptiveEngineError",
    "InvalidItemParamsError",
    "NoContentAvailableError",
    "InvalidSessionStateError",
    "UnknownStepError",
    "GraphIntegrityError",
    "GraphCycleError",
    "DanglingPrerequisiteError",
    "InvalidConceptGraphError",
    "ItemParams",
    "ResponsePattern",
    "AbilityEstimate",
    "estimate_ability",
    "SelectableItem",
    "AssessmentConfig",
    "AssessmentState",
    "DiagnosticReport",
    "TerminationReason",
    "AdaptiveTester",
    "ConceptNode",
    "AttemptData",
    "MasteryScore",
    "MasteryLevel",
    "calculate_concept_mastery",
    "ContentBundle",
    "load_content",
]
