"""
Clinical vignette decision engine.

Walks a learner through branching case scenarios, records each decision,
folds ended sessions into per-vignette mastery and schedules reviews.
"""

from .content_store import JsonContentStore, load_vignette_file, sample_vignettes
from .engine import DecisionEngine, EndSessionResult, EngineResult, SessionEvent
from .errors import (
    InvalidChoiceError,
    InvalidTransitionError,
    InvalidVignetteError,
    NotFoundError,
    PersistenceIOError,
    VignetteError,
)
from .gateway import InMemoryGateway, LibraryGateway, PendingWrite, PersistenceGateway
from .library import ImportResult, LibraryStats, VignetteLibrary, export_data, import_data
from .mastery import CompletionPolicy, MasteryCalculator
from .models import (
    Choice,
    DecisionNode,
    DecisionRecord,
    MasteryLevel,
    NodePerformance,
    NodeType,
    Vignette,
    VignetteMetadata,
    VignetteProgress,
    VignetteSession,
    find_graph_problems,
)
from .recorder import SessionRecorder, SessionSummary, summarize_session
from .retry import RetryPolicy, with_retry
from .scheduler import ReviewScheduler

__all__ = [
    "Choice",
    "CompletionPolicy",
    "DecisionEngine",
    "DecisionNode",
    "DecisionRecord",
    "EndSessionResult",
    "EngineResult",
    "ImportResult",
    "InMemoryGateway",
    "InvalidChoiceError",
    "InvalidTransitionError",
    "InvalidVignetteError",
    "JsonContentStore",
    "LibraryGateway",
    "LibraryStats",
    "MasteryCalculator",
    "MasteryLevel",
    "NodePerformance",
    "NodeType",
    "NotFoundError",
    "PendingWrite",
    "PersistenceGateway",
    "PersistenceIOError",
    "RetryPolicy",
    "ReviewScheduler",
    "SessionEvent",
    "SessionRecorder",
    "SessionSummary",
    "Vignette",
    "VignetteError",
    "VignetteLibrary",
    "VignetteMetadata",
    "VignetteProgress",
    "VignetteSession",
    "export_data",
    "find_graph_problems",
    "import_data",
    "load_vignette_file",
    "sample_vignettes",
    "summarize_session",
    "with_retry",
]
