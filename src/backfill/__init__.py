"""
backfill - Owner-to-product value backfill engine.

Copies a value held by an owner (a seller's company id) onto every product
the owner sells that does not carry it yet.

This library provides:
- An orchestrator that scans for work, selects an owner and writes its
  products page by page, one atomic write per page
- Pluggable candidate selection policies (random, priority-first, partitioned)
- A TTL/LRU owner cache
- Document stores: in-memory and SQLite
- Structured run events, run history and optional per-owner leases
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("backfill-engine")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from backfill.cache import CacheStats, OwnerCache
from backfill.config import BackfillConfig, SelectionStrategy
from backfill.events import (
    BackfillEvent,
    EventEmitter,
    EventKind,
    EventListener,
    RecordingListener,
)
from backfill.exceptions import (
    AtomicWriteError,
    BackfillError,
    BatchAlreadyProcessedError,
    DocumentNotFoundError,
    ErrorClassification,
    ErrorRecoverability,
    ErrorSeverity,
    InvalidPhaseTransitionError,
    LeaseAcquisitionError,
    LeaseError,
    LeaseNotHeldError,
    NoMoreBatchesError,
    PaginationError,
    RunNotInitializedError,
    RunStateError,
    StoreError,
    WriteConflictError,
    WriteLimitExceededError,
    classify_exception,
)
from backfill.history import (
    HistoryStatus,
    HistorySummary,
    InMemoryMigrationHistoryRepository,
    MigrationHistoryEntry,
    MigrationHistoryRepository,
)
from backfill.locks import InMemoryOwnerLeaseManager, LeaseInfo, OwnerLeaseManager
from backfill.models import (
    BatchProgress,
    BatchUpdateResult,
    Candidate,
    EligibilityReport,
    EligibilityStats,
    MigrationRun,
    OwnerRecord,
    Page,
    PartitionStats,
    ProductRecord,
    RunPhase,
)
from backfill.orchestrator import BackfillOrchestrator
from backfill.paginator import BatchPaginator, range_label
from backfill.scanner import EligibilityScanner
from backfill.selection import (
    CandidateSelector,
    Draw,
    PartitionedSelectionPolicy,
    PriorityFirstSelectionPolicy,
    RandomSelectionPolicy,
    SelectionPolicy,
    create_selection_policy,
)
from backfill.stores import (
    ID_FIELD,
    Document,
    DocumentStore,
    Filter,
    InMemoryDocumentStore,
    Query,
    SQLiteDocumentStore,
    WriteOperation,
)
from backfill.writer import BatchWriter

__all__ = [
    "__version__",
    # Orchestration
    "BackfillOrchestrator",
    "BackfillConfig",
    "SelectionStrategy",
    # Components
    "OwnerCache",
    "CacheStats",
    "EligibilityScanner",
    "CandidateSelector",
    "SelectionPolicy",
    "Draw",
    "RandomSelectionPolicy",
    "PriorityFirstSelectionPolicy",
    "PartitionedSelectionPolicy",
    "create_selection_policy",
    "BatchPaginator",
    "range_label",
    "BatchWriter",
    # Models
    "ProductRecord",
    "OwnerRecord",
    "RunPhase",
    "MigrationRun",
    "EligibilityStats",
    "EligibilityReport",
    "Candidate",
    "PartitionStats",
    "Page",
    "BatchUpdateResult",
    "BatchProgress",
    # Events
    "EventKind",
    "BackfillEvent",
    "EventListener",
    "EventEmitter",
    "RecordingListener",
    # History
    "HistoryStatus",
    "HistorySummary",
    "MigrationHistoryEntry",
    "MigrationHistoryRepository",
    "InMemoryMigrationHistoryRepository",
    # Leases
    "LeaseInfo",
    "OwnerLeaseManager",
    "InMemoryOwnerLeaseManager",
    # Stores
    "ID_FIELD",
    "Document",
    "DocumentStore",
    "Filter",
    "Query",
    "WriteOperation",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    # Exceptions
    "BackfillError",
    "RunStateError",
    "RunNotInitializedError",
    "NoMoreBatchesError",
    "BatchAlreadyProcessedError",
    "InvalidPhaseTransitionError",
    "PaginationError",
    "StoreError",
    "AtomicWriteError",
    "DocumentNotFoundError",
    "WriteConflictError",
    "WriteLimitExceededError",
    "LeaseError",
    "LeaseAcquisitionError",
    "LeaseNotHeldError",
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "classify_exception",
]
