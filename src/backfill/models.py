"""
Data models for the backfill engine.

Models in this module:

Records:
    - ProductRecord: A product read from the store (the record being backfilled)
    - OwnerRecord: The owner (seller) a product references

Enums:
    - RunPhase: Lifecycle phases of a migration run

Run state:
    - MigrationRun: Mutable state of one run

Results:
    - EligibilityStats / EligibilityReport: Outcome of the eligibility scan
    - Candidate: Product/owner pair chosen to seed a run
    - PartitionStats: Summary of a partitioned selection sample
    - Page: One page of an owner's products
    - BatchUpdateResult: Outcome of writing one batch
    - BatchProgress: Cumulative progress reported after each batch
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from backfill.config import BackfillConfig
    from backfill.stores.interface import Document


def is_blank(value: Any) -> bool:
    """
    Return True for values treated as "no value".

    None, the empty string and whitespace-only strings are blank. Any other
    value, including non-string values, is not.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


class ProductRecord(BaseModel):
    """
    A product document as seen by the engine.

    Attributes:
        id: Document id
        owner_id: Id of the owning user (None when the product has no owner)
        propagated_value: The value being backfilled (None when missing)
        name: Product name, for logs and reports
        status: Product status as stored
        created_at: Raw creation timestamp as stored
        updated_at: Raw update timestamp as stored
        data: All stored fields of the document
    """

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str | None = None
    propagated_value: str | None = None
    name: str | None = None
    status: str | None = None
    created_at: Any = None
    updated_at: Any = None
    data: dict[str, Any] = Field(default_factory=dict, repr=False)

    @classmethod
    def from_document(cls, doc: Document, config: BackfillConfig) -> ProductRecord:
        """Build a record from a stored document using the configured field names."""
        return cls(
            id=doc.id,
            owner_id=_optional_str(doc.data.get(config.owner_field)),
            propagated_value=_optional_str(doc.data.get(config.value_field)),
            name=_optional_str(doc.data.get("name")),
            status=_optional_str(doc.data.get("status")),
            created_at=doc.data.get("created_at"),
            updated_at=doc.data.get(config.updated_at_field),
            data=dict(doc.data),
        )

    @property
    def has_value(self) -> bool:
        """True once the product carries a non-blank propagated value."""
        return not is_blank(self.propagated_value)

    @property
    def is_orphaned(self) -> bool:
        """True when the product does not reference an owner."""
        return is_blank(self.owner_id)


class OwnerRecord(BaseModel):
    """
    An owner (seller) document. The engine only ever reads owners.

    Attributes:
        id: Document id
        propagated_value: The value copied onto the owner's products
        email: Owner email, for logs and reports
        display_name: Owner display name, for logs and reports
    """

    model_config = ConfigDict(frozen=True)

    id: str
    propagated_value: str | None = None
    email: str | None = None
    display_name: str | None = None

    @classmethod
    def from_document(cls, doc: Document, config: BackfillConfig) -> OwnerRecord:
        return cls(
            id=doc.id,
            propagated_value=_optional_str(doc.data.get(config.value_field)),
            email=_optional_str(doc.data.get("email")),
            display_name=_optional_str(
                doc.data.get("display_name") or doc.data.get("displayName")
            ),
        )

    @property
    def has_value(self) -> bool:
        return not is_blank(self.propagated_value)


class RunPhase(Enum):
    """
    Lifecycle phases of a migration run.

    State machine transitions:
        UNINITIALIZED -> SELECTING -> BOUND -> COMPLETE
                             |                   |
                             +-> NO_ELIGIBLE_WORK |
                             ^                   |
                             +-------------------+  (next owner)

    Attributes:
        UNINITIALIZED: Run created, nothing read yet.
        SELECTING: Scanning for work and choosing a candidate.
        BOUND: An owner is bound and its pages are being written.
        COMPLETE: Every page of the bound owner has been processed.
        NO_ELIGIBLE_WORK: Nothing to do; no owner was ever bound.
    """

    UNINITIALIZED = "uninitialized"
    SELECTING = "selecting"
    BOUND = "bound"
    COMPLETE = "complete"
    NO_ELIGIBLE_WORK = "no_eligible_work"

    @property
    def is_terminal(self) -> bool:
        """
        Check if the run has stopped.

        COMPLETE is terminal for a single-owner run, but a multi-owner run
        may move on from it to select the next owner.
        """
        return self in (RunPhase.COMPLETE, RunPhase.NO_ELIGIBLE_WORK)

    def can_transition_to(self, target: RunPhase) -> bool:
        valid_transitions: dict[RunPhase, tuple[RunPhase, ...]] = {
            RunPhase.UNINITIALIZED: (RunPhase.SELECTING,),
            RunPhase.SELECTING: (
                RunPhase.BOUND,
                RunPhase.NO_ELIGIBLE_WORK,
                RunPhase.COMPLETE,
            ),
            RunPhase.BOUND: (RunPhase.COMPLETE, RunPhase.SELECTING),
            RunPhase.COMPLETE: (RunPhase.SELECTING,),
            RunPhase.NO_ELIGIBLE_WORK: (),
        }
        return target in valid_transitions[self]


@dataclass(frozen=True)
class EligibilityStats:
    """
    Classification counts from one eligibility scan.

    Every checked record lands in exactly one of ``already_migrated``,
    ``orphaned``, ``owner_missing_value``, ``lookup_errors`` or ``eligible``.
    ``missing_value`` counts all checked records that lack the value, whatever
    the state of their owner.
    """

    total_checked: int = 0
    already_migrated: int = 0
    missing_value: int = 0
    orphaned: int = 0
    owner_missing_value: int = 0
    lookup_errors: int = 0
    eligible: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_checked": self.total_checked,
            "already_migrated": self.already_migrated,
            "missing_value": self.missing_value,
            "orphaned": self.orphaned,
            "owner_missing_value": self.owner_missing_value,
            "lookup_errors": self.lookup_errors,
            "eligible": self.eligible,
        }


@dataclass(frozen=True)
class EligibilityReport:
    """
    Result of an eligibility scan.

    Attributes:
        stats: Classification counts
        sample_limit: Maximum number of products the scan read
        checked_at: When the scan finished
    """

    stats: EligibilityStats
    sample_limit: int
    checked_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def has_eligible_work(self) -> bool:
        return self.stats.eligible > 0


@dataclass(frozen=True)
class Candidate:
    """
    A product/owner pair accepted to seed a run.

    Attributes:
        product: The drawn product
        owner: The product's owner, whose value is non-blank
        resolved_value: The owner's value, copied onto the owner's products
        is_priority: Whether the product came from the policy's priority pool
        attempts: Draws made before this candidate was accepted (inclusive)
    """

    product: ProductRecord
    owner: OwnerRecord
    resolved_value: str
    is_priority: bool
    attempts: int


@dataclass(frozen=True)
class PartitionStats:
    """Summary of the last sample partitioned by a selection policy."""

    priority_count: int = 0
    standard_count: int = 0
    owners_with_value: int = 0
    owners_without_value: int = 0
    total_analysed: int = 0

    @property
    def priority_rate(self) -> float:
        """Share of analysed products in the priority pool, as a percentage."""
        if self.total_analysed == 0:
            return 0.0
        return self.priority_count / self.total_analysed * 100


@dataclass(frozen=True)
class Page:
    """
    One page of an owner's products.

    Attributes:
        records: Products in the page, ordered by document id
        batch_index: 1-based index of the page
        range_label: Human-readable range, e.g. "11-20" for page 2 of size 10
        has_more: Whether a following page may hold records
        next_cursor: Id of the last record, to resume after
    """

    records: tuple[ProductRecord, ...]
    batch_index: int
    range_label: str
    has_more: bool
    next_cursor: str | None

    def __len__(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class BatchUpdateResult:
    """
    Outcome of writing one batch.

    ``updated_count + skipped_count + error_count`` equals the number of
    records in the batch.

    Attributes:
        updated_count: Records written
        skipped_count: Records left alone (already valued, owner mismatch, gone)
        error_count: Records in a write the store rejected
        batch_index: 1-based index of the batch
        range_label: Range label of the batch
        total_batches: Total number of batches, when known
        error_message: Why the write was rejected, if it was
        updated_ids: Ids of the written records
        skipped_ids: Ids of the skipped records
    """

    updated_count: int
    skipped_count: int
    error_count: int
    batch_index: int
    range_label: str
    total_batches: int | None = None
    error_message: str | None = None
    updated_ids: tuple[str, ...] = ()
    skipped_ids: tuple[str, ...] = ()

    @property
    def processed_count(self) -> int:
        return self.updated_count + self.skipped_count + self.error_count

    @property
    def succeeded(self) -> bool:
        return self.error_count == 0


@dataclass(frozen=True)
class BatchProgress:
    """
    Progress reported to ``on_batch_complete`` after each batch.

    Totals are cumulative over the whole run.
    """

    run_id: str
    owner_id: str
    batch_index: int
    range_label: str
    result: BatchUpdateResult
    total_updated: int
    total_skipped: int
    total_errors: int
    has_more: bool


@dataclass
class MigrationRun:
    """
    State of one migration run.

    This is a mutable dataclass because the orchestrator updates it as the
    run advances. Callers get it from ``get_run_state()`` and should treat it
    as read-only.

    Attributes:
        run_id: Unique run identifier
        strategy: Name of the selection policy used
        started_at: When the run was created
        phase: Current phase
        selected_product: Product that seeded the current owner
        selected_owner: Owner currently bound
        resolved_value: Value being copied onto the owner's products
        is_priority_candidate: Whether the seed came from the priority pool
        selection_attempts: Draws made by the last selection
        batch_size: Page size, fixed for the run
        current_batch: Records of the current page
        current_batch_index: 1-based index of the current page (0 before any)
        current_batch_processed: Whether the current page was written
        range_label: Range label of the current page
        has_more_batches: Whether another page may follow
        pagination_cursor: Id of the last record of the current page
        total_scanned: Records handed to the writer
        total_updated: Records written
        total_skipped: Records skipped
        total_errors: Records in rejected writes
        batches_processed: Pages written
        owners_processed: Owners whose pages were all processed
        processed_owner_ids: Ids of those owners, in order
        eligibility: Report of the scan that started the run
        last_error: Message of the last failure
        last_error_at: When it happened
        completed_at: When the run reached COMPLETE or NO_ELIGIBLE_WORK
    """

    run_id: str
    strategy: str
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    phase: RunPhase = RunPhase.UNINITIALIZED
    selected_product: ProductRecord | None = None
    selected_owner: OwnerRecord | None = None
    resolved_value: str | None = None
    is_priority_candidate: bool = False
    selection_attempts: int = 0
    batch_size: int = 10
    current_batch: tuple[ProductRecord, ...] = ()
    current_batch_index: int = 0
    current_batch_processed: bool = False
    range_label: str = ""
    has_more_batches: bool = False
    pagination_cursor: str | None = None
    total_scanned: int = 0
    total_updated: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    batches_processed: int = 0
    owners_processed: int = 0
    processed_owner_ids: list[str] = field(default_factory=list)
    eligibility: EligibilityReport | None = None
    last_error: str | None = None
    last_error_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def no_eligible_work(self) -> bool:
        return self.phase == RunPhase.NO_ELIGIBLE_WORK

    @property
    def is_complete(self) -> bool:
        return self.phase == RunPhase.COMPLETE

    @property
    def is_bound(self) -> bool:
        return self.phase == RunPhase.BOUND

    @property
    def owner_id(self) -> str | None:
        return self.selected_owner.id if self.selected_owner else None

    @property
    def duration(self) -> timedelta:
        end = self.completed_at or datetime.now(UTC)
        return end - self.started_at

    def record_error(self, message: str) -> None:
        self.last_error = message
        self.last_error_at = datetime.now(UTC)

    def to_dict(self) -> dict[str, Any]:
        """Summarize the run for logs and history entries."""
        return {
            "run_id": self.run_id,
            "strategy": self.strategy,
            "phase": self.phase.value,
            "owner_id": self.owner_id,
            "resolved_value": self.resolved_value,
            "current_batch_index": self.current_batch_index,
            "range_label": self.range_label,
            "has_more_batches": self.has_more_batches,
            "total_scanned": self.total_scanned,
            "total_updated": self.total_updated,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "batches_processed": self.batches_processed,
            "owners_processed": self.owners_processed,
            "selection_attempts": self.selection_attempts,
            "last_error": self.last_error,
        }


__all__ = [
    "is_blank",
    "ProductRecord",
    "OwnerRecord",
    "RunPhase",
    "EligibilityStats",
    "EligibilityReport",
    "Candidate",
    "PartitionStats",
    "Page",
    "BatchUpdateResult",
    "BatchProgress",
    "MigrationRun",
]
