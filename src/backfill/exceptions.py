"""
Exceptions raised by the backfill engine and its document stores.

Exception Hierarchy:
    BackfillError (base)
    +-- RunStateError
    |   +-- RunNotInitializedError
    |   +-- NoMoreBatchesError
    |   +-- BatchAlreadyProcessedError
    |   +-- InvalidPhaseTransitionError
    +-- PaginationError
    +-- StoreError
    |   +-- AtomicWriteError
    |       +-- DocumentNotFoundError
    |       +-- WriteLimitExceededError
    +-- LeaseError
        +-- LeaseAcquisitionError
        +-- LeaseNotHeldError

Not every failure is an exception. Records that vanish or no longer match
their owner are counted as skipped, a rejected batch write is counted as
errors on the batch result, and running out of candidates ends the run
normally. Exceptions are reserved for caller mistakes (calling an operation
in the wrong phase) and for reads that leave the run unable to continue.

Every exception carries an :class:`ErrorClassification` describing its
severity, whether retrying makes sense and what an operator should do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from backfill.models import RunPhase


class ErrorSeverity(Enum):
    """
    Severity level of backfill errors.

    Attributes:
        CRITICAL: Data may be inconsistent; needs immediate attention.
        ERROR: The operation failed and will not succeed without a change.
        WARNING: The operation failed but the run can continue.
        INFO: Not a failure, reported for visibility.
    """

    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @property
    def should_alert(self) -> bool:
        """True for CRITICAL and ERROR levels."""
        return self in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR)

    @property
    def log_level(self) -> int:
        """The corresponding Python logging level."""
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    How the caller can recover from an error.

    Attributes:
        RECOVERABLE: Fix the cause and call the operation again.
        TRANSIENT: Likely to succeed if simply retried.
        FATAL: The run cannot continue; reset and start over.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        return self == ErrorRecoverability.TRANSIENT

    @property
    def should_abort(self) -> bool:
        return self == ErrorRecoverability.FATAL


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing an error for automated handling and operators.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }


class BackfillError(Exception):
    """
    Base exception for all backfill errors.

    Attributes:
        message: Human-readable error description.
        run_id: The run that raised the error, if any.
        owner_id: The owner being processed, if any.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="BACKFILL_ERROR",
        category="general",
        suggested_action="Review the backfill logs for the failing run",
    )

    def __init__(
        self,
        message: str,
        *,
        run_id: str | None = None,
        owner_id: str | None = None,
    ) -> None:
        self.message = message
        self.run_id = run_id
        self.owner_id = owner_id
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.run_id:
            parts.append(f"run_id={self.run_id}")
        if self.owner_id:
            parts.append(f"owner_id={self.owner_id}")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        """Classification of this error; subclasses override the default."""
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    def to_dict(self) -> dict[str, Any]:
        """Convert the exception to a dictionary for logs and API responses."""
        return {
            "message": self.message,
            "run_id": self.run_id,
            "owner_id": self.owner_id,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


# =============================================================================
# Run state errors
# =============================================================================


class RunStateError(BackfillError):
    """
    Raised when an orchestrator operation is invalid for the run's phase.

    These are caller errors: nothing has been read or written when one of
    them is raised.

    Attributes:
        current_phase: Phase of the run when the operation was attempted.
        operation: The operation that was attempted.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="RUN_STATE_ERROR",
        category="state",
        suggested_action="Check get_run_state() before calling this operation",
    )

    def __init__(
        self,
        message: str,
        *,
        current_phase: RunPhase | None = None,
        operation: str | None = None,
        run_id: str | None = None,
    ) -> None:
        self.current_phase = current_phase
        self.operation = operation
        super().__init__(message, run_id=run_id)


class RunNotInitializedError(RunStateError):
    """Raised when an operation needs a bound run but none exists."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="RUN_NOT_INITIALIZED",
        category="state",
        suggested_action="Call initialize() and check that it bound an owner",
    )

    def __init__(self, operation: str, current_phase: RunPhase | None = None) -> None:
        phase = current_phase.value if current_phase is not None else "none"
        super().__init__(
            f"Cannot {operation}: no owner is bound to the run (phase={phase})",
            current_phase=current_phase,
            operation=operation,
        )


class NoMoreBatchesError(RunStateError):
    """Raised by load_next_batch() after the owner's last batch was loaded."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="NO_MORE_BATCHES",
        category="state",
        suggested_action="Check has_more_batches before loading the next batch",
    )

    def __init__(self, run_id: str, batch_index: int) -> None:
        self.batch_index = batch_index
        super().__init__(
            f"No batches left after batch {batch_index}",
            operation="load_next_batch",
            run_id=run_id,
        )


class BatchAlreadyProcessedError(RunStateError):
    """Raised when the current batch was already written."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="BATCH_ALREADY_PROCESSED",
        category="state",
        suggested_action="Call load_next_batch() before processing again",
    )

    def __init__(self, run_id: str, batch_index: int) -> None:
        self.batch_index = batch_index
        super().__init__(
            f"Batch {batch_index} has already been processed",
            operation="process_current_batch",
            run_id=run_id,
        )


class InvalidPhaseTransitionError(RunStateError):
    """Raised when the run's phase machine rejects a transition."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_PHASE_TRANSITION",
        category="state",
        suggested_action="Reset the run and start again",
    )

    def __init__(self, run_id: str, current_phase: RunPhase, target_phase: RunPhase) -> None:
        self.target_phase = target_phase
        super().__init__(
            f"Invalid phase transition: {current_phase.value} -> {target_phase.value}",
            current_phase=current_phase,
            operation="phase_transition",
            run_id=run_id,
        )


# =============================================================================
# Read errors
# =============================================================================


class PaginationError(BackfillError):
    """
    Raised when the owner's products cannot be read.

    The run keeps its cursor and batch index, so the same load can be
    retried once the store is reachable again.

    Attributes:
        batch_index: The batch that could not be loaded.
        cursor: Cursor the page was requested after.
        original_error: String form of the underlying store error.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="PAGINATION_ERROR",
        category="read",
        suggested_action="Check store connectivity, then call load_next_batch() again",
    )

    def __init__(
        self,
        owner_id: str,
        batch_index: int,
        error: str,
        cursor: str | None = None,
    ) -> None:
        self.batch_index = batch_index
        self.cursor = cursor
        self.original_error = error
        super().__init__(
            f"Failed to load batch {batch_index}: {error}",
            owner_id=owner_id,
        )


# =============================================================================
# Store errors
# =============================================================================


class StoreError(BackfillError):
    """Base class for errors raised by DocumentStore implementations."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="STORE_ERROR",
        category="store",
        suggested_action="Check the document store and retry",
    )


class AtomicWriteError(StoreError):
    """
    Raised when an atomic multi-document write is rejected.

    Nothing from the rejected write has been applied.

    Attributes:
        operation_count: Number of patches in the rejected write.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="ATOMIC_WRITE_REJECTED",
        category="store",
        suggested_action="Re-run the backfill; records already written are skipped",
    )

    def __init__(self, message: str, operation_count: int = 0) -> None:
        self.operation_count = operation_count
        super().__init__(message)


class DocumentNotFoundError(AtomicWriteError):
    """Raised when a patch targets a document that does not exist."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="DOCUMENT_NOT_FOUND",
        category="store",
        suggested_action="The document was deleted concurrently; re-run to skip it",
    )

    def __init__(self, collection: str, document_id: str, operation_count: int = 0) -> None:
        self.collection = collection
        self.document_id = document_id
        super().__init__(
            f"Document {collection}/{document_id} does not exist",
            operation_count=operation_count,
        )


class WriteConflictError(AtomicWriteError):
    """Raised when a patch requires a field to be blank and it no longer is."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="WRITE_CONFLICT",
        category="store",
        suggested_action="Another writer set the field first; leave the document as it is",
    )

    def __init__(
        self,
        collection: str,
        document_id: str,
        field_name: str,
        operation_count: int = 0,
    ) -> None:
        self.collection = collection
        self.document_id = document_id
        self.field_name = field_name
        super().__init__(
            f"Document {collection}/{document_id} already has a value for {field_name}",
            operation_count=operation_count,
        )


class WriteLimitExceededError(AtomicWriteError):
    """Raised when a write holds more patches than the store accepts at once."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="WRITE_LIMIT_EXCEEDED",
        category="store",
        suggested_action="Lower batch_size below the store's atomic write limit",
    )

    def __init__(self, operation_count: int, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"Atomic write of {operation_count} operations exceeds limit of {limit}",
            operation_count=operation_count,
        )


# =============================================================================
# Lease errors
# =============================================================================


class LeaseError(BackfillError):
    """Base class for owner lease errors."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="LEASE_ERROR",
        category="lease",
        suggested_action="Another run may be processing this owner",
    )


class LeaseAcquisitionError(LeaseError):
    """Raised when an owner is already leased by another run."""

    def __init__(self, owner_id: str, holder_id: str, current_holder: str) -> None:
        self.holder_id = holder_id
        self.current_holder = current_holder
        super().__init__(
            f"Owner is leased by {current_holder}, cannot lease for {holder_id}",
            owner_id=owner_id,
        )


class LeaseNotHeldError(LeaseError):
    """Raised when releasing a lease the caller does not hold."""

    def __init__(self, owner_id: str, holder_id: str) -> None:
        self.holder_id = holder_id
        super().__init__(f"Lease not held by {holder_id}", owner_id=owner_id)


def classify_exception(exc: BaseException) -> ErrorClassification:
    """
    Classify any exception.

    BackfillError subclasses report their own classification; anything else
    gets a generic transient store classification, since unknown exceptions
    reaching the engine come from the store driver.
    """
    if isinstance(exc, BackfillError):
        return exc.classification

    return ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review logs and retry.",
    )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
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
    "classify_exception",
]
