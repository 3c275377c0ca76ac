"""
Unit tests for the exceptions module.

Tests the exception hierarchy, messages and error classification.
"""

import logging

import pytest

from backfill.exceptions import (
    AtomicWriteError,
    BackfillError,
    BatchAlreadyProcessedError,
    DocumentNotFoundError,
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
from backfill.models import RunPhase


class TestBackfillError:
    """Tests for the base BackfillError."""

    def test_message_only(self):
        error = BackfillError("Something broke")
        assert str(error) == "Something broke"

    def test_context_is_appended(self):
        error = BackfillError("Something broke", run_id="r-1", owner_id="U1")

        assert str(error) == "Something broke run_id=r-1 owner_id=U1"
        assert error.run_id == "r-1"
        assert error.owner_id == "U1"

    def test_default_classification(self):
        error = BackfillError("x")

        assert error.error_code == "BACKFILL_ERROR"
        assert error.severity == ErrorSeverity.ERROR
        assert error.recoverability == ErrorRecoverability.FATAL

    def test_to_dict(self):
        data = BackfillError("x", run_id="r-1").to_dict()

        assert data["message"] == "x"
        assert data["run_id"] == "r-1"
        assert data["error_code"] == "BACKFILL_ERROR"
        assert data["classification"]["category"] == "general"


class TestHierarchy:
    @pytest.mark.parametrize(
        ("error_class", "base_class"),
        [
            (RunNotInitializedError, RunStateError),
            (NoMoreBatchesError, RunStateError),
            (BatchAlreadyProcessedError, RunStateError),
            (InvalidPhaseTransitionError, RunStateError),
            (RunStateError, BackfillError),
            (PaginationError, BackfillError),
            (AtomicWriteError, StoreError),
            (DocumentNotFoundError, AtomicWriteError),
            (WriteLimitExceededError, AtomicWriteError),
            (WriteConflictError, AtomicWriteError),
            (StoreError, BackfillError),
            (LeaseAcquisitionError, LeaseError),
            (LeaseNotHeldError, LeaseError),
            (LeaseError, BackfillError),
        ],
    )
    def test_subclassing(self, error_class: type, base_class: type):
        assert issubclass(error_class, base_class)


class TestRunStateErrors:
    def test_run_not_initialized(self):
        error = RunNotInitializedError("load the next batch", RunPhase.NO_ELIGIBLE_WORK)

        assert "Cannot load the next batch" in str(error)
        assert "no_eligible_work" in str(error)
        assert error.current_phase == RunPhase.NO_ELIGIBLE_WORK
        assert error.error_code == "RUN_NOT_INITIALIZED"

    def test_run_not_initialized_without_phase(self):
        error = RunNotInitializedError("process the current batch")
        assert "phase=none" in str(error)

    def test_no_more_batches(self):
        error = NoMoreBatchesError("r-1", 3)

        assert error.batch_index == 3
        assert error.run_id == "r-1"
        assert error.operation == "load_next_batch"
        assert error.severity == ErrorSeverity.WARNING

    def test_batch_already_processed(self):
        error = BatchAlreadyProcessedError("r-1", 2)
        assert "Batch 2 has already been processed" in str(error)

    def test_invalid_phase_transition(self):
        error = InvalidPhaseTransitionError("r-1", RunPhase.COMPLETE, RunPhase.BOUND)

        assert "complete -> bound" in str(error)
        assert error.target_phase == RunPhase.BOUND
        assert error.recoverability == ErrorRecoverability.FATAL


class TestStoreErrors:
    def test_pagination_error_keeps_context(self):
        error = PaginationError("U1", 4, "connection reset", cursor="P8")

        assert error.owner_id == "U1"
        assert error.batch_index == 4
        assert error.cursor == "P8"
        assert error.original_error == "connection reset"
        assert error.recoverability == ErrorRecoverability.TRANSIENT

    def test_document_not_found(self):
        error = DocumentNotFoundError("products", "P1", operation_count=5)

        assert "products/P1" in str(error)
        assert error.operation_count == 5
        assert error.error_code == "DOCUMENT_NOT_FOUND"

    def test_write_limit_exceeded(self):
        error = WriteLimitExceededError(600, 500)

        assert error.limit == 500
        assert error.operation_count == 600
        assert "exceeds limit of 500" in str(error)

    def test_write_conflict(self):
        error = WriteConflictError("products", "P1", "company_id", operation_count=2)

        assert "products/P1" in str(error)
        assert error.field_name == "company_id"
        assert error.operation_count == 2
        assert error.error_code == "WRITE_CONFLICT"

    def test_lease_acquisition_error(self):
        error = LeaseAcquisitionError("U1", "run-b", "run-a")

        assert error.owner_id == "U1"
        assert error.current_holder == "run-a"
        assert "run-a" in str(error)


class TestClassification:
    def test_backfill_errors_report_their_own(self):
        classification = classify_exception(WriteLimitExceededError(2, 1))
        assert classification.error_code == "WRITE_LIMIT_EXCEEDED"

    def test_unknown_exceptions_are_transient(self):
        classification = classify_exception(ConnectionError("down"))

        assert classification.error_code == "UNKNOWN_ERROR"
        assert classification.recoverability == ErrorRecoverability.TRANSIENT
        assert classification.recoverability.should_retry

    def test_severity_log_levels(self):
        assert ErrorSeverity.WARNING.log_level == logging.WARNING
        assert ErrorSeverity.ERROR.log_level == logging.ERROR
        assert ErrorSeverity.CRITICAL.log_level == logging.CRITICAL

    def test_classification_to_dict(self):
        data = classify_exception(DocumentNotFoundError("products", "P1")).to_dict()

        assert data["severity"] == "warning"
        assert data["recoverability"] == "recoverable"
        assert data["category"] == "store"
