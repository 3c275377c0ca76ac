"""
Batch writer.

Copies the owner's value onto one page of products with a single atomic
write, stamping each written product with where the value came from.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from backfill.cache import OwnerCache
from backfill.config import BackfillConfig
from backfill.events import EventEmitter, EventKind
from backfill.exceptions import WriteConflictError, classify_exception
from backfill.models import BatchUpdateResult, ProductRecord
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import (
    ATTR_BATCH_INDEX,
    ATTR_BATCH_SIZE,
    ATTR_ERROR_TYPE,
    ATTR_OWNER_ID,
    ATTR_RECORDS_SKIPPED,
    ATTR_RECORDS_UPDATED,
    ATTR_RUN_ID,
)
from backfill.paginator import range_label
from backfill.stores.interface import DocumentStore, WriteOperation

logger = logging.getLogger(__name__)

# Provenance fields written next to the value
FIELD_MIGRATION_SOURCE = "migration_source"
FIELD_MIGRATION_RUN_ID = "migration_run_id"
FIELD_MIGRATION_BATCH_INDEX = "migration_batch_index"
FIELD_MIGRATION_BATCH_RANGE = "migration_batch_range"
FIELD_MIGRATION_TIMESTAMP = "migration_timestamp"
FIELD_MIGRATION_OWNER_ID = "migration_owner_id"

SKIP_ALREADY_MIGRATED = "already_migrated"
SKIP_OWNER_MISMATCH = "owner_mismatch"
SKIP_MISSING_ID = "missing_id"
SKIP_NOT_FOUND = "not_found"


class BatchWriter:
    """
    Applies the resolved value to a page of products.

    A record is skipped when it already has a value, when it belongs to a
    different owner than the one being processed, or when it has no id. With
    ``verify_before_write`` each remaining record is also re-read, and skipped
    if it was deleted, gained a value or moved to another owner since the
    page was read.

    The rest are written with one ``atomic_write`` whose patches require the
    value to still be blank. A product given a value by another writer after
    verification makes the store raise ``WriteConflictError``; it is skipped
    and the remaining records are written again.

    If the store rejects the write for any other reason, every record in the
    write is counted as an error and nothing is raised: the caller moves on
    to the next batch. On success the owner's cache entry is invalidated.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: OwnerCache | None = None,
        config: BackfillConfig | None = None,
        events: EventEmitter | None = None,
        clock: Callable[[], datetime] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._cache = cache
        self._config = config or BackfillConfig()
        self._events = events or EventEmitter()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    async def apply_batch(
        self,
        records: Sequence[ProductRecord],
        owner_id: str,
        resolved_value: str,
        batch_index: int,
        run_id: str,
        total_batches: int | None = None,
        batch_range: str | None = None,
    ) -> BatchUpdateResult:
        """
        Write one batch.

        Args:
            records: Products of the page, as read by the paginator
            owner_id: Owner being processed; records of other owners are skipped
            resolved_value: Value copied onto the products
            batch_index: 1-based index of the batch
            run_id: Run stamped into the provenance fields
            total_batches: Total number of batches, when known
            batch_range: Range label of the page the records came from
                (derived from batch_index and the configured batch size if omitted)

        Returns:
            BatchUpdateResult accounting for every record in ``records``

        Raises:
            ValueError: If resolved_value is blank or the batch exceeds the
                store's atomic write limit
        """
        if not resolved_value or not resolved_value.strip():
            raise ValueError("resolved_value must not be blank")
        if len(records) > self._config.max_atomic_write_size:
            raise ValueError(
                f"Batch of {len(records)} records exceeds max_atomic_write_size "
                f"({self._config.max_atomic_write_size})"
            )

        label = batch_range or range_label(batch_index, self._config.batch_size)

        with self._tracer.span(
            "backfill.writer.apply_batch",
            {
                ATTR_RUN_ID: run_id,
                ATTR_OWNER_ID: owner_id,
                ATTR_BATCH_INDEX: batch_index,
                ATTR_BATCH_SIZE: len(records),
            },
        ) as span:
            to_write: list[ProductRecord] = []
            skipped: list[str] = []
            errored: list[str] = []

            for record in records:
                try:
                    reason = await self._skip_reason(record, owner_id)
                except Exception as e:
                    logger.error("Could not re-read product %s before writing: %s", record.id, e)
                    errored.append(record.id)
                    continue
                if reason is not None:
                    skipped.append(record.id)
                    await self._events.emit(
                        EventKind.RECORD_SKIPPED,
                        run_id,
                        product_id=record.id,
                        owner_id=owner_id,
                        batch_index=batch_index,
                        reason=reason,
                    )
                    continue
                to_write.append(record)

            if not to_write:
                logger.info(
                    "Batch %d (%s): nothing to write, %d skipped, %d errors",
                    batch_index,
                    label,
                    len(skipped),
                    len(errored),
                )
                return BatchUpdateResult(
                    updated_count=0,
                    skipped_count=len(skipped),
                    error_count=len(errored),
                    batch_index=batch_index,
                    range_label=label,
                    total_batches=total_batches,
                    skipped_ids=tuple(skipped),
                )

            patch = self._build_patch(
                owner_id, resolved_value, batch_index, label, run_id, self._clock()
            )

            while True:
                operations = [
                    WriteOperation(
                        collection=self._config.product_collection,
                        document_id=record.id,
                        patch=dict(patch),
                        require_blank=(self._config.value_field,),
                    )
                    for record in to_write
                ]
                try:
                    await self._store.atomic_write(operations)
                    break
                except WriteConflictError as e:
                    # Value set by another writer since verification
                    logger.warning(
                        "Product %s gained a value before the write; skipping",
                        e.document_id,
                    )
                    to_write = [record for record in to_write if record.id != e.document_id]
                    skipped.append(e.document_id)
                    await self._events.emit(
                        EventKind.RECORD_SKIPPED,
                        run_id,
                        product_id=e.document_id,
                        owner_id=owner_id,
                        batch_index=batch_index,
                        reason=SKIP_ALREADY_MIGRATED,
                    )
                    if not to_write:
                        break
                except Exception as e:
                    classification = classify_exception(e)
                    if span:
                        span.set_attribute(ATTR_ERROR_TYPE, type(e).__name__)
                        span.record_exception(e)
                    logger.log(
                        classification.severity.log_level,
                        "Atomic write of batch %d (%s) for owner %s failed: %s",
                        batch_index,
                        label,
                        owner_id,
                        e,
                        exc_info=True,
                        extra={"run_id": run_id, "error_code": classification.error_code},
                    )
                    await self._events.emit(
                        EventKind.BATCH_FAILED,
                        run_id,
                        owner_id=owner_id,
                        batch_index=batch_index,
                        range_label=label,
                        error_count=len(to_write),
                        error=str(e),
                        error_code=classification.error_code,
                    )
                    return BatchUpdateResult(
                        updated_count=0,
                        skipped_count=len(skipped),
                        error_count=len(to_write) + len(errored),
                        batch_index=batch_index,
                        range_label=label,
                        total_batches=total_batches,
                        error_message=str(e),
                        skipped_ids=tuple(skipped),
                    )

            if self._cache is not None:
                self._cache.invalidate(owner_id)

            if span:
                span.set_attribute(ATTR_RECORDS_UPDATED, len(to_write))
                span.set_attribute(ATTR_RECORDS_SKIPPED, len(skipped))

        updated_ids = tuple(record.id for record in to_write)
        logger.info(
            "Batch %d (%s) for owner %s: %d updated, %d skipped",
            batch_index,
            label,
            owner_id,
            len(updated_ids),
            len(skipped),
        )
        await self._events.emit(
            EventKind.BATCH_WRITTEN,
            run_id,
            owner_id=owner_id,
            batch_index=batch_index,
            range_label=label,
            updated_count=len(updated_ids),
            skipped_count=len(skipped),
        )
        return BatchUpdateResult(
            updated_count=len(updated_ids),
            skipped_count=len(skipped),
            error_count=len(errored),
            batch_index=batch_index,
            range_label=label,
            total_batches=total_batches,
            updated_ids=updated_ids,
            skipped_ids=tuple(skipped),
        )

    async def _skip_reason(self, record: ProductRecord, owner_id: str) -> str | None:
        if not record.id:
            return SKIP_MISSING_ID
        if record.has_value:
            return SKIP_ALREADY_MIGRATED
        if record.owner_id != owner_id:
            logger.warning(
                "Product %s belongs to owner %s, not %s; skipping",
                record.id,
                record.owner_id,
                owner_id,
            )
            return SKIP_OWNER_MISMATCH

        if not self._config.verify_before_write:
            return None

        doc = await self._store.get_by_id(self._config.product_collection, record.id)
        if doc is None:
            logger.info("Product %s no longer exists; skipping", record.id)
            return SKIP_NOT_FOUND
        current = ProductRecord.from_document(doc, self._config)
        if current.has_value:
            return SKIP_ALREADY_MIGRATED
        if current.owner_id != owner_id:
            logger.warning(
                "Product %s moved to owner %s while being processed; skipping",
                record.id,
                current.owner_id,
            )
            return SKIP_OWNER_MISMATCH
        return None

    def _build_patch(
        self,
        owner_id: str,
        resolved_value: str,
        batch_index: int,
        label: str,
        run_id: str,
        now: datetime,
    ) -> dict[str, Any]:
        timestamp = now.isoformat()
        return {
            self._config.value_field: resolved_value,
            self._config.updated_at_field: timestamp,
            FIELD_MIGRATION_SOURCE: self._config.migration_source,
            FIELD_MIGRATION_RUN_ID: run_id,
            FIELD_MIGRATION_BATCH_INDEX: batch_index,
            FIELD_MIGRATION_BATCH_RANGE: label,
            FIELD_MIGRATION_TIMESTAMP: timestamp,
            FIELD_MIGRATION_OWNER_ID: owner_id,
        }


__all__ = [
    "BatchWriter",
    "FIELD_MIGRATION_SOURCE",
    "FIELD_MIGRATION_RUN_ID",
    "FIELD_MIGRATION_BATCH_INDEX",
    "FIELD_MIGRATION_BATCH_RANGE",
    "FIELD_MIGRATION_TIMESTAMP",
    "FIELD_MIGRATION_OWNER_ID",
    "SKIP_ALREADY_MIGRATED",
    "SKIP_OWNER_MISMATCH",
    "SKIP_MISSING_ID",
    "SKIP_NOT_FOUND",
]
