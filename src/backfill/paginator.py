"""
Forward-only, cursor-based paging over one owner's products.
"""

from __future__ import annotations

import logging

from backfill.config import BackfillConfig
from backfill.exceptions import PaginationError
from backfill.models import Page, ProductRecord
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import (
    ATTR_BATCH_INDEX,
    ATTR_BATCH_RANGE,
    ATTR_BATCH_SIZE,
    ATTR_OWNER_ID,
)
from backfill.stores.interface import ID_FIELD, DocumentStore, Filter, Query

logger = logging.getLogger(__name__)


def range_label(batch_index: int, batch_size: int) -> str:
    """
    Human-readable range covered by a batch.

    >>> range_label(1, 10)
    '1-10'
    >>> range_label(3, 10)
    '21-30'
    """
    start = (batch_index - 1) * batch_size + 1
    return f"{start}-{batch_index * batch_size}"


class BatchPaginator:
    """
    Pages through the products of one owner, ordered by document id.

    Every product of the owner is returned, including those that already
    carry the value; the writer decides what to skip. Each page resumes
    strictly after the id of the previous page's last record.

    With ``lookahead_pagination`` (the default) one extra record is read per
    page, so ``has_more`` is exact and an owner with ``k`` products takes
    exactly ``ceil(k / batch_size)`` pages. Without it, a full page reports
    ``has_more=True`` and the page after the last full one comes back empty.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: BackfillConfig | None = None,
        batch_size: int | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._store = store
        self._config = config or BackfillConfig()
        self._batch_size = batch_size or self._config.batch_size
        if self._batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self._batch_size}")
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def next_page(
        self,
        owner_id: str,
        batch_index: int,
        cursor: str | None = None,
    ) -> Page:
        """
        Read one page of the owner's products.

        Args:
            owner_id: Owner whose products are paged
            batch_index: 1-based index of the page being read
            cursor: Id of the last record of the previous page (None for the first)

        Returns:
            The page

        Raises:
            PaginationError: If the store read fails
        """
        label = range_label(batch_index, self._batch_size)
        lookahead = self._config.lookahead_pagination
        fetch = self._batch_size + 1 if lookahead else self._batch_size

        query = (
            Query()
            .with_filter(Filter.eq(self._config.owner_field, owner_id))
            .with_order(ID_FIELD)
            .with_limit(fetch)
        )
        if cursor is not None:
            query = query.with_start_after(cursor)

        with self._tracer.span(
            "backfill.paginator.next_page",
            {
                ATTR_OWNER_ID: owner_id,
                ATTR_BATCH_INDEX: batch_index,
                ATTR_BATCH_SIZE: self._batch_size,
                ATTR_BATCH_RANGE: label,
            },
        ):
            try:
                docs = await self._store.query(self._config.product_collection, query)
            except Exception as e:
                logger.error(
                    "Failed to load batch %d (%s) for owner %s: %s",
                    batch_index,
                    label,
                    owner_id,
                    e,
                    exc_info=True,
                )
                raise PaginationError(owner_id, batch_index, str(e), cursor=cursor) from e

        if lookahead:
            has_more = len(docs) > self._batch_size
            docs = docs[: self._batch_size]
        else:
            has_more = len(docs) == self._batch_size

        records = tuple(ProductRecord.from_document(doc, self._config) for doc in docs)
        next_cursor = records[-1].id if records else cursor

        logger.debug(
            "Loaded batch %d (%s) for owner %s: %d records, has_more=%s",
            batch_index,
            label,
            owner_id,
            len(records),
            has_more,
        )
        return Page(
            records=records,
            batch_index=batch_index,
            range_label=label,
            has_more=has_more,
            next_cursor=next_cursor,
        )


__all__ = ["BatchPaginator", "range_label"]
