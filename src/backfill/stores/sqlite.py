"""
SQLite implementation of the document store.

Provides embedded persistence for documents using aiosqlite. Suitable for
development, testing, and running a backfill against an exported snapshot.

SQLite-specific adaptations:
- Every collection lives in one ``documents`` table keyed by (collection, id)
- Document fields are stored as a JSON object and read with ``json_extract``
- Cursors use row-value comparison (SQLite 3.15+)
- Atomic writes run inside a single transaction and roll back on any failure
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from backfill.exceptions import (
    DocumentNotFoundError,
    WriteConflictError,
    WriteLimitExceededError,
)
from backfill.models import is_blank
from backfill.observability import Tracer, create_tracer
from backfill.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
)
from backfill.serialization import json_dumps, json_loads
from backfill.stores.interface import ID_FIELD, Document, Filter, Query, WriteOperation

if TYPE_CHECKING:
    import aiosqlite

logger = logging.getLogger(__name__)

DEFAULT_MAX_WRITE_SIZE = 500

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        collection TEXT NOT NULL,
        id TEXT NOT NULL,
        data TEXT NOT NULL,
        PRIMARY KEY (collection, id)
    )
    """,
)


class SQLiteDocumentStore:
    """
    SQLite implementation of DocumentStore.

    Requirements:
        - SQLite 3.15+ with the JSON1 functions (bundled with CPython builds)
        - ``initialize()`` called once to create the schema

    Example:
        >>> import aiosqlite
        >>> async with aiosqlite.connect("backfill.db") as db:
        ...     store = SQLiteDocumentStore(db)
        ...     await store.initialize()
        ...     await store.put("products", "p-1", {"seller_id": "u-1"})

    Note:
        - Cursor values must not be null; SQL comparisons with NULL never match
        - Nulls sort first, the same as the in-memory store
    """

    def __init__(
        self,
        connection: aiosqlite.Connection,
        max_write_size: int = DEFAULT_MAX_WRITE_SIZE,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        """
        Initialize the SQLite store.

        Args:
            connection: aiosqlite database connection
            max_write_size: Largest number of operations accepted by atomic_write
            tracer: Optional tracer for tracing (if not provided, one will be created)
            enable_tracing: Whether to enable OpenTelemetry tracing (default True)
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._connection = connection
        self._max_write_size = max_write_size

    async def initialize(self) -> None:
        """Create the documents table if it does not exist."""
        for statement in SCHEMA_STATEMENTS:
            await self._connection.execute(statement)
        await self._connection.commit()

    async def query(self, collection: str, query: Query) -> list[Document]:
        with self._tracer.span(
            "backfill.sqlite_store.query",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_OPERATION: "SELECT",
                ATTR_COLLECTION: collection,
            },
        ):
            sql, params = self._build_select_query(collection, query)
            async with self._connection.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
            return [Document(id=row[0], data=json_loads(row[1])) for row in rows]

    async def get_by_id(self, collection: str, document_id: str) -> Document | None:
        with self._tracer.span(
            "backfill.sqlite_store.get_by_id",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_OPERATION: "SELECT",
                ATTR_COLLECTION: collection,
            },
        ):
            async with self._connection.execute(
                "SELECT data FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            return Document(id=document_id, data=json_loads(row[0]))

    async def atomic_write(self, operations: Sequence[WriteOperation]) -> None:
        with self._tracer.span(
            "backfill.sqlite_store.atomic_write",
            {
                ATTR_DB_SYSTEM: "sqlite",
                ATTR_DB_OPERATION: "UPDATE",
                ATTR_BATCH_SIZE: len(operations),
            },
        ):
            if len(operations) > self._max_write_size:
                raise WriteLimitExceededError(len(operations), self._max_write_size)

            try:
                for op in operations:
                    async with self._connection.execute(
                        "SELECT data FROM documents WHERE collection = ? AND id = ?",
                        (op.collection, op.document_id),
                    ) as cursor:
                        row = await cursor.fetchone()
                    if row is None:
                        raise DocumentNotFoundError(
                            op.collection, op.document_id, operation_count=len(operations)
                        )
                    data = json_loads(row[0])
                    for field_name in op.require_blank:
                        if not is_blank(data.get(field_name)):
                            raise WriteConflictError(
                                op.collection,
                                op.document_id,
                                field_name,
                                operation_count=len(operations),
                            )
                    data.update(op.patch)
                    await self._connection.execute(
                        "UPDATE documents SET data = ? WHERE collection = ? AND id = ?",
                        (json_dumps(data), op.collection, op.document_id),
                    )
                await self._connection.commit()
            except BaseException:
                await self._connection.rollback()
                raise

            logger.debug("Committed atomic write of %d operations", len(operations))

    async def put(self, collection: str, document_id: str, data: Mapping[str, Any]) -> None:
        """Create or replace a document."""
        await self.put_many(collection, [(document_id, data)])

    async def put_many(
        self,
        collection: str,
        documents: Iterable[tuple[str, Mapping[str, Any]]],
    ) -> None:
        """Create or replace several documents given as (id, data) pairs."""
        rows = [
            (collection, document_id, json_dumps(dict(data))) for document_id, data in documents
        ]
        await self._connection.executemany(
            """
            INSERT INTO documents (collection, id, data) VALUES (?, ?, ?)
            ON CONFLICT (collection, id) DO UPDATE SET data = excluded.data
            """,
            rows,
        )
        await self._connection.commit()

    async def count(self, collection: str) -> int:
        async with self._connection.execute(
            "SELECT COUNT(*) FROM documents WHERE collection = ?",
            (collection,),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    def _build_select_query(self, collection: str, query: Query) -> tuple[str, tuple[Any, ...]]:
        """
        Build SELECT SQL from Query.

        Args:
            collection: Collection the query runs against
            query: Query definition with filters, ordering, cursor and limit

        Returns:
            Tuple of (SQL string, parameter tuple)
        """
        parts = ["SELECT id, data FROM documents"]
        where_clauses = ["collection = ?"]
        params: list[Any] = [collection]

        for filter_ in query.filters:
            clause, filter_params = self._filter_to_sql(filter_)
            where_clauses.append(clause)
            params.extend(filter_params)

        order_exprs: list[str] = []
        order_params: list[Any] = []
        for field_name in query.order_by:
            expr, expr_params = self._field_expr(field_name)
            order_exprs.append(expr)
            order_params.extend(expr_params)

        if query.start_after is not None and order_exprs:
            placeholders = ", ".join("?" * len(query.start_after))
            where_clauses.append(f"({', '.join(order_exprs)}) > ({placeholders})")
            params.extend(order_params)
            params.extend(query.start_after)

        parts.append("WHERE " + " AND ".join(where_clauses))

        if order_exprs:
            parts.append("ORDER BY " + ", ".join(f"{expr} ASC" for expr in order_exprs))
            params.extend(order_params)

        if query.limit is not None:
            parts.append(f"LIMIT {int(query.limit)}")

        return " ".join(parts), tuple(params)

    def _field_expr(self, field_name: str) -> tuple[str, list[Any]]:
        """SQL expression reading a document field (or the id)."""
        if field_name == ID_FIELD:
            return "id", []
        return "json_extract(data, ?)", [f'$."{field_name}"']

    def _filter_to_sql(self, filter_: Filter) -> tuple[str, list[Any]]:
        """
        Convert a Filter to SQL clause with parameters.

        Args:
            filter_: Filter condition to convert

        Returns:
            Tuple of (SQL clause, parameter list)

        Raises:
            ValueError: If operator is unknown
        """
        expr, expr_params = self._field_expr(filter_.field)
        value = filter_.value

        if filter_.operator == "eq":
            if value is None:
                return f"{expr} IS NULL", expr_params
            return f"{expr} = ?", [*expr_params, value]
        elif filter_.operator == "ne":
            if value is None:
                return f"{expr} IS NOT NULL", expr_params
            return f"{expr} != ?", [*expr_params, value]
        elif filter_.operator == "gt":
            return f"{expr} > ?", [*expr_params, value]
        elif filter_.operator == "gte":
            return f"{expr} >= ?", [*expr_params, value]
        elif filter_.operator == "lt":
            return f"{expr} < ?", [*expr_params, value]
        elif filter_.operator == "lte":
            return f"{expr} <= ?", [*expr_params, value]
        elif filter_.operator == "in":
            if not value:
                return "0", []
            placeholders = ",".join("?" * len(value))
            return f"{expr} IN ({placeholders})", [*expr_params, *value]
        elif filter_.operator == "not_in":
            if not value:
                return f"{expr} IS NOT NULL", expr_params
            placeholders = ",".join("?" * len(value))
            return f"{expr} NOT IN ({placeholders})", [*expr_params, *value]
        else:
            raise ValueError(f"Unknown operator: {filter_.operator}")

    def __repr__(self) -> str:
        return (
            f"SQLiteDocumentStore("
            f"max_write_size={self._max_write_size}, "
            f"tracing={'enabled' if self._enable_tracing else 'disabled'})"
        )


__all__ = ["SQLiteDocumentStore", "SCHEMA_STATEMENTS"]
