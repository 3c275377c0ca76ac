"""
Document store interface used by the backfill engine.

The engine needs three primitives from its store:

- ``query``: filtered, ordered, limited reads with a forward cursor
- ``get_by_id``: point reads
- ``atomic_write``: all-or-nothing application of a set of field patches

Queries are expressed with :class:`Query` and :class:`Filter`, which store
implementations translate to their own backend (a Python predicate, SQL,
a remote query API). All filters are combined with AND logic.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

ID_FIELD = "__id__"
"""Pseudo-field addressing the document id in filters and ordering."""

FilterOperator = Literal["eq", "ne", "gt", "gte", "lt", "lte", "in", "not_in"]


@dataclass(frozen=True)
class Document:
    """
    A document as returned by a store.

    Attributes:
        id: Document id, unique within its collection
        data: Field values of the document
    """

    id: str
    data: Mapping[str, Any] = field(default_factory=dict)

    def get(self, field_name: str, default: Any = None) -> Any:
        """Return a field value, treating ``ID_FIELD`` as the document id."""
        if field_name == ID_FIELD:
            return self.id
        return self.data.get(field_name, default)


@dataclass(frozen=True)
class Filter:
    """
    A single filter condition.

    ``Filter.eq(field, None)`` matches documents where the field is missing
    or null and ``Filter.ne(field, None)`` matches documents where it is
    present and not null. Ordering comparisons never match null fields.

    Example:
        >>> Filter.eq("seller_id", "u-1")
        Filter(field='seller_id', operator='eq', value='u-1')
        >>> str(Filter.ne("seller_id", None))
        'seller_id != None'
    """

    field: str
    operator: FilterOperator
    value: Any

    @classmethod
    def eq(cls, field: str, value: Any) -> Filter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def ne(cls, field: str, value: Any) -> Filter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def gt(cls, field: str, value: Any) -> Filter:
        return cls(field=field, operator="gt", value=value)

    @classmethod
    def gte(cls, field: str, value: Any) -> Filter:
        return cls(field=field, operator="gte", value=value)

    @classmethod
    def lt(cls, field: str, value: Any) -> Filter:
        return cls(field=field, operator="lt", value=value)

    @classmethod
    def lte(cls, field: str, value: Any) -> Filter:
        return cls(field=field, operator="lte", value=value)

    @classmethod
    def in_(cls, field: str, values: Sequence[Any]) -> Filter:
        return cls(field=field, operator="in", value=tuple(values))

    @classmethod
    def not_in(cls, field: str, values: Sequence[Any]) -> Filter:
        return cls(field=field, operator="not_in", value=tuple(values))

    def __str__(self) -> str:
        op_symbols = {
            "eq": "=",
            "ne": "!=",
            "gt": ">",
            "gte": ">=",
            "lt": "<",
            "lte": "<=",
            "in": "IN",
            "not_in": "NOT IN",
        }
        return f"{self.field} {op_symbols[self.operator]} {self.value!r}"


@dataclass(frozen=True)
class Query:
    """
    Query definition for a single collection.

    Results are ordered ascending by every field in ``order_by`` in turn.
    ``start_after`` holds the ordering values of the last document already
    seen (one value per ``order_by`` field) and resumes strictly after it.

    Attributes:
        filters: Filter conditions (combined with AND)
        order_by: Fields to order by, most significant first
        limit: Maximum number of documents to return
        start_after: Cursor values matching ``order_by``

    Example:
        >>> query = (
        ...     Query()
        ...     .with_filter(Filter.eq("seller_id", "u-1"))
        ...     .with_order(ID_FIELD)
        ...     .with_limit(11)
        ...     .with_start_after("p-010")
        ... )
    """

    filters: tuple[Filter, ...] = ()
    order_by: tuple[str, ...] = ()
    limit: int | None = None
    start_after: tuple[Any, ...] | None = None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"limit must be non-negative, got {self.limit}")
        if self.start_after is not None and len(self.start_after) != len(self.order_by):
            raise ValueError(
                f"start_after has {len(self.start_after)} values but query orders by "
                f"{len(self.order_by)} fields"
            )

    def with_filter(self, filter_: Filter) -> Query:
        """Create a new Query with an additional filter."""
        return Query(
            filters=(*self.filters, filter_),
            order_by=self.order_by,
            limit=self.limit,
            start_after=self.start_after,
        )

    def with_order(self, *fields: str) -> Query:
        """Create a new Query ordered by the given fields (replacing any ordering)."""
        return Query(
            filters=self.filters,
            order_by=tuple(fields),
            limit=self.limit,
        )

    def with_limit(self, limit: int) -> Query:
        """Create a new Query returning at most ``limit`` documents."""
        return Query(
            filters=self.filters,
            order_by=self.order_by,
            limit=limit,
            start_after=self.start_after,
        )

    def with_start_after(self, *values: Any) -> Query:
        """Create a new Query resuming after the given ordering values."""
        return Query(
            filters=self.filters,
            order_by=self.order_by,
            limit=self.limit,
            start_after=tuple(values),
        )

    def __str__(self) -> str:
        parts = []
        if self.filters:
            parts.append("WHERE " + " AND ".join(str(f) for f in self.filters))
        if self.order_by:
            parts.append("ORDER BY " + ", ".join(self.order_by))
        if self.start_after is not None:
            parts.append(f"START AFTER {self.start_after!r}")
        if self.limit is not None:
            parts.append(f"LIMIT {self.limit}")
        return " ".join(parts) if parts else "(all documents)"


@dataclass(frozen=True)
class WriteOperation:
    """
    A field patch applied to one existing document.

    Fields in ``patch`` overwrite the document's fields; other fields are
    left untouched. The target document must exist, and every field named in
    ``require_blank`` must still be missing, None or a blank string when the
    write is applied.
    """

    collection: str
    document_id: str
    patch: Mapping[str, Any]
    require_blank: tuple[str, ...] = ()


@runtime_checkable
class DocumentStore(Protocol):
    """
    Protocol for document stores the backfill engine can run against.

    Implementations:
    - InMemoryDocumentStore: dict-backed, for tests and development
    - SQLiteDocumentStore: aiosqlite-backed, documents stored as JSON
    """

    async def query(self, collection: str, query: Query) -> list[Document]:
        """
        Run a query against a collection.

        Args:
            collection: Collection name
            query: Filters, ordering, limit and cursor

        Returns:
            Matching documents in query order
        """
        ...

    async def get_by_id(self, collection: str, document_id: str) -> Document | None:
        """
        Read a single document.

        Returns:
            The document, or None if it does not exist
        """
        ...

    async def atomic_write(self, operations: Sequence[WriteOperation]) -> None:
        """
        Apply every operation, or none of them.

        Raises:
            AtomicWriteError: If the write is rejected; nothing was applied
            WriteConflictError: If a ``require_blank`` field already holds a value
        """
        ...


__all__ = [
    "ID_FIELD",
    "Document",
    "DocumentStore",
    "Filter",
    "FilterOperator",
    "Query",
    "WriteOperation",
]
