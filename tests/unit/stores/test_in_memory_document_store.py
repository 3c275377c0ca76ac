"""
Unit tests for InMemoryDocumentStore.

Tests for:
- Point reads and document isolation
- Filters, ordering, cursors and limits
- All-or-nothing atomic writes, including blank-field conditions
- Query and Filter value objects
"""

import pytest
import pytest_asyncio

from backfill.exceptions import (
    DocumentNotFoundError,
    WriteConflictError,
    WriteLimitExceededError,
)
from backfill.observability import MockTracer
from backfill.stores import (
    ID_FIELD,
    DocumentStore,
    Filter,
    InMemoryDocumentStore,
    Query,
    WriteOperation,
)


@pytest_asyncio.fixture
async def products() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore(enable_tracing=False)
    await store.put_many(
        "products",
        [
            ("p-1", {"seller_id": "u-2", "price": 10}),
            ("p-2", {"seller_id": "u-1", "price": 20}),
            ("p-3", {"seller_id": "u-1", "price": 30, "company_id": "c-1"}),
            ("p-4", {"price": 40}),
            ("p-5", {"seller_id": "u-1", "price": None}),
        ],
    )
    return store


async def ids(store: InMemoryDocumentStore, query: Query) -> list[str]:
    return [doc.id for doc in await store.query("products", query)]


class TestPointReads:
    def test_implements_protocol(self):
        assert isinstance(InMemoryDocumentStore(), DocumentStore)

    @pytest.mark.asyncio
    async def test_put_and_get(self):
        store = InMemoryDocumentStore(enable_tracing=False)
        await store.put("products", "p-1", {"seller_id": "u-1"})

        doc = await store.get_by_id("products", "p-1")

        assert doc is not None
        assert doc.id == "p-1"
        assert doc.get("seller_id") == "u-1"
        assert doc.get(ID_FIELD) == "p-1"
        assert doc.get("missing", "default") == "default"

    @pytest.mark.asyncio
    async def test_get_missing(self):
        store = InMemoryDocumentStore(enable_tracing=False)
        assert await store.get_by_id("products", "nope") is None
        assert await store.get_by_id("unknown", "nope") is None

    @pytest.mark.asyncio
    async def test_returned_documents_are_copies(self):
        store = InMemoryDocumentStore(enable_tracing=False)
        await store.put("products", "p-1", {"tags": ["a"]})

        doc = await store.get_by_id("products", "p-1")
        assert doc is not None
        doc.data["tags"].append("b")

        again = await store.get_by_id("products", "p-1")
        assert again is not None
        assert again.data == {"tags": ["a"]}

    @pytest.mark.asyncio
    async def test_delete_count_clear(self, products):
        assert await products.count("products") == 5
        assert await products.delete("products", "p-1") is True
        assert await products.delete("products", "p-1") is False
        assert await products.count("products") == 4

        await products.clear()
        assert await products.count("products") == 0


class TestQuery:
    @pytest.mark.asyncio
    async def test_eq_filter(self, products):
        query = Query().with_filter(Filter.eq("seller_id", "u-1")).with_order(ID_FIELD)
        assert await ids(products, query) == ["p-2", "p-3", "p-5"]

    @pytest.mark.asyncio
    async def test_eq_none_matches_missing_field(self, products):
        query = Query().with_filter(Filter.eq("seller_id", None))
        assert await ids(products, query) == ["p-4"]

    @pytest.mark.asyncio
    async def test_ne_none_matches_present_field(self, products):
        query = Query().with_filter(Filter.ne("company_id", None))
        assert await ids(products, query) == ["p-3"]

    @pytest.mark.asyncio
    async def test_in_and_not_in(self, products):
        in_query = Query().with_filter(Filter.in_("seller_id", ["u-2"]))
        not_in_query = (
            Query().with_filter(Filter.not_in("seller_id", ["u-2"])).with_order(ID_FIELD)
        )

        assert await ids(products, in_query) == ["p-1"]
        assert await ids(products, not_in_query) == ["p-2", "p-3", "p-5"]

    @pytest.mark.asyncio
    async def test_range_filters_skip_nulls(self, products):
        query = Query().with_filter(Filter.gte("price", 20)).with_filter(Filter.lt("price", 40))
        assert sorted(await ids(products, query)) == ["p-2", "p-3"]

    @pytest.mark.asyncio
    async def test_order_puts_nulls_first(self, products):
        query = Query().with_order("seller_id", ID_FIELD)
        assert await ids(products, query) == ["p-4", "p-2", "p-3", "p-5", "p-1"]

    @pytest.mark.asyncio
    async def test_start_after_and_limit(self, products):
        query = (
            Query()
            .with_filter(Filter.eq("seller_id", "u-1"))
            .with_order(ID_FIELD)
            .with_limit(1)
            .with_start_after("p-2")
        )
        assert await ids(products, query) == ["p-3"]

    @pytest.mark.asyncio
    async def test_unknown_collection_is_empty(self, products):
        assert await products.query("orders", Query()) == []


class TestAtomicWrite:
    @pytest.mark.asyncio
    async def test_applies_patches(self, products):
        await products.atomic_write(
            [
                WriteOperation("products", "p-1", {"company_id": "c-2"}),
                WriteOperation("products", "p-2", {"company_id": "c-1"}),
            ]
        )

        doc = await products.get_by_id("products", "p-1")
        assert doc is not None
        assert doc.data == {"seller_id": "u-2", "price": 10, "company_id": "c-2"}
        assert products.write_count == 1

    @pytest.mark.asyncio
    async def test_missing_document_rejects_whole_write(self, products):
        with pytest.raises(DocumentNotFoundError) as exc_info:
            await products.atomic_write(
                [
                    WriteOperation("products", "p-1", {"company_id": "c-2"}),
                    WriteOperation("products", "p-missing", {"company_id": "c-2"}),
                ]
            )

        assert exc_info.value.document_id == "p-missing"
        doc = await products.get_by_id("products", "p-1")
        assert doc is not None
        assert "company_id" not in doc.data
        assert products.write_count == 0

    @pytest.mark.asyncio
    async def test_require_blank_conflict_rejects_whole_write(self, products):
        with pytest.raises(WriteConflictError) as exc_info:
            await products.atomic_write(
                [
                    WriteOperation("products", "p-1", {"company_id": "c-2"}, ("company_id",)),
                    WriteOperation("products", "p-3", {"company_id": "c-2"}, ("company_id",)),
                ]
            )

        assert exc_info.value.document_id == "p-3"
        p1 = await products.get_by_id("products", "p-1")
        p3 = await products.get_by_id("products", "p-3")
        assert p1 is not None and "company_id" not in p1.data
        assert p3 is not None and p3.data["company_id"] == "c-1"
        assert products.write_count == 0

    @pytest.mark.asyncio
    async def test_require_blank_accepts_blank_string(self, products):
        await products.put("products", "p-6", {"seller_id": "u-1", "company_id": "  "})

        await products.atomic_write(
            [WriteOperation("products", "p-6", {"company_id": "c-1"}, ("company_id",))]
        )

        doc = await products.get_by_id("products", "p-6")
        assert doc is not None
        assert doc.data["company_id"] == "c-1"

    @pytest.mark.asyncio
    async def test_write_limit(self):
        store = InMemoryDocumentStore(max_write_size=1, enable_tracing=False)
        operations = [WriteOperation("products", f"p-{i}", {}) for i in range(2)]

        with pytest.raises(WriteLimitExceededError):
            await store.atomic_write(operations)

    @pytest.mark.asyncio
    async def test_write_span(self):
        tracer = MockTracer()
        store = InMemoryDocumentStore(tracer=tracer)
        await store.put("products", "p-1", {})

        await store.atomic_write([WriteOperation("products", "p-1", {"company_id": "c-1"})])

        assert tracer.span_names == ["backfill.in_memory_store.atomic_write"]


class TestQueryObjects:
    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            Query(limit=-1)

    def test_cursor_must_match_ordering(self):
        with pytest.raises(ValueError, match="start_after"):
            Query(order_by=("seller_id", ID_FIELD), start_after=("u-1",))

    def test_with_order_drops_cursor(self):
        query = Query().with_order(ID_FIELD).with_start_after("p-1").with_order("seller_id")
        assert query.start_after is None

    def test_str(self):
        query = Query().with_filter(Filter.ne("seller_id", None)).with_order(ID_FIELD)
        query = query.with_limit(5)
        assert str(query) == f"WHERE seller_id != None ORDER BY {ID_FIELD} LIMIT 5"
        assert str(Query()) == "(all documents)"
