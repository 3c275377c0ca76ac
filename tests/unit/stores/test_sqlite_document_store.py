"""
SQLite Document Store Tests.

Tests for the SQLiteDocumentStore implementation covering:
- Schema initialization
- JSON round-tripping of document fields
- Filters, ordering and cursors translated to SQL
- Transactional atomic writes, including blank-field conditions
- Running the paginator and writer against SQLite
"""

from datetime import UTC, datetime

import pytest
import pytest_asyncio

from backfill.config import BackfillConfig
from backfill.exceptions import (
    DocumentNotFoundError,
    WriteConflictError,
    WriteLimitExceededError,
)
from backfill.models import ProductRecord
from backfill.paginator import BatchPaginator
from backfill.stores import ID_FIELD, DocumentStore, Filter, Query, WriteOperation
from backfill.stores.sqlite import SQLiteDocumentStore
from backfill.writer import BatchWriter

try:
    import aiosqlite

    AIOSQLITE_AVAILABLE = True
except ImportError:
    AIOSQLITE_AVAILABLE = False

pytestmark = [
    pytest.mark.sqlite,
    pytest.mark.skipif(not AIOSQLITE_AVAILABLE, reason="aiosqlite not installed"),
]


@pytest_asyncio.fixture
async def sqlite_store():
    async with aiosqlite.connect(":memory:") as db:
        store = SQLiteDocumentStore(db, enable_tracing=False)
        await store.initialize()
        await store.put_many(
            "products",
            [
                ("p-1", {"seller_id": "u-2", "price": 10}),
                ("p-2", {"seller_id": "u-1", "price": 20}),
                ("p-3", {"seller_id": "u-1", "price": 30, "company_id": "c-1"}),
                ("p-4", {"price": 40}),
            ],
        )
        yield store


async def ids(store: SQLiteDocumentStore, query: Query) -> list[str]:
    return [doc.id for doc in await store.query("products", query)]


class TestSchemaAndReads:
    @pytest.mark.asyncio
    async def test_implements_protocol(self, sqlite_store):
        assert isinstance(sqlite_store, DocumentStore)

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, sqlite_store):
        await sqlite_store.initialize()
        assert await sqlite_store.count("products") == 4

    @pytest.mark.asyncio
    async def test_get_by_id(self, sqlite_store):
        doc = await sqlite_store.get_by_id("products", "p-3")

        assert doc is not None
        assert doc.data == {"seller_id": "u-1", "price": 30, "company_id": "c-1"}
        assert await sqlite_store.get_by_id("products", "p-9") is None

    @pytest.mark.asyncio
    async def test_put_replaces_document(self, sqlite_store):
        await sqlite_store.put("products", "p-1", {"seller_id": "u-3"})

        doc = await sqlite_store.get_by_id("products", "p-1")
        assert doc is not None
        assert doc.data == {"seller_id": "u-3"}
        assert await sqlite_store.count("products") == 4

    @pytest.mark.asyncio
    async def test_datetimes_stored_as_iso_strings(self, sqlite_store):
        stamp = datetime(2024, 5, 17, 12, 30, tzinfo=UTC)
        await sqlite_store.put("products", "p-9", {"updated_at": stamp})

        doc = await sqlite_store.get_by_id("products", "p-9")
        assert doc is not None
        assert doc.data["updated_at"] == stamp.isoformat()

    @pytest.mark.asyncio
    async def test_collections_are_separate(self, sqlite_store):
        await sqlite_store.put("iboard_users", "p-1", {"company_id": "c-1"})

        assert await sqlite_store.count("iboard_users") == 1
        doc = await sqlite_store.get_by_id("products", "p-1")
        assert doc is not None
        assert doc.data["seller_id"] == "u-2"


class TestQuery:
    @pytest.mark.asyncio
    async def test_eq_filter_with_order(self, sqlite_store):
        query = Query().with_filter(Filter.eq("seller_id", "u-1")).with_order(ID_FIELD)
        assert await ids(sqlite_store, query) == ["p-2", "p-3"]

    @pytest.mark.asyncio
    async def test_null_filters(self, sqlite_store):
        missing = Query().with_filter(Filter.eq("seller_id", None))
        present = Query().with_filter(Filter.ne("company_id", None))

        assert await ids(sqlite_store, missing) == ["p-4"]
        assert await ids(sqlite_store, present) == ["p-3"]

    @pytest.mark.asyncio
    async def test_in_filters(self, sqlite_store):
        in_query = Query().with_filter(Filter.in_("seller_id", ["u-2"]))
        empty_in = Query().with_filter(Filter.in_("seller_id", []))
        not_in = Query().with_filter(Filter.not_in("seller_id", ["u-2"])).with_order(ID_FIELD)

        assert await ids(sqlite_store, in_query) == ["p-1"]
        assert await ids(sqlite_store, empty_in) == []
        assert await ids(sqlite_store, not_in) == ["p-2", "p-3"]

    @pytest.mark.asyncio
    async def test_range_filter(self, sqlite_store):
        query = Query().with_filter(Filter.gt("price", 15)).with_filter(Filter.lte("price", 30))
        assert sorted(await ids(sqlite_store, query)) == ["p-2", "p-3"]

    @pytest.mark.asyncio
    async def test_order_puts_nulls_first(self, sqlite_store):
        query = Query().with_order("seller_id", ID_FIELD)
        assert await ids(sqlite_store, query) == ["p-4", "p-2", "p-3", "p-1"]

    @pytest.mark.asyncio
    async def test_cursor_over_two_fields(self, sqlite_store):
        query = (
            Query()
            .with_filter(Filter.ne("seller_id", None))
            .with_order("seller_id", ID_FIELD)
            .with_limit(2)
            .with_start_after("u-1", "p-2")
        )
        assert await ids(sqlite_store, query) == ["p-3", "p-1"]


class TestAtomicWrite:
    @pytest.mark.asyncio
    async def test_applies_patches(self, sqlite_store):
        await sqlite_store.atomic_write(
            [
                WriteOperation("products", "p-1", {"company_id": "c-2"}),
                WriteOperation("products", "p-2", {"company_id": "c-1"}),
            ]
        )

        doc = await sqlite_store.get_by_id("products", "p-1")
        assert doc is not None
        assert doc.data == {"seller_id": "u-2", "price": 10, "company_id": "c-2"}

    @pytest.mark.asyncio
    async def test_missing_document_rolls_back(self, sqlite_store):
        with pytest.raises(DocumentNotFoundError):
            await sqlite_store.atomic_write(
                [
                    WriteOperation("products", "p-1", {"company_id": "c-2"}),
                    WriteOperation("products", "p-missing", {"company_id": "c-2"}),
                ]
            )

        doc = await sqlite_store.get_by_id("products", "p-1")
        assert doc is not None
        assert "company_id" not in doc.data

    @pytest.mark.asyncio
    async def test_require_blank_conflict_rolls_back(self, sqlite_store):
        with pytest.raises(WriteConflictError):
            await sqlite_store.atomic_write(
                [
                    WriteOperation("products", "p-2", {"company_id": "c-9"}, ("company_id",)),
                    WriteOperation("products", "p-3", {"company_id": "c-9"}, ("company_id",)),
                ]
            )

        p2 = await sqlite_store.get_by_id("products", "p-2")
        p3 = await sqlite_store.get_by_id("products", "p-3")
        assert p2 is not None and "company_id" not in p2.data
        assert p3 is not None and p3.data["company_id"] == "c-1"

    @pytest.mark.asyncio
    async def test_write_limit(self):
        async with aiosqlite.connect(":memory:") as db:
            store = SQLiteDocumentStore(db, max_write_size=1, enable_tracing=False)
            await store.initialize()
            operations = [WriteOperation("products", f"p-{i}", {}) for i in range(2)]

            with pytest.raises(WriteLimitExceededError):
                await store.atomic_write(operations)


class TestEngineOnSQLite:
    @pytest.mark.asyncio
    async def test_pages_and_writes_an_owner(self, sqlite_store):
        config = BackfillConfig(batch_size=2)
        await sqlite_store.put("iboard_users", "u-1", {"company_id": "c-9"})
        await sqlite_store.put("products", "p-5", {"seller_id": "u-1"})
        paginator = BatchPaginator(sqlite_store, config, enable_tracing=False)
        writer = BatchWriter(sqlite_store, config=config, enable_tracing=False)

        first = await paginator.next_page("u-1", 1)
        second = await paginator.next_page("u-1", 2, first.next_cursor)

        assert [r.id for r in first.records] == ["p-2", "p-3"]
        assert [r.id for r in second.records] == ["p-5"]
        assert not second.has_more

        records: list[ProductRecord] = [*first.records, *second.records]
        first_result = await writer.apply_batch(
            records[:2], "u-1", "c-9", batch_index=1, run_id="r-1"
        )
        second_result = await writer.apply_batch(
            records[2:], "u-1", "c-9", batch_index=2, run_id="r-1"
        )

        assert first_result.updated_count == 1
        assert first_result.skipped_count == 1
        assert second_result.updated_count == 1
        p3 = await sqlite_store.get_by_id("products", "p-3")
        p5 = await sqlite_store.get_by_id("products", "p-5")
        assert p3 is not None and p3.data["company_id"] == "c-1"
        assert p5 is not None and p5.data["company_id"] == "c-9"
