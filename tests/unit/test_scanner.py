"""
Unit tests for EligibilityScanner.

Tests for:
- Classification of every product class
- Sample bounds and ordering
- Owner lookup failures counted, not raised
- Store read failures raised
"""

from unittest.mock import AsyncMock

import pytest

from backfill.cache import OwnerCache
from backfill.observability import MockTracer
from backfill.scanner import EligibilityScanner


class TestScan:
    """Tests for scan()."""

    @pytest.mark.asyncio
    async def test_empty_store_has_no_eligible_work(self, store, cache, config):
        scanner = EligibilityScanner(store, cache, config, enable_tracing=False)

        report = await scanner.scan()

        assert report.stats.total_checked == 0
        assert not report.has_eligible_work

    @pytest.mark.asyncio
    async def test_classifies_each_product(self, mixed_store, cache, config):
        scanner = EligibilityScanner(mixed_store, cache, config, enable_tracing=False)

        report = await scanner.scan()
        stats = report.stats

        assert stats.total_checked == 6
        assert stats.already_migrated == 1
        assert stats.missing_value == 5
        assert stats.orphaned == 1
        assert stats.owner_missing_value == 2
        assert stats.lookup_errors == 0
        assert stats.eligible == 2
        assert report.has_eligible_work

    @pytest.mark.asyncio
    async def test_every_product_lands_in_one_class(self, mixed_store, cache, config):
        scanner = EligibilityScanner(mixed_store, cache, config, enable_tracing=False)

        stats = (await scanner.scan()).stats

        assert stats.total_checked == (
            stats.already_migrated
            + stats.orphaned
            + stats.owner_missing_value
            + stats.lookup_errors
            + stats.eligible
        )

    @pytest.mark.asyncio
    async def test_owner_with_blank_value_is_not_eligible(self, scenario_store, cache, config):
        scanner = EligibilityScanner(scenario_store, cache, config, enable_tracing=False)

        stats = (await scanner.scan()).stats

        assert stats.eligible == 2
        assert stats.owner_missing_value == 1

    @pytest.mark.asyncio
    async def test_sample_limit_bounds_the_read(self, mixed_store, cache, config):
        scanner = EligibilityScanner(mixed_store, cache, config, enable_tracing=False)

        report = await scanner.scan(sample_limit=3)

        # ordered by owner then id: P5 (no owner), P1, P2
        assert report.sample_limit == 3
        assert report.stats.total_checked == 3
        assert report.stats.orphaned == 1
        assert report.stats.eligible == 2

    @pytest.mark.asyncio
    async def test_default_sample_limit_comes_from_config(self, mixed_store, cache, make_config):
        scanner = EligibilityScanner(
            mixed_store, cache, make_config(eligibility_sample_size=2), enable_tracing=False
        )

        report = await scanner.scan()

        assert report.sample_limit == 2
        assert report.stats.total_checked == 2

    @pytest.mark.asyncio
    async def test_non_positive_sample_limit_is_rejected(self, store, cache, config):
        scanner = EligibilityScanner(store, cache, config, enable_tracing=False)

        with pytest.raises(ValueError, match="sample_limit must be positive"):
            await scanner.scan(sample_limit=0)

    @pytest.mark.asyncio
    async def test_scan_has_no_side_effects(self, mixed_store, cache, config, seed):
        scanner = EligibilityScanner(mixed_store, cache, config, enable_tracing=False)

        await scanner.scan()

        assert "company_id" not in await seed.get_product("P1")
        assert mixed_store.write_count == 0


class TestLookupFailures:
    @pytest.mark.asyncio
    async def test_owner_lookup_error_is_counted(self, scenario_store, config):
        cache = AsyncMock(spec=OwnerCache)
        cache.get_owner.side_effect = ConnectionError("owner store down")
        scanner = EligibilityScanner(scenario_store, cache, config, enable_tracing=False)

        stats = (await scanner.scan()).stats

        assert stats.lookup_errors == 3
        assert stats.eligible == 0

    @pytest.mark.asyncio
    async def test_store_read_error_propagates(self, cache, config):
        store = AsyncMock()
        store.query.side_effect = ConnectionError("products unavailable")
        scanner = EligibilityScanner(store, cache, config, enable_tracing=False)

        with pytest.raises(ConnectionError):
            await scanner.scan()


class TestTracing:
    @pytest.mark.asyncio
    async def test_scan_span(self, store, cache, config):
        tracer = MockTracer()
        scanner = EligibilityScanner(store, cache, config, tracer=tracer)

        await scanner.scan(sample_limit=5)

        assert tracer.span_names == ["backfill.scanner.scan"]
        assert tracer.attributes_for("backfill.scanner.scan")[0] == {
            "backfill.collection": "products",
            "backfill.sample.size": 5,
        }
