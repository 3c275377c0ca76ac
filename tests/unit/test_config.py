"""
Unit tests for BackfillConfig.

Tests for:
- Default values
- Validation of sizes, limits and field names
- with_overrides() copies
"""

import pytest

from backfill.config import BackfillConfig, SelectionStrategy


class TestBackfillConfigDefaults:
    """Tests for default configuration values."""

    def test_default_field_names(self):
        config = BackfillConfig()

        assert config.product_collection == "products"
        assert config.owner_collection == "iboard_users"
        assert config.owner_field == "seller_id"
        assert config.value_field == "company_id"
        assert config.updated_at_field == "updated_at"

    def test_default_batching(self):
        config = BackfillConfig()

        assert config.batch_size == 10
        assert config.max_atomic_write_size == 500
        assert config.lookahead_pagination is True
        assert config.verify_before_write is True

    def test_default_strategy_is_priority_first(self):
        assert BackfillConfig().strategy == SelectionStrategy.PRIORITY_FIRST

    def test_config_is_frozen(self):
        config = BackfillConfig()

        with pytest.raises(AttributeError):
            config.batch_size = 20  # type: ignore[misc]


class TestBackfillConfigValidation:
    """Tests for __post_init__ validation."""

    @pytest.mark.parametrize("batch_size", [0, -1])
    def test_batch_size_must_be_positive(self, batch_size: int):
        with pytest.raises(ValueError, match="batch_size must be positive"):
            BackfillConfig(batch_size=batch_size)

    def test_batch_size_cannot_exceed_atomic_write_limit(self):
        with pytest.raises(ValueError, match="cannot exceed max_atomic_write_size"):
            BackfillConfig(batch_size=501, max_atomic_write_size=500)

    def test_batch_size_equal_to_write_limit_is_allowed(self):
        config = BackfillConfig(batch_size=20, max_atomic_write_size=20)
        assert config.batch_size == 20

    @pytest.mark.parametrize(
        "field_name",
        ["product_collection", "owner_collection", "owner_field", "value_field"],
    )
    def test_names_must_not_be_empty(self, field_name: str):
        with pytest.raises(ValueError, match=f"{field_name} must not be empty"):
            BackfillConfig(**{field_name: ""})

    @pytest.mark.parametrize(
        "field_name",
        [
            "max_selection_attempts",
            "eligibility_sample_size",
            "selection_sample_size",
            "fallback_sample_size",
            "partition_sample_size",
            "cache_max_size",
            "max_owners_per_run",
        ],
    )
    def test_limits_must_be_positive(self, field_name: str):
        with pytest.raises(ValueError, match=field_name):
            BackfillConfig(**{field_name: 0})

    def test_cache_ttl_must_be_positive(self):
        with pytest.raises(ValueError, match="cache_ttl_seconds"):
            BackfillConfig(cache_ttl_seconds=0)


class TestWithOverrides:
    """Tests for with_overrides()."""

    def test_returns_modified_copy(self):
        original = BackfillConfig()
        updated = original.with_overrides(batch_size=20, strategy=SelectionStrategy.RANDOM)

        assert updated.batch_size == 20
        assert updated.strategy == SelectionStrategy.RANDOM
        assert original.batch_size == 10

    def test_overrides_are_validated(self):
        with pytest.raises(ValueError):
            BackfillConfig().with_overrides(batch_size=0)
