"""
Unit tests for the tracer implementations and the traced decorator.

Tests for:
- NullTracer
- MockTracer
- create_tracer()
- traced on sync and async methods
"""

from unittest.mock import patch

import pytest

from backfill.observability import (
    MockTracer,
    NullTracer,
    Tracer,
    create_tracer,
    should_trace,
    traced,
)


class TestNullTracer:
    def test_span_yields_none(self):
        tracer = NullTracer()
        with tracer.span("anything", {"key": "value"}) as span:
            assert span is None

    def test_disabled(self):
        assert NullTracer().enabled is False

    def test_implements_protocol(self):
        assert isinstance(NullTracer(), Tracer)


class TestMockTracer:
    def test_records_spans(self):
        tracer = MockTracer()

        with tracer.span("first", {"a": 1}):
            pass
        with tracer.span("second"):
            pass

        assert tracer.spans == [("first", {"a": 1}), ("second", None)]
        assert tracer.span_names == ["first", "second"]
        assert tracer.attributes_for("first") == [{"a": 1}]
        assert tracer.enabled

    def test_clear(self):
        tracer = MockTracer()
        with tracer.span("first"):
            pass

        tracer.clear()

        assert tracer.spans == []

    def test_implements_protocol(self):
        assert isinstance(MockTracer(), Tracer)


class TestCreateTracer:
    def test_disabled_returns_null_tracer(self):
        assert isinstance(create_tracer(__name__, enable_tracing=False), NullTracer)

    def test_without_opentelemetry_returns_null_tracer(self):
        with patch("backfill.observability.tracer.OTEL_AVAILABLE", False):
            assert isinstance(create_tracer(__name__), NullTracer)

    def test_should_trace(self):
        assert should_trace(False) is False


class Component:
    def __init__(self, tracer=None):
        if tracer is not None:
            self._tracer = tracer

    @traced("component.load", {"component.kind": "test"})
    async def load(self, key: str) -> str:
        return f"loaded {key}"

    @traced("component.count")
    def count(self) -> int:
        return 3


class TestTraced:
    @pytest.mark.asyncio
    async def test_async_method_opens_span(self):
        tracer = MockTracer()

        result = await Component(tracer).load("u-1")

        assert result == "loaded u-1"
        assert tracer.spans == [("component.load", {"component.kind": "test"})]

    def test_sync_method_opens_span(self):
        tracer = MockTracer()

        assert Component(tracer).count() == 3
        assert tracer.span_names == ["component.count"]

    @pytest.mark.asyncio
    async def test_without_tracer_calls_through(self):
        component = Component()

        assert await component.load("u-2") == "loaded u-2"
        assert component.count() == 3

    def test_preserves_function_name(self):
        assert Component.load.__name__ == "load"
