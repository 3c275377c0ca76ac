"""
OpenTelemetry availability and the ``traced`` decorator.

OpenTelemetry is optional. When the ``telemetry`` extra is not installed,
``OTEL_AVAILABLE`` is False and every tracer created through
:func:`backfill.observability.create_tracer` is a no-op.

Example:
    >>> from backfill.observability import traced, create_tracer
    >>>
    >>> class OwnerDirectory:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
    ...
    ...     @traced("backfill.owner_directory.refresh")
    ...     async def refresh(self) -> None:
    ...         ...
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Callable
from typing import Any, ParamSpec, TypeVar

# Optional OpenTelemetry import - single source of truth
try:
    from opentelemetry import trace

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False
    trace = None  # type: ignore[assignment]


def should_trace(enable_tracing: bool) -> bool:
    """Return True when tracing is requested and OpenTelemetry is importable."""
    return enable_tracing and OTEL_AVAILABLE


P = ParamSpec("P")
R = TypeVar("R")


def traced(
    name: str,
    attributes: dict[str, Any] | None = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Wrap a method in a span created by the instance's ``_tracer``.

    The owning object must expose a ``_tracer`` attribute implementing the
    :class:`~backfill.observability.tracer.Tracer` protocol. Objects without
    one are called through untouched.

    Args:
        name: Span name (e.g., "backfill.scanner.scan")
        attributes: Static attributes attached to every span (optional)

    Returns:
        Decorated function with tracing support
    """

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(func)
        async def async_wrapper(self: Any, *args: P.args, **kwargs: P.kwargs) -> R:
            tracer = getattr(self, "_tracer", None)
            if tracer is None:
                return await func(self, *args, **kwargs)  # type: ignore[misc, no-any-return]

            with tracer.span(name, dict(attributes or {})):
                return await func(self, *args, **kwargs)  # type: ignore[misc, no-any-return]

        @functools.wraps(func)
        def sync_wrapper(self: Any, *args: P.args, **kwargs: P.kwargs) -> R:
            tracer = getattr(self, "_tracer", None)
            if tracer is None:
                return func(self, *args, **kwargs)

            with tracer.span(name, dict(attributes or {})):
                return func(self, *args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator


__all__ = [
    "OTEL_AVAILABLE",
    "should_trace",
    "traced",
]
