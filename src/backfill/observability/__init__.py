"""
Observability utilities for backfill.

Tracing is composition based: components take a ``tracer`` argument and
default to :func:`create_tracer`. OpenTelemetry is an optional dependency
(``pip install backfill-engine[telemetry]``); without it every tracer is a
no-op.

Logging uses the standard library with one module-level logger per module
(``logging.getLogger(__name__)``), so ``logging.getLogger("backfill")``
controls the whole package.
"""

from backfill.observability.attributes import (
    ATTR_BATCH_INDEX,
    ATTR_BATCH_RANGE,
    ATTR_BATCH_SIZE,
    ATTR_CACHE_HIT,
    ATTR_COLLECTION,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_OWNER_ID,
    ATTR_PRODUCT_ID,
    ATTR_RECORDS_SKIPPED,
    ATTR_RECORDS_UPDATED,
    ATTR_RUN_ID,
    ATTR_RUN_PHASE,
    ATTR_SAMPLE_SIZE,
    ATTR_SELECTION_ATTEMPTS,
    ATTR_SELECTION_STRATEGY,
)
from backfill.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)
from backfill.observability.tracing import OTEL_AVAILABLE, should_trace, traced

__all__ = [
    # Availability
    "OTEL_AVAILABLE",
    "should_trace",
    "traced",
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "create_tracer",
    # Attributes
    "ATTR_RUN_ID",
    "ATTR_RUN_PHASE",
    "ATTR_SELECTION_STRATEGY",
    "ATTR_SELECTION_ATTEMPTS",
    "ATTR_COLLECTION",
    "ATTR_OWNER_ID",
    "ATTR_PRODUCT_ID",
    "ATTR_SAMPLE_SIZE",
    "ATTR_BATCH_INDEX",
    "ATTR_BATCH_SIZE",
    "ATTR_BATCH_RANGE",
    "ATTR_RECORDS_UPDATED",
    "ATTR_RECORDS_SKIPPED",
    "ATTR_CACHE_HIT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
