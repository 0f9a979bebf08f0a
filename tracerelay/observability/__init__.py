"""
TraceRelay Observability

W3C trace-context propagation, sampling, span export and correlated
structured logging.

Usage:
    from tracerelay.observability import (
        TraceContext,
        TracingEngine,
        TraceExporter,
        OTLPHTTPTransport,
        StructuredLogger,
        ConsoleSink,
    )

    exporter = TraceExporter(OTLPHTTPTransport("http://localhost:4318"))
    tracing = TracingEngine(exporter)
    log = StructuredLogger([ConsoleSink("text")])

    with tracing.span("work", parent=ctx) as span:
        log.info("Working on {Item}", {"Item": 1}, correlation=span.context)
"""

from __future__ import annotations

from tracerelay.observability.exporter import (
    CallableTransport,
    OTLPHTTPTransport,
    SpanBuffer,
    SpanTransport,
    TraceExporter,
)
from tracerelay.observability.logging import (
    ConsoleSink,
    LogSink,
    MemorySink,
    ObservabilityLogger,
    SeqSink,
    StructuredLogger,
    setup_logging,
)
from tracerelay.observability.otlp import OTLPSerializer
from tracerelay.observability.tracing import (
    ParentBasedSampler,
    TraceIdRatioSampler,
    TracingEngine,
    W3CTraceContextPropagator,
    decide,
)
from tracerelay.observability.types import (
    LogLevel,
    LogRecord,
    Span,
    SpanKind,
    SpanStatus,
    TraceContext,
)

__all__ = [
    "CallableTransport",
    "OTLPHTTPTransport",
    "SpanBuffer",
    "SpanTransport",
    "TraceExporter",
    "ConsoleSink",
    "LogSink",
    "MemorySink",
    "ObservabilityLogger",
    "SeqSink",
    "StructuredLogger",
    "setup_logging",
    "OTLPSerializer",
    "ParentBasedSampler",
    "TraceIdRatioSampler",
    "TracingEngine",
    "W3CTraceContextPropagator",
    "decide",
    "LogLevel",
    "LogRecord",
    "Span",
    "SpanKind",
    "SpanStatus",
    "TraceContext",
]
