"""
TraceRelay Tracing Module

Distributed tracing across the browser, edge and backend hops.
W3C Trace Context propagation with parent-based sampling.
"""

from tracerelay.observability.tracing.engine import (
    SpanContextManager,
    TracingEngine,
)
from tracerelay.observability.tracing.propagation import (
    TRACEPARENT_HEADER,
    TRACESTATE_HEADER,
    W3CTraceContextPropagator,
    extract_headers,
    inject_headers,
)
from tracerelay.observability.tracing.sampling import (
    ParentBasedSampler,
    Sampler,
    TraceIdRatioSampler,
    decide,
)

__all__ = [
    "SpanContextManager",
    "TracingEngine",
    "TRACEPARENT_HEADER",
    "TRACESTATE_HEADER",
    "W3CTraceContextPropagator",
    "extract_headers",
    "inject_headers",
    "ParentBasedSampler",
    "Sampler",
    "TraceIdRatioSampler",
    "decide",
]
