"""
TraceRelay Instrumentation

Inbound request middleware and outbound HTTP call tracing.
"""

from tracerelay.observability.instrumentation.http_client import (
    OutboundCallDecorator,
    TracedHTTPClient,
)
from tracerelay.observability.instrumentation.middleware import (
    ObservabilityMiddleware,
    get_request_context,
)

__all__ = [
    "OutboundCallDecorator",
    "TracedHTTPClient",
    "ObservabilityMiddleware",
    "get_request_context",
]
