"""
TraceRelay Trace Context Propagation

W3C Trace Context (traceparent, tracestate) injection into and extraction
from header carriers.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, MutableMapping, Optional

import structlog

from tracerelay.observability.types import TraceContext

logger = structlog.get_logger(__name__)

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"


class W3CTraceContextPropagator:
    """
    W3C Trace Context propagator.

    - traceparent: version-trace_id-parent_id-trace_flags
    - tracestate: key1=value1,key2=value2
    """

    @property
    def fields(self) -> List[str]:
        return [TRACEPARENT_HEADER, TRACESTATE_HEADER]

    def inject(
        self,
        context: Optional[TraceContext],
        carrier: MutableMapping[str, str],
    ) -> MutableMapping[str, str]:
        """Inject trace context into headers, replacing any previous values."""
        for key in [k for k in carrier if k.lower() in (TRACEPARENT_HEADER, TRACESTATE_HEADER)]:
            del carrier[key]

        if context is None or not context.is_valid:
            return carrier

        traceparent, tracestate = context.format()
        carrier[TRACEPARENT_HEADER] = traceparent
        if tracestate:
            carrier[TRACESTATE_HEADER] = tracestate

        return carrier

    def extract(self, carrier: Mapping[str, str]) -> Optional[TraceContext]:
        """Extract trace context from headers; None when absent or malformed."""
        traceparent = self._get_header(carrier, TRACEPARENT_HEADER)
        if traceparent is None:
            return None

        context = TraceContext.parse(
            traceparent,
            self._get_header(carrier, TRACESTATE_HEADER),
        )
        if context is None:
            logger.debug("Ignoring malformed traceparent", traceparent=traceparent[:64])
        return context

    @staticmethod
    def _get_header(carrier: Mapping[str, str], key: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        for k, v in carrier.items():
            if k.lower() == key:
                return v
        return None


def inject_headers(context: Optional[TraceContext], headers: Dict[str, str] = None) -> Dict[str, str]:
    """Return headers carrying the given context."""
    headers = dict(headers or {})
    W3CTraceContextPropagator().inject(context, headers)
    return headers


def extract_headers(headers: Mapping[str, str]) -> Optional[TraceContext]:
    """Extract a context from headers."""
    return W3CTraceContextPropagator().extract(headers)
