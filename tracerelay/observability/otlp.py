"""
TraceRelay OTLP Encoding

Serializes sealed spans to the OTLP/HTTP JSON encoding
(``ExportTraceServiceRequest``). Trace and span IDs are hex strings as the
JSON mapping requires.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

from tracerelay.observability.types import Span, SpanEvent

SCOPE_NAME = "tracerelay"
SCOPE_VERSION = "0.1.0"


def _unix_nano(value) -> str:
    return str(int(value.timestamp() * 1_000_000_000))


class OTLPSerializer:
    """Serialize spans to OTLP JSON."""

    def serialize_any_value(self, value: Any) -> Dict[str, Any]:
        """Serialize any attribute value."""
        if isinstance(value, str):
            return {"stringValue": value}
        elif isinstance(value, bool):
            return {"boolValue": value}
        elif isinstance(value, int):
            return {"intValue": str(value)}
        elif isinstance(value, float):
            return {"doubleValue": value}
        elif isinstance(value, (list, tuple)):
            return {"arrayValue": {"values": [
                self.serialize_any_value(v) for v in value
            ]}}
        return {"stringValue": str(value)}

    def serialize_attributes(self, attributes: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {"key": key, "value": self.serialize_any_value(value)}
            for key, value in attributes.items()
        ]

    def serialize_event(self, event: SpanEvent) -> Dict[str, Any]:
        return {
            "timeUnixNano": _unix_nano(event.timestamp),
            "name": event.name,
            "attributes": self.serialize_attributes(event.attributes),
        }

    def serialize_span(self, span: Span) -> Dict[str, Any]:
        """Serialize one sealed span."""
        result = {
            "traceId": span.trace_id,
            "spanId": span.span_id,
            "parentSpanId": span.parent_span_id or "",
            "name": span.name,
            "kind": span.kind.otlp_value,
            "startTimeUnixNano": _unix_nano(span.start_time),
            "endTimeUnixNano": _unix_nano(span.end_time) if span.end_time else "0",
            "attributes": self.serialize_attributes(span.attributes),
            "events": [self.serialize_event(e) for e in span.events],
            "status": {
                "code": span.status.otlp_code,
                "message": span.status_message,
            },
            "flags": span.context.flags,
        }
        trace_state = span.context.trace_state_header()
        if trace_state:
            result["traceState"] = trace_state
        return result

    def serialize_spans(
        self,
        spans: Sequence[Span],
        service_name: str,
        resource_attributes: Dict[str, Any] = None,
    ) -> Dict[str, Any]:
        """Serialize a batch to a single-resource export request."""
        attributes = {"service.name": service_name, **(resource_attributes or {})}
        return {
            "resourceSpans": [
                {
                    "resource": {"attributes": self.serialize_attributes(attributes)},
                    "scopeSpans": [
                        {
                            "scope": {"name": SCOPE_NAME, "version": SCOPE_VERSION},
                            "spans": [self.serialize_span(s) for s in spans],
                        }
                    ],
                }
            ]
        }
