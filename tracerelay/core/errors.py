"""
TraceRelay Errors

Exception hierarchy for the relay, exporter and logging subsystems.
Malformed trace context is never raised: parsing returns ``None`` instead.
"""

from __future__ import annotations

from typing import List, Optional


class TraceRelayError(Exception):
    """Base class for all TraceRelay errors."""


class ConfigurationError(TraceRelayError):
    """Configuration failed validation at startup."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration: " + "; ".join(self.errors))


class SinkUnavailableError(TraceRelayError):
    """A log sink could not deliver records."""

    def __init__(self, sink_name: str, reason: str = ""):
        self.sink_name = sink_name
        self.reason = reason
        super().__init__(f"Sink {sink_name} unavailable: {reason}" if reason else f"Sink {sink_name} unavailable")


class ExportTransportError(TraceRelayError):
    """The span collector rejected a batch or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class SubscriberSendError(TraceRelayError):
    """Delivery to a single broadcast subscriber failed."""

    def __init__(self, connection_id: str, reason: str = ""):
        self.connection_id = connection_id
        self.reason = reason
        super().__init__(f"Send to {connection_id} failed: {reason}")


class SpanSealedError(TraceRelayError):
    """A sealed span was modified."""
