"""
TraceRelay Logging Module

Structured logging with scopes, trace correlation and multiple sinks.
"""

from tracerelay.observability.logging.correlation import (
    add_scope_fields_processor,
    apply_logger_overrides,
    setup_logging,
)
from tracerelay.observability.logging.engine import (
    LoggingScope,
    ObservabilityLogger,
    StructuredLogger,
    current_scope_fields,
)
from tracerelay.observability.logging.sinks import (
    ConsoleSink,
    LogSink,
    MemorySink,
    SeqSink,
    to_clef,
)

__all__ = [
    "add_scope_fields_processor",
    "apply_logger_overrides",
    "setup_logging",
    "LoggingScope",
    "ObservabilityLogger",
    "StructuredLogger",
    "current_scope_fields",
    "ConsoleSink",
    "LogSink",
    "MemorySink",
    "SeqSink",
    "to_clef",
]
