"""
TraceRelay Core

Configuration and error types shared by every subsystem.
"""

from tracerelay.core.config import (
    ConfigValidation,
    LoggingConfig,
    RelayConfig,
    TraceRelayConfig,
    TracingConfig,
    get_config,
    set_config,
    validate_config,
)
from tracerelay.core.errors import (
    ConfigurationError,
    ExportTransportError,
    SinkUnavailableError,
    SpanSealedError,
    SubscriberSendError,
    TraceRelayError,
)

__all__ = [
    "ConfigValidation",
    "LoggingConfig",
    "RelayConfig",
    "TraceRelayConfig",
    "TracingConfig",
    "get_config",
    "set_config",
    "validate_config",
    "ConfigurationError",
    "ExportTransportError",
    "SinkUnavailableError",
    "SpanSealedError",
    "SubscriberSendError",
    "TraceRelayError",
]
