"""
TraceRelay Log Correlation

Structlog configuration for the process's own diagnostics, correlated with
the logger scopes opened by request handling.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Callable, Dict, Mapping, Optional

import structlog

from tracerelay.observability.logging.engine import (
    SPAN_ID_FIELD,
    TRACE_ID_FIELD,
    current_scope_fields,
)


# Structlog processors for correlation
def add_scope_fields_processor(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any],
) -> Dict[str, Any]:
    """Structlog processor adding open scope fields; explicit event keys win."""
    scope = current_scope_fields()

    trace_id = scope.pop(TRACE_ID_FIELD, None)
    if trace_id and "trace_id" not in event_dict:
        event_dict["trace_id"] = trace_id

    span_id = scope.pop(SPAN_ID_FIELD, None)
    if span_id and "span_id" not in event_dict:
        event_dict["span_id"] = span_id

    for key, value in scope.items():
        event_dict.setdefault(key, value)

    return event_dict


def add_service_context_processor(service_name: str) -> Callable:
    """Create a processor that adds the service name."""
    def processor(
        logger: Any,
        method_name: str,
        event_dict: Dict[str, Any],
    ) -> Dict[str, Any]:
        event_dict["service"] = service_name
        return event_dict

    return processor


def apply_logger_overrides(overrides: Mapping[str, Any]) -> None:
    """Set minimum levels for framework loggers, e.g. ``{"uvicorn.access": "WARNING"}``."""
    for name, level in overrides.items():
        level_name = str(getattr(level, "value", level)).upper()
        logging.getLogger(name).setLevel(level_name)


def setup_logging(
    log_level: str = "INFO",
    json_output: bool = True,
    service_name: str = "",
    overrides: Optional[Mapping[str, Any]] = None,
) -> None:
    """
    Configure structured logging.

    Call this at application startup.
    """
    level_name = str(getattr(log_level, "value", log_level)).upper()

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level_name)
    logging.getLogger().setLevel(level_name)
    apply_logger_overrides(overrides or {})

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_scope_fields_processor,
    ]
    if service_name:
        processors.append(add_service_context_processor(service_name))
    processors.extend([
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ])

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
