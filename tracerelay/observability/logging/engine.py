"""
TraceRelay Logging Engine

Structured logging with:
- Scoped ambient fields per logical operation
- Trace correlation on every record
- Multiple sinks with independent minimum levels
- Per-sink failure isolation with throttled reporting
"""

from __future__ import annotations

import asyncio
import sys
import time
import traceback
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from tracerelay.observability.logging.sinks import ConsoleSink, LogSink
from tracerelay.observability.types import LogLevel, LogRecord, TraceContext

base_logger = structlog.get_logger(__name__)

# Scope stack for the current logical operation; asyncio tasks inherit a copy.
_scope_stack: ContextVar[Tuple[Mapping[str, Any], ...]] = ContextVar("log_scope_stack", default=())

TRACE_ID_FIELD = "TraceId"
SPAN_ID_FIELD = "SpanId"


def current_scope_fields() -> Dict[str, Any]:
    """Merged fields of all open scopes, innermost winning."""
    merged: Dict[str, Any] = {}
    for fields in _scope_stack.get():
        merged.update(fields)
    return merged


class LoggingScope:
    """
    Scoped acquisition of ambient log fields.

    Usage:
        with logger.begin_scope({"Hub": "Chat"}):
            logger.info("Hub method invoked")
    """

    def __init__(self, fields: Mapping[str, Any]):
        self.fields = dict(fields)
        self._token: Optional[Token] = None

    def __enter__(self) -> "LoggingScope":
        self._token = _scope_stack.set(_scope_stack.get() + (self.fields,))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._token is not None:
            _scope_stack.reset(self._token)
            self._token = None
        return False


class StructuredLogger:
    """
    Process-wide logging facade.

    Usage:
        logger = StructuredLogger([ConsoleSink("text")])
        logger.info("Chat message received. User: {User}", {"User": "ann"}, correlation=ctx)
    """

    def __init__(
        self,
        sinks: List[LogSink] = None,
        fallback: Optional[LogSink] = None,
        failure_report_interval: float = 30.0,
        flush_interval: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sinks: List[LogSink] = list(sinks or [])
        self.fallback = fallback or ConsoleSink(mode="text", stream=sys.stderr, name="fallback")
        self.failure_report_interval = failure_report_interval
        self.flush_interval = flush_interval
        self._clock = clock

        self._last_failure_report: Dict[str, float] = {}
        self._suppressed_failures: Dict[str, int] = {}
        self._loggers: Dict[str, "ObservabilityLogger"] = {}

        self._flush_task: Optional[asyncio.Task] = None
        self._shutdown_event: Optional[asyncio.Event] = None

        self._stats = {
            "records_emitted": 0,
            "sink_failures": 0,
            "failures_reported": 0,
            "failures_suppressed": 0,
            "fallback_failures": 0,
        }

    @property
    def sinks(self) -> List[LogSink]:
        return list(self._sinks)

    def add_sink(self, sink: LogSink) -> None:
        """Add a sink; records reach sinks in the order they were added."""
        self._sinks.append(sink)

    # === Scopes ===

    def begin_scope(self, fields: Mapping[str, Any] = None, **kwargs) -> LoggingScope:
        """Open a scope whose fields appear on every record logged inside it."""
        return LoggingScope({**(fields or {}), **kwargs})

    def scope_fields(self) -> Dict[str, Any]:
        return current_scope_fields()

    # === Logging ===

    def log(
        self,
        level: LogLevel,
        template: str,
        fields: Mapping[str, Any] = None,
        correlation: Optional[TraceContext] = None,
        exception: Optional[BaseException] = None,
        logger_name: str = "",
    ) -> LogRecord:
        """Build one record and dispatch it to every sink that accepts its level."""
        level = LogLevel.coerce(level)
        merged = current_scope_fields()
        merged.update(fields or {})

        if correlation is not None:
            trace_id: Optional[str] = correlation.trace_id
            span_id: Optional[str] = correlation.span_id
        else:
            trace_id = merged.get(TRACE_ID_FIELD)
            span_id = merged.get(SPAN_ID_FIELD)
        merged.pop(TRACE_ID_FIELD, None)
        merged.pop(SPAN_ID_FIELD, None)

        exception_type = exception_message = exception_traceback = None
        if exception is not None:
            exception_type = type(exception).__name__
            exception_message = str(exception)
            exception_traceback = "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            )

        record = LogRecord(
            timestamp=datetime.now(timezone.utc),
            level=level,
            template=template,
            fields=merged,
            trace_id=trace_id,
            span_id=span_id,
            logger_name=logger_name,
            exception_type=exception_type,
            exception_message=exception_message,
            exception_traceback=exception_traceback,
        )
        self._dispatch(record)
        return record

    def debug(self, template: str, fields: Mapping[str, Any] = None, **kwargs) -> LogRecord:
        return self.log(LogLevel.DEBUG, template, fields, **kwargs)

    def info(self, template: str, fields: Mapping[str, Any] = None, **kwargs) -> LogRecord:
        return self.log(LogLevel.INFO, template, fields, **kwargs)

    def warning(self, template: str, fields: Mapping[str, Any] = None, **kwargs) -> LogRecord:
        return self.log(LogLevel.WARNING, template, fields, **kwargs)

    def error(self, template: str, fields: Mapping[str, Any] = None, **kwargs) -> LogRecord:
        return self.log(LogLevel.ERROR, template, fields, **kwargs)

    def critical(self, template: str, fields: Mapping[str, Any] = None, **kwargs) -> LogRecord:
        return self.log(LogLevel.CRITICAL, template, fields, **kwargs)

    def get_logger(self, name: str = "") -> "ObservabilityLogger":
        """Get or create a named logger."""
        if name not in self._loggers:
            self._loggers[name] = ObservabilityLogger(self, name)
        return self._loggers[name]

    def _dispatch(self, record: LogRecord) -> None:
        for sink in self._sinks:
            if not sink.accepts(record):
                continue
            try:
                sink.emit(record)
            except Exception as e:
                self._report_sink_failure(sink, e)
        self._stats["records_emitted"] += 1

    # === Sink failures ===

    def _report_sink_failure(self, sink: LogSink, error: Exception) -> None:
        """Report a sink failure to the fallback sink, at most once per interval per sink."""
        self._stats["sink_failures"] += 1
        now = self._clock()
        last = self._last_failure_report.get(sink.name)

        if last is not None and now - last < self.failure_report_interval:
            self._suppressed_failures[sink.name] = self._suppressed_failures.get(sink.name, 0) + 1
            self._stats["failures_suppressed"] += 1
            return

        suppressed = self._suppressed_failures.pop(sink.name, 0)
        self._last_failure_report[sink.name] = now
        self._stats["failures_reported"] += 1

        record = LogRecord(
            timestamp=datetime.now(timezone.utc),
            level=LogLevel.WARNING,
            template="Log sink {Sink} failed: {Error} ({Suppressed} similar failures suppressed)",
            fields={"Sink": sink.name, "Error": str(error) or type(error).__name__, "Suppressed": suppressed},
            logger_name=__name__,
        )
        try:
            self.fallback.emit(record)
        except Exception:
            self._stats["fallback_failures"] += 1

    # === Flushing ===

    async def flush_sinks(self) -> None:
        """Flush every sink; a failing sink never stops the others."""
        for sink in self._sinks:
            try:
                await sink.flush()
            except Exception as e:
                self._report_sink_failure(sink, e)

    async def start(self) -> None:
        """Start periodic flushing of buffering sinks."""
        if self._flush_task is not None:
            return
        self._shutdown_event = asyncio.Event()
        self._flush_task = asyncio.create_task(self._flush_loop())

    async def shutdown(self) -> None:
        """Stop periodic flushing and close all sinks."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None

        for sink in self._sinks:
            try:
                await sink.close()
            except Exception as e:
                self._report_sink_failure(sink, e)

    async def _flush_loop(self) -> None:
        while not self._shutdown_event.is_set():
            try:
                await asyncio.sleep(self.flush_interval)
                await self.flush_sinks()
            except asyncio.CancelledError:
                break
            except Exception as e:
                base_logger.error("Log flush error", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        """Get logging statistics."""
        return {
            **self._stats,
            "sinks": [s.name for s in self._sinks],
            "loggers_count": len(self._loggers),
        }


class ObservabilityLogger:
    """
    Named logger with bound fields.

    Usage:
        logger = structured_logger.get_logger("relay").bind(Hub="ChatHub")
        logger.info("Message relayed. Count: {Count}", Count=3)
    """

    def __init__(self, engine: StructuredLogger, name: str = ""):
        self._engine = engine
        self._name = name
        self._bound_fields: Dict[str, Any] = {}

    def bind(self, **fields) -> "ObservabilityLogger":
        """Create a new logger with bound fields."""
        new_logger = ObservabilityLogger(self._engine, self._name)
        new_logger._bound_fields = {**self._bound_fields, **fields}
        return new_logger

    def begin_scope(self, fields: Mapping[str, Any] = None, **kwargs) -> LoggingScope:
        return self._engine.begin_scope(fields, **kwargs)

    def _log(
        self,
        level: LogLevel,
        template: str,
        correlation: Optional[TraceContext] = None,
        exception: Optional[BaseException] = None,
        **fields,
    ) -> LogRecord:
        return self._engine.log(
            level,
            template,
            {**self._bound_fields, **fields},
            correlation=correlation,
            exception=exception,
            logger_name=self._name,
        )

    def debug(self, template: str, **kwargs) -> LogRecord:
        return self._log(LogLevel.DEBUG, template, **kwargs)

    def info(self, template: str, **kwargs) -> LogRecord:
        return self._log(LogLevel.INFO, template, **kwargs)

    def warning(self, template: str, **kwargs) -> LogRecord:
        return self._log(LogLevel.WARNING, template, **kwargs)

    def error(self, template: str, **kwargs) -> LogRecord:
        return self._log(LogLevel.ERROR, template, **kwargs)

    def critical(self, template: str, **kwargs) -> LogRecord:
        return self._log(LogLevel.CRITICAL, template, **kwargs)

    def exception(self, template: str, **kwargs) -> LogRecord:
        """Log the exception currently being handled."""
        exc = sys.exc_info()[1]
        return self._log(LogLevel.ERROR, template, exception=exc, **kwargs)
