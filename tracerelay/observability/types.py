"""
TraceRelay Observability Types

Dataclasses for trace context, spans and log records.
Wire encodings follow W3C Trace Context and OpenTelemetry conventions.
"""

from __future__ import annotations

import re
import secrets
import traceback
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from tracerelay.core.errors import SpanSealedError


# === Trace Context ===

SUPPORTED_VERSION = 0
INVALID_VERSION = 0xFF
FLAG_SAMPLED = 0x01
MAX_TRACE_STATE_ENTRIES = 32

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16

_TRACEPARENT_REGEX = re.compile(
    r"^([0-9a-f]{2})-([0-9a-f]{32})-([0-9a-f]{16})-([0-9a-f]{2})$"
)
_TRACE_STATE_KEY_REGEX = re.compile(
    r"^(?:[a-z][_0-9a-z\-*/]{0,255}|[a-z0-9][_0-9a-z\-*/]{0,240}@[a-z][_0-9a-z\-*/]{0,13})$"
)
_TRACE_STATE_VALUE_REGEX = re.compile(r"^[\x20-\x2b\x2d-\x3c\x3e-\x7e]{0,255}[\x21-\x2b\x2d-\x3c\x3e-\x7e]$")


def generate_trace_id() -> str:
    """Generate a random W3C trace ID (32 lowercase hex chars, never all-zero)."""
    while True:
        trace_id = secrets.token_hex(16)
        if trace_id != INVALID_TRACE_ID:
            return trace_id


def generate_span_id() -> str:
    """Generate a random W3C span ID (16 lowercase hex chars, never all-zero)."""
    while True:
        span_id = secrets.token_hex(8)
        if span_id != INVALID_SPAN_ID:
            return span_id


def parse_trace_state(value: Optional[str]) -> Tuple[Tuple[str, str], ...]:
    """
    Parse a tracestate header into ordered (key, value) entries.

    Blank list members are skipped, malformed members are dropped and
    duplicate keys keep their first (left-most) occurrence.
    """
    if not value or not isinstance(value, str):
        return ()

    entries: List[Tuple[str, str]] = []
    seen = set()
    for member in value.split(","):
        member = member.strip()
        if not member:
            continue
        key, sep, val = member.partition("=")
        if not sep:
            continue
        key = key.strip()
        val = val.strip()
        if not _TRACE_STATE_KEY_REGEX.match(key) or not _TRACE_STATE_VALUE_REGEX.match(val):
            continue
        if key in seen:
            continue
        seen.add(key)
        entries.append((key, val))
        if len(entries) >= MAX_TRACE_STATE_ENTRIES:
            break

    return tuple(entries)


@dataclass(frozen=True)
class TraceContext:
    """
    Identifiers and flags correlating one operation across processes.

    Immutable: deriving a child or changing flags returns a new instance.
    """
    trace_id: str
    span_id: str
    flags: int = FLAG_SAMPLED
    trace_state: Tuple[Tuple[str, str], ...] = ()
    version: int = SUPPORTED_VERSION

    @property
    def is_valid(self) -> bool:
        """Check that neither identifier is all-zero."""
        return (
            self.version == SUPPORTED_VERSION
            and len(self.trace_id) == 32
            and len(self.span_id) == 16
            and self.trace_id != INVALID_TRACE_ID
            and self.span_id != INVALID_SPAN_ID
        )

    @property
    def sampled(self) -> bool:
        return bool(self.flags & FLAG_SAMPLED)

    @classmethod
    def parse(cls, header: Optional[str], state: Optional[str] = None) -> Optional["TraceContext"]:
        """
        Parse a traceparent/tracestate header pair.

        Returns None for any malformed input instead of raising.
        """
        if not isinstance(header, str):
            return None

        match = _TRACEPARENT_REGEX.match(header.strip())
        if not match:
            return None

        version_hex, trace_id, span_id, flags_hex = match.groups()
        version = int(version_hex, 16)
        if version == INVALID_VERSION or version != SUPPORTED_VERSION:
            return None

        if trace_id == INVALID_TRACE_ID or span_id == INVALID_SPAN_ID:
            return None

        return cls(
            trace_id=trace_id,
            span_id=span_id,
            flags=int(flags_hex, 16),
            trace_state=parse_trace_state(state),
            version=version,
        )

    @classmethod
    def new_root(cls, sampled: bool = True, trace_id: Optional[str] = None) -> "TraceContext":
        """Mint a context for a trace with no upstream parent."""
        return cls(
            trace_id=trace_id or generate_trace_id(),
            span_id=generate_span_id(),
            flags=FLAG_SAMPLED if sampled else 0,
        )

    def format(self) -> Tuple[str, Optional[str]]:
        """Encode as (traceparent, tracestate); tracestate is None when empty."""
        traceparent = f"{self.version:02x}-{self.trace_id}-{self.span_id}-{self.flags:02x}"
        return traceparent, self.trace_state_header()

    def trace_state_header(self) -> Optional[str]:
        if not self.trace_state:
            return None
        return ",".join(f"{k}={v}" for k, v in self.trace_state)

    def derive_child(self) -> "TraceContext":
        """Same trace, flags and state with a fresh span ID."""
        return replace(self, span_id=generate_span_id())

    def with_sampled(self, sampled: bool) -> "TraceContext":
        flags = (self.flags | FLAG_SAMPLED) if sampled else (self.flags & ~FLAG_SAMPLED)
        return replace(self, flags=flags)

    def to_log_context(self) -> Dict[str, str]:
        """Correlation fields for log enrichment."""
        return {"TraceId": self.trace_id, "SpanId": self.span_id}


# === Tracing ===

class SpanKind(str, Enum):
    """Kind of span following OpenTelemetry conventions."""
    INTERNAL = "internal"
    SERVER = "server"
    CLIENT = "client"
    PRODUCER = "producer"
    CONSUMER = "consumer"

    @property
    def otlp_value(self) -> int:
        return {
            SpanKind.INTERNAL: 1,
            SpanKind.SERVER: 2,
            SpanKind.CLIENT: 3,
            SpanKind.PRODUCER: 4,
            SpanKind.CONSUMER: 5,
        }[self]


class SpanStatus(str, Enum):
    """Status of a span."""
    UNSET = "unset"
    OK = "ok"
    ERROR = "error"

    @property
    def otlp_code(self) -> int:
        return {SpanStatus.UNSET: 0, SpanStatus.OK: 1, SpanStatus.ERROR: 2}[self]


@dataclass
class SpanEvent:
    """An event within a span (annotation)."""
    name: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            "attributes": self.attributes,
        }


@dataclass
class Span:
    """
    A timed unit of work within a trace.

    Mutable while open; ``end()`` seals it and later mutation raises
    SpanSealedError.
    """
    context: TraceContext
    name: str = ""
    parent_span_id: Optional[str] = None
    kind: SpanKind = SpanKind.INTERNAL

    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None

    status: SpanStatus = SpanStatus.UNSET
    status_message: str = ""

    attributes: Dict[str, Any] = field(default_factory=dict)
    events: List[SpanEvent] = field(default_factory=list)

    @property
    def trace_id(self) -> str:
        return self.context.trace_id

    @property
    def span_id(self) -> str:
        return self.context.span_id

    @property
    def sampled(self) -> bool:
        return self.context.sampled

    @property
    def is_sealed(self) -> bool:
        return self.end_time is not None

    @property
    def duration_ms(self) -> float:
        """Get span duration in milliseconds."""
        end = self.end_time or datetime.now(timezone.utc)
        return (end - self.start_time).total_seconds() * 1000

    def _check_open(self) -> None:
        if self.is_sealed:
            raise SpanSealedError(f"Span {self.name} is already sealed")

    def set_attribute(self, key: str, value: Any) -> None:
        """Set a span attribute."""
        self._check_open()
        self.attributes[key] = value

    def add_event(self, name: str, attributes: Dict[str, Any] = None) -> None:
        """Add an event to the span."""
        self._check_open()
        self.events.append(SpanEvent(name=name, attributes=attributes or {}))

    def set_status(self, status: SpanStatus, message: str = "") -> None:
        """Set span status."""
        self._check_open()
        self.status = status
        self.status_message = message

    def record_exception(self, exception: BaseException) -> None:
        """Record an exception as an event and mark the span failed."""
        self.add_event("exception", {
            "exception.type": type(exception).__name__,
            "exception.message": str(exception),
            "exception.stacktrace": "".join(
                traceback.format_exception(type(exception), exception, exception.__traceback__)
            ),
        })
        self.set_status(SpanStatus.ERROR, str(exception) or type(exception).__name__)

    def end(self, status: Optional[SpanStatus] = None, end_time: datetime = None) -> None:
        """Seal the span."""
        self._check_open()
        if status is not None:
            self.status = status
        self.end_time = end_time or datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "trace_id": self.trace_id,
            "span_id": self.span_id,
            "parent_span_id": self.parent_span_id,
            "name": self.name,
            "kind": self.kind.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_ms": self.duration_ms,
            "status": self.status.value,
            "status_message": self.status_message,
            "attributes": self.attributes,
            "events": [e.to_dict() for e in self.events],
        }


# === Logging ===

class LogLevel(str, Enum):
    """Log levels in increasing severity."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]

    @property
    def severity_number(self) -> int:
        """Get OTel severity number."""
        return {
            LogLevel.DEBUG: 5,
            LogLevel.INFO: 9,
            LogLevel.WARNING: 13,
            LogLevel.ERROR: 17,
            LogLevel.CRITICAL: 21,
        }[self]

    @property
    def short_name(self) -> str:
        """Three letter code used by the text console format."""
        return {
            LogLevel.DEBUG: "DBG",
            LogLevel.INFO: "INF",
            LogLevel.WARNING: "WRN",
            LogLevel.ERROR: "ERR",
            LogLevel.CRITICAL: "FTL",
        }[self]

    @classmethod
    def coerce(cls, value: Any) -> "LogLevel":
        """Accept a LogLevel, a name in any case or a config enum value."""
        if isinstance(value, LogLevel):
            return value
        name = getattr(value, "value", value)
        return cls(str(name).lower())


_LEVEL_RANKS = {
    LogLevel.DEBUG: 10,
    LogLevel.INFO: 20,
    LogLevel.WARNING: 30,
    LogLevel.ERROR: 40,
    LogLevel.CRITICAL: 50,
}

_TEMPLATE_TOKEN = re.compile(r"\{(@?)([A-Za-z_][A-Za-z0-9_]*)(?::[^{}]*)?\}")


def render_template(template: str, fields: Mapping[str, Any]) -> str:
    """Fill ``{Name}`` placeholders from fields; unknown names are kept verbatim."""
    def substitute(match: re.Match) -> str:
        name = match.group(2)
        if name not in fields:
            return match.group(0)
        return str(fields[name])

    return _TEMPLATE_TOKEN.sub(substitute, template)


@dataclass(frozen=True)
class LogRecord:
    """A structured log record; immutable once constructed."""
    timestamp: datetime
    level: LogLevel
    template: str
    fields: Mapping[str, Any] = field(default_factory=dict)
    trace_id: Optional[str] = None
    span_id: Optional[str] = None
    logger_name: str = ""
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    exception_traceback: Optional[str] = None

    @property
    def message(self) -> str:
        return render_template(self.template, self.fields)

    def to_dict(self) -> dict:
        result = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "severity_number": self.level.severity_number,
            "message": self.message,
            "template": self.template,
        }
        if self.logger_name:
            result["logger"] = self.logger_name
        if self.trace_id:
            result["trace_id"] = self.trace_id
        if self.span_id:
            result["span_id"] = self.span_id
        if self.fields:
            result["fields"] = dict(self.fields)
        if self.exception_type:
            result["exception"] = {
                "type": self.exception_type,
                "message": self.exception_message,
                "traceback": self.exception_traceback,
            }
        return result
