"""
TraceRelay Log Sinks

Destinations for structured log records, each with its own minimum level:
- ConsoleSink: human-readable text or one JSON object per line
- SeqSink: remote aggregator receiving CLEF events over HTTP
- MemorySink: in-process capture
"""

from __future__ import annotations

import json
import sys
import threading
from abc import ABC, abstractmethod
from collections import deque
from typing import IO, Any, Deque, Dict, List, Optional

import httpx
import structlog

from tracerelay.core.errors import SinkUnavailableError
from tracerelay.observability.types import LogLevel, LogRecord


class LogSink(ABC):
    """A destination for log records."""

    def __init__(self, name: str, min_level: LogLevel = LogLevel.DEBUG):
        self.name = name
        self.min_level = LogLevel.coerce(min_level)

    def accepts(self, record: LogRecord) -> bool:
        return record.level.rank >= self.min_level.rank

    @abstractmethod
    def emit(self, record: LogRecord) -> None:
        """Deliver or buffer one record. Must not block on network I/O."""

    async def flush(self) -> None:
        """Ship any buffered records."""

    async def close(self) -> None:
        """Release sink resources."""
        await self.flush()


class ConsoleSink(LogSink):
    """
    Console sink.

    ``text`` mode prints ``HH:MM:SS [LVL] [trace_id] message``; ``json`` mode
    prints one JSON object per record.
    """

    def __init__(
        self,
        mode: str = "text",
        min_level: LogLevel = LogLevel.DEBUG,
        stream: Optional[IO[str]] = None,
        name: str = "console",
    ):
        if mode not in ("text", "json"):
            raise ValueError(f"Unknown console mode: {mode}")
        super().__init__(name, min_level)
        self.mode = mode
        self._stream = stream
        self._renderer = structlog.processors.JSONRenderer(default=str)
        self._lock = threading.Lock()

    @property
    def stream(self) -> IO[str]:
        return self._stream if self._stream is not None else sys.stdout

    def format_text(self, record: LogRecord) -> str:
        line = (
            f"{record.timestamp.strftime('%H:%M:%S')} "
            f"[{record.level.short_name}] "
            f"[{record.trace_id or ''}] "
            f"{record.message}"
        )
        if record.exception_traceback:
            line = f"{line}\n{record.exception_traceback.rstrip()}"
        return line

    def format_json(self, record: LogRecord) -> str:
        event_dict: Dict[str, Any] = {
            "timestamp": record.timestamp.isoformat(),
            "level": record.level.value,
            "message": record.message,
            "template": record.template,
        }
        if record.logger_name:
            event_dict["logger"] = record.logger_name
        if record.trace_id:
            event_dict["trace_id"] = record.trace_id
        if record.span_id:
            event_dict["span_id"] = record.span_id
        for key, value in record.fields.items():
            event_dict.setdefault(key, value)
        if record.exception_type:
            event_dict["exception"] = record.exception_traceback or (
                f"{record.exception_type}: {record.exception_message}"
            )
        return self._renderer(None, record.level.value, event_dict)

    def emit(self, record: LogRecord) -> None:
        line = self.format_text(record) if self.mode == "text" else self.format_json(record)
        with self._lock:
            self.stream.write(line + "\n")
            self.stream.flush()


class MemorySink(LogSink):
    """Keeps records in memory."""

    def __init__(self, min_level: LogLevel = LogLevel.DEBUG, name: str = "memory", maxlen: int = 10000):
        super().__init__(name, min_level)
        self._records: Deque[LogRecord] = deque(maxlen=maxlen)

    def emit(self, record: LogRecord) -> None:
        self._records.append(record)

    @property
    def records(self) -> List[LogRecord]:
        return list(self._records)

    def messages(self) -> List[str]:
        return [r.message for r in self._records]

    def clear(self) -> None:
        self._records.clear()


def to_clef(record: LogRecord) -> Dict[str, Any]:
    """Convert a record to a Compact Log Event Format object."""
    event: Dict[str, Any] = {
        "@t": record.timestamp.isoformat(),
        "@mt": record.template,
    }
    if record.level != LogLevel.INFO:
        event["@l"] = {
            LogLevel.DEBUG: "Debug",
            LogLevel.WARNING: "Warning",
            LogLevel.ERROR: "Error",
            LogLevel.CRITICAL: "Fatal",
        }[record.level]
    if record.exception_traceback:
        event["@x"] = record.exception_traceback
    if record.trace_id:
        event["@tr"] = record.trace_id
    if record.span_id:
        event["@sp"] = record.span_id
    if record.logger_name:
        event["SourceContext"] = record.logger_name
    for key, value in record.fields.items():
        if not key.startswith("@"):
            event.setdefault(key, value)
    return event


class SeqSink(LogSink):
    """
    Remote log aggregator sink (Seq raw ingestion API).

    ``emit`` only buffers; ``flush`` posts newline-delimited CLEF to
    ``{url}/api/events/raw?clef``. The buffer is bounded and drops its oldest
    events when full.
    """

    def __init__(
        self,
        url: str,
        min_level: LogLevel = LogLevel.INFO,
        api_key: Optional[str] = None,
        batch_size: int = 100,
        max_buffer: int = 10000,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
        name: str = "seq",
    ):
        super().__init__(name, min_level)
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.batch_size = batch_size
        self._buffer: Deque[Dict[str, Any]] = deque(maxlen=max_buffer)
        self.dropped = 0
        self._lock = threading.Lock()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def ingest_url(self) -> str:
        return f"{self.url}/api/events/raw?clef"

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def emit(self, record: LogRecord) -> None:
        with self._lock:
            if len(self._buffer) == self._buffer.maxlen:
                self.dropped += 1
            self._buffer.append(to_clef(record))

    def _take(self) -> List[Dict[str, Any]]:
        with self._lock:
            n = min(self.batch_size, len(self._buffer))
            return [self._buffer.popleft() for _ in range(n)]

    def _requeue(self, events: List[Dict[str, Any]]) -> None:
        # Requeued events are older than anything buffered since, so they are
        # the first to go when there is not enough room.
        with self._lock:
            room = self._buffer.maxlen - len(self._buffer)
            kept = events[-room:] if room > 0 else []
            self.dropped += len(events) - len(kept)
            self._buffer.extendleft(reversed(kept))

    async def flush(self) -> None:
        """Ship buffered events batch by batch; unsent events stay buffered."""
        headers = {"Content-Type": "application/vnd.serilog.clef"}
        if self.api_key:
            headers["X-Seq-ApiKey"] = self.api_key

        while True:
            events = self._take()
            if not events:
                return

            body = "\n".join(json.dumps(e, default=str) for e in events)
            try:
                response = await self._client.post(self.ingest_url, content=body, headers=headers)
            except httpx.HTTPError as e:
                self._requeue(events)
                raise SinkUnavailableError(self.name, str(e)) from e

            if response.status_code >= 300:
                self._requeue(events)
                raise SinkUnavailableError(self.name, f"HTTP {response.status_code}")

    async def close(self) -> None:
        try:
            await self.flush()
        finally:
            if self._owns_client:
                await self._client.aclose()
