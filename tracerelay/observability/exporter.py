"""
TraceRelay Trace Exporter

Batches sealed spans and ships them to a collector:
- Non-blocking enqueue into a bounded FIFO buffer
- Oldest-span eviction when the buffer is full
- Background drain on an interval or when a batch fills up
- Bounded retry with exponential backoff, then drop with one warning
"""

from __future__ import annotations

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence

import httpx
import structlog

from tracerelay.core.errors import ExportTransportError
from tracerelay.observability.otlp import OTLPSerializer
from tracerelay.observability.types import Span

logger = structlog.get_logger(__name__)


class SpanBuffer:
    """Thread-safe bounded FIFO that evicts its oldest item on overflow."""

    def __init__(self, maxsize: int = 2048):
        if maxsize < 1:
            raise ValueError("Buffer size must be at least 1")
        self.maxsize = maxsize
        self._buffer: Deque[Span] = deque()
        self._lock = threading.Lock()
        self._evicted = 0

    def put(self, item: Span) -> Optional[Span]:
        """Append an item. Returns the evicted item when the buffer was full."""
        with self._lock:
            evicted = None
            if len(self._buffer) >= self.maxsize:
                evicted = self._buffer.popleft()
                self._evicted += 1
            self._buffer.append(item)
            return evicted

    def take(self, count: int) -> List[Span]:
        """Remove and return up to ``count`` items from the front."""
        with self._lock:
            n = min(count, len(self._buffer))
            return [self._buffer.popleft() for _ in range(n)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def evicted_count(self) -> int:
        return self._evicted


# === Transports ===

class SpanTransport(ABC):
    """Delivers one batch of spans to a collector."""

    @abstractmethod
    async def export(self, spans: Sequence[Span]) -> None:
        """Send a batch. Raises ExportTransportError on failure."""

    async def close(self) -> None:
        """Release transport resources."""


class CallableTransport(SpanTransport):
    """Adapts an async function ``fn(spans)`` to the transport interface."""

    def __init__(self, fn: Callable[[Sequence[Span]], Awaitable[Any]]):
        self._fn = fn

    async def export(self, spans: Sequence[Span]) -> None:
        await self._fn(spans)


class OTLPHTTPTransport(SpanTransport):
    """OTLP/HTTP JSON transport posting to ``{endpoint}/v1/traces``."""

    def __init__(
        self,
        endpoint: str = "http://localhost:4318",
        service_name: str = "tracerelay",
        headers: Dict[str, str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.service_name = service_name
        self.headers = headers or {}
        self.serializer = OTLPSerializer()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def url(self) -> str:
        return f"{self.endpoint}/v1/traces"

    async def export(self, spans: Sequence[Span]) -> None:
        payload = self.serializer.serialize_spans(spans, self.service_name)
        try:
            response = await self._client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json", **self.headers},
            )
        except httpx.HTTPError as e:
            raise ExportTransportError(f"Collector unreachable at {self.url}: {e}") from e

        if response.status_code >= 300:
            raise ExportTransportError(
                f"Collector rejected batch with HTTP {response.status_code}",
                status_code=response.status_code,
            )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# === Exporter ===

@dataclass
class ExporterStats:
    """Statistics for the exporter."""
    spans_enqueued: int = 0
    spans_evicted: int = 0
    spans_exported: int = 0
    spans_dropped: int = 0
    batches_exported: int = 0
    batches_dropped: int = 0
    export_attempts: int = 0
    export_errors: int = 0
    last_flush_time: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "spans_enqueued": self.spans_enqueued,
            "spans_evicted": self.spans_evicted,
            "spans_exported": self.spans_exported,
            "spans_dropped": self.spans_dropped,
            "batches_exported": self.batches_exported,
            "batches_dropped": self.batches_dropped,
            "export_attempts": self.export_attempts,
            "export_errors": self.export_errors,
            "last_flush_time": self.last_flush_time.isoformat() if self.last_flush_time else None,
        }


class TraceExporter:
    """
    Asynchronous batching span exporter.

    ``enqueue`` never blocks or raises on a full buffer. One background task
    drains the buffer in FIFO order, so spans leave in the order they were
    sealed.
    """

    def __init__(
        self,
        transport: SpanTransport,
        buffer_size: int = 2048,
        batch_size: int = 512,
        flush_interval: float = 5.0,
        max_retries: int = 3,
        retry_base_delay: float = 0.5,
        retry_max_delay: float = 8.0,
        export_timeout: float = 10.0,
        shutdown_timeout: float = 30.0,
    ):
        if batch_size < 1:
            raise ValueError("Batch size must be at least 1")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self.transport = transport
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self.export_timeout = export_timeout
        self.shutdown_timeout = shutdown_timeout

        self._buffer = SpanBuffer(buffer_size)
        self._stats = ExporterStats()

        self._drain_task: Optional[asyncio.Task] = None
        self._wake: Optional[asyncio.Event] = None
        self._flush_lock: Optional[asyncio.Lock] = None
        self._shutting_down = False

    @property
    def buffer_size(self) -> int:
        return self._buffer.maxsize

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @property
    def is_running(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    # === Enqueue ===

    def enqueue(self, span: Span) -> None:
        """Hand a sealed span to the exporter; ownership transfers here."""
        if not span.is_sealed:
            raise ValueError(f"Span {span.name} must be sealed before export")

        evicted = self._buffer.put(span)
        self._stats.spans_enqueued += 1
        if evicted is not None:
            self._stats.spans_evicted += 1
            logger.debug("Span buffer full, evicted oldest span", evicted_span=evicted.name)

        if self._wake is not None and len(self._buffer) >= self.batch_size:
            self._wake.set()

    # === Lifecycle ===

    async def start(self) -> None:
        """Start the background drain task."""
        if self.is_running:
            return

        self._wake = asyncio.Event()
        self._flush_lock = asyncio.Lock()
        self._shutting_down = False
        self._drain_task = asyncio.create_task(self._drain_loop())

        logger.info(
            "Trace exporter started",
            buffer_size=self.buffer_size,
            batch_size=self.batch_size,
            flush_interval=self.flush_interval,
        )

    async def shutdown(self, drain: bool = True) -> None:
        """
        Stop the drain task and optionally ship what is left.

        With ``drain`` the running drain pass may finish its current batch
        within ``shutdown_timeout``; a batch still in flight after that is
        counted as dropped.
        """
        self._shutting_down = True

        if self._drain_task:
            if drain:
                self._wake.set()
                try:
                    await asyncio.wait_for(self._drain_task, timeout=self.shutdown_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Exporter drain task did not finish in time", pending=self.pending)
            else:
                self._drain_task.cancel()
                try:
                    await self._drain_task
                except asyncio.CancelledError:
                    pass
            self._drain_task = None

        if drain:
            try:
                await asyncio.wait_for(self.force_flush(), timeout=self.shutdown_timeout)
            except asyncio.TimeoutError:
                logger.warning("Exporter shutdown drain timed out", pending=self.pending)

        await self.transport.close()
        logger.info("Trace exporter stopped", stats=self._stats.to_dict())

    # === Drain ===

    async def _drain_loop(self) -> None:
        """Wake on interval or on a full batch and drain the buffer."""
        while not self._shutting_down:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self.flush_interval)
            except asyncio.TimeoutError:
                pass
            self._wake.clear()

            try:
                await self.force_flush()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Span drain error", error=str(e))

    async def force_flush(self) -> None:
        """Drain the whole buffer now, batch by batch."""
        if self._flush_lock is None:
            self._flush_lock = asyncio.Lock()

        async with self._flush_lock:
            while True:
                batch = self._buffer.take(self.batch_size)
                if not batch:
                    break
                await self._export_with_retry(batch)
            self._stats.last_flush_time = datetime.now(timezone.utc)

    async def _export_with_retry(self, batch: List[Span]) -> bool:
        """Export one batch; drop it after the retry budget is spent or on cancellation."""
        attempts = self.max_retries + 1
        last_error = ""
        start = time.perf_counter()

        try:
            for attempt in range(attempts):
                self._stats.export_attempts += 1
                try:
                    await asyncio.wait_for(
                        self.transport.export(batch),
                        timeout=self.export_timeout,
                    )
                    self._stats.batches_exported += 1
                    self._stats.spans_exported += len(batch)
                    return True
                except asyncio.TimeoutError:
                    last_error = f"timed out after {self.export_timeout}s"
                except ExportTransportError as e:
                    last_error = str(e)
                except Exception as e:
                    last_error = f"{type(e).__name__}: {e}"

                self._stats.export_errors += 1
                logger.debug("Span export attempt failed", attempt=attempt + 1, error=last_error)

                if attempt < attempts - 1:
                    delay = min(self.retry_base_delay * (2 ** attempt), self.retry_max_delay)
                    await asyncio.sleep(delay)
        except asyncio.CancelledError:
            # The batch has already left the buffer.
            self._drop_batch(batch, "Dropped span batch after cancellation", "cancelled", start)
            raise

        self._drop_batch(batch, "Dropped span batch after retries", last_error, start, attempts=attempts)
        return False

    def _drop_batch(
        self,
        batch: List[Span],
        event: str,
        last_error: str,
        start: float,
        attempts: Optional[int] = None,
    ) -> None:
        self._stats.batches_dropped += 1
        self._stats.spans_dropped += len(batch)
        logger.warning(
            event,
            batch_size=len(batch),
            attempts=attempts,
            last_error=last_error,
            elapsed_ms=round((time.perf_counter() - start) * 1000, 1),
            total_spans_dropped=self._stats.spans_dropped,
        )

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get exporter statistics."""
        return {
            **self._stats.to_dict(),
            "pending": self.pending,
            "buffer_size": self.buffer_size,
        }
