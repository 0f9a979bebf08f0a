"""
Shared fixtures for TraceRelay tests.
"""

from typing import Any, Dict, List, Sequence

import pytest

from tracerelay.observability.exporter import SpanTransport
from tracerelay.observability.logging.engine import StructuredLogger
from tracerelay.observability.logging.sinks import MemorySink
from tracerelay.observability.types import Span
from tracerelay.relay.broadcast import BroadcastChannel


class RecordingTransport(SpanTransport):
    """Collects exported batches; fails the first ``fail_times`` calls."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.calls = 0
        self.batches: List[List[Span]] = []

    async def export(self, spans: Sequence[Span]) -> None:
        self.calls += 1
        if self.calls <= self.fail_times:
            raise ConnectionError("collector down")
        self.batches.append(list(spans))

    @property
    def spans(self) -> List[Span]:
        return [s for batch in self.batches for s in batch]


class RecordingChannel(BroadcastChannel):
    """Broadcast channel that records events or fails on demand."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.events: List[Dict[str, Any]] = []
        self.send_calls = 0
        self.closed = False

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        import asyncio

        self.send_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionResetError("connection reset")
        self.events.append({"event": event, **payload})

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def memory_sink():
    return MemorySink()


@pytest.fixture
def structured_logger(memory_sink):
    return StructuredLogger([memory_sink], fallback=MemorySink(name="fallback"))


@pytest.fixture
def recording_transport():
    return RecordingTransport()


@pytest.fixture
def transport_factory():
    return RecordingTransport


@pytest.fixture
def channel_factory():
    return RecordingChannel
