"""
TraceRelay Tracing Tests

Span lifecycle, tracing engine and OTLP encoding.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tracerelay.core.errors import SpanSealedError
from tracerelay.observability.exporter import CallableTransport, TraceExporter
from tracerelay.observability.otlp import OTLPSerializer
from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.tracing.sampling import ParentBasedSampler, TraceIdRatioSampler
from tracerelay.observability.types import Span, SpanKind, SpanStatus, TraceContext


class TestSpan:
    """Test the span model."""

    def test_span_end_seals(self):
        span = Span(context=TraceContext.new_root(), name="op")
        span.set_attribute("a", 1)
        span.end(SpanStatus.OK)

        assert span.is_sealed
        assert span.status == SpanStatus.OK
        assert span.duration_ms >= 0

    def test_mutation_after_seal_raises(self):
        span = Span(context=TraceContext.new_root(), name="op")
        span.end()

        with pytest.raises(SpanSealedError):
            span.set_attribute("a", 1)
        with pytest.raises(SpanSealedError):
            span.add_event("late")
        with pytest.raises(SpanSealedError):
            span.set_status(SpanStatus.ERROR)
        with pytest.raises(SpanSealedError):
            span.end()

    def test_record_exception(self):
        span = Span(context=TraceContext.new_root(), name="op")
        span.record_exception(ValueError("bad input"))

        assert span.status == SpanStatus.ERROR
        assert span.status_message == "bad input"
        assert span.events[0].attributes["exception.type"] == "ValueError"


class TestTracingEngine:
    """Test the tracing engine."""

    def _engine(self, ratio=1.0):
        exporter = TraceExporter(CallableTransport(AsyncMock()), buffer_size=100)
        engine = TracingEngine(
            exporter=exporter,
            sampler=ParentBasedSampler(TraceIdRatioSampler(ratio)),
        )
        return engine, exporter

    def test_start_span_with_parent(self):
        engine, _ = self._engine()
        parent = TraceContext.new_root()
        span = engine.start_span("child", parent=parent, kind=SpanKind.CLIENT)

        assert span.trace_id == parent.trace_id
        assert span.parent_span_id == parent.span_id
        assert span.span_id != parent.span_id
        assert span.kind == SpanKind.CLIENT

    def test_root_span(self):
        engine, _ = self._engine()
        span = engine.start_span("root")
        assert span.parent_span_id is None

    def test_end_span_enqueues_sampled(self):
        engine, exporter = self._engine()
        span = engine.start_span("op")
        engine.end_span(span, status=SpanStatus.OK)

        assert exporter.pending == 1
        assert engine.get_stats()["spans_exported"] == 1

    def test_unsampled_span_not_exported(self):
        engine, exporter = self._engine(ratio=0.0)
        span = engine.start_span("op")
        engine.end_span(span)

        assert span.is_sealed
        assert exporter.pending == 0
        assert engine.get_stats()["spans_unsampled"] == 1

    def test_end_span_twice_is_ignored(self):
        engine, exporter = self._engine()
        span = engine.start_span("op")
        engine.end_span(span)
        engine.end_span(span)

        assert exporter.pending == 1

    def test_span_context_manager_success(self):
        engine, exporter = self._engine()
        with engine.span("op") as span:
            pass

        assert span.status == SpanStatus.OK
        assert exporter.pending == 1

    def test_span_context_manager_error(self):
        engine, _ = self._engine()
        with pytest.raises(RuntimeError):
            with engine.span("op") as span:
                raise RuntimeError("boom")

        assert span.status == SpanStatus.ERROR
        assert span.is_sealed

    @pytest.mark.asyncio
    async def test_span_context_manager_cancelled(self):
        engine, exporter = self._engine()
        holder = {}

        async def work():
            async with engine.span("slow") as span:
                holder["span"] = span
                await asyncio.sleep(10)

        task = asyncio.create_task(work())
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert holder["span"].status == SpanStatus.ERROR
        assert holder["span"].status_message == "cancelled"
        assert exporter.pending == 1


class TestOTLPSerializer:
    """Test OTLP JSON encoding."""

    def test_serialize_span(self):
        parent = TraceContext.new_root()
        span = Span(
            context=parent.derive_child(),
            name="GET backend",
            parent_span_id=parent.span_id,
            kind=SpanKind.CLIENT,
            attributes={"http.status_code": 200, "http.method": "GET", "ok": True, "ms": 1.5},
        )
        span.end(SpanStatus.OK)

        data = OTLPSerializer().serialize_span(span)

        assert data["traceId"] == parent.trace_id
        assert data["parentSpanId"] == parent.span_id
        assert data["kind"] == 3
        assert data["status"]["code"] == 1
        attributes = {a["key"]: a["value"] for a in data["attributes"]}
        assert attributes["http.status_code"] == {"intValue": "200"}
        assert attributes["ok"] == {"boolValue": True}
        assert attributes["ms"] == {"doubleValue": 1.5}
        assert int(data["endTimeUnixNano"]) >= int(data["startTimeUnixNano"])

    def test_serialize_spans_resource(self):
        span = Span(context=TraceContext.new_root(), name="op")
        span.end()

        request = OTLPSerializer().serialize_spans([span], "tracerelay.edge")
        resource = request["resourceSpans"][0]

        assert resource["resource"]["attributes"][0] == {
            "key": "service.name",
            "value": {"stringValue": "tracerelay.edge"},
        }
        assert len(resource["scopeSpans"][0]["spans"]) == 1
