"""
TraceRelay Outbound Instrumentation Tests
"""

import asyncio
from types import SimpleNamespace

import httpx
import pytest

from tracerelay.api.client import BackendChatClient
from tracerelay.observability.exporter import TraceExporter
from tracerelay.observability.instrumentation.http_client import OutboundCallDecorator, TracedHTTPClient
from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.tracing.sampling import ParentBasedSampler, TraceIdRatioSampler
from tracerelay.observability.types import SpanKind, SpanStatus, TraceContext


@pytest.fixture
def exporter(recording_transport):
    return TraceExporter(recording_transport)


@pytest.fixture
def decorator(exporter):
    return OutboundCallDecorator(TracingEngine(exporter=exporter))


async def exported_spans(exporter, transport):
    await exporter.force_flush()
    return transport.spans


class TestOutboundCallDecorator:
    """Test wrapping of outbound calls."""

    @pytest.mark.asyncio
    async def test_injects_child_context(self, decorator, exporter, recording_transport):
        parent = TraceContext.parse(
            "00-4bf92f3577b34da6a3ce929d0e0e4736-00f067aa0ba902b7-01", "congo=t61rcWkgMzE"
        )
        seen = {}

        async def call(headers):
            seen.update(headers)
            return SimpleNamespace(status_code=200)

        await decorator.wrap("post", "http://backend:5000/api/chat/send", call, context=parent)

        sent = TraceContext.parse(seen["traceparent"], seen.get("tracestate"))
        assert sent.trace_id == parent.trace_id
        assert sent.span_id != parent.span_id
        assert sent.trace_state == parent.trace_state

        span, = await exported_spans(exporter, recording_transport)
        assert span.name == "POST backend"
        assert span.kind == SpanKind.CLIENT
        assert span.parent_span_id == parent.span_id
        assert span.span_id == sent.span_id
        assert span.status == SpanStatus.OK
        assert span.attributes["http.method"] == "POST"
        assert span.attributes["http.url"] == "http://backend:5000/api/chat/send"
        assert span.attributes["http.status_code"] == 200
        assert span.attributes["http.duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_keeps_caller_headers(self, decorator):
        seen = {}

        async def call(headers):
            seen.update(headers)
            return SimpleNamespace(status_code=204)

        await decorator.wrap("GET", "http://x/", call, headers={"Accept": "application/json"})

        assert seen["Accept"] == "application/json"
        assert "traceparent" in seen

    @pytest.mark.asyncio
    async def test_no_context_starts_new_trace(self, decorator, exporter, recording_transport):
        async def call(headers):
            return SimpleNamespace(status_code=200)

        await decorator.wrap("GET", "http://x/", call)

        span, = await exported_spans(exporter, recording_transport)
        assert span.parent_span_id is None

    @pytest.mark.asyncio
    async def test_server_error_marks_span(self, decorator, exporter, recording_transport):
        async def call(headers):
            return SimpleNamespace(status_code=503)

        response = await decorator.wrap("GET", "http://x/", call, context=TraceContext.new_root())

        assert response.status_code == 503
        span, = await exported_spans(exporter, recording_transport)
        assert span.status == SpanStatus.ERROR
        assert span.status_message == "HTTP 503"

    @pytest.mark.asyncio
    async def test_redirect_is_ok(self, decorator, exporter, recording_transport):
        async def call(headers):
            return SimpleNamespace(status_code=302)

        await decorator.wrap("GET", "http://x/", call)

        span, = await exported_spans(exporter, recording_transport)
        assert span.status == SpanStatus.OK

    @pytest.mark.asyncio
    async def test_exception_reraised_unchanged(self, decorator, exporter, recording_transport):
        error = ConnectionRefusedError("refused")

        async def call(headers):
            raise error

        with pytest.raises(ConnectionRefusedError) as exc_info:
            await decorator.wrap("GET", "http://x/", call)

        assert exc_info.value is error
        span, = await exported_spans(exporter, recording_transport)
        assert span.status == SpanStatus.ERROR
        assert span.events[0].attributes["exception.type"] == "ConnectionRefusedError"

    @pytest.mark.asyncio
    async def test_timeout_seals_error(self, decorator, exporter, recording_transport):
        async def call(headers):
            await asyncio.sleep(1)

        with pytest.raises(asyncio.TimeoutError):
            await decorator.wrap("GET", "http://x/", call, timeout=0.05)

        span, = await exported_spans(exporter, recording_transport)
        assert span.status == SpanStatus.ERROR
        assert span.is_sealed

    @pytest.mark.asyncio
    async def test_cancellation_seals_error(self, decorator, exporter, recording_transport):
        async def call(headers):
            await asyncio.sleep(10)

        task = asyncio.create_task(decorator.wrap("GET", "http://x/", call))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        span, = await exported_spans(exporter, recording_transport)
        assert span.status == SpanStatus.ERROR
        assert span.status_message == "cancelled"

    @pytest.mark.asyncio
    async def test_unsampled_parent_not_exported(self, exporter, recording_transport):
        decorator = OutboundCallDecorator(TracingEngine(
            exporter=exporter,
            sampler=ParentBasedSampler(TraceIdRatioSampler(1.0)),
        ))
        parent = TraceContext.new_root(sampled=False)
        seen = {}

        async def call(headers):
            seen.update(headers)
            return SimpleNamespace(status_code=200)

        await decorator.wrap("GET", "http://x/", call, context=parent)

        assert seen["traceparent"].endswith("-00")
        assert await exported_spans(exporter, recording_transport) == []


class TestTracedHTTPClient:
    """Test the httpx client wrapper and backend client."""

    @pytest.mark.asyncio
    async def test_backend_client_propagates(self, decorator, exporter, recording_transport):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["traceparent"] = request.headers.get("traceparent")
            captured["body"] = request.content
            return httpx.Response(200, json={"status": "ok"})

        http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler),
            base_url="http://backend:5000",
        )
        client = BackendChatClient(TracedHTTPClient(decorator, client=http))
        parent = TraceContext.new_root()

        response = await client.send("ann", "hello", context=parent)
        await http.aclose()

        assert response.status_code == 200
        assert captured["url"] == "http://backend:5000/api/chat/send"
        sent = TraceContext.parse(captured["traceparent"])
        assert sent.trace_id == parent.trace_id
        assert b'"user"' in captured["body"]

        span, = await exported_spans(exporter, recording_transport)
        assert span.name == "POST backend"
        assert span.attributes["http.url"] == "http://backend:5000/api/chat/send"
