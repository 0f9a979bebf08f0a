"""
TraceRelay Outbound HTTP Instrumentation

Wraps outbound HTTP calls so each one:
- carries a child trace context in traceparent/tracestate headers
- is recorded as a CLIENT span sealed with the call's outcome
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional
from urllib.parse import urlparse

import httpx
import structlog

from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.tracing.propagation import W3CTraceContextPropagator
from tracerelay.observability.types import Span, SpanKind, SpanStatus, TraceContext

logger = structlog.get_logger(__name__)

OutboundCall = Callable[[Dict[str, str]], Awaitable[Any]]


class OutboundCallDecorator:
    """
    Traces one outbound HTTP call.

    Usage:
        decorator = OutboundCallDecorator(tracing)
        response = await decorator.wrap(
            "POST", url,
            lambda headers: client.post(url, json=body, headers=headers),
            context=request_context,
        )
    """

    def __init__(
        self,
        tracing: TracingEngine,
        propagator: Optional[W3CTraceContextPropagator] = None,
    ):
        self.tracing = tracing
        self.propagator = propagator or W3CTraceContextPropagator()

    @staticmethod
    def span_name(method: str, url: str) -> str:
        host = urlparse(url).hostname or url
        return f"{method.upper()} {host}"

    async def wrap(
        self,
        method: str,
        url: str,
        call: OutboundCall,
        context: Optional[TraceContext] = None,
        headers: Mapping[str, str] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Run ``call(headers)`` inside a CLIENT span.

        Args:
            method: HTTP method
            url: Request URL
            call: Performs the request with the propagated headers and returns
                a response exposing ``status_code``
            context: Caller's context; None starts a new trace
            headers: Headers to send in addition to the trace headers
            timeout: Bound on the whole call in seconds

        The call's own exception is re-raised unchanged after the span is sealed.
        """
        span = self.tracing.start_span(
            self.span_name(method, url),
            parent=context,
            kind=SpanKind.CLIENT,
            attributes={"http.method": method.upper(), "http.url": url},
        )

        outbound_headers = dict(headers or {})
        self.propagator.inject(span.context, outbound_headers)

        start = time.perf_counter()
        try:
            if timeout is not None:
                response = await asyncio.wait_for(call(outbound_headers), timeout=timeout)
            else:
                response = await call(outbound_headers)
        except asyncio.CancelledError:
            self._seal(span, start, SpanStatus.ERROR, "cancelled")
            raise
        except asyncio.TimeoutError:
            self._seal(span, start, SpanStatus.ERROR, f"timed out after {timeout}s")
            raise
        except Exception as e:
            span.record_exception(e)
            self._seal(span, start, SpanStatus.ERROR, span.status_message)
            raise

        status_code = getattr(response, "status_code", 0)
        span.set_attribute("http.status_code", status_code)
        if 200 <= status_code < 400:
            self._seal(span, start, SpanStatus.OK)
        else:
            self._seal(span, start, SpanStatus.ERROR, f"HTTP {status_code}")
        return response

    def _seal(self, span: Span, start: float, status: SpanStatus, message: str = "") -> None:
        duration_ms = (time.perf_counter() - start) * 1000
        span.set_attribute("http.duration_ms", round(duration_ms, 3))
        self.tracing.end_span(span, status=status, status_message=message)

        logger.debug(
            "Outbound call finished",
            span_name=span.name,
            status=span.status.value,
            duration_ms=round(duration_ms, 1),
            trace_id=span.trace_id,
        )


class TracedHTTPClient:
    """
    httpx.AsyncClient whose requests go through an OutboundCallDecorator.

    Usage:
        async with TracedHTTPClient(decorator, base_url="http://backend") as client:
            response = await client.post("/api/chat/send", json=body, context=ctx)
    """

    def __init__(
        self,
        decorator: OutboundCallDecorator,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = "",
        timeout: float = 30.0,
    ):
        self.decorator = decorator
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def request(
        self,
        method: str,
        url: str,
        context: Optional[TraceContext] = None,
        headers: Mapping[str, str] = None,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> httpx.Response:
        full_url = str(self._client.build_request(method, url).url)

        async def call(outbound_headers: Dict[str, str]) -> httpx.Response:
            return await self._client.request(method, url, headers=outbound_headers, **kwargs)

        return await self.decorator.wrap(
            method,
            full_url,
            call,
            context=context,
            headers=headers,
            timeout=timeout,
        )

    async def get(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "TracedHTTPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
