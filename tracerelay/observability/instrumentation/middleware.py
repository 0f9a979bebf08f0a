"""
TraceRelay Observability Middleware

FastAPI middleware that continues the caller's trace for every inbound
request and correlates the request's log records with it.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, List, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from tracerelay.observability.logging.engine import StructuredLogger
from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.tracing.propagation import W3CTraceContextPropagator
from tracerelay.observability.types import SpanKind, SpanStatus, TraceContext

TRACE_CONTEXT_STATE = "trace_context"


def get_request_context(request: Request) -> Optional[TraceContext]:
    """Trace context of the local operation handling this request."""
    return getattr(request.state, TRACE_CONTEXT_STATE, None)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for inbound requests.

    Features:
    - traceparent/tracestate extraction (malformed headers start a new trace)
    - SERVER span per request
    - logging scope with RequestPath, TraceId and SpanId
    - request received/completed/failed/cancelled log records
    - cancelled requests still seal and export their span as ERROR
    """

    def __init__(
        self,
        app: ASGIApp,
        tracing: TracingEngine,
        structured_logger: StructuredLogger,
        exclude_paths: List[str] = None,
        propagator: Optional[W3CTraceContextPropagator] = None,
    ):
        super().__init__(app)
        self.tracing = tracing
        self.log = structured_logger.get_logger("tracerelay.http")
        self.exclude_paths = exclude_paths if exclude_paths is not None else ["/health", "/favicon.ico"]
        self.propagator = propagator or W3CTraceContextPropagator()

    async def dispatch(
        self,
        request: Request,
        call_next: Callable,
    ) -> Response:
        """Handle request with observability."""
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        parent = self.propagator.extract(request.headers)
        span = self.tracing.start_span(
            name=f"{request.method} {request.url.path}",
            parent=parent,
            kind=SpanKind.SERVER,
            attributes={
                "http.method": request.method,
                "http.url": str(request.url),
                "http.route": request.url.path,
                "http.scheme": request.url.scheme,
                "http.user_agent": request.headers.get("user-agent", ""),
                "net.peer.ip": request.client.host if request.client else "",
            },
        )
        setattr(request.state, TRACE_CONTEXT_STATE, span.context)

        start_time = time.perf_counter()
        status_code = 500

        with self.log.begin_scope(
            RequestPath=request.url.path,
            **span.context.to_log_context(),
        ):
            self.log.info(
                "HTTP request received. Method: {Method}, Path: {RequestPath}",
                Method=request.method,
                RequestPath=request.url.path,
                HasParent=parent is not None,
            )

            try:
                response = await call_next(request)
                status_code = response.status_code
            except asyncio.CancelledError:
                span.set_status(SpanStatus.ERROR, "cancelled")
                self.tracing.end_span(span, status=SpanStatus.ERROR)
                self.log.warning(
                    "HTTP request cancelled. Method: {Method}, Path: {RequestPath}",
                    Method=request.method,
                    RequestPath=request.url.path,
                    ElapsedMs=round((time.perf_counter() - start_time) * 1000, 1),
                )
                raise
            except Exception as e:
                span.record_exception(e)
                self.tracing.end_span(span, status=SpanStatus.ERROR)
                self.log.error(
                    "HTTP request failed. Method: {Method}, Path: {RequestPath}",
                    Method=request.method,
                    RequestPath=request.url.path,
                    ElapsedMs=round((time.perf_counter() - start_time) * 1000, 1),
                    exception=e,
                )
                raise

            elapsed_ms = round((time.perf_counter() - start_time) * 1000, 1)
            span.set_attribute("http.status_code", status_code)
            self.tracing.end_span(
                span,
                status=SpanStatus.ERROR if status_code >= 500 else SpanStatus.OK,
            )
            self.log.info(
                "HTTP request completed. StatusCode: {StatusCode}, ElapsedMs: {ElapsedMs}",
                Method=request.method,
                StatusCode=status_code,
                ElapsedMs=elapsed_ms,
            )

        return response
