"""
TraceRelay Tracing Engine

Span creation and sealing with explicit context passing:
- every span is started from an explicit parent context (or none)
- sealed, sampled spans are handed to the exporter
- cancellation and errors seal the span with ERROR status
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Dict, Optional

import structlog

from tracerelay.observability.tracing.sampling import ParentBasedSampler, TraceIdRatioSampler
from tracerelay.observability.types import Span, SpanKind, SpanStatus, TraceContext

if TYPE_CHECKING:
    from tracerelay.observability.exporter import TraceExporter

logger = structlog.get_logger(__name__)


class TracingEngine:
    """
    Creates spans and hands finished ones to the exporter.

    Holds no "current span": callers pass the parent context explicitly.
    """

    def __init__(
        self,
        exporter: Optional["TraceExporter"] = None,
        sampler: Optional[ParentBasedSampler] = None,
        service_name: str = "tracerelay",
    ):
        self.exporter = exporter
        self.sampler = sampler or ParentBasedSampler(TraceIdRatioSampler(1.0))
        self.service_name = service_name

        self._stats = {
            "spans_started": 0,
            "spans_ended": 0,
            "spans_exported": 0,
            "spans_unsampled": 0,
        }

    def start_span(
        self,
        name: str,
        parent: Optional[TraceContext] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Dict[str, Any] = None,
        context: Optional[TraceContext] = None,
    ) -> Span:
        """
        Start a new span.

        Args:
            name: Span name (operation name)
            parent: Parent context; the span continues its trace and inherits
                its sampling decision. None starts a new trace.
            kind: Span kind
            attributes: Initial span attributes
            context: Use this exact context instead of deriving one
        """
        if context is None:
            context = self.sampler.start_context(parent)

        span = Span(
            context=context,
            name=name,
            parent_span_id=parent.span_id if parent is not None else None,
            kind=kind,
            attributes=dict(attributes or {}),
        )
        self._stats["spans_started"] += 1
        return span

    def end_span(
        self,
        span: Span,
        status: Optional[SpanStatus] = None,
        status_message: str = "",
    ) -> None:
        """Seal a span and enqueue it for export when sampled."""
        if span.is_sealed:
            logger.warning("Span already ended", span_name=span.name)
            return

        if status is not None:
            span.set_status(status, status_message or span.status_message)
        span.end()
        self._stats["spans_ended"] += 1

        if not span.sampled:
            self._stats["spans_unsampled"] += 1
            return

        if self.exporter is not None:
            self.exporter.enqueue(span)
            self._stats["spans_exported"] += 1

    def span(
        self,
        name: str,
        parent: Optional[TraceContext] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Dict[str, Any] = None,
    ) -> "SpanContextManager":
        """Context manager that starts and seals a span."""
        return SpanContextManager(self, name, parent, kind, attributes)

    def get_stats(self) -> Dict[str, Any]:
        """Get tracing statistics."""
        return dict(self._stats)


class SpanContextManager:
    """Context manager for spans; failures and cancellation seal with ERROR."""

    def __init__(
        self,
        engine: TracingEngine,
        name: str,
        parent: Optional[TraceContext] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Dict[str, Any] = None,
    ):
        self.engine = engine
        self.name = name
        self.parent = parent
        self.kind = kind
        self.attributes = attributes
        self.span: Optional[Span] = None

    def __enter__(self) -> Span:
        self.span = self.engine.start_span(
            self.name,
            parent=self.parent,
            kind=self.kind,
            attributes=self.attributes,
        )
        return self.span

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_val is not None:
            if isinstance(exc_val, asyncio.CancelledError):
                self.span.set_status(SpanStatus.ERROR, "cancelled")
            else:
                self.span.record_exception(exc_val)
            self.engine.end_span(self.span, status=SpanStatus.ERROR)
        else:
            status = SpanStatus.OK if self.span.status == SpanStatus.UNSET else None
            self.engine.end_span(self.span, status=status)
        return False

    async def __aenter__(self) -> Span:
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)
