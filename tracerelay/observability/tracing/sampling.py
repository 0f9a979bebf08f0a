"""
TraceRelay Trace Sampling

Parent-based sampling with a deterministic trace-ID ratio for root traces:
- a parent's decision is always inherited, sampled or not
- root traces are sampled from the lower 64 bits of their trace ID, so
  repeated evaluation for the same trace is stable
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from tracerelay.observability.types import TraceContext


def _ratio_bound(ratio: float) -> int:
    return int(ratio * (1 << 64))


def _sample_trace_id(trace_id: str, ratio: float) -> bool:
    if ratio >= 1.0:
        return True
    if ratio <= 0.0:
        return False
    try:
        trace_id_int = int(trace_id[-16:], 16)
    except ValueError:
        return False
    return trace_id_int < _ratio_bound(ratio)


def decide(
    parent: Optional[TraceContext],
    ratio: float,
    trace_id: Optional[str] = None,
) -> bool:
    """
    Decide whether a trace is recorded and exported.

    Args:
        parent: Upstream context, if any
        ratio: Probability of sampling a root trace, in [0, 1]
        trace_id: Trace ID of the new root trace, required when parent is None
            and 0 < ratio < 1

    Raises:
        ValueError: if the decision depends on a trace ID that was not given
    """
    if parent is not None:
        return parent.sampled
    if ratio >= 1.0:
        return True
    if ratio <= 0.0:
        return False
    if not trace_id:
        raise ValueError("trace_id is required to sample a root trace")
    return _sample_trace_id(trace_id, ratio)


class Sampler(ABC):
    """Base class for trace samplers."""

    @abstractmethod
    def should_sample(self, trace_id: str, parent: Optional[TraceContext] = None) -> bool:
        """Determine if a trace should be sampled."""

    @property
    def description(self) -> str:
        return self.__class__.__name__


class TraceIdRatioSampler(Sampler):
    """
    Sample traces based on trace ID ratio.

    Uses the trace ID itself so all services sample a trace consistently.
    """

    def __init__(self, ratio: float = 1.0):
        if not 0.0 <= ratio <= 1.0:
            raise ValueError("Ratio must be between 0.0 and 1.0")
        self.ratio = ratio

    def should_sample(self, trace_id: str, parent: Optional[TraceContext] = None) -> bool:
        return _sample_trace_id(trace_id, self.ratio)

    @property
    def description(self) -> str:
        return f"TraceIdRatioSampler(ratio={self.ratio})"


class ParentBasedSampler(Sampler):
    """
    Sample based on the parent's sampling decision.

    If parent is sampled, child is sampled; if parent is not sampled, child
    is not sampled. Root traces delegate to ``root``.
    """

    def __init__(self, root: Sampler = None):
        self.root = root or TraceIdRatioSampler(1.0)

    def should_sample(self, trace_id: str, parent: Optional[TraceContext] = None) -> bool:
        if parent is not None:
            return parent.sampled
        return self.root.should_sample(trace_id, None)

    @property
    def ratio(self) -> float:
        return getattr(self.root, "ratio", 1.0)

    def start_context(self, parent: Optional[TraceContext]) -> TraceContext:
        """
        Context for the local operation handling an inbound request.

        Continues the parent's trace with a new span ID, or mints a root
        context carrying this sampler's decision.
        """
        if parent is not None:
            return parent.derive_child()
        root = TraceContext.new_root()
        return root.with_sampled(self.should_sample(root.trace_id, None))

    @property
    def description(self) -> str:
        return f"ParentBasedSampler(root={self.root.description})"
