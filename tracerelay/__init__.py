"""
TraceRelay - traced chat relay

A browser -> edge -> backend chat relay with:
- W3C Trace Context propagation across every hop
- Parent-based, deterministic trace sampling
- Batched OTLP span export
- Structured logging correlated with the active trace
- Broadcast fan-out to persistent connections
"""

__version__ = "0.1.0"

from tracerelay.core.config import TraceRelayConfig
from tracerelay.observability.types import TraceContext

__all__ = ["TraceRelayConfig", "TraceContext", "__version__"]
