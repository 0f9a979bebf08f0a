"""
TraceRelay API

HTTP routes for the backend and edge roles, and the edge's backend client.
"""

from tracerelay.api.client import BackendChatClient
from tracerelay.api.routes import (
    ChatSendRequest,
    ChatSendResponse,
    setup_backend_routes,
    setup_common_routes,
    setup_edge_routes,
)

__all__ = [
    "BackendChatClient",
    "ChatSendRequest",
    "ChatSendResponse",
    "setup_backend_routes",
    "setup_common_routes",
    "setup_edge_routes",
]
