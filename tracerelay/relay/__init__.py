"""
TraceRelay Relay

Broadcast fan-out of chat messages and the WebSocket hub feeding it.
"""

from tracerelay.relay.broadcast import (
    RECEIVE_MESSAGE_EVENT,
    BroadcastChannel,
    BroadcastRelay,
    ChatMessage,
    PublishResult,
    Subscriber,
    SubscriberState,
)
from tracerelay.relay.websocket import (
    ChatHub,
    WebSocketChannel,
    create_hub_router,
)

__all__ = [
    "RECEIVE_MESSAGE_EVENT",
    "BroadcastChannel",
    "BroadcastRelay",
    "ChatMessage",
    "PublishResult",
    "Subscriber",
    "SubscriberState",
    "ChatHub",
    "WebSocketChannel",
    "create_hub_router",
]
