"""
TraceRelay Chat Hub

WebSocket interface feeding the broadcast relay.

Protocol:
Client sends:
- {"type": "SendMessage", "user": "...", "message": "...",
   "traceparent": "...", "tracestate": "..."}
- {"type": "ping"}

Server sends:
- {"type": "ReceiveMessage", "user": "...", "message": "..."}
- {"type": "pong"}
- {"type": "error", "data": "..."}
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from tracerelay.observability.logging.engine import StructuredLogger
from tracerelay.observability.tracing.engine import TracingEngine
from tracerelay.observability.types import SpanKind, TraceContext
from tracerelay.relay.broadcast import BroadcastChannel, BroadcastRelay, ChatMessage

SEND_MESSAGE_METHOD = "SendMessage"


class WebSocketChannel(BroadcastChannel):
    """Broadcast channel over a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        await self.websocket.send_json({"type": event, **payload})

    async def close(self) -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close(code=1011)


class ChatHub:
    """
    Persistent-connection chat endpoint.

    Every connection subscribes to the relay; ``SendMessage`` invocations are
    traced as SERVER spans continuing the client's traceparent and logged
    inside a ``{Hub, Method, ConnectionId}`` scope.
    """

    def __init__(
        self,
        relay: BroadcastRelay,
        tracing: TracingEngine,
        structured_logger: StructuredLogger,
    ):
        self.relay = relay
        self.tracing = tracing
        self._log = structured_logger.get_logger("tracerelay.hub")

    @property
    def hub_name(self) -> str:
        return self.relay.hub_name

    async def handle(self, websocket: WebSocket, connection_id: Optional[str] = None) -> None:
        """Handle a WebSocket connection until the client leaves."""
        await websocket.accept()
        connection_id = connection_id or uuid.uuid4().hex
        await self.relay.subscribe(WebSocketChannel(websocket), connection_id)

        error: Optional[Exception] = None
        with self._log.begin_scope(Hub=self.hub_name, ConnectionId=connection_id):
            self._log.info("Hub connection opened. ConnectionId: {ConnectionId}")

            try:
                while True:
                    try:
                        data = await websocket.receive_json()
                    except json.JSONDecodeError:
                        await websocket.send_json({"type": "error", "data": "Invalid JSON"})
                        continue
                    await self._handle_message(websocket, connection_id, data)

            except WebSocketDisconnect:
                pass
            except Exception as e:
                error = e

            finally:
                await self.relay.unsubscribe(connection_id)
                if error is None:
                    self._log.info("Hub connection closed. ConnectionId: {ConnectionId}")
                else:
                    self._log.warning(
                        "Hub connection closed with error. ConnectionId: {ConnectionId}",
                        exception=error,
                    )

    async def _handle_message(self, websocket: WebSocket, connection_id: str, data: Any) -> None:
        """Handle an incoming WebSocket message."""
        msg_type = data.get("type") if isinstance(data, dict) else None

        if msg_type == SEND_MESSAGE_METHOD:
            await self.send_message(
                user=data.get("user") or "",
                message=data.get("message") or "",
                parent=TraceContext.parse(data.get("traceparent"), data.get("tracestate")),
            )

        elif msg_type == "ping":
            await websocket.send_json({"type": "pong"})

        else:
            await websocket.send_json({
                "type": "error",
                "data": f"Unknown message type: {msg_type}",
            })

    async def send_message(
        self,
        user: str,
        message: str,
        parent: Optional[TraceContext] = None,
    ) -> None:
        """Hub method: broadcast a message to every connected client."""
        with self._log.begin_scope(Method=SEND_MESSAGE_METHOD):
            async with self.tracing.span(
                f"{self.hub_name}/{SEND_MESSAGE_METHOD}",
                parent=parent,
                kind=SpanKind.SERVER,
                attributes={"rpc.system": "websocket", "rpc.method": SEND_MESSAGE_METHOD},
            ) as span:
                with self._log.begin_scope(span.context.to_log_context()):
                    self._log.info("Hub method invoked")
                    try:
                        result = await self.relay.publish(
                            ChatMessage(user=user, message=message, trace_context=span.context)
                        )
                    except Exception as e:
                        self._log.error("Hub method failed", exception=e)
                        raise
                    span.set_attribute("relay.delivered", result.delivered)
                    span.set_attribute("relay.failed", result.failed)
                    self._log.info("Hub method completed")


def create_hub_router(hub: ChatHub, path: str = "/hubs/chat") -> APIRouter:
    """Create the router exposing the chat hub."""
    router = APIRouter(tags=["hub"])

    @router.websocket(path)
    async def chat_hub(websocket: WebSocket):
        await hub.handle(websocket)

    return router
