"""
TraceRelay API Routes

FastAPI routes for the backend and edge services.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import httpx
from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from tracerelay.observability.instrumentation.middleware import get_request_context
from tracerelay.relay.broadcast import ChatMessage

if TYPE_CHECKING:
    from tracerelay.main import Components


# ==================== Request/Response Models ====================

class ChatSendRequest(BaseModel):
    """Chat message posted by a client; missing values become empty strings."""
    user: Optional[str] = Field(default=None, description="Sender display name")
    message: Optional[str] = Field(default=None, description="Message text")


class ChatSendResponse(BaseModel):
    """Outcome of a chat send."""
    status: str = "ok"
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    trace_id: Optional[str] = None


# ==================== Route Setup Functions ====================

def setup_common_routes(app: FastAPI, components: "Components") -> None:
    """Routes served by both roles."""

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": components.config.service_name,
            "role": components.config.role,
            "exporter": components.exporter.get_stats() if components.exporter else None,
            "relay": components.relay.get_stats(),
            "logging": components.logger.get_stats(),
        }


def setup_backend_routes(app: FastAPI, components: "Components") -> None:
    """Routes for the backend role: HTTP ingestion into the relay."""
    log = components.logger.get_logger("tracerelay.api.chat")

    @app.post("/api/chat/send", response_model=ChatSendResponse)
    async def send_chat_message(body: ChatSendRequest, request: Request):
        """Broadcast a chat message to every hub connection."""
        context = get_request_context(request)
        user = body.user or ""
        message = body.message or ""

        log.info(
            "Chat message received via HTTP. User: {User}, MessageLength: {MessageLength}",
            User=user,
            MessageLength=len(message),
        )

        result = await components.relay.publish(
            ChatMessage(user=user, message=message, trace_context=context)
        )
        return ChatSendResponse(
            attempted=result.attempted,
            delivered=result.delivered,
            failed=result.failed,
            trace_id=context.trace_id if context else None,
        )


def setup_edge_routes(app: FastAPI, components: "Components") -> None:
    """Routes for the edge role: forward chat messages to the backend."""
    log = components.logger.get_logger("tracerelay.api.edge")

    @app.post("/api/chat/send", response_model=ChatSendResponse)
    async def forward_chat_message(body: ChatSendRequest, request: Request):
        """Forward a chat message to the backend, continuing the caller's trace."""
        context = get_request_context(request)

        try:
            response = await components.backend_client.send(body.user, body.message, context=context)
        except httpx.HTTPError as e:
            log.error("Backend call failed", exception=e)
            raise HTTPException(status_code=502, detail="Backend unavailable")

        if response.status_code >= 400:
            log.warning(
                "Backend rejected chat message. StatusCode: {StatusCode}",
                StatusCode=response.status_code,
            )
            raise HTTPException(status_code=502, detail=f"Backend returned {response.status_code}")

        data = response.json() if response.content else {}
        return ChatSendResponse(
            attempted=data.get("attempted", 0),
            delivered=data.get("delivered", 0),
            failed=data.get("failed", 0),
            trace_id=context.trace_id if context else None,
        )
