"""
TraceRelay Backend Client

Client the edge service uses to hand chat messages to the backend.
"""

from __future__ import annotations

from typing import Optional

import httpx

from tracerelay.observability.instrumentation.http_client import TracedHTTPClient
from tracerelay.observability.types import TraceContext

CHAT_SEND_PATH = "api/chat/send"


class BackendChatClient:
    """Posts chat messages to the backend's chat endpoint through a traced client."""

    def __init__(self, http: TracedHTTPClient):
        self.http = http

    async def send(
        self,
        user: Optional[str],
        message: Optional[str],
        context: Optional[TraceContext] = None,
    ) -> httpx.Response:
        """Send a chat message; the call continues ``context``'s trace."""
        return await self.http.post(
            CHAT_SEND_PATH,
            json={"user": user, "message": message},
            context=context,
        )

    async def aclose(self) -> None:
        await self.http.aclose()
