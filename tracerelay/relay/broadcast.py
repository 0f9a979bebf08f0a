"""
TraceRelay Broadcast Relay

Fans a chat message out to every connected subscriber:
- delivery works on a snapshot of the subscriber set
- each send attempt is bounded by a timeout
- repeated failures disconnect the subscriber
- a failing subscriber never affects delivery to the others
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from tracerelay.core.errors import SubscriberSendError
from tracerelay.observability.logging.engine import StructuredLogger
from tracerelay.observability.types import TraceContext

logger = structlog.get_logger(__name__)

RECEIVE_MESSAGE_EVENT = "ReceiveMessage"


class BroadcastChannel(ABC):
    """Transport to one subscriber."""

    @abstractmethod
    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver one event. Raises on failure."""

    async def close(self) -> None:
        """Close the underlying connection."""


class SubscriberState(str, Enum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass
class Subscriber:
    """A connected receiver of broadcast messages."""
    connection_id: str
    channel: BroadcastChannel
    state: SubscriberState = SubscriberState.CONNECTED
    failure_count: int = 0
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_connected(self) -> bool:
        return self.state == SubscriberState.CONNECTED

    def to_dict(self) -> dict:
        return {
            "connection_id": self.connection_id,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "connected_at": self.connected_at.isoformat(),
        }


@dataclass
class ChatMessage:
    """A chat message in flight; never persisted."""
    user: str
    message: str
    trace_context: Optional[TraceContext] = None

    def payload(self) -> Dict[str, str]:
        return {"user": self.user, "message": self.message}


@dataclass
class PublishResult:
    """Outcome of one publish."""
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    disconnected: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
            "disconnected": list(self.disconnected),
        }


class BroadcastRelay:
    """
    Subscriber registry and fan-out.

    Usage:
        relay = BroadcastRelay(structured_logger, hub_name="ChatHub")
        subscriber = await relay.subscribe(channel)
        result = await relay.publish(ChatMessage("ann", "hi", ctx))
    """

    def __init__(
        self,
        structured_logger: StructuredLogger,
        hub_name: str = "ChatHub",
        send_timeout: float = 5.0,
        max_send_attempts: int = 3,
        max_failures: int = 3,
    ):
        if max_send_attempts < 1:
            raise ValueError("max_send_attempts must be at least 1")
        if max_failures < 1:
            raise ValueError("max_failures must be at least 1")

        self.hub_name = hub_name
        self.send_timeout = send_timeout
        self.max_send_attempts = max_send_attempts
        self.max_failures = max_failures

        self._log = structured_logger.get_logger("tracerelay.relay")
        self._subscribers: Dict[str, Subscriber] = {}
        self._lock = asyncio.Lock()

        self._stats = {
            "messages_published": 0,
            "deliveries": 0,
            "delivery_failures": 0,
            "send_attempts": 0,
            "subscribers_disconnected": 0,
        }

    # === Subscribers ===

    async def subscribe(
        self,
        channel: BroadcastChannel,
        connection_id: Optional[str] = None,
    ) -> Subscriber:
        """Register a channel; it receives every message published afterwards."""
        connection_id = connection_id or uuid.uuid4().hex
        subscriber = Subscriber(connection_id=connection_id, channel=channel)

        async with self._lock:
            if connection_id in self._subscribers:
                raise ValueError(f"Connection already subscribed: {connection_id}")
            self._subscribers[connection_id] = subscriber

        logger.debug("Subscriber added", connection_id=connection_id, hub=self.hub_name)
        return subscriber

    async def unsubscribe(self, connection_id: str) -> bool:
        """Remove a subscriber. Returns False when it was not registered."""
        async with self._lock:
            subscriber = self._subscribers.pop(connection_id, None)
            if subscriber is not None:
                subscriber.state = SubscriberState.DISCONNECTED

        if subscriber is None:
            return False

        logger.debug("Subscriber removed", connection_id=connection_id, hub=self.hub_name)
        return True

    async def subscribers(self) -> List[Subscriber]:
        async with self._lock:
            return list(self._subscribers.values())

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # === Publish ===

    async def publish(self, message: ChatMessage, timeout: Optional[float] = None) -> PublishResult:
        """
        Deliver a message to every subscriber connected at call time.

        Args:
            message: Message to broadcast
            timeout: Per-attempt send timeout overriding ``send_timeout``

        Returns:
            PublishResult with delivered and failed counts. Subscriber
            failures never raise.
        """
        self._stats["messages_published"] += 1
        result = PublishResult()

        with self._log.begin_scope(Hub=self.hub_name):
            self._log.info(
                "Chat message received. User: {User}, MessageLength: {MessageLength}",
                User=message.user,
                MessageLength=len(message.message or ""),
                correlation=message.trace_context,
            )

            async with self._lock:
                snapshot = [s for s in self._subscribers.values() if s.is_connected]

            result.attempted = len(snapshot)
            payload = message.payload()
            outcomes = await asyncio.gather(
                *(self._deliver(s, payload, timeout) for s in snapshot),
                return_exceptions=True,
            )

            for subscriber, outcome in zip(snapshot, outcomes):
                if outcome is True:
                    result.delivered += 1
                    continue

                result.failed += 1
                if isinstance(outcome, BaseException):
                    logger.error(
                        "Unexpected delivery error",
                        connection_id=subscriber.connection_id,
                        error=str(outcome),
                    )
                if subscriber.failure_count >= self.max_failures:
                    if await self._disconnect(subscriber, message):
                        result.disconnected.append(subscriber.connection_id)

            self._stats["deliveries"] += result.delivered
            self._stats["delivery_failures"] += result.failed

            self._log.info(
                "Chat message broadcast. Delivered: {Delivered}, Failed: {Failed}",
                Delivered=result.delivered,
                Failed=result.failed,
                Disconnected=len(result.disconnected),
                correlation=message.trace_context,
            )

        return result

    async def _deliver(
        self,
        subscriber: Subscriber,
        payload: Dict[str, Any],
        timeout: Optional[float],
    ) -> bool:
        """Send to one subscriber within its attempt and failure budget."""
        send_timeout = timeout if timeout is not None else self.send_timeout

        for attempt in range(self.max_send_attempts):
            self._stats["send_attempts"] += 1
            try:
                await asyncio.wait_for(
                    subscriber.channel.send(RECEIVE_MESSAGE_EVENT, payload),
                    timeout=send_timeout,
                )
                subscriber.failure_count = 0
                return True
            except asyncio.CancelledError:
                subscriber.failure_count += 1
                raise
            except asyncio.TimeoutError:
                error = SubscriberSendError(subscriber.connection_id, f"timed out after {send_timeout}s")
            except Exception as e:
                error = SubscriberSendError(subscriber.connection_id, str(e) or type(e).__name__)

            subscriber.failure_count += 1
            logger.debug(
                "Subscriber send attempt failed",
                connection_id=subscriber.connection_id,
                attempt=attempt + 1,
                failure_count=subscriber.failure_count,
                error=error.reason,
            )
            if subscriber.failure_count >= self.max_failures:
                break

        return False

    async def _disconnect(self, subscriber: Subscriber, message: ChatMessage) -> bool:
        """Remove a failing subscriber. Returns False when another caller already did."""
        async with self._lock:
            if not subscriber.is_connected:
                return False
            if self._subscribers.get(subscriber.connection_id) is subscriber:
                del self._subscribers[subscriber.connection_id]
            subscriber.state = SubscriberState.DISCONNECTED
        self._stats["subscribers_disconnected"] += 1

        self._log.warning(
            "Subscriber disconnected after repeated send failures. ConnectionId: {ConnectionId}",
            ConnectionId=subscriber.connection_id,
            FailureCount=subscriber.failure_count,
            correlation=message.trace_context,
        )

        try:
            await subscriber.channel.close()
        except Exception as e:
            logger.debug("Channel close failed", connection_id=subscriber.connection_id, error=str(e))
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get relay statistics."""
        return {
            **self._stats,
            "hub": self.hub_name,
            "subscribers": len(self._subscribers),
        }
