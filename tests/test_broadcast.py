"""
TraceRelay Broadcast Relay Tests
"""

import asyncio

import pytest

from tracerelay.observability.types import TraceContext
from tracerelay.relay.broadcast import (
    RECEIVE_MESSAGE_EVENT,
    BroadcastRelay,
    ChatMessage,
    SubscriberState,
)


def make_relay(structured_logger, **kwargs):
    options = dict(send_timeout=0.2, max_send_attempts=3, max_failures=3)
    options.update(kwargs)
    return BroadcastRelay(structured_logger, hub_name="ChatHub", **options)


class TestSubscriptions:
    """Test subscribe/unsubscribe."""

    @pytest.mark.asyncio
    async def test_subscribe_and_unsubscribe(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        subscriber = await relay.subscribe(channel_factory(), "conn-1")

        assert subscriber.connection_id == "conn-1"
        assert subscriber.state == SubscriberState.CONNECTED
        assert relay.subscriber_count == 1

        assert await relay.unsubscribe("conn-1") is True
        assert await relay.unsubscribe("conn-1") is False
        assert subscriber.state == SubscriberState.DISCONNECTED
        assert relay.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_generated_connection_id(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        a = await relay.subscribe(channel_factory())
        b = await relay.subscribe(channel_factory())
        assert a.connection_id != b.connection_id

    @pytest.mark.asyncio
    async def test_duplicate_connection_id_rejected(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        await relay.subscribe(channel_factory(), "conn-1")

        with pytest.raises(ValueError):
            await relay.subscribe(channel_factory(), "conn-1")

    def test_invalid_budget(self, structured_logger):
        with pytest.raises(ValueError):
            make_relay(structured_logger, max_send_attempts=0)


class TestPublish:
    """Test fan-out."""

    @pytest.mark.asyncio
    async def test_publish_to_all(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        channels = [channel_factory() for _ in range(3)]
        for channel in channels:
            await relay.subscribe(channel)

        result = await relay.publish(ChatMessage("ann", "hello"))

        assert result.attempted == 3
        assert result.delivered == 3
        assert result.failed == 0
        for channel in channels:
            assert channel.events == [{"event": RECEIVE_MESSAGE_EVENT, "user": "ann", "message": "hello"}]

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self, structured_logger):
        result = await make_relay(structured_logger).publish(ChatMessage("ann", "hello"))
        assert result.attempted == 0
        assert result.delivered == 0

    @pytest.mark.asyncio
    async def test_failing_subscriber_isolated(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        first, broken, third = channel_factory(), channel_factory(fail=True), channel_factory()
        await relay.subscribe(first, "c1")
        await relay.subscribe(broken, "c2")
        await relay.subscribe(third, "c3")

        result = await relay.publish(ChatMessage("ann", "hello"))

        assert result.delivered == 2
        assert result.failed == 1
        assert len(first.events) == 1
        assert len(third.events) == 1
        assert broken.send_calls == 3
        assert result.disconnected == ["c2"]
        assert broken.closed
        assert relay.subscriber_count == 2

    @pytest.mark.asyncio
    async def test_failure_count_accumulates_across_publishes(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger, max_send_attempts=1, max_failures=2)
        broken = channel_factory(fail=True)
        subscriber = await relay.subscribe(broken, "c1")

        first = await relay.publish(ChatMessage("ann", "one"))
        assert subscriber.failure_count == 1
        assert first.disconnected == []

        second = await relay.publish(ChatMessage("ann", "two"))
        assert second.disconnected == ["c1"]
        assert subscriber.state == SubscriberState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_overlapping_publishes_disconnect_once(self, structured_logger, memory_sink, channel_factory):
        relay = make_relay(structured_logger, max_send_attempts=1, max_failures=1)
        broken = channel_factory(fail=True, delay=0.02)
        await relay.subscribe(broken, "c1")

        first, second = await asyncio.gather(
            relay.publish(ChatMessage("ann", "one")),
            relay.publish(ChatMessage("ann", "two")),
        )

        assert first.failed == 1
        assert second.failed == 1
        assert first.disconnected + second.disconnected == ["c1"]
        assert relay.get_stats()["subscribers_disconnected"] == 1
        warnings = [r for r in memory_sink.records if r.template.startswith("Subscriber disconnected")]
        assert len(warnings) == 1

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger, max_send_attempts=1, max_failures=3)
        channel = channel_factory(fail=True)
        subscriber = await relay.subscribe(channel)

        await relay.publish(ChatMessage("ann", "one"))
        assert subscriber.failure_count == 1

        channel.fail = False
        await relay.publish(ChatMessage("ann", "two"))
        assert subscriber.failure_count == 0

    @pytest.mark.asyncio
    async def test_slow_subscriber_times_out(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger, max_send_attempts=1, max_failures=5)
        fast, slow = channel_factory(), channel_factory(delay=1.0)
        await relay.subscribe(fast)
        slow_subscriber = await relay.subscribe(slow)

        result = await relay.publish(ChatMessage("ann", "hello"), timeout=0.05)

        assert result.delivered == 1
        assert result.failed == 1
        assert slow_subscriber.failure_count == 1

    @pytest.mark.asyncio
    async def test_snapshot_excludes_late_subscriber(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        slow = channel_factory(delay=0.05)
        await relay.subscribe(slow)
        late = channel_factory()

        publish = asyncio.create_task(relay.publish(ChatMessage("ann", "hello")))
        await asyncio.sleep(0.01)
        await relay.subscribe(late)
        result = await publish

        assert result.attempted == 1
        assert late.events == []

    @pytest.mark.asyncio
    async def test_publish_logs_with_correlation(self, structured_logger, memory_sink, channel_factory):
        relay = make_relay(structured_logger)
        await relay.subscribe(channel_factory())
        ctx = TraceContext.new_root()

        await relay.publish(ChatMessage("ann", "hello", trace_context=ctx))

        received, broadcast = memory_sink.records
        assert received.message == "Chat message received. User: ann, MessageLength: 5"
        assert received.fields["Hub"] == "ChatHub"
        assert received.trace_id == ctx.trace_id
        assert broadcast.fields["Delivered"] == 1
        assert broadcast.trace_id == ctx.trace_id

    @pytest.mark.asyncio
    async def test_stats(self, structured_logger, channel_factory):
        relay = make_relay(structured_logger)
        await relay.subscribe(channel_factory())
        await relay.publish(ChatMessage("ann", "hello"))

        stats = relay.get_stats()
        assert stats["messages_published"] == 1
        assert stats["deliveries"] == 1
        assert stats["subscribers"] == 1
