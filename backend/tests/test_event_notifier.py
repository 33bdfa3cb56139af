"""
Unit Tests for the Gate Event Notifier

Run with: pytest tests/test_event_notifier.py -v
"""

from unittest.mock import AsyncMock

import pytest

from services.event_notifier import EventNotifier, GateEvent


def fake_socket():
    websocket = AsyncMock()
    websocket.accept = AsyncMock()
    websocket.send_json = AsyncMock()
    return websocket


class TestEventNotifier:
    """Test subscriber registry and broadcast."""

    @pytest.mark.asyncio
    async def test_connect_accepts_and_registers(self):
        notifier = EventNotifier()
        websocket = fake_socket()

        conn_id = await notifier.connect(websocket)

        websocket.accept.assert_awaited_once()
        assert conn_id
        assert notifier.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_publish_reaches_every_subscriber(self):
        notifier = EventNotifier()
        sockets = [fake_socket(), fake_socket()]
        for websocket in sockets:
            await notifier.connect(websocket)

        delivered = await notifier.publish(GateEvent.MATCHED.value, {"outcome": "MATCHED"})

        assert delivered == 2
        for websocket in sockets:
            message = websocket.send_json.await_args.args[0]
            assert message["event"] == "gate:matched"
            assert message["data"] == {"outcome": "MATCHED"}
            assert "timestamp" in message

    @pytest.mark.asyncio
    async def test_publish_accepts_enum(self):
        notifier = EventNotifier()
        websocket = fake_socket()
        await notifier.connect(websocket)

        await notifier.publish(GateEvent.INVALID, {})

        assert websocket.send_json.await_args.args[0]["event"] == "gate:invalid"

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        assert await EventNotifier().publish(GateEvent.MISMATCH.value, {}) == 0

    @pytest.mark.asyncio
    async def test_failed_subscriber_is_dropped(self):
        notifier = EventNotifier()
        healthy, broken = fake_socket(), fake_socket()
        broken.send_json.side_effect = RuntimeError("socket closed")
        await notifier.connect(healthy)
        await notifier.connect(broken)

        delivered = await notifier.publish(GateEvent.MISMATCH.value, {"outcome": "MISMATCHED"})

        assert delivered == 1
        assert notifier.subscriber_count == 1

    @pytest.mark.asyncio
    async def test_disconnect(self):
        notifier = EventNotifier()
        conn_id = await notifier.connect(fake_socket())

        notifier.disconnect(conn_id)
        notifier.disconnect(conn_id)

        assert notifier.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_late_subscriber_misses_earlier_events(self):
        notifier = EventNotifier()
        await notifier.publish(GateEvent.MATCHED.value, {"n": 1})

        late = fake_socket()
        await notifier.connect(late)

        late.send_json.assert_not_awaited()
