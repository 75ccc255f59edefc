"""Tests for Event Bus (serialization, publish and dispatch with mocked Redis)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from chatstream.core.actions import Reaction, Undo, UndoRange
from chatstream.core.bus import (
    CH_ACTION,
    CH_CANCEL_TURN,
    CH_TURN_FINISHED,
    CH_TURN_REQUEST,
    EventBus,
    _deserialize,
    _serialize,
)
from chatstream.core.events import (
    ActionEvent,
    CancelTurn,
    TurnFinished,
    TurnOutcome,
    TurnRequest,
)


def _mock_client():
    mock_client = MagicMock()
    mock_client.ping = AsyncMock()
    mock_client.publish = AsyncMock()
    mock_client.close = AsyncMock()
    return mock_client


def test_serialize_deserialize_turn_request():
    payload = TurnRequest(turn_id="t1", thread_id="c1", prompt="hi", history=[{"role": "user", "content": "a"}])
    back = _deserialize(_serialize(payload).encode("utf-8"), TurnRequest)
    assert back.turn_id == "t1"
    assert back.history == [{"role": "user", "content": "a"}]


def test_serialize_deserialize_action_event():
    payload = ActionEvent(
        turn_id="t1",
        seq=3,
        action=Undo(target=UndoRange(start=-1, end=-2), spec="-1:-2"),
    )
    back = _deserialize(_serialize(payload).encode("utf-8"), ActionEvent)
    assert isinstance(back.action, Undo)
    assert back.action.target == UndoRange(start=-1, end=-2)
    assert back.seq == 3


@pytest.mark.asyncio
async def test_bus_connect_and_publish():
    try:
        import redis.asyncio as aioredis

        r = aioredis.from_url("redis://localhost:6379/12")
        await r.ping()
        await r.close()
    except Exception:
        pytest.skip("Redis not available")
    bus = EventBus("redis://localhost:6379/12")
    await bus.connect()
    await bus.publish_cancel(CancelTurn(turn_id="t1"))
    await bus.disconnect()


@pytest.mark.asyncio
async def test_bus_publish_with_mock_redis():
    mock_client = _mock_client()
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = EventBus("redis://fake:6379/0")
        await bus.publish_turn_request(TurnRequest(turn_id="t1", prompt="hi"))
        await bus.publish_cancel(CancelTurn(turn_id="t1"))
        await bus.publish_action(ActionEvent(turn_id="t1", seq=0, action=Reaction(reaction="heart")))
        await bus.publish_turn_finished(
            TurnFinished(turn_id="t1", outcome=TurnOutcome.SUCCEEDED, transcript="x")
        )
        channels = [c.args[0] for c in mock_client.publish.call_args_list]
        assert channels == [CH_TURN_REQUEST, CH_CANCEL_TURN, CH_ACTION, CH_TURN_FINISHED]
        m.from_url.assert_called_once()
        await bus.disconnect()
        mock_client.close.assert_awaited_once()
        assert bus._client is None


@pytest.mark.asyncio
async def test_dispatch_routes_to_handlers():
    bus = EventBus("redis://fake:6379/0")
    received = []

    async def on_request(payload):
        received.append(payload)

    bus.subscribe_turn_requests(on_request)
    raw = _serialize(TurnRequest(turn_id="t9", prompt="yo")).encode("utf-8")
    await bus._dispatch({"type": "message", "channel": CH_TURN_REQUEST.encode(), "data": raw})
    assert [p.turn_id for p in received] == ["t9"]


@pytest.mark.asyncio
async def test_dispatch_ignores_bad_payload_and_handler_errors():
    bus = EventBus("redis://fake:6379/0")
    calls = []

    async def failing(payload):
        calls.append(payload)
        raise RuntimeError("handler bug")

    bus.subscribe_cancellations(failing)
    await bus._dispatch({"type": "message", "channel": CH_CANCEL_TURN, "data": b"not json"})
    assert calls == []
    raw = _serialize(CancelTurn(turn_id="t1")).encode("utf-8")
    await bus._dispatch({"type": "message", "channel": CH_CANCEL_TURN, "data": raw})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_run_listener_subscribes_handled_channels():
    mock_client = _mock_client()
    mock_pubsub = MagicMock()
    mock_pubsub.subscribe = AsyncMock()
    mock_pubsub.unsubscribe = AsyncMock()
    mock_pubsub.close = AsyncMock()
    raw = _serialize(CancelTurn(turn_id="t1")).encode("utf-8")

    async def listen():
        yield {"type": "subscribe", "channel": CH_CANCEL_TURN.encode(), "data": 1}
        yield {"type": "message", "channel": CH_CANCEL_TURN.encode(), "data": raw}

    mock_pubsub.listen = listen
    mock_client.pubsub = MagicMock(return_value=mock_pubsub)
    received = []

    async def on_cancel(payload):
        received.append(payload.turn_id)

    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = EventBus("redis://fake:6379/0")
        bus.subscribe_cancellations(on_cancel)
        await bus.run_listener()
    mock_pubsub.subscribe.assert_awaited_once_with(CH_CANCEL_TURN)
    mock_pubsub.unsubscribe.assert_awaited_once()
    assert received == ["t1"]


@pytest.mark.asyncio
async def test_run_listener_without_handlers_returns():
    mock_client = _mock_client()
    mock_pubsub = MagicMock()
    mock_pubsub.subscribe = AsyncMock()
    mock_client.pubsub = MagicMock(return_value=mock_pubsub)
    with patch("chatstream.core.bus.aioredis") as m:
        m.from_url = MagicMock(return_value=mock_client)
        bus = EventBus("redis://fake:6379/0")
        await bus.run_listener()
    mock_pubsub.subscribe.assert_not_called()
