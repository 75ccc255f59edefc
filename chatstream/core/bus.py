"""Event Bus: Redis pub/sub for turn requests, cancellations, actions and turn results."""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

import redis.asyncio as aioredis
from pydantic import BaseModel

from chatstream.core.events import ActionEvent, CancelTurn, TurnFinished, TurnRequest

logger = logging.getLogger(__name__)

# Channel names
CH_TURN_REQUEST = "chatstream:turn_request"
CH_CANCEL_TURN = "chatstream:cancel_turn"
CH_ACTION = "chatstream:action"
CH_TURN_FINISHED = "chatstream:turn_finished"


def _serialize(payload: BaseModel) -> str:
    return payload.model_dump_json()


def _deserialize(raw: bytes, model: type[BaseModel]) -> BaseModel:
    return model.model_validate_json(raw.decode("utf-8"))


class EventBus:
    """Redis-backed event bus. Publish events and subscribe with async handlers."""

    _channel_models: dict[str, type[BaseModel]] = {
        CH_TURN_REQUEST: TurnRequest,
        CH_CANCEL_TURN: CancelTurn,
        CH_ACTION: ActionEvent,
        CH_TURN_FINISHED: TurnFinished,
    }

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._client: aioredis.Redis | None = None
        self._pubsub: aioredis.client.PubSub | None = None
        self._handlers: dict[str, list[Callable[..., Awaitable[None]]]] = {}
        self._running = False

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=False,
            )
            await self._client.ping()
        logger.info("EventBus connected to Redis")

    async def disconnect(self) -> None:
        if self._pubsub:
            await self._pubsub.close()
            self._pubsub = None
        if self._client:
            await self._client.close()
            self._client = None
        self._running = False

    async def _ensure_connected(self) -> None:
        if self._client is None:
            await self.connect()

    async def _publish(self, channel: str, payload: BaseModel) -> None:
        await self._ensure_connected()
        await self._client.publish(channel, _serialize(payload))

    async def publish_turn_request(self, payload: TurnRequest) -> None:
        await self._publish(CH_TURN_REQUEST, payload)
        logger.debug("published turn_request", extra={"turn_id": payload.turn_id})

    async def publish_cancel(self, payload: CancelTurn) -> None:
        await self._publish(CH_CANCEL_TURN, payload)
        logger.debug("published cancel_turn", extra={"turn_id": payload.turn_id})

    async def publish_action(self, payload: ActionEvent) -> None:
        await self._publish(CH_ACTION, payload)

    async def publish_turn_finished(self, payload: TurnFinished) -> None:
        await self._publish(CH_TURN_FINISHED, payload)
        logger.debug(
            "published turn_finished",
            extra={"turn_id": payload.turn_id, "outcome": payload.outcome.value},
        )

    def subscribe_turn_requests(self, handler: Callable[[TurnRequest], Awaitable[None]]) -> None:
        self._handlers.setdefault(CH_TURN_REQUEST, []).append(handler)

    def subscribe_cancellations(self, handler: Callable[[CancelTurn], Awaitable[None]]) -> None:
        self._handlers.setdefault(CH_CANCEL_TURN, []).append(handler)

    def subscribe_actions(self, handler: Callable[[ActionEvent], Awaitable[None]]) -> None:
        self._handlers.setdefault(CH_ACTION, []).append(handler)

    def subscribe_turn_finished(self, handler: Callable[[TurnFinished], Awaitable[None]]) -> None:
        self._handlers.setdefault(CH_TURN_FINISHED, []).append(handler)

    async def run_listener(self) -> None:
        """Run the pub/sub listener and dispatch to handlers. Blocks until stop."""
        await self._ensure_connected()
        self._pubsub = self._client.pubsub()
        channels = [ch for ch in self._channel_models if ch in self._handlers]
        if not channels:
            logger.warning("EventBus listener started without handlers")
            return
        await self._pubsub.subscribe(*channels)
        self._running = True
        logger.info("EventBus listener started", extra={"channels": channels})
        try:
            async for message in self._pubsub.listen():
                if not self._running:
                    break
                if message["type"] != "message":
                    continue
                await self._dispatch(message)
        finally:
            await self._pubsub.unsubscribe()
            self._running = False

    async def _dispatch(self, message: dict) -> None:
        ch = message["channel"]
        if isinstance(ch, bytes):
            ch = ch.decode("utf-8")
        data = message.get("data")
        model_cls = self._channel_models.get(ch)
        if not model_cls or not data:
            return
        try:
            payload = _deserialize(data, model_cls)
        except Exception as e:
            logger.warning("failed to deserialize event", extra={"channel": ch, "error": str(e)})
            return
        for handler in self._handlers.get(ch, []):
            try:
                await handler(payload)
            except Exception as e:
                logger.exception("handler failed for %s: %s", ch, e)

    def stop(self) -> None:
        self._running = False
