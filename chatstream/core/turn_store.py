"""Turn Store: finished turns per thread in Redis, so a collaborator can resume the conversation."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as aioredis
from pydantic import BaseModel, Field

from chatstream.core.events import TurnOutcome

logger = logging.getLogger(__name__)

KEY_PREFIX = "chatstream:turn:"
THREAD_PREFIX = "chatstream:thread:"
TTL = 3600 * 24  # 24h
THREAD_HISTORY_MAX = 50


class TurnRecord(BaseModel):
    turn_id: str
    thread_id: Optional[str] = None
    outcome: TurnOutcome
    transcript: str = ""
    model: Optional[str] = None
    attempts: int = 0
    error_kind: Optional[str] = None
    # inactive = the turn ended; the thread may be resumed by a new turn
    active: bool = False
    finished_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class TurnStore:
    """Turn records in Redis; each thread keeps a capped list of its turn ids."""

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._client: aioredis.Redis | None = None

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._client.ping()

    async def close(self) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    def _key(self, turn_id: str) -> str:
        return f"{KEY_PREFIX}{turn_id}"

    def _thread_key(self, thread_id: str) -> str:
        return f"{THREAD_PREFIX}{thread_id}"

    async def save(self, record: TurnRecord) -> None:
        await self.connect()
        await self._client.set(self._key(record.turn_id), record.model_dump_json(), ex=TTL)
        if record.thread_id:
            key = self._thread_key(record.thread_id)
            await self._client.lpush(key, record.turn_id)
            await self._client.ltrim(key, 0, THREAD_HISTORY_MAX - 1)
            await self._client.expire(key, TTL)
        logger.debug(
            "turn recorded",
            extra={"turn_id": record.turn_id, "outcome": record.outcome.value},
        )

    async def get(self, turn_id: str) -> TurnRecord | None:
        await self.connect()
        raw = await self._client.get(self._key(turn_id))
        if not raw:
            return None
        try:
            return TurnRecord.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValueError):
            logger.warning("corrupt turn record", extra={"turn_id": turn_id})
            return None

    async def last_for_thread(self, thread_id: str) -> TurnRecord | None:
        """Most recent recorded turn of a thread."""
        await self.connect()
        ids = await self._client.lrange(self._thread_key(thread_id), 0, 0)
        if not ids:
            return None
        return await self.get(ids[0])

    async def list_for_thread(self, thread_id: str, limit: int = 10) -> list[TurnRecord]:
        await self.connect()
        ids = await self._client.lrange(self._thread_key(thread_id), 0, max(limit, 1) - 1)
        records = []
        for turn_id in ids:
            record = await self.get(turn_id)
            if record is not None:
                records.append(record)
        return records
