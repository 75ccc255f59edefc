"""Turn Service: subscribes to the Event Bus and runs each TurnRequest as its own task."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from chatstream.core.bus import EventBus
from chatstream.core.events import CancelTurn, TurnFinished, TurnRequest
from chatstream.core.orchestrator import StreamOrchestrator, TurnResult
from chatstream.core.sinks import BusActionSink
from chatstream.core.turn_store import TurnRecord, TurnStore

logger = logging.getLogger(__name__)


class TurnService:
    """Bridges bus events and the StreamOrchestrator. One cancel Event per running turn."""

    def __init__(
        self,
        bus: EventBus,
        orchestrator: StreamOrchestrator,
        store: Optional[TurnStore] = None,
    ) -> None:
        self._bus = bus
        self._orchestrator = orchestrator
        self._store = store
        self._cancels: dict[str, asyncio.Event] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    @property
    def running_turns(self) -> list[str]:
        return list(self._tasks)

    async def start(self) -> None:
        await self._bus.connect()
        if self._store:
            await self._store.connect()
        self._bus.subscribe_turn_requests(self._on_turn_request)
        self._bus.subscribe_cancellations(self._on_cancel)
        logger.info("TurnService started")

    async def stop(self) -> None:
        for cancel in self._cancels.values():
            cancel.set()
        if self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        self._bus.stop()
        await self._bus.disconnect()
        if self._store:
            await self._store.close()

    async def run_forever(self) -> None:
        """Run the event bus listener (blocks)."""
        await self._bus.run_listener()

    async def _on_turn_request(self, payload: TurnRequest) -> None:
        if payload.turn_id in self._tasks:
            logger.warning("duplicate turn request ignored", extra={"turn_id": payload.turn_id})
            return
        self._cancels[payload.turn_id] = asyncio.Event()
        task = asyncio.create_task(self._process_turn(payload))
        self._tasks[payload.turn_id] = task
        task.add_done_callback(lambda t, turn_id=payload.turn_id: self._on_turn_done(turn_id, t))

    async def _on_cancel(self, payload: CancelTurn) -> None:
        cancel = self._cancels.get(payload.turn_id)
        if cancel is None:
            logger.debug("cancel for unknown turn", extra={"turn_id": payload.turn_id})
            return
        cancel.set()
        logger.info("turn cancel requested", extra={"turn_id": payload.turn_id})

    def _on_turn_done(self, turn_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(turn_id, None)
        self._cancels.pop(turn_id, None)
        if task.cancelled():
            logger.warning("turn task cancelled", extra={"turn_id": turn_id})
            return
        exc = task.exception()
        if exc is not None:
            logger.error("turn %s crashed: %s", turn_id, exc, exc_info=exc)

    async def _process_turn(self, payload: TurnRequest) -> TurnResult:
        sink = BusActionSink(self._bus, payload.turn_id, payload.thread_id)
        result = await self._orchestrator.generate(
            payload.prompt,
            payload.history,
            payload.media,
            sink,
            self._cancels.get(payload.turn_id),
            thread_id=payload.thread_id,
            quoted_text=payload.quoted_text,
        )
        kind = result.error_kind.value if result.error_kind else None
        await self._bus.publish_turn_finished(
            TurnFinished(
                turn_id=payload.turn_id,
                thread_id=payload.thread_id,
                outcome=result.outcome,
                transcript=result.transcript,
                error=str(result.error) if result.error else None,
                error_kind=kind,
            )
        )
        if self._store:
            try:
                await self._store.save(
                    TurnRecord(
                        turn_id=payload.turn_id,
                        thread_id=payload.thread_id,
                        outcome=result.outcome,
                        transcript=result.transcript,
                        model=result.model,
                        attempts=result.attempts,
                        error_kind=kind,
                    )
                )
            except Exception as e:
                logger.exception("failed to record turn %s: %s", payload.turn_id, e)
        return result
