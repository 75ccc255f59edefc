"""Action Sink: the interface through which dispatched actions reach a messaging platform.

The orchestrator calls exactly one of the on_* action hooks per action, in
dispatch order, then on_complete() (success, or cancellation after partial
output) or on_error() (terminal failure), each at most once per turn.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, Optional, Protocol, runtime_checkable

from chatstream.core.actions import (
    Action,
    Card,
    Image,
    MessageSend,
    Reaction,
    Sticker,
    Undo,
    UndoRange,
    UndoTarget,
)
from chatstream.core.errors import ActionDispatchError
from chatstream.core.events import ActionEvent

if TYPE_CHECKING:
    from chatstream.core.bus import EventBus

logger = logging.getLogger(__name__)


@runtime_checkable
class ActionSink(Protocol):
    async def on_reaction(self, reaction: str) -> None: ...

    async def on_sticker(self, keyword: str) -> None: ...

    async def on_message(self, text: str, quote_index: Optional[int] = None) -> None:
        """Must return only once the message is delivered."""
        ...

    async def on_undo(self, target: UndoTarget) -> None: ...

    async def on_card(self, user_id: Optional[str] = None) -> None: ...

    async def on_image(self, url: str, caption: Optional[str] = None) -> None: ...

    async def on_complete(self) -> None: ...

    async def on_error(self, error: BaseException) -> None: ...


async def dispatch_action(sink: ActionSink, action: Action) -> None:
    """Route one action to its sink hook. Sink failures become ActionDispatchError."""
    try:
        if isinstance(action, Reaction):
            await sink.on_reaction(action.spec)
        elif isinstance(action, Sticker):
            await sink.on_sticker(action.keyword)
        elif isinstance(action, MessageSend):
            await sink.on_message(action.text, action.quote_index)
        elif isinstance(action, Undo):
            await sink.on_undo(action.target)
        elif isinstance(action, Card):
            await sink.on_card(action.user_id)
        elif isinstance(action, Image):
            await sink.on_image(action.url, action.caption)
        else:
            raise TypeError(f"unknown action {action!r}")
    except Exception as e:
        raise ActionDispatchError(f"{action.kind.value} dispatch failed: {e}") from e


class CallbackSink:
    """Sink built from optional async callables; missing hooks are no-ops."""

    def __init__(
        self,
        on_reaction: Optional[Callable[[str], Awaitable[None]]] = None,
        on_sticker: Optional[Callable[[str], Awaitable[None]]] = None,
        on_message: Optional[Callable[[str, Optional[int]], Awaitable[None]]] = None,
        on_undo: Optional[Callable[[UndoTarget], Awaitable[None]]] = None,
        on_card: Optional[Callable[[Optional[str]], Awaitable[None]]] = None,
        on_image: Optional[Callable[[str, Optional[str]], Awaitable[None]]] = None,
        on_complete: Optional[Callable[[], Awaitable[None]]] = None,
        on_error: Optional[Callable[[BaseException], Awaitable[None]]] = None,
    ) -> None:
        self._reaction = on_reaction
        self._sticker = on_sticker
        self._message = on_message
        self._undo = on_undo
        self._card = on_card
        self._image = on_image
        self._complete = on_complete
        self._error = on_error

    async def on_reaction(self, reaction: str) -> None:
        if self._reaction:
            await self._reaction(reaction)

    async def on_sticker(self, keyword: str) -> None:
        if self._sticker:
            await self._sticker(keyword)

    async def on_message(self, text: str, quote_index: Optional[int] = None) -> None:
        if self._message:
            await self._message(text, quote_index)

    async def on_undo(self, target: UndoTarget) -> None:
        if self._undo:
            await self._undo(target)

    async def on_card(self, user_id: Optional[str] = None) -> None:
        if self._card:
            await self._card(user_id)

    async def on_image(self, url: str, caption: Optional[str] = None) -> None:
        if self._image:
            await self._image(url, caption)

    async def on_complete(self) -> None:
        if self._complete:
            await self._complete()

    async def on_error(self, error: BaseException) -> None:
        if self._error:
            await self._error(error)


def _undo_spec(target: UndoTarget) -> str:
    if isinstance(target, UndoRange):
        return f"{target.start}:{target.end}"
    return str(target)


class BusActionSink:
    """Publishes every action as an ActionEvent; channel adapters perform them.

    on_complete/on_error are not published here: the service publishes one
    TurnFinished per turn with the transcript.
    """

    def __init__(self, bus: "EventBus", turn_id: str, thread_id: Optional[str] = None) -> None:
        self._bus = bus
        self._turn_id = turn_id
        self._thread_id = thread_id
        self._seq = 0
        self.completed = False
        self.error: Optional[BaseException] = None

    async def _publish(self, action: Action) -> None:
        event = ActionEvent(
            turn_id=self._turn_id, thread_id=self._thread_id, seq=self._seq, action=action
        )
        self._seq += 1
        await self._bus.publish_action(event)

    async def on_reaction(self, reaction: str) -> None:
        index, _, name = reaction.rpartition(":")
        await self._publish(Reaction(reaction=name, index=int(index) if index else None))

    async def on_sticker(self, keyword: str) -> None:
        await self._publish(Sticker(keyword=keyword))

    async def on_message(self, text: str, quote_index: Optional[int] = None) -> None:
        await self._publish(MessageSend(text=text, quote_index=quote_index))

    async def on_undo(self, target: UndoTarget) -> None:
        await self._publish(Undo(target=target, spec=_undo_spec(target)))

    async def on_card(self, user_id: Optional[str] = None) -> None:
        await self._publish(Card(user_id=user_id))

    async def on_image(self, url: str, caption: Optional[str] = None) -> None:
        await self._publish(Image(url=url, caption=caption))

    async def on_complete(self) -> None:
        self.completed = True

    async def on_error(self, error: BaseException) -> None:
        self.error = error
        logger.warning("turn %s failed: %s", self._turn_id, error)
