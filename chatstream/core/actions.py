"""Actions produced by the tag extractor. All actions are frozen Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class ActionKind(str, Enum):
    """Action categories. Dedup state is kept per kind."""

    REACTION = "reaction"
    STICKER = "sticker"
    MESSAGE = "message"
    UNDO = "undo"
    CARD = "card"
    IMAGE = "image"


class _Action(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def dedup_key(self) -> str:
        raise NotImplementedError


class Reaction(_Action):
    """[reaction:heart] or [reaction:2:heart] (react to message #2)."""

    kind: Literal[ActionKind.REACTION] = ActionKind.REACTION
    reaction: str
    index: Optional[int] = None

    @property
    def dedup_key(self) -> str:
        if self.index is not None:
            return f"reaction:{self.index}:{self.reaction}"
        return f"reaction:{self.reaction}"

    @property
    def spec(self) -> str:
        """Form handed to the sink: "heart" or "2:heart"."""
        if self.index is not None:
            return f"{self.index}:{self.reaction}"
        return self.reaction


class Sticker(_Action):
    kind: Literal[ActionKind.STICKER] = ActionKind.STICKER
    keyword: str

    @property
    def dedup_key(self) -> str:
        return f"sticker:{self.keyword}"


class MessageSend(_Action):
    """Text message; quote_index set when replying to a specific message.

    raw_text is the block content before nested tags were stripped; the dedup
    key is built from it so the same block never fires twice.
    """

    kind: Literal[ActionKind.MESSAGE] = ActionKind.MESSAGE
    text: str
    quote_index: Optional[int] = None
    raw_text: str = Field(default="", exclude=True)

    @property
    def dedup_key(self) -> str:
        source = self.raw_text or self.text
        if self.quote_index is not None:
            return f"quote:{self.quote_index}:{source}"
        return f"msg:{source}"


class UndoRange(BaseModel):
    """Inclusive range of message indexes; direction follows the sign of start - end."""

    model_config = ConfigDict(frozen=True)

    start: int
    end: int

    def indexes(self) -> list[int]:
        step = -1 if self.start > self.end else 1
        return list(range(self.start, self.end + step, step))


UndoTarget = Union[int, UndoRange, Literal["all"]]


class Undo(_Action):
    kind: Literal[ActionKind.UNDO] = ActionKind.UNDO
    target: UndoTarget
    spec: str = Field(description="Literal target as written in the tag, e.g. '-1', '-1:-3', 'all'")

    @property
    def dedup_key(self) -> str:
        return f"undo:{self.spec}"


class Card(_Action):
    kind: Literal[ActionKind.CARD] = ActionKind.CARD
    user_id: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        return f"card:{self.user_id or ''}"


class Image(_Action):
    kind: Literal[ActionKind.IMAGE] = ActionKind.IMAGE
    url: str
    caption: Optional[str] = None

    @property
    def dedup_key(self) -> str:
        return f"image:{self.url}"


Action = Union[Reaction, Sticker, MessageSend, Undo, Card, Image]
