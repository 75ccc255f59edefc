"""Event payloads for the Event Bus. All events are Pydantic models."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, Field

from chatstream.core.actions import Card, Image, MessageSend, Reaction, Sticker, Undo
from chatstream.models.streaming import MediaPart

ActionPayload = Annotated[
    Union[Reaction, Sticker, MessageSend, Undo, Card, Image],
    Field(discriminator="kind"),
]


class TurnOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TurnRequest(BaseModel):
    """Published by a channel adapter: generate a reply for one conversation turn."""

    turn_id: str = Field(description="Unique id; used to cancel the turn")
    thread_id: Optional[str] = Field(default=None, description="Conversation id; None = one-off turn")
    prompt: str
    history: list[dict[str, Any]] = Field(default_factory=list)
    media: list[MediaPart] = Field(default_factory=list)
    quoted_text: Optional[str] = Field(
        default=None, description="Text of the message being replied to (echo filter)"
    )


class CancelTurn(BaseModel):
    """Stop a running turn at its next checkpoint (e.g. the user sent a newer message)."""

    turn_id: str


class ActionEvent(BaseModel):
    """One dispatched action. Channel adapters perform it on the messaging platform."""

    turn_id: str
    thread_id: Optional[str] = None
    seq: int = Field(description="Order of dispatch within the turn")
    action: ActionPayload


class TurnFinished(BaseModel):
    """Terminal event of a turn. transcript is kept for conversation continuity."""

    turn_id: str
    thread_id: Optional[str] = None
    outcome: TurnOutcome
    transcript: str = ""
    error: Optional[str] = None
    error_kind: Optional[str] = None
