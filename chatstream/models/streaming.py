"""Streaming contract for provider adapters.

Every provider opens one streaming completion per attempt and yields content
deltas as plain strings. Credential and model are chosen per attempt by the
FailoverController, so adapters must not cache a fixed key or model.

- OpenAI Chat Completions stream: delta.content per chunk.
- LM Studio native SSE: message.delta (reasoning.delta is hidden).

Errors are raised as they occur, mid-stream included. Adapters raise
chatstream.core.errors.ProviderError carrying the HTTP status where one exists;
the orchestrator classifies it with classify_error().
"""

from __future__ import annotations

from enum import Enum
from typing import Any, AsyncIterator, Optional, Protocol, Sequence, runtime_checkable

from pydantic import BaseModel, Field


class MediaType(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"


class MediaPart(BaseModel):
    """Attachment sent with the prompt: a URL or inline base64 data."""

    type: MediaType = MediaType.IMAGE
    url: Optional[str] = None
    mime_type: Optional[str] = None
    base64: Optional[str] = Field(default=None, repr=False)

    def data_url(self) -> Optional[str]:
        if self.base64:
            return f"data:{self.mime_type or 'application/octet-stream'};base64,{self.base64}"
        return self.url


History = Sequence[dict[str, Any]]


@runtime_checkable
class ChatProvider(Protocol):
    """Provider that streams one completion for the given credential and model."""

    def stream(
        self,
        credential: str,
        model: str,
        prompt: str,
        history: History = (),
        media: Sequence[MediaPart] = (),
    ) -> AsyncIterator[str]:
        """Yield content deltas. history is a list of {"role", "content"} messages."""
        ...
