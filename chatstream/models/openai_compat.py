"""OpenAI-compatible chat completions provider (OpenAI, Gemini OpenAI endpoint, Ollama, llama.cpp)."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Sequence

import openai
from openai import AsyncOpenAI

from chatstream.core.errors import ProviderError
from chatstream.models.streaming import History, MediaPart, MediaType

logger = logging.getLogger(__name__)


def build_messages(
    prompt: str,
    history: History = (),
    media: Sequence[MediaPart] = (),
    system: str | None = None,
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.extend(dict(m) for m in history)
    images = [m.data_url() for m in media if m.type == MediaType.IMAGE and m.data_url()]
    if images:
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in images)
        messages.append({"role": "user", "content": content})
    else:
        messages.append({"role": "user", "content": prompt})
    return messages


class OpenAIChatProvider:
    """Streams chat completions. One AsyncOpenAI client per credential, created lazily."""

    def __init__(
        self,
        base_url: str | None = None,
        system: str | None = None,
        timeout: float = 120.0,
    ) -> None:
        self._base_url = base_url
        self._system = system
        self._timeout = timeout
        self._clients: dict[str, AsyncOpenAI] = {}

    def _client_for(self, credential: str) -> AsyncOpenAI:
        client = self._clients.get(credential)
        if client is None:
            client = AsyncOpenAI(
                api_key=credential,
                base_url=self._base_url,
                timeout=self._timeout,
                max_retries=0,
            )
            self._clients[credential] = client
        return client

    def stream(
        self,
        credential: str,
        model: str,
        prompt: str,
        history: History = (),
        media: Sequence[MediaPart] = (),
    ) -> AsyncIterator[str]:
        """Async generator of content deltas."""

        async def _stream() -> AsyncIterator[str]:
            client = self._client_for(credential)
            messages = build_messages(prompt, history, media, system=self._system)
            try:
                stream = await client.chat.completions.create(
                    model=model,
                    messages=messages,
                    stream=True,
                )
                async for chunk in stream:
                    delta = chunk.choices[0].delta if chunk.choices else None
                    if delta and getattr(delta, "content", None):
                        yield delta.content
            except openai.APIStatusError as e:
                raise ProviderError(str(e.message), status=e.status_code) from e
            except openai.APIConnectionError as e:
                raise ProviderError(f"connection failed: {e}") from e

        return _stream()
