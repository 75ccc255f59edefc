"""LM Studio native API: stream only message.delta (reasoning hidden). See https://lmstudio.ai/docs/developer/rest."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Sequence

import httpx

from chatstream.core.errors import ProviderError
from chatstream.models.streaming import History, MediaPart

logger = logging.getLogger(__name__)


def _native_base_url(openai_base_url: str) -> str:
    """Convert OpenAI-compat base (e.g. http://localhost:1234/v1) to LM Studio native root."""
    u = (openai_base_url or "").rstrip("/")
    if u.endswith("/v1"):
        u = u[:-3]
    return u.rstrip("/") or "http://localhost:1234"


def is_lm_studio_native_url(base_url: str) -> bool:
    """Heuristic: default LM Studio port or path contains api/v1."""
    if not base_url:
        return False
    return "1234" in base_url or "/api/v1" in base_url


def _flatten_history(prompt: str, history: History) -> str:
    """Native endpoint takes a single input string: 'Role: content' paragraphs."""
    parts = []
    for m in history:
        role = m.get("role", "user")
        if role == "system":
            continue
        parts.append(f"{str(role).capitalize()}: {m.get('content', '')}")
    if not parts:
        return prompt
    parts.append(f"User: {prompt}")
    return "\n\n".join(parts)


def parse_sse_events(buf: bytes) -> tuple[list[tuple[str, Any]], bytes]:
    """Split complete SSE events off buf. Returns ([(event_type, data)], remainder)."""
    events: list[tuple[str, Any]] = []
    while b"\n\n" in buf:
        part, buf = buf.split(b"\n\n", 1)
        part = part.strip()
        if not part:
            continue
        event_type: str | None = None
        for line in part.split(b"\n"):
            line = line.strip()
            if line.startswith(b"event:"):
                event_type = line[6:].strip().decode("utf-8", errors="replace")
            elif line.startswith(b"data:") and event_type:
                raw = line[5:].strip().decode("utf-8", errors="replace")
                try:
                    events.append((event_type, json.loads(raw)))
                except json.JSONDecodeError:
                    logger.debug("skipping malformed SSE data", extra={"event": event_type})
                event_type = None
    return events, buf


class LMStudioProvider:
    """Streams via LM Studio's native /api/v1/chat SSE endpoint."""

    def __init__(
        self,
        base_url: str = "http://localhost:1234/v1",
        system: str | None = None,
        reasoning: str = "off",
        timeout: float = 120.0,
    ) -> None:
        self._root = _native_base_url(base_url)
        self._system = system
        self._reasoning = reasoning
        self._timeout = timeout

    def stream(
        self,
        credential: str,
        model: str,
        prompt: str,
        history: History = (),
        media: Sequence[MediaPart] = (),
    ) -> AsyncIterator[str]:
        """Stream via SSE: only yield message.delta content (reasoning.delta ignored)."""

        async def _stream() -> AsyncIterator[str]:
            url = f"{self._root}/api/v1/chat"
            headers = {"Content-Type": "application/json"}
            if credential:
                headers["Authorization"] = f"Bearer {credential}"
            body: dict[str, Any] = {
                "model": model,
                "input": _flatten_history(prompt, history),
                "stream": True,
                "reasoning": self._reasoning,
            }
            if self._system:
                body["system_prompt"] = self._system
            if media:
                logger.debug("LM Studio native: %d media part(s) not sent", len(media))
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                async with client.stream("POST", url, json=body, headers=headers) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise ProviderError(resp.text[:200], status=resp.status_code)
                    buf = b""
                    async for chunk in resp.aiter_bytes():
                        events, buf = parse_sse_events(buf + chunk)
                        for event_type, data in events:
                            if event_type == "message.delta":
                                content = data.get("content") or ""
                                if content:
                                    yield content
                            elif event_type == "error":
                                error = data.get("error") or {}
                                raise ProviderError(
                                    error.get("message", "stream error"),
                                    status=error.get("status") or error.get("code"),
                                )

        return _stream()
