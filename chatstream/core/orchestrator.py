"""Stream orchestrator: one turn = retry loop of provider attempts feeding the tag extractor.

States: starting -> streaming -> succeeded | retrying | failed | cancelled.
Rate limit and permission errors rotate credential/model and retry at once;
overload errors retry on the same selection after exponential backoff;
anything else fails the turn. Dispatched actions are never retracted.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Awaitable, Callable, Collection, Optional, Sequence

from chatstream.core.errors import ErrorKind, InputTooLargeError, TurnCancelled, classify_error
from chatstream.core.events import TurnOutcome
from chatstream.core.sinks import ActionSink, dispatch_action
from chatstream.models.failover import FailoverController, Selection
from chatstream.models.streaming import ChatProvider, History, MediaPart
from chatstream.parsing.extractor import Session, TagExtractor

logger = logging.getLogger(__name__)

MAX_THREAD_SESSIONS = 1000
# per-part overhead of the fallback estimate (prompt part plus each media part)
TOKENS_PER_PART = 100

TokenCounter = Callable[[str, Sequence[MediaPart]], int]


def estimate_tokens(prompt: str, media: Sequence[MediaPart]) -> int:
    """Rough input size: four characters per token plus a fixed cost per part."""
    return math.ceil(len(prompt) / 4) + TOKENS_PER_PART * (1 + len(media))


def limit_message(tokens: int, limit: int) -> str:
    return (
        f"Message too long: {tokens:,}/{limit:,} tokens, {tokens - limit:,} over the limit. "
        "Please send a shorter message or file."
    )


@dataclass
class TurnResult:
    transcript: str
    outcome: TurnOutcome
    attempts: int
    model: Optional[str] = None
    error: Optional[BaseException] = None
    error_kind: Optional[ErrorKind] = None


class StreamOrchestrator:
    """Runs turns against a provider, sharing one FailoverController across turns."""

    def __init__(
        self,
        provider: ChatProvider,
        failover: FailoverController,
        extractor: TagExtractor | None = None,
        *,
        max_retries: int = 3,
        base_delay: float = 2.0,
        overload_status_codes: Optional[Collection[int]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_input_tokens: Optional[int] = None,
        count_tokens: TokenCounter = estimate_tokens,
        max_sessions: int = MAX_THREAD_SESSIONS,
    ) -> None:
        self._provider = provider
        self._failover = failover
        self._extractor = extractor or TagExtractor()
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._overload_codes = overload_status_codes
        self._sleep = sleep
        self._max_input_tokens = max_input_tokens
        self._count_tokens = count_tokens
        self._max_sessions = max_sessions
        # thread_id -> last session of that thread, least recently used first
        self._sessions: dict[str, Session] = {}

    def backoff_delay(self, retry: int) -> float:
        """Delay before overload retry number `retry` (1-based)."""
        return self._base_delay * 2 ** (retry - 1)

    def session_for(self, thread_id: str) -> Optional[Session]:
        return self._sessions.get(thread_id)

    def release(self, thread_id: str) -> None:
        self._sessions.pop(thread_id, None)

    def _remember(self, thread_id: str, session: Session) -> None:
        self._sessions.pop(thread_id, None)
        self._sessions[thread_id] = session
        excess = len(self._sessions) - self._max_sessions
        if excess <= 0:
            return
        # evict finished threads, oldest first; running turns keep their session
        stale = [key for key, s in self._sessions.items() if not s.active][:excess]
        for key in stale:
            del self._sessions[key]

    def _input_tokens(self, prompt: str, media: Sequence[MediaPart]) -> Optional[int]:
        try:
            return self._count_tokens(prompt, media)
        except Exception as e:
            logger.warning("token count failed, proceeding anyway: %s", e)
            return None

    async def generate(
        self,
        prompt: str,
        history: History,
        media: Sequence[MediaPart],
        sink: ActionSink,
        cancel: Optional[asyncio.Event] = None,
        *,
        thread_id: Optional[str] = None,
        quoted_text: Optional[str] = None,
    ) -> TurnResult:
        """Run one turn. result.transcript is the final buffer, partial on failure or cancel.

        Never raises for provider or sink errors: those end in on_error and a
        FAILED result. asyncio.CancelledError (task cancellation) propagates.
        Input over max_input_tokens is refused before any provider call.
        """
        session = Session(quoted_text=quoted_text)
        if self._max_input_tokens is not None:
            tokens = self._input_tokens(prompt, media)
            if tokens is not None and tokens > self._max_input_tokens:
                return await self._input_too_large(session, sink, thread_id, tokens)
        if thread_id:
            self._remember(thread_id, session)
        overload_retries = 0
        last_error: Optional[BaseException] = None
        last_kind: Optional[ErrorKind] = None
        model: Optional[str] = None
        logger.debug(
            "turn starting",
            extra={"thread_id": thread_id or "none", "media": len(media), "prompt_chars": len(prompt)},
        )
        while True:
            if _is_set(cancel):
                return await self._cancelled(session, sink, thread_id, model)
            selection = self._failover.current()
            model = selection.model
            session.begin_attempt()
            try:
                await self._stream_attempt(session, sink, cancel, selection, prompt, history, media)
            except TurnCancelled:
                return await self._cancelled(session, sink, thread_id, model)
            except Exception as e:
                last_error = e
                last_kind = classify_error(e, self._overload_codes)
                if last_kind == ErrorKind.RATE_LIMITED:
                    if self._failover.on_rate_limited():
                        logger.warning(
                            "rate limited, retrying now with credential #%d (%s)",
                            self._failover.current_credential_index + 1,
                            self._failover.current_model,
                            extra={"attempt": session.attempt},
                        )
                        continue
                    logger.error("rate limited and no credential or model left")
                elif last_kind == ErrorKind.PERMISSION_DENIED:
                    if self._failover.on_permission_denied():
                        logger.warning(
                            "permission denied, retrying now with credential #%d",
                            self._failover.current_credential_index + 1,
                            extra={"attempt": session.attempt},
                        )
                        continue
                    logger.error("permission denied and no credential left")
                elif last_kind == ErrorKind.TRANSIENT_OVERLOAD and overload_retries < self._max_retries:
                    overload_retries += 1
                    delay = self.backoff_delay(overload_retries)
                    logger.warning(
                        "provider overloaded, retry %d/%d in %.1fs",
                        overload_retries,
                        self._max_retries,
                        delay,
                        extra={"error": str(e)},
                    )
                    if await self._backoff(delay, cancel):
                        return await self._cancelled(session, sink, thread_id, model)
                    continue
                break
            else:
                if overload_retries:
                    logger.info("succeeded after %d overload retries", overload_retries)
                self._end_session(thread_id, session, keep=True)
                await _notify(sink, "on_complete")
                return TurnResult(
                    transcript=session.buffer,
                    outcome=TurnOutcome.SUCCEEDED,
                    attempts=session.attempt,
                    model=model,
                )

        logger.error(
            "turn failed: %s",
            last_error,
            extra={"error_kind": last_kind.value if last_kind else None, "attempt": session.attempt},
        )
        self._end_session(thread_id, session, keep=False)
        await _notify(sink, "on_error", last_error)
        return TurnResult(
            transcript=session.buffer,
            outcome=TurnOutcome.FAILED,
            attempts=session.attempt,
            model=model,
            error=last_error,
            error_kind=last_kind,
        )

    async def _stream_attempt(
        self,
        session: Session,
        sink: ActionSink,
        cancel: Optional[asyncio.Event],
        selection: Selection,
        prompt: str,
        history: History,
        media: Sequence[MediaPart],
    ) -> None:
        stream = self._provider.stream(
            selection.credential, selection.model, prompt, history, media
        )
        async for chunk in stream:
            if _is_set(cancel):
                raise TurnCancelled()
            if not chunk:
                continue
            session.append(chunk)
            for action in self._extractor.extract(session):
                await dispatch_action(sink, action)
        # a sink may request cancellation while the last chunk is dispatched
        if _is_set(cancel):
            raise TurnCancelled()
        for action in self._extractor.finish(session):
            await dispatch_action(sink, action)

    async def _backoff(self, delay: float, cancel: Optional[asyncio.Event]) -> bool:
        """Sleep for delay; True if cancelled meanwhile."""
        if cancel is None:
            await self._sleep(delay)
            return False
        sleeper = asyncio.ensure_future(self._sleep(delay))
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, waiter):
                task.cancel()
        return cancel.is_set()

    async def _cancelled(
        self,
        session: Session,
        sink: ActionSink,
        thread_id: Optional[str],
        model: Optional[str],
    ) -> TurnResult:
        session.aborted = True
        partial = session.has_dispatched()
        logger.info("turn cancelled", extra={"partial": partial, "chars": len(session.buffer)})
        self._end_session(thread_id, session, keep=True)
        if partial:
            await _notify(sink, "on_complete")
        return TurnResult(
            transcript=session.buffer,
            outcome=TurnOutcome.CANCELLED,
            attempts=session.attempt,
            model=model,
            error_kind=ErrorKind.CANCELLED,
        )

    async def _input_too_large(
        self,
        session: Session,
        sink: ActionSink,
        thread_id: Optional[str],
        tokens: int,
    ) -> TurnResult:
        limit = self._max_input_tokens or 0
        logger.warning("input token limit exceeded: %d/%d", tokens, limit)
        message = limit_message(tokens, limit)
        self._end_session(thread_id, session, keep=False)
        await _notify(sink, "on_message", message)
        await _notify(sink, "on_complete")
        return TurnResult(
            transcript=message,
            outcome=TurnOutcome.FAILED,
            attempts=0,
            error=InputTooLargeError(tokens, limit),
            error_kind=ErrorKind.INPUT_TOO_LARGE,
        )

    def _end_session(self, thread_id: Optional[str], session: Session, keep: bool) -> None:
        session.active = False
        if not thread_id:
            return
        if keep:
            self._remember(thread_id, session)
        else:
            self._sessions.pop(thread_id, None)


def _is_set(cancel: Optional[asyncio.Event]) -> bool:
    return cancel is not None and cancel.is_set()


async def _notify(sink: ActionSink, hook: str, *args: object) -> None:
    """Call a terminal sink hook. Its failure is logged; the turn result stands."""
    try:
        await getattr(sink, hook)(*args)
    except Exception:
        logger.exception("sink %s failed", hook)
