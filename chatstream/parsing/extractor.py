"""Tag extractor: rescan the whole normalized buffer per chunk, emit each action once.

Session holds per-attempt state (buffer + dedup record). The orchestrator owns it
and calls begin_attempt() before every provider attempt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional

from chatstream.core.actions import Action, ActionKind, MessageSend
from chatstream.parsing.echo import remove_echo
from chatstream.parsing.grammar import TagGrammar, has_table_or_code
from chatstream.parsing.normalizer import normalize_buffer

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """One turn's parser state. buffer and dedup sets are reset per attempt."""

    quoted_text: Optional[str] = None
    buffer: str = ""
    dispatched: dict[ActionKind, set[str]] = field(default_factory=dict)
    resolved_blocks: set[str] = field(default_factory=set)
    attempt: int = 0
    aborted: bool = False
    # False once the turn ended; an external collaborator may resume the thread
    active: bool = True

    def begin_attempt(self) -> None:
        self.buffer = ""
        self.dispatched.clear()
        self.resolved_blocks.clear()
        self.aborted = False
        self.attempt += 1

    def append(self, chunk: str) -> None:
        self.buffer += chunk

    def mark(self, action: Action) -> bool:
        """Record action's dedup key; False if it was already dispatched."""
        keys = self.dispatched.setdefault(action.kind, set())
        if action.dedup_key in keys:
            return False
        keys.add(action.dedup_key)
        return True

    def has_dispatched(self, kind: ActionKind | None = None) -> bool:
        if kind is not None:
            return bool(self.dispatched.get(kind))
        return any(self.dispatched.values())


class TagExtractor:
    """Applies the grammar table to a Session buffer."""

    def __init__(self, grammar: TagGrammar | None = None, echo_filter: bool = False) -> None:
        self._grammar = grammar or TagGrammar()
        self._echo_filter = echo_filter

    @property
    def grammar(self) -> TagGrammar:
        return self._grammar

    def extract(self, session: Session, *, final: bool = False) -> list[Action]:
        """New actions found in session.buffer, in grammar priority order.

        final=True is the end-of-stream pass: a quoted reply's trailing text may
        then end at the end of the buffer instead of at the next tag.
        """
        buffer = normalize_buffer(session.buffer)
        found: list[Action] = []
        for rule in self._grammar.rules:
            for match in rule.pattern_for(final).finditer(buffer):
                action = rule.build(match, self._grammar)
                if action is None:
                    continue
                if rule.block:
                    if not isinstance(action, MessageSend):
                        raise TypeError(f"block rule {rule.name} built {action!r}")
                    found.extend(self._resolve_block(action, session))
                elif session.mark(action):
                    found.append(action)
        return found

    def finish(self, session: Session) -> list[Action]:
        """Final pass at stream completion, followed by the plain-text flush."""
        found = self.extract(session, final=True)
        flushed = self.flush_plain_text(session)
        if flushed is not None:
            found.append(flushed)
        return found

    def flush_plain_text(self, session: Session) -> Optional[MessageSend]:
        """Send text outside all tags once, if nothing else carried the reply.

        Tables and fenced code are always flushed since models tend to emit
        them outside [msg] blocks.
        """
        # raw buffer: the normalizer would space out brackets inside code and links
        plain = self._grammar.plain_text(session.buffer)
        if not plain:
            return None
        if session.has_dispatched(ActionKind.MESSAGE) and not has_table_or_code(plain):
            return None
        message = MessageSend(text=plain)
        if not session.mark(message):
            return None
        logger.debug("flushing plain text", extra={"chars": len(plain)})
        return message

    def _resolve_block(self, block: MessageSend, session: Session) -> list[Action]:
        key = block.dedup_key
        if key in session.resolved_blocks:
            return []
        session.resolved_blocks.add(key)
        found = list(self._extract_inline(block.raw_text, session))
        text = self._grammar.strip_inline(block.raw_text)
        if (
            text
            and self._echo_filter
            and block.quote_index is not None
            and session.quoted_text
        ):
            text = remove_echo(text, session.quoted_text)
        if text:
            message = block.model_copy(update={"text": text})
            if session.mark(message):
                found.append(message)
        return found

    def _extract_inline(self, raw_text: str, session: Session) -> Iterator[Action]:
        text = normalize_buffer(raw_text)
        for rule in self._grammar.inline_rules:
            for match in rule.pattern.finditer(text):
                action = rule.build(match, self._grammar)
                if action is not None and session.mark(action):
                    yield action
