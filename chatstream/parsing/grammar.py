"""Tag grammar table: one TagRule per action kind, processed by a single generic loop.

Rules are listed in dispatch priority: reaction, sticker, quoted reply, message
block, undo, card, image. Decorations come first so they register even when the
text that follows is malformed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from chatstream.core.actions import (
    Action,
    ActionKind,
    Card,
    Image,
    MessageSend,
    Reaction,
    Sticker,
    Undo,
    UndoRange,
)

DEFAULT_REACTIONS = frozenset({"heart", "haha", "wow", "sad", "angry", "like"})

REACTION_RE = re.compile(r"\[reaction:(?:(\d+):)?(\w+)\]", re.IGNORECASE)
STICKER_RE = re.compile(r"\[sticker:(\w+)\]", re.IGNORECASE)
# Quoted reply also takes the plain text after [/quote] up to the next tag.
# While streaming that text is only complete once the next "[" has arrived.
QUOTE_RE = re.compile(
    r"\[quote:(-?\d+)\]([\s\S]*?)\[/quote\]\s*([^\[]*?)(?=\[)", re.IGNORECASE
)
QUOTE_FINAL_RE = re.compile(
    r"\[quote:(-?\d+)\]([\s\S]*?)\[/quote\]\s*([^\[]*?)(?=\[|\Z)", re.IGNORECASE
)
MSG_RE = re.compile(r"\[msg\]([\s\S]*?)\[/msg\]", re.IGNORECASE)
UNDO_RE = re.compile(r"\[undo:(all|-?\d+(?::-?\d+)?)\]", re.IGNORECASE)
CARD_RE = re.compile(r"\[card(?::(\w+))?\]", re.IGNORECASE)
IMAGE_RE = re.compile(r"\[image:(https?://[^\]\s]+)\]([\s\S]*?)\[/image\]", re.IGNORECASE)
# Tool calls belong to another collaborator: never parsed, only excluded from plain text.
TOOL_RE = re.compile(
    r"\[tool:\w+(?:\s+[^\]]*?)?\](?:\s*\{[\s\S]*?\}\s*\[/tool\])?", re.IGNORECASE
)
TABLE_OR_CODE_RE = re.compile(r"(\|[^\n]+\|\n\|[-:\s|]+\|)|(```\w*\n[\s\S]*?```)")
# runs of spaces left between words after a nested tag was removed
_GAP_RE = re.compile(r"(?<=\S)[ \t]{2,}(?=\S)")


@dataclass(frozen=True)
class TagRule:
    """One row of the grammar table.

    block rules ([quote], [msg]) produce a MessageSend whose text may contain
    nested inline tags; the extractor resolves those before dispatch.
    inline rules may also appear nested inside a block.
    """

    name: str
    kind: ActionKind
    pattern: re.Pattern[str]
    build: Callable[[re.Match[str], "TagGrammar"], Optional[Action]]
    final_pattern: Optional[re.Pattern[str]] = None
    block: bool = False
    inline: bool = False

    def pattern_for(self, final: bool) -> re.Pattern[str]:
        if final and self.final_pattern is not None:
            return self.final_pattern
        return self.pattern


def _build_reaction(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    reaction = m.group(2).lower()
    if reaction not in grammar.reactions:
        return None
    index = int(m.group(1)) if m.group(1) is not None else None
    return Reaction(reaction=reaction, index=index)


def _build_sticker(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    return Sticker(keyword=m.group(1))


def _build_quote(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    inside = m.group(2).strip()
    after = m.group(3).strip()
    raw = f"{inside} {after}".strip() if after else inside
    if not raw:
        return None
    return MessageSend(text=raw, raw_text=raw, quote_index=int(m.group(1)))


def _build_msg(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    raw = m.group(1).strip()
    if not raw:
        return None
    return MessageSend(text=raw, raw_text=raw)


def parse_undo_target(spec: str) -> Undo:
    """'all' | '-1' | '-1:-3' -> Undo action."""
    spec = spec.lower()
    if spec == "all":
        return Undo(target="all", spec=spec)
    if ":" in spec:
        start, end = spec.split(":", 1)
        return Undo(target=UndoRange(start=int(start), end=int(end)), spec=spec)
    return Undo(target=int(spec), spec=spec)


def _build_undo(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    return parse_undo_target(m.group(1))


def _build_card(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    return Card(user_id=m.group(1) or None)


def _build_image(m: re.Match[str], grammar: "TagGrammar") -> Optional[Action]:
    caption = m.group(2).strip()
    return Image(url=m.group(1), caption=caption or None)


DEFAULT_RULES: tuple[TagRule, ...] = (
    TagRule("reaction", ActionKind.REACTION, REACTION_RE, _build_reaction, inline=True),
    TagRule("sticker", ActionKind.STICKER, STICKER_RE, _build_sticker, inline=True),
    TagRule(
        "quote",
        ActionKind.MESSAGE,
        QUOTE_RE,
        _build_quote,
        final_pattern=QUOTE_FINAL_RE,
        block=True,
    ),
    TagRule("msg", ActionKind.MESSAGE, MSG_RE, _build_msg, block=True),
    TagRule("undo", ActionKind.UNDO, UNDO_RE, _build_undo, inline=True),
    TagRule("card", ActionKind.CARD, CARD_RE, _build_card, inline=True),
    TagRule("image", ActionKind.IMAGE, IMAGE_RE, _build_image),
)


class TagGrammar:
    """Rule table plus the closed sets it validates against (reaction whitelist)."""

    def __init__(
        self,
        reactions: Iterable[str] = DEFAULT_REACTIONS,
        rules: tuple[TagRule, ...] = DEFAULT_RULES,
    ) -> None:
        self.reactions = frozenset(r.lower() for r in reactions)
        self.rules = rules

    @property
    def inline_rules(self) -> list[TagRule]:
        return [r for r in self.rules if r.inline]

    def strip_inline(self, text: str) -> str:
        """Remove nested inline tags (reaction, sticker, undo, card) from block text."""
        for rule in self.inline_rules:
            text = rule.pattern.sub("", text)
        return _GAP_RE.sub(" ", text).strip()

    def plain_text(self, buffer: str) -> str:
        """Text left after removing every recognized tag construct, tool calls included."""
        # blocks first: a quote's trailing text ends at the next tag, so inline
        # tags must still be in place when it is matched
        ordered = sorted(self.rules, key=lambda r: not r.block)
        for rule in ordered:
            buffer = rule.pattern_for(final=True).sub("", buffer)
        return TOOL_RE.sub("", buffer).strip()


def has_table_or_code(text: str) -> bool:
    return bool(TABLE_OR_CODE_RE.search(text))
