"""Echo filter for quoted replies: drop replies that only repeat the quoted message.

Disabled unless parser.echo_filter_enabled is set.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.8

_PUNCT_SPACE = re.compile(r"[?!.,;:\s]+")
_LEADING_SEPARATOR = re.compile(r"^[:\->]+\s*")


def _normalize(text: str) -> str:
    return _PUNCT_SPACE.sub("", text.lower()).strip()


def positional_similarity(a: str, b: str) -> float:
    """Share of positions where both strings hold the same character."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    matches = sum(1 for x, y in zip(a, b) if x == y)
    return matches / max_len


def remove_echo(reply: str, original: str) -> str:
    """Return reply without echoed content; '' means the whole reply is an echo."""
    if not original:
        return reply
    norm_original = _normalize(original)
    if not norm_original:
        # original was only punctuation
        return reply
    norm_reply = _normalize(reply)
    if norm_reply == norm_original:
        logger.debug("echo filter: exact match", extra={"preview": reply[:50]})
        return ""
    similarity = positional_similarity(norm_reply, norm_original)
    if similarity > SIMILARITY_THRESHOLD:
        logger.debug("echo filter: similarity %.2f", similarity, extra={"preview": reply[:50]})
        return ""
    if reply.lower().strip().startswith(original.lower().strip()):
        remaining = reply.strip()[len(original.strip()):].strip()
        return _LEADING_SEPARATOR.sub("", remaining).strip()
    quoted = re.compile(
        r"^[\"']?" + re.escape(original.strip()) + r"[\"']?\s*[:\-–—→>]?\s*", re.IGNORECASE
    )
    if quoted.match(reply):
        return quoted.sub("", reply, count=1).strip()
    return reply
