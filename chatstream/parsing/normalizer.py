"""Repair tags glued to surrounding text so the grammar table matches reliably.

"[reaction:heart]text"      -> "[reaction:heart] text"
"text[sticker:hi]more"      -> "text [sticker:hi] more"
"""

from __future__ import annotations

import re

_AFTER_CLOSE = re.compile(r"\]([^\s\[\]])")
_BEFORE_OPEN = re.compile(r"([^\s\[\]])\[")


def normalize_buffer(text: str) -> str:
    """Insert a space after ']' and before '[' when glued to a non-space, non-bracket char.

    Adjacent tags ("][") are left alone. Idempotent.
    """
    if not text or ("[" not in text and "]" not in text):
        return text
    text = _AFTER_CLOSE.sub(r"] \1", text)
    return _BEFORE_OPEN.sub(r"\1 [", text)
