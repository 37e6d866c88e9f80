from __future__ import annotations

import os
import unicodedata


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_name(value, *, max_chars: int = 0) -> str | None:
    """Validate a nickname or room name.

    Returns the trimmed name, or None when it cannot be used on the wire.
    """
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars and len(s) > int(max_chars):
        return None

    # Names are space-delimited tokens in PRIVATE/NEWNICK/MESSAGE lines, so
    # embedded whitespace would make them unaddressable.
    for ch in s:
        if ch.isspace() or unicodedata.category(ch) == "Cc":
            return None

    return s
