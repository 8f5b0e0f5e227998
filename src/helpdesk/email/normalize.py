"""Normalization of Message-IDs, References chains, and subject lines.

Provides helpers for:
- Putting Message-IDs into a single comparable ``<local@domain>`` form
- Splitting a raw References header into individual Message-IDs
- Stripping reply/forward prefixes from subject lines
"""

from __future__ import annotations

import re

# Separators seen in the wild: whitespace, folded lines, commas, and ids
# packed back to back ("<a@x><b@y>").
_REFERENCE_SPLIT_RE = re.compile(r"[\s,<>]+")

_SUBJECT_PREFIX_RE = re.compile(
    r"^\s*(?:re|fwd?|aw|wg|sv|antw)(?:\s*\[\d+\])?\s*:\s*",
    re.IGNORECASE,
)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_message_id(raw: str | None) -> str | None:
    """Return *raw* as ``<local@domain>``, or ``None`` when it is blank.

    Brackets and the whitespace inside them are rebuilt, so ``a@x``,
    ``<a@x>`` and ``< a@x >`` all compare equal.

    Args:
        raw: A Message-ID header value as it appeared on the wire.

    Returns:
        The bracketed Message-ID, or ``None``.
    """
    if raw is None:
        return None
    inner = raw.strip().strip("<>").strip()
    if not inner:
        return None
    return f"<{inner}>"


def parse_references(raw: str | None) -> list[str]:
    """Split a References header into normalized Message-IDs.

    Tokens without an ``@`` are not Message-IDs and are dropped.  Duplicates
    are removed, keeping the first (most ancestral) occurrence.

    Args:
        raw: The raw References header value.

    Returns:
        Normalized Message-IDs in header order.  Empty when nothing usable
        was found.
    """
    if not raw:
        return []

    ids: list[str] = []
    seen: set[str] = set()
    for token in _REFERENCE_SPLIT_RE.split(raw):
        if "@" not in token:
            continue
        message_id = f"<{token}>"
        if message_id not in seen:
            seen.add(message_id)
            ids.append(message_id)
    return ids


def normalize_subject(subject: str | None) -> str:
    """Strip any number of reply/forward prefixes and collapse whitespace.

    ``"RE: Fwd: Re[2]:  Order  #42"`` becomes ``"Order #42"``.
    """
    if not subject:
        return ""
    value = subject
    while True:
        stripped = _SUBJECT_PREFIX_RE.sub("", value, count=1)
        if stripped == value:
            break
        value = stripped
    return _WHITESPACE_RE.sub(" ", value).strip()
