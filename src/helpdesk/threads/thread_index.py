"""Exchange Thread-Index comparison.

A Thread-Index is base64 of a 22-byte conversation header (timestamp plus
GUID) followed by one 5-byte block per reply.  Messages of one
conversation therefore share at least the first 22 decoded bytes, and an
ancestor's index is a prefix of its descendants' indexes.
"""

from __future__ import annotations

import base64
import binascii

CONVERSATION_HEADER_BYTES = 22


def compact_thread_index(value: str) -> str:
    """Remove the whitespace left in a Thread-Index by header folding."""
    return "".join(value.split())


def decode_thread_index(value: str | None) -> bytes | None:
    """Decode a Thread-Index value, or ``None`` if it is not valid base64."""
    if not value:
        return None
    compact = compact_thread_index(value)
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError):
        return None


def lookup_prefix(value: str, min_prefix_bytes: int) -> str | None:
    """Leading base64 characters that encode whole bytes of the shared prefix.

    Used as a coarse database filter; :func:`shared_prefix_length` makes
    the final decision.

    Returns:
        The prefix, or ``None`` when *value* is too short to carry one.
    """
    compact = compact_thread_index(value)
    chars = (min_prefix_bytes // 3) * 4
    if chars == 0 or len(compact) < chars:
        return None
    return compact[:chars]


def _common_length(a: bytes | str, b: bytes | str) -> int:
    length = 0
    for left, right in zip(a, b):
        if left != right:
            break
        length += 1
    return length


def shared_prefix_length(candidate: str, target: str, min_prefix_bytes: int) -> int | None:
    """How closely *candidate* is related to *target*, or ``None`` if unrelated.

    Both values are compared as decoded bytes and must share at least
    *min_prefix_bytes*.  When either value is not valid base64 the raw
    strings are compared instead, and must share the characters
    :func:`lookup_prefix` would select.

    Returns:
        Length of the shared prefix (larger means closer), or ``None``.
    """
    candidate_bytes = decode_thread_index(candidate)
    target_bytes = decode_thread_index(target)
    if candidate_bytes is not None and target_bytes is not None:
        shared = _common_length(candidate_bytes, target_bytes)
        return shared if shared >= min_prefix_bytes else None

    candidate_text = compact_thread_index(candidate)
    target_text = compact_thread_index(target)
    shared = _common_length(candidate_text, target_text)
    threshold = max((min_prefix_bytes // 3) * 4, 1)
    return shared if shared >= threshold else None
