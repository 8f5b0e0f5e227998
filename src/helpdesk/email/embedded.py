"""Threading headers embedded in HTML bodies by the outbound send path.

Some providers rewrite or drop ``Message-ID`` / ``In-Reply-To`` /
``References`` on messages that pass through their compose pipeline.  The
send path therefore copies the original values into the HTML body between
two sentinel comments::

    <!--[RFC2822-THREADING-HEADERS-START]-->
    Message-ID: <abc@example.com>
    In-Reply-To: <parent@example.com>
    References: <root@example.com> <parent@example.com>
    Thread-Topic: Order #42
    Thread-Index: AdmZ...
    <!--[RFC2822-THREADING-HEADERS-END]-->

Parsing and rendering live side by side so the format changes in one place.
"""

from __future__ import annotations

import html
import re
from collections.abc import Mapping

START_SENTINEL = "<!--[RFC2822-THREADING-HEADERS-START]-->"
END_SENTINEL = "<!--[RFC2822-THREADING-HEADERS-END]-->"

# Header name as written in the block -> ThreadingHeaders field.
EMBEDDED_FIELDS: dict[str, str] = {
    "Message-ID": "message_id",
    "In-Reply-To": "in_reply_to",
    "References": "references",
    "Thread-Topic": "thread_topic",
    "Thread-Index": "thread_index",
}

_FIELD_BY_KEY = {name.lower(): field for name, field in EMBEDDED_FIELDS.items()}

_BLOCK_RE = re.compile(
    re.escape(START_SENTINEL) + r"(.*?)" + re.escape(END_SENTINEL),
    re.DOTALL,
)
_LINE_BREAK_RE = re.compile(r"\r?\n|\r|<br\s*/?>", re.IGNORECASE)


def find_embedded_block(html_body: str | None) -> str | None:
    """Return the text between the first start/end sentinel pair.

    A start sentinel with no matching end sentinel counts as no block.

    Args:
        html_body: The HTML body of the message.

    Returns:
        The raw block content, or ``None`` when no complete block exists.
    """
    if not html_body or START_SENTINEL not in html_body:
        return None
    match = _BLOCK_RE.search(html_body)
    if match is None:
        return None
    return match.group(1)


def parse_embedded_block(block: str) -> dict[str, str]:
    """Parse ``Key: value`` lines of an embedded block into field values.

    Unknown keys and blank values are ignored; the first occurrence of a
    key wins.

    Args:
        block: Content returned by :func:`find_embedded_block`.

    Returns:
        A dict keyed by ``ThreadingHeaders`` field name.
    """
    values: dict[str, str] = {}
    for line in _LINE_BREAK_RE.split(block):
        key, sep, value = line.partition(":")
        if not sep:
            continue
        field = _FIELD_BY_KEY.get(key.strip().lower())
        if field is None or field in values:
            continue
        value = html.unescape(value).strip()
        if value:
            values[field] = value
    return values


def render_embedded_block(headers: Mapping[str, str | None]) -> str:
    """Render threading header values in the block format parsed above.

    Args:
        headers: Values keyed by ``ThreadingHeaders`` field name.  ``None``
            and blank values are left out.

    Returns:
        The sentinel-delimited block, one header per line.
    """
    lines = [START_SENTINEL]
    for name, field in EMBEDDED_FIELDS.items():
        value = headers.get(field)
        if value and value.strip():
            lines.append(f"{name}: {value.strip()}")
    lines.append(END_SENTINEL)
    return "\n".join(lines)
