"""Reply header construction for the outbound send path.

Provides helpers for:
- Deriving the threading headers of a reply from its parent's headers
- Building the RFC 2822 and ``X-`` namespaced headers sent with a reply
- Rendering the embedded header block placed at the top of the reply's HTML body

The namespaced headers and the embedded block are what
:mod:`helpdesk.email.headers` reads back when the provider echoes the
message to us.
"""

from __future__ import annotations

from email.utils import make_msgid

from helpdesk.email.embedded import render_embedded_block
from helpdesk.email.headers import NAMESPACED_HEADERS, STANDARD_HEADERS
from helpdesk.email.models import ThreadingHeaders
from helpdesk.email.normalize import normalize_message_id, normalize_subject, parse_references


def reply_threading_headers(
    parent: ThreadingHeaders,
    subject: str,
    *,
    domain: str | None = None,
    message_id: str | None = None,
) -> ThreadingHeaders:
    """Derive the threading headers of a reply to *parent*.

    ``References`` is the parent's chain followed by the parent's own
    Message-ID, without duplicates.

    Args:
        parent: Threading headers of the message being replied to.
        subject: Subject line of the reply.
        domain: Domain used when generating a new Message-ID.
        message_id: Use this Message-ID instead of generating one.

    Returns:
        The reply's ``ThreadingHeaders``.
    """
    own_id = normalize_message_id(message_id) or make_msgid(domain=domain)
    parent_id = normalize_message_id(parent.message_id)

    chain = parse_references(parent.references)
    if parent_id and parent_id not in chain:
        chain.append(parent_id)

    return ThreadingHeaders(
        message_id=own_id,
        in_reply_to=parent_id,
        references=" ".join(chain) or None,
        thread_index=parent.thread_index,
        thread_topic=parent.thread_topic or normalize_subject(subject) or None,
    )


def build_reply_headers(headers: ThreadingHeaders, subject: str) -> dict[str, str]:
    """Build the headers to set on an outbound reply.

    The subject is prefixed with ``Re: `` only if not already present
    (case-insensitive).  Every threading value is set twice: once under its
    standard name and once under its ``X-`` namespaced name, since some
    providers drop the standard ones.

    Args:
        headers: The reply's threading headers (see
            :func:`reply_threading_headers`).
        subject: Subject line of the message being replied to.

    Returns:
        A dict of header names to values suitable for setting on an
        ``email.message.EmailMessage``.
    """
    if not subject.lower().startswith("re:"):
        subject = f"Re: {subject}"

    result: dict[str, str] = {"Subject": subject}
    values = headers.model_dump()
    for field_name, header_name in STANDARD_HEADERS.items():
        value = values.get(field_name)
        if value:
            result[header_name] = value
            result[NAMESPACED_HEADERS[field_name]] = value
    return result


def embed_threading_headers(html_body: str, headers: ThreadingHeaders) -> str:
    """Prepend the embedded header block to an outbound HTML body.

    The extractor reads the first complete block, and a reply body may quote
    earlier messages carrying their own blocks, so ours goes before them.
    """
    return f"{render_embedded_block(headers.model_dump())}\n{html_body}"
