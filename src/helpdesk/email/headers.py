"""Threading header extraction from inbound provider messages.

The canonical threading headers of a message are merged from several
sources, tried in priority order independently for every field:

1. Headers embedded in the HTML body by our own send path
2. ``X-``-namespaced copies our send path set through the provider API
3. The standard RFC 2822 headers exposed by the provider
4. The provider's ``internetMessageId`` property (Message-ID only)

Each source is a plain callable, so adding one means adding it to the
ordered list rather than restructuring the merge.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import structlog

from helpdesk.domain.errors import HeaderParseError
from helpdesk.email.embedded import START_SENTINEL, find_embedded_block, parse_embedded_block
from helpdesk.email.models import ProviderHeader, ThreadingHeaders

logger = structlog.get_logger()

THREADING_FIELDS: tuple[str, ...] = (
    "message_id",
    "in_reply_to",
    "references",
    "thread_index",
    "thread_topic",
)

# Set by our send path through the provider's send API.
NAMESPACED_HEADERS: dict[str, str] = {
    "message_id": "X-Message-ID-RFC2822",
    "in_reply_to": "X-In-Reply-To-RFC2822",
    "references": "X-References-RFC2822",
    "thread_index": "X-Thread-Index",
    "thread_topic": "X-Thread-Topic",
}

STANDARD_HEADERS: dict[str, str] = {
    "message_id": "Message-ID",
    "in_reply_to": "In-Reply-To",
    "references": "References",
    "thread_index": "Thread-Index",
    "thread_topic": "Thread-Topic",
}


@dataclass(frozen=True)
class HeaderContext:
    """Everything a header source may look at for one message."""

    headers: Mapping[str, str] = field(default_factory=dict)  # lower-cased names
    html_body: str = ""
    fallback_message_id: str | None = None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


HeaderSource = Callable[[HeaderContext], Mapping[str, str]]


def embedded_source(ctx: HeaderContext) -> dict[str, str]:
    """Headers from the sentinel block in the HTML body."""
    block = find_embedded_block(ctx.html_body)
    if block is None:
        if ctx.html_body and START_SENTINEL in ctx.html_body:
            raise HeaderParseError("embedded header block has no end sentinel")
        return {}
    return parse_embedded_block(block)


def namespaced_source(ctx: HeaderContext) -> dict[str, str]:
    """Headers from the ``X-`` copies set by our send path."""
    return _lookup(ctx, NAMESPACED_HEADERS)


def standard_source(ctx: HeaderContext) -> dict[str, str]:
    """Headers from the provider's standard header list."""
    return _lookup(ctx, STANDARD_HEADERS)


def provider_message_id_source(ctx: HeaderContext) -> dict[str, str]:
    """The provider's own Message-ID property, when the header list lacks it."""
    if ctx.fallback_message_id:
        return {"message_id": ctx.fallback_message_id}
    return {}


DEFAULT_SOURCES: tuple[HeaderSource, ...] = (
    embedded_source,
    namespaced_source,
    standard_source,
    provider_message_id_source,
)


def _lookup(ctx: HeaderContext, names: Mapping[str, str]) -> dict[str, str]:
    values: dict[str, str] = {}
    for field_name, header_name in names.items():
        value = ctx.header(header_name)
        if value is not None:
            values[field_name] = value
    return values


def index_provider_headers(
    provider_headers: Iterable[Mapping[str, Any] | ProviderHeader] | None,
) -> dict[str, str]:
    """Index a provider header list by lower-cased name.

    The first occurrence of a name wins.  Entries without a string name or
    value are skipped.

    Args:
        provider_headers: ``[{"name": ..., "value": ...}, ...]`` as returned
            by Graph ``internetMessageHeaders`` or Gmail ``payload.headers``.

    Returns:
        A dict of lower-cased header name to raw value.
    """
    indexed: dict[str, str] = {}
    for entry in provider_headers or ():
        if isinstance(entry, ProviderHeader):
            name, value = entry.name, entry.value
        elif isinstance(entry, Mapping):
            name, value = entry.get("name"), entry.get("value")
        else:
            continue
        if not isinstance(name, str) or not isinstance(value, str):
            continue
        indexed.setdefault(name.strip().lower(), value)
    return indexed


class HeaderExtractor:
    """Merge threading headers from an ordered list of sources.

    Args:
        sources: Header sources in priority order (highest first).
            Defaults to :data:`DEFAULT_SOURCES`.
    """

    def __init__(self, sources: Sequence[HeaderSource] | None = None) -> None:
        self._sources: tuple[HeaderSource, ...] = tuple(
            DEFAULT_SOURCES if sources is None else sources
        )

    def extract(
        self,
        provider_headers: Iterable[Mapping[str, Any] | ProviderHeader] | None,
        html_body: str | None,
        *,
        fallback_message_id: str | None = None,
    ) -> ThreadingHeaders:
        """Resolve the canonical threading headers of one message.

        Never raises.  A source that fails is logged and skipped; the other
        sources still fill in their fields.

        Args:
            provider_headers: The provider's header list.
            html_body: The HTML body, possibly containing an embedded block.
            fallback_message_id: The provider's ``internetMessageId``.

        Returns:
            The merged ``ThreadingHeaders``.  Fields no source supplied are
            ``None``.
        """
        ctx = HeaderContext(
            headers=index_provider_headers(provider_headers),
            html_body=html_body or "",
            fallback_message_id=fallback_message_id,
        )

        resolved: dict[str, str] = {}
        origins: dict[str, str] = {}
        for source in self._sources:
            if len(resolved) == len(THREADING_FIELDS):
                break
            source_name = getattr(source, "__name__", repr(source))
            try:
                values = source(ctx)
            except HeaderParseError as exc:
                logger.warning("header_source_malformed", source=source_name, error=str(exc))
                continue
            except Exception:
                logger.exception("header_source_failed", source=source_name)
                continue

            for field_name in THREADING_FIELDS:
                if field_name in resolved:
                    continue
                value = values.get(field_name)
                if isinstance(value, str) and value.strip():
                    resolved[field_name] = value.strip()
                    origins[field_name] = source_name

        logger.debug("threading_headers_extracted", origins=origins)
        return ThreadingHeaders(**resolved)


_default_extractor = HeaderExtractor()


def extract_threading_headers(
    provider_headers: Iterable[Mapping[str, Any] | ProviderHeader] | None,
    html_body: str | None,
    *,
    fallback_message_id: str | None = None,
) -> ThreadingHeaders:
    """Extract threading headers with the default source order.

    See :meth:`HeaderExtractor.extract`.
    """
    return _default_extractor.extract(
        provider_headers, html_body, fallback_message_id=fallback_message_id
    )
