"""Email domain: threading header models, extraction, and reply headers."""

from helpdesk.email.headers import HeaderExtractor, extract_threading_headers
from helpdesk.email.models import InboundMessage, ProviderHeader, ThreadingHeaders
from helpdesk.email.normalize import normalize_message_id, normalize_subject, parse_references
from helpdesk.email.threading import (
    build_reply_headers,
    embed_threading_headers,
    reply_threading_headers,
)

__all__ = [
    "HeaderExtractor",
    "InboundMessage",
    "ProviderHeader",
    "ThreadingHeaders",
    "build_reply_headers",
    "embed_threading_headers",
    "extract_threading_headers",
    "normalize_message_id",
    "normalize_subject",
    "parse_references",
    "reply_threading_headers",
]
