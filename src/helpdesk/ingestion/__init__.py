"""Inbound message ingestion shared by the webhook and sync paths."""

from helpdesk.ingestion.service import IngestResult, MessageIngestor, build_resolution_request

__all__ = [
    "IngestResult",
    "MessageIngestor",
    "build_resolution_request",
]
