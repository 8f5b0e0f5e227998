"""Application wiring for the threading service.

Builds the message ingestor the webhook and polling-sync entry points share:
logging first, then the conversation database, then the resolver and
ingestor configured from ``Settings``.
"""

from __future__ import annotations

import structlog

from helpdesk.config import Settings, get_settings
from helpdesk.ingestion.service import MessageIngestor
from helpdesk.observability.logging import configure_logging
from helpdesk.threads.schema import open_conversation_db
from helpdesk.threads.store import ConversationStore

logger = structlog.get_logger()


def build_ingestor(settings: Settings | None = None) -> MessageIngestor:
    """Set up logging and the conversation store, and return the ingestor.

    Args:
        settings: Application settings.  If ``None``, ``get_settings()`` is used.

    Returns:
        A ``MessageIngestor`` over a store opened at
        ``settings.conversation_db_path``.
    """
    if settings is None:
        settings = get_settings()

    configure_logging(settings.production, level=settings.log_level)

    db_path = settings.conversation_db_path
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = open_conversation_db(db_path, timeout=settings.resolution_timeout_seconds)
    store = ConversationStore(conn)

    logger.info(
        "services_initialized",
        conversation_db=str(db_path),
        production=settings.production,
        subject_fallback=settings.subject_fallback_enabled,
    )
    return MessageIngestor.from_settings(store, settings)
