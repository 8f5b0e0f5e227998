"""Thread resolution: models, SQLite conversation store, and the resolver."""

from helpdesk.threads.models import (
    MessageRecord,
    ResolutionAuditEntry,
    ThreadResolution,
    ThreadResolutionRequest,
)
from helpdesk.threads.resolver import ThreadResolver, new_thread_id
from helpdesk.threads.schema import init_conversation_tables, open_conversation_db
from helpdesk.threads.store import ConversationStore

__all__ = [
    "ConversationStore",
    "MessageRecord",
    "ResolutionAuditEntry",
    "ThreadResolution",
    "ThreadResolutionRequest",
    "ThreadResolver",
    "init_conversation_tables",
    "new_thread_id",
    "open_conversation_db",
]
