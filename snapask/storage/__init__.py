"""Local conversation storage: schema, connection ownership and data access."""

from snapask.storage.connection import ConnectionManager
from snapask.storage.records import (
    ConversationFilters,
    ConversationItem,
    ConversationRecord,
    ConversationSummary,
    ConversationUpdate,
    ConversationWithMessages,
    CreatedConversation,
    MessageRecord,
    SavedMessage,
    StoreStats,
)
from snapask.storage.repository import ConversationStore
from snapask.storage.schema import MIGRATIONS, SCHEMA_VERSION, Migration, SchemaMigrator

__all__ = [
    "MIGRATIONS",
    "SCHEMA_VERSION",
    "ConnectionManager",
    "ConversationFilters",
    "ConversationItem",
    "ConversationRecord",
    "ConversationStore",
    "ConversationSummary",
    "ConversationUpdate",
    "ConversationWithMessages",
    "CreatedConversation",
    "MessageRecord",
    "Migration",
    "SavedMessage",
    "SchemaMigrator",
    "StoreStats",
]
