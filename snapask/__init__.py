"""SnapAsk: local conversation history for screenshot questions."""

from snapask.container import AppContext, create_app_context
from snapask.handlers import ConversationHandlers, ErrorKind
from snapask.storage import ConnectionManager, ConversationStore

__version__ = "0.1.0"

__all__ = [
    "AppContext",
    "ConnectionManager",
    "ConversationHandlers",
    "ConversationStore",
    "ErrorKind",
    "create_app_context",
]
