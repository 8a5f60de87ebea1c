"""Type aliases and enums for snapask."""
from __future__ import annotations

from enum import Enum
from typing import NewType

# Semantic ID types - provides compile-time distinction
ConversationId = NewType("ConversationId", str)
MessageId = NewType("MessageId", str)


class Role(str, Enum):
    """Message roles accepted by the store."""
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def parse(cls, value: str | Role) -> Role:
        """Return the Role for ``value``.

        Raises:
            ValueError: If value is not exactly ``user`` or ``assistant``.
        """
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValueError(f"Invalid role {value!r}: expected 'user' or 'assistant'") from None

    def __str__(self) -> str:
        return self.value


__all__ = ["ConversationId", "MessageId", "Role"]
