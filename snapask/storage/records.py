"""Pydantic records for conversations and messages.

Field names match the database columns. Every model also accepts and
emits camelCase aliases (``createdAt``, ``messageCount``) because that is
what the UI layer sends and expects back.
"""

from __future__ import annotations

import sqlite3
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from snapask.types import ConversationId, MessageId, Role


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys, for the UI boundary."""
        return self.model_dump(mode="json", by_alias=True)


class ConversationRecord(_Record):
    id: ConversationId
    screenshot_data_url: str | None = None
    screenshot_hash: str | None = None
    title: str | None = None
    created_at: int
    updated_at: int
    message_count: int = 0
    starred: bool = False
    archived: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ConversationRecord:
        return cls(
            id=row["id"],
            screenshot_data_url=row["screenshot_data_url"],
            screenshot_hash=row["screenshot_hash"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row["message_count"],
            starred=bool(row["starred"]),
            archived=bool(row["archived"]),
        )


class MessageRecord(_Record):
    """A message as the UI sees it: the parent id is implied by the conversation."""

    id: MessageId
    role: Role
    content: str
    timestamp: int
    error: bool = False

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> MessageRecord:
        return cls(
            id=row["id"],
            role=Role.parse(row["role"]),
            content=row["content"],
            timestamp=row["timestamp"],
            error=bool(row["error"]),
        )


class ConversationWithMessages(ConversationRecord):
    messages: list[MessageRecord] = []


class ConversationSummary(_Record):
    """One row of the history list."""

    id: ConversationId
    title: str
    preview: str
    created_at: int
    updated_at: int
    message_count: int
    starred: bool
    archived: bool


class CreatedConversation(_Record):
    id: ConversationId
    created_at: int


class SavedMessage(_Record):
    id: MessageId
    timestamp: int


class ConversationItem(_Record):
    """A prompt/answer pair from a transient surface such as the popup."""

    prompt: str
    answer: str
    error: bool = False


class ConversationFilters(_Record):
    """Listing filters.

    ``archived`` is a soft-hide: anything other than an explicit ``True``
    lists only non-archived conversations. ``starred=True`` narrows further;
    ``False`` or ``None`` does not filter on the flag.
    """

    starred: bool | None = None
    archived: bool | None = None


class ConversationUpdate(_Record):
    """User-editable conversation fields.

    Only explicitly provided fields are written. Unknown keys reject the
    whole update when it is built, so ``id`` or ``created_at`` can never
    sneak in. This is stricter than silently dropping keys outside an
    allow-list: a misspelled field fails loudly instead of writing part of
    the update.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    title: str | None = None
    starred: bool | None = None
    archived: bool | None = None

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("title cannot be empty; pass null to reset it")
        return v

    @field_validator("starred", "archived")
    @classmethod
    def flag_not_null(cls, v: bool | None) -> bool | None:
        if v is None:
            raise ValueError("flag cannot be null")
        return v

    def changes(self) -> dict[str, Any]:
        """Column name to new value, for the fields that were set."""
        return self.model_dump(exclude_unset=True)


class StoreStats(_Record):
    conversations: int
    messages: int
    starred: int
    archived: int


__all__ = [
    "ConversationFilters",
    "ConversationItem",
    "ConversationRecord",
    "ConversationSummary",
    "ConversationUpdate",
    "ConversationWithMessages",
    "CreatedConversation",
    "MessageRecord",
    "SavedMessage",
    "StoreStats",
]
