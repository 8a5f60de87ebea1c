"""Conversation store: every read and write against conversations and messages.

This is the only module that issues SQL against the two tables. Storage
engine exceptions (``sqlite3.IntegrityError`` for a message whose parent
does not exist, for instance) propagate to the caller unchanged; only
input validation is raised as ``snapask.errors.ValidationError``, and it
always happens before anything is written.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import uuid4

import pydantic

from snapask.errors import ValidationError
from snapask.lib.hashing import hash_screenshot
from snapask.lib.log import get_logger
from snapask.lib.timestamps import now_ms
from snapask.lib.titles import generate_title, make_preview
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
from snapask.types import ConversationId, MessageId, Role

logger = get_logger(__name__)

DEFAULT_LIMIT = 100


def _validation_message(exc: pydantic.ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'value'}: {err['msg']}" for err in exc.errors()
    )


def _coerce_filters(filters: ConversationFilters | Mapping[str, Any] | None) -> ConversationFilters:
    if filters is None:
        return ConversationFilters()
    if isinstance(filters, ConversationFilters):
        return filters
    try:
        return ConversationFilters.model_validate(dict(filters))
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid filters: {_validation_message(exc)}") from exc


def _coerce_update(updates: ConversationUpdate | Mapping[str, Any]) -> ConversationUpdate:
    if isinstance(updates, ConversationUpdate):
        return updates
    try:
        return ConversationUpdate.model_validate(dict(updates))
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid updates: {_validation_message(exc)}") from exc


def _coerce_items(items: Iterable[ConversationItem | Mapping[str, Any]]) -> list[ConversationItem]:
    coerced: list[ConversationItem] = []
    for index, item in enumerate(items):
        if isinstance(item, ConversationItem):
            coerced.append(item)
            continue
        try:
            coerced.append(ConversationItem.model_validate(dict(item)))
        except (pydantic.ValidationError, TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid conversation item at index {index}: {exc}") from exc
    return coerced


def _require_id(conversation_id: object) -> ConversationId:
    if not isinstance(conversation_id, str) or not conversation_id.strip():
        raise ValidationError("conversation_id must be a non-empty string")
    return ConversationId(conversation_id)


def _build_conversation_filters(filters: ConversationFilters) -> tuple[str, list[int]]:
    """Build WHERE clause and params for conversation listings."""
    where_clauses = ["c.archived = ?"]
    params = [1 if filters.archived is True else 0]
    if filters.starred is True:
        where_clauses.append("c.starred = 1")
    return f"WHERE {' AND '.join(where_clauses)}", params


class ConversationStore:
    """Data access for conversations and their messages.

    All methods are synchronous and share the manager's single handle.
    Writes go through ``ConnectionManager.transaction()`` so the message
    insert and the parent's counter/timestamp update commit together.
    """

    def __init__(self, connection: ConnectionManager) -> None:
        self._db = connection

    @property
    def connection(self) -> ConnectionManager:
        return self._db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_conversation(self, screenshot: str | None = None) -> CreatedConversation:
        """Create an empty conversation, optionally anchored by a screenshot data URL."""
        if screenshot is not None and not isinstance(screenshot, str):
            raise ValidationError("screenshot must be a data URL string")
        with self._db.transaction() as conn:
            created = self._insert_conversation(conn, screenshot or None)
        logger.info("conversation.created", conversation_id=created.id, has_screenshot=bool(screenshot))
        return created

    def save_message(
        self,
        conversation_id: str,
        role: Role | str,
        content: str,
        error: bool = False,
    ) -> SavedMessage:
        """Append one message and bump the parent's ``updated_at`` and ``message_count``.

        Raises:
            ValidationError: Bad role, empty conversation id, non-string content.
            sqlite3.IntegrityError: The conversation does not exist.
        """
        cid = _require_id(conversation_id)
        try:
            parsed_role = Role.parse(role)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if not isinstance(content, str):
            raise ValidationError("content must be a string")

        with self._db.transaction() as conn:
            saved = self._append_message(conn, cid, parsed_role, content, bool(error))
        logger.debug("message.saved", conversation_id=cid, message_id=saved.id, role=parsed_role.value)
        return saved

    def save_complete_conversation(
        self,
        screenshot: str | None,
        items: Iterable[ConversationItem | Mapping[str, Any]],
    ) -> CreatedConversation:
        """Persist a whole prompt/answer sequence as a new conversation.

        Each item becomes a user message followed by an assistant message, in
        order. Everything commits in one transaction: a failure part-way
        leaves neither the conversation nor any of its messages behind.
        """
        if screenshot is not None and not isinstance(screenshot, str):
            raise ValidationError("screenshot must be a data URL string")
        pairs = _coerce_items(items)

        with self._db.transaction() as conn:
            created = self._insert_conversation(conn, screenshot or None)
            for pair in pairs:
                self._append_message(conn, created.id, Role.USER, pair.prompt, False)
                self._append_message(conn, created.id, Role.ASSISTANT, pair.answer, pair.error)

        logger.info(
            "conversation.saved_complete",
            conversation_id=created.id,
            items=len(pairs),
            has_screenshot=bool(screenshot),
        )
        return created

    def update_conversation(
        self,
        conversation_id: str,
        updates: ConversationUpdate | Mapping[str, Any],
    ) -> bool:
        """Apply user edits (title, starred, archived).

        An update with no fields set writes nothing, not even ``updated_at``.
        Returns True when a row was changed.
        """
        cid = _require_id(conversation_id)
        changes = _coerce_update(updates).changes()
        if not changes:
            return False

        columns = sorted(changes)
        assignments = ", ".join(f"{column} = ?" for column in columns)
        params: list[Any] = [changes[column] for column in columns]
        params.extend([now_ms(), cid])

        with self._db.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE conversations SET {assignments}, updated_at = ? WHERE id = ?",
                params,
            )
        updated = cursor.rowcount > 0
        logger.debug("conversation.updated", conversation_id=cid, fields=columns, found=updated)
        return updated

    def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation; its messages go with it via ON DELETE CASCADE."""
        cid = _require_id(conversation_id)
        with self._db.transaction() as conn:
            cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (cid,))
        deleted = cursor.rowcount > 0
        logger.info("conversation.deleted", conversation_id=cid, found=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        """Retrieve a conversation row, or None if it does not exist."""
        row = self._db.handle.execute(
            "SELECT * FROM conversations WHERE id = ?",
            (conversation_id,),
        ).fetchone()
        if row is None:
            return None
        return ConversationRecord.from_row(row)

    def get_messages(self, conversation_id: str) -> list[MessageRecord]:
        """Messages of a conversation in append order."""
        rows = self._db.handle.execute(
            """
            SELECT id, role, content, timestamp, error
            FROM messages
            WHERE conversation_id = ?
            ORDER BY timestamp ASC, rowid ASC
            """,
            (conversation_id,),
        ).fetchall()
        return [MessageRecord.from_row(row) for row in rows]

    def get_conversation_with_messages(self, conversation_id: str) -> ConversationWithMessages | None:
        conversation = self.get_conversation(conversation_id)
        if conversation is None:
            return None
        return ConversationWithMessages(
            **conversation.model_dump(),
            messages=self.get_messages(conversation_id),
        )

    def get_all_conversations(
        self,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        filters: ConversationFilters | Mapping[str, Any] | None = None,
    ) -> list[ConversationSummary]:
        """List conversations, most recently active first.

        Archived conversations are hidden unless ``filters.archived`` is True.
        """
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValidationError(f"limit must be a positive integer, got {limit!r}")
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise ValidationError(f"offset must be a non-negative integer, got {offset!r}")

        where_sql, params = _build_conversation_filters(_coerce_filters(filters))
        rows = self._db.handle.execute(
            f"""
            SELECT
                c.id,
                c.title,
                c.created_at,
                c.updated_at,
                c.message_count,
                c.starred,
                c.archived,
                (SELECT m.content FROM messages m
                 WHERE m.conversation_id = c.id AND m.role = 'user'
                 ORDER BY m.timestamp ASC, m.rowid ASC LIMIT 1) AS first_prompt,
                (SELECT m.content FROM messages m
                 WHERE m.conversation_id = c.id AND m.role = 'assistant'
                 ORDER BY m.timestamp ASC, m.rowid ASC LIMIT 1) AS first_answer
            FROM conversations c
            {where_sql}
            ORDER BY c.updated_at DESC, c.rowid DESC
            LIMIT ? OFFSET ?
            """,
            (*params, limit, offset),
        ).fetchall()
        return [self._row_to_summary(row) for row in rows]

    def count_conversations(self, filters: ConversationFilters | Mapping[str, Any] | None = None) -> int:
        where_sql, params = _build_conversation_filters(_coerce_filters(filters))
        row = self._db.handle.execute(
            f"SELECT COUNT(*) AS cnt FROM conversations c {where_sql}",
            params,
        ).fetchone()
        return int(row["cnt"])

    def stats(self) -> StoreStats:
        conn = self._db.handle
        row = conn.execute(
            """
            SELECT
                COUNT(*) AS conversations,
                COALESCE(SUM(starred), 0) AS starred,
                COALESCE(SUM(archived), 0) AS archived
            FROM conversations
            """
        ).fetchone()
        messages = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
        return StoreStats(
            conversations=row["conversations"],
            messages=messages,
            starred=row["starred"],
            archived=row["archived"],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_summary(row: sqlite3.Row) -> ConversationSummary:
        return ConversationSummary(
            id=row["id"],
            title=row["title"] or generate_title(row["first_prompt"]),
            preview=make_preview(row["first_answer"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            message_count=row["message_count"],
            starred=bool(row["starred"]),
            archived=bool(row["archived"]),
        )

    @staticmethod
    def _insert_conversation(conn: sqlite3.Connection, screenshot: str | None) -> CreatedConversation:
        conversation_id = ConversationId(str(uuid4()))
        now = now_ms()
        conn.execute(
            """
            INSERT INTO conversations (
                id,
                screenshot_data_url,
                screenshot_hash,
                created_at,
                updated_at,
                message_count
            ) VALUES (?, ?, ?, ?, ?, 0)
            """,
            (conversation_id, screenshot, hash_screenshot(screenshot), now, now),
        )
        return CreatedConversation(id=conversation_id, created_at=now)

    @staticmethod
    def _append_message(
        conn: sqlite3.Connection,
        conversation_id: ConversationId,
        role: Role,
        content: str,
        error: bool,
    ) -> SavedMessage:
        message_id = MessageId(str(uuid4()))
        # Never stamp earlier than the newest message, even if the clock stepped back
        last = conn.execute(
            "SELECT MAX(timestamp) FROM messages WHERE conversation_id = ?",
            (conversation_id,),
        ).fetchone()[0]
        timestamp = now_ms() if last is None else max(now_ms(), last)

        if role is Role.USER:
            # Only the first user message names the conversation
            conn.execute(
                """
                UPDATE conversations SET title = ?
                WHERE id = ?
                  AND (title IS NULL OR title = '')
                  AND NOT EXISTS (
                      SELECT 1 FROM messages WHERE conversation_id = ? AND role = 'user'
                  )
                """,
                (generate_title(content), conversation_id, conversation_id),
            )

        conn.execute(
            """
            INSERT INTO messages (id, conversation_id, role, content, timestamp, error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (message_id, conversation_id, role.value, content, timestamp, 1 if error else 0),
        )
        conn.execute(
            """
            UPDATE conversations
            SET updated_at = ?, message_count = message_count + 1
            WHERE id = ?
            """,
            (timestamp, conversation_id),
        )
        return SavedMessage(id=message_id, timestamp=timestamp)


__all__ = ["DEFAULT_LIMIT", "ConversationStore"]
