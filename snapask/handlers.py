"""Request handlers: the boundary between the UI and the conversation store.

Every handler returns an envelope, ``{"success": True, ...}`` or
``{"success": False, "error": ..., "errorKind": ...}``. Exceptions never
cross the boundary: they are logged here and mapped to an ``ErrorKind``.
Keys in the envelope are camelCase, which is what the UI speaks.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Awaitable, Callable, Mapping
from enum import Enum
from typing import Any

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from snapask.errors import DatabaseError, ValidationError
from snapask.lib.log import get_logger, request_context
from snapask.storage.records import ConversationFilters, ConversationItem, ConversationUpdate
from snapask.storage.repository import DEFAULT_LIMIT, ConversationStore
from snapask.types import Role

logger = get_logger(__name__)

Envelope = dict[str, Any]

SAVE_CONVERSATION = "save-conversation"
LOAD_CONVERSATIONS = "load-conversations"
LOAD_CONVERSATION = "load-conversation"
SAVE_MESSAGE = "save-message"
DELETE_CONVERSATION = "delete-conversation"
UPDATE_CONVERSATION = "update-conversation"

NOT_FOUND_MESSAGE = "Conversation not found"
INVALID_CONVERSATION_MESSAGE = "Invalid conversation data"
UNAVAILABLE_MESSAGE = "Conversation storage is unavailable"


class ErrorKind(str, Enum):
    """Closed set of failure categories reported to the UI."""

    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONSTRAINT = "constraint"
    STORAGE = "storage"
    UNAVAILABLE = "unavailable"
    INTERNAL = "internal"

    def __str__(self) -> str:
        return self.value


class _NotFound(Exception):
    pass


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SaveConversationRequest(_Request):
    screenshot: str | None = None
    conversation: list[ConversationItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("conversation", "items"),
    )


class LoadConversationsRequest(_Request):
    limit: int | None = Field(default=None, ge=0)
    offset: int | None = Field(default=None, ge=0)
    filters: ConversationFilters | None = None

    @property
    def effective_limit(self) -> int:
        return self.limit or DEFAULT_LIMIT

    @property
    def effective_offset(self) -> int:
        return self.offset or 0


class SaveMessageRequest(_Request):
    conversation_id: str = Field(min_length=1)
    role: Role
    content: str
    error: bool = False


class UpdateConversationRequest(_Request):
    conversation_id: str = Field(min_length=1)
    updates: ConversationUpdate


def _success(**data: Any) -> Envelope:
    return {"success": True, **data}


def _failure(kind: ErrorKind, message: str, **extra: Any) -> Envelope:
    return {"success": False, "error": message, "errorKind": kind.value, **extra}


def _describe_validation(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"])
        parts.append(f"{loc}: {err['msg']}" if loc else err["msg"])
    return "; ".join(parts)


def _require_conversation_id(value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("conversationId must be a non-empty string")
    return value


class ConversationHandlers:
    """Async adapters from UI requests to ``ConversationStore`` calls.

    ``store`` is ``None`` when persistence failed to initialize; every
    request then fails with ``ErrorKind.UNAVAILABLE`` and the rest of the
    application keeps working.
    """

    def __init__(self, store: ConversationStore | None) -> None:
        self._store = store

    @property
    def available(self) -> bool:
        return self._store is not None

    async def _call(
        self,
        channel: str,
        operation: Callable[[ConversationStore], Envelope],
        *,
        failure_extra: Mapping[str, Any] | None = None,
        **context: Any,
    ) -> Envelope:
        extra = dict(failure_extra or {})
        with request_context(channel, **context):
            if self._store is None:
                logger.warning("request.unavailable")
                return _failure(ErrorKind.UNAVAILABLE, UNAVAILABLE_MESSAGE, **extra)
            try:
                return operation(self._store)
            except pydantic.ValidationError as exc:
                logger.warning("request.invalid", error=_describe_validation(exc))
                return _failure(ErrorKind.VALIDATION, _describe_validation(exc), **extra)
            except ValidationError as exc:
                logger.warning("request.invalid", error=str(exc))
                return _failure(ErrorKind.VALIDATION, str(exc), **extra)
            except _NotFound:
                logger.info("request.not_found")
                return _failure(ErrorKind.NOT_FOUND, NOT_FOUND_MESSAGE, **extra)
            except sqlite3.IntegrityError as exc:
                logger.error("request.constraint_failed", error=str(exc))
                return _failure(ErrorKind.CONSTRAINT, str(exc), **extra)
            except (sqlite3.Error, DatabaseError) as exc:
                logger.exception("request.storage_failed")
                return _failure(ErrorKind.STORAGE, str(exc), **extra)
            except Exception as exc:
                logger.exception("request.failed")
                return _failure(ErrorKind.INTERNAL, str(exc), **extra)

    async def save_conversation(self, payload: Mapping[str, Any]) -> Envelope:
        """Persist a transient popup conversation in one go."""

        def run(store: ConversationStore) -> Envelope:
            try:
                request = SaveConversationRequest.model_validate(payload)
            except pydantic.ValidationError as exc:
                raise ValidationError(f"{INVALID_CONVERSATION_MESSAGE}: {_describe_validation(exc)}") from exc
            if not request.conversation:
                raise ValidationError(INVALID_CONVERSATION_MESSAGE)
            created = store.save_complete_conversation(request.screenshot, request.conversation)
            return _success(conversationId=created.id, createdAt=created.created_at)

        return await self._call(SAVE_CONVERSATION, run)

    async def load_conversations(self, payload: Mapping[str, Any] | None = None) -> Envelope:
        def run(store: ConversationStore) -> Envelope:
            request = LoadConversationsRequest.model_validate(payload or {})
            summaries = store.get_all_conversations(
                limit=request.effective_limit,
                offset=request.effective_offset,
                filters=request.filters,
            )
            return _success(conversations=[summary.to_payload() for summary in summaries])

        return await self._call(LOAD_CONVERSATIONS, run, failure_extra={"conversations": []})

    async def load_conversation(self, conversation_id: str) -> Envelope:
        def run(store: ConversationStore) -> Envelope:
            conversation = store.get_conversation_with_messages(_require_conversation_id(conversation_id))
            if conversation is None:
                raise _NotFound()
            return _success(conversation=conversation.to_payload())

        return await self._call(LOAD_CONVERSATION, run, conversation_id=conversation_id)

    async def save_message(self, payload: Mapping[str, Any]) -> Envelope:
        def run(store: ConversationStore) -> Envelope:
            request = SaveMessageRequest.model_validate(payload)
            saved = store.save_message(request.conversation_id, request.role, request.content, request.error)
            return _success(messageId=saved.id, timestamp=saved.timestamp)

        return await self._call(SAVE_MESSAGE, run)

    async def delete_conversation(self, conversation_id: str) -> Envelope:
        def run(store: ConversationStore) -> Envelope:
            store.delete_conversation(_require_conversation_id(conversation_id))
            return _success()

        return await self._call(DELETE_CONVERSATION, run, conversation_id=conversation_id)

    async def update_conversation(self, payload: Mapping[str, Any]) -> Envelope:
        def run(store: ConversationStore) -> Envelope:
            request = UpdateConversationRequest.model_validate(payload)
            store.update_conversation(request.conversation_id, request.updates)
            return _success()

        return await self._call(UPDATE_CONVERSATION, run)

    # ------------------------------------------------------------------
    # Channel routing
    # ------------------------------------------------------------------

    def routes(self) -> dict[str, Callable[[Any], Awaitable[Envelope]]]:
        return {
            SAVE_CONVERSATION: self.save_conversation,
            LOAD_CONVERSATIONS: self.load_conversations,
            LOAD_CONVERSATION: self.load_conversation,
            SAVE_MESSAGE: self.save_message,
            DELETE_CONVERSATION: self.delete_conversation,
            UPDATE_CONVERSATION: self.update_conversation,
        }

    async def dispatch(self, channel: str, payload: Any = None) -> Envelope:
        """Route a request by channel name; unknown channels fail validation."""
        handler = self.routes().get(channel)
        if handler is None:
            with request_context(channel):
                logger.warning("request.unknown_channel")
            return _failure(ErrorKind.VALIDATION, f"Unknown channel: {channel}")
        if channel in (LOAD_CONVERSATION, DELETE_CONVERSATION) and isinstance(payload, Mapping):
            payload = payload.get("conversationId", payload.get("id"))
        return await handler(payload)


CHANNELS = (
    SAVE_CONVERSATION,
    LOAD_CONVERSATIONS,
    LOAD_CONVERSATION,
    SAVE_MESSAGE,
    DELETE_CONVERSATION,
    UPDATE_CONVERSATION,
)


__all__ = [
    "CHANNELS",
    "ConversationHandlers",
    "Envelope",
    "ErrorKind",
    "LoadConversationsRequest",
    "SaveConversationRequest",
    "SaveMessageRequest",
    "UpdateConversationRequest",
]
