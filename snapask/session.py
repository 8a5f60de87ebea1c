"""Ask session: the transient popup state that feeds the conversation store.

A session starts from a captured screenshot, collects prompt/answer
pairs from the completion service, and is persisted on demand
("continue in full app"). Persistence is best effort: a storage failure
is logged and recorded on the session, and the answer is still returned.

Capture and completion are supplied by the caller through the
``CaptureService`` and ``CompletionService`` protocols; this module does
not talk to the screen or to any AI provider itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from snapask.errors import SessionError, ValidationError
from snapask.handlers import ConversationHandlers, Envelope
from snapask.lib.log import get_logger
from snapask.storage.records import ConversationItem
from snapask.types import Role

logger = get_logger(__name__)


class CompletionErrorKind(str, Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    NETWORK = "network"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_USER_MESSAGES = {
    CompletionErrorKind.AUTH: "Invalid API key. Please check your configuration.",
    CompletionErrorKind.RATE_LIMIT: "Rate limit exceeded. Please try again later.",
    CompletionErrorKind.NETWORK: "Network error. Please check your connection.",
    CompletionErrorKind.TIMEOUT: "Request timed out. Please try again.",
    CompletionErrorKind.UNKNOWN: "An unexpected error occurred. Please try again.",
}

# Substrings checked in order against a lowercased provider error message
_MESSAGE_HINTS = (
    ("api key", CompletionErrorKind.AUTH),
    ("unauthorized", CompletionErrorKind.AUTH),
    ("rate limit", CompletionErrorKind.RATE_LIMIT),
    ("timeout", CompletionErrorKind.TIMEOUT),
    ("timed out", CompletionErrorKind.TIMEOUT),
    ("network", CompletionErrorKind.NETWORK),
    ("connection", CompletionErrorKind.NETWORK),
)


class CompletionError(SessionError):
    """The completion service failed; ``user_message`` is safe to show."""

    def __init__(self, kind: CompletionErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(detail or _USER_MESSAGES[kind])

    @property
    def user_message(self) -> str:
        return _USER_MESSAGES[self.kind]

    @classmethod
    def classify(cls, exc: BaseException) -> CompletionError:
        """Map an arbitrary provider exception onto a ``CompletionErrorKind``."""
        if isinstance(exc, CompletionError):
            return exc
        if isinstance(exc, TimeoutError):
            return cls(CompletionErrorKind.TIMEOUT, str(exc))
        if isinstance(exc, ConnectionError):
            return cls(CompletionErrorKind.NETWORK, str(exc))
        message = str(exc).lower()
        for hint, kind in _MESSAGE_HINTS:
            if hint in message:
                return cls(kind, str(exc))
        return cls(CompletionErrorKind.UNKNOWN, str(exc))


@dataclass(frozen=True)
class CompletionRequest:
    prompt: str
    screenshot: str | None = None
    history: tuple[ConversationItem, ...] = ()


@dataclass(frozen=True)
class CompletionResult:
    text: str


class CaptureService(Protocol):
    async def capture(self) -> str | None:
        """Return a screenshot data URL, or None when the user cancels."""
        ...


class CompletionService(Protocol):
    async def complete(self, request: CompletionRequest) -> CompletionResult:
        ...


@dataclass
class AskSession:
    handlers: ConversationHandlers
    completion: CompletionService
    screenshot: str | None = None
    items: list[ConversationItem] = field(default_factory=list)
    conversation_id: str | None = None
    last_persist_error: str | None = None

    @classmethod
    async def start(
        cls,
        capture: CaptureService,
        handlers: ConversationHandlers,
        completion: CompletionService,
    ) -> AskSession | None:
        """Capture a screenshot and open a session on it.

        Returns None when the user cancels the capture. ``CaptureError``
        from the service propagates.
        """
        screenshot = await capture.capture()
        if screenshot is None:
            logger.info("session.capture_cancelled")
            return None
        logger.info("session.started", screenshot_bytes=len(screenshot))
        return cls(handlers=handlers, completion=completion, screenshot=screenshot)

    @property
    def persisted(self) -> bool:
        return self.conversation_id is not None

    async def ask(self, prompt: str) -> ConversationItem:
        """Send ``prompt`` to the completion service and record the answer.

        A completion failure does not raise: it becomes an item with
        ``error=True`` carrying the user-facing message.
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValidationError("Prompt cannot be empty")

        request = CompletionRequest(prompt=prompt, screenshot=self.screenshot, history=tuple(self.items))
        try:
            result = await self.completion.complete(request)
            item = ConversationItem(prompt=prompt, answer=result.text)
        except Exception as exc:
            failure = CompletionError.classify(exc)
            logger.warning("session.completion_failed", kind=failure.kind.value, error=str(exc))
            item = ConversationItem(prompt=prompt, answer=failure.user_message, error=True)

        self.items.append(item)
        if self.conversation_id is not None:
            await self._persist_item(self.conversation_id, item)
        return item

    async def persist(self) -> str | None:
        """Save the transient items as a conversation, once.

        Returns the conversation id, or None if saving failed (the reason is
        kept in ``last_persist_error``).
        """
        if self.conversation_id is not None:
            return self.conversation_id
        response = await self.handlers.save_conversation(
            {
                "screenshot": self.screenshot,
                "conversation": [item.model_dump() for item in self.items],
            }
        )
        if not self._record(response):
            return None
        self.conversation_id = response["conversationId"]
        logger.info("session.persisted", conversation_id=self.conversation_id, items=len(self.items))
        return self.conversation_id

    async def _persist_item(self, conversation_id: str, item: ConversationItem) -> None:
        for role, content, error in (
            (Role.USER, item.prompt, False),
            (Role.ASSISTANT, item.answer, item.error),
        ):
            response = await self.handlers.save_message(
                {
                    "conversationId": conversation_id,
                    "role": role.value,
                    "content": content,
                    "error": error,
                }
            )
            if not self._record(response):
                return

    def _record(self, response: Envelope) -> bool:
        if response.get("success"):
            self.last_persist_error = None
            return True
        self.last_persist_error = response.get("error") or "Unknown persistence error"
        logger.warning(
            "session.persist_failed",
            conversation_id=self.conversation_id,
            kind=response.get("errorKind"),
            error=self.last_persist_error,
        )
        return False


__all__ = [
    "AskSession",
    "CaptureService",
    "CompletionError",
    "CompletionErrorKind",
    "CompletionRequest",
    "CompletionResult",
    "CompletionService",
]
