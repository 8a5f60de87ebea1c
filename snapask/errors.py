"""SnapAsk error hierarchy.

All project exceptions inherit from SnapaskError, enabling:
- ``except SnapaskError`` at top-level boundaries (CLI, app context)
- Fine-grained catches deeper in the stack (``except MigrationError``)

Hierarchy:
    SnapaskError
    ├── ConfigError
    ├── DatabaseError
    │   └── MigrationError
    ├── ValidationError
    └── SessionError
        ├── CaptureError
        └── CompletionError                 # session.py
"""

from __future__ import annotations


class SnapaskError(Exception):
    """Base class for all SnapAsk errors."""


class ConfigError(SnapaskError):
    """Invalid or unreadable configuration."""


class DatabaseError(SnapaskError):
    """Base class for database errors."""


class MigrationError(DatabaseError):
    """A schema migration step failed; the database stays at the previous version."""

    def __init__(self, version: int, message: str) -> None:
        super().__init__(message)
        self.version = version


class ValidationError(SnapaskError, ValueError):
    """Rejected input, raised before any write is attempted."""


class SessionError(SnapaskError):
    """Base class for ask-session failures."""


class CaptureError(SessionError):
    """The capture service could not produce a screenshot."""


__all__ = [
    "SnapaskError",
    "ConfigError",
    "DatabaseError",
    "MigrationError",
    "ValidationError",
    "SessionError",
    "CaptureError",
]
