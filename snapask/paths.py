"""Shared filesystem paths for SnapAsk."""

from __future__ import annotations

import os
from pathlib import Path

DB_FILENAME = "conversations.db"


def _xdg_path(env_var: str, fallback: Path) -> Path:
    raw = os.environ.get(env_var)
    if raw:
        return Path(raw).expanduser()
    return fallback


def data_home() -> Path:
    """Return the per-user data directory, read at call time.

    Tests monkeypatch ``XDG_DATA_HOME``; resolving here instead of at import
    keeps them isolated from the real home directory.
    """
    return _xdg_path("XDG_DATA_HOME", Path.home() / ".local/share") / "snapask"


def config_home() -> Path:
    return _xdg_path("XDG_CONFIG_HOME", Path.home() / ".config") / "snapask"


__all__ = ["DB_FILENAME", "config_home", "data_home"]
