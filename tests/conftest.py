from __future__ import annotations

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from snapask.storage.connection import ConnectionManager
from snapask.storage.repository import ConversationStore

_SNAPASK_ENV = ("SNAPASK_CONFIG", "SNAPASK_DB_PATH", "SNAPASK_VERBOSE", "SNAPASK_JSON_LOGS")


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    """Point XDG directories at tmp_path and clear SnapAsk overrides."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for name in _SNAPASK_ENV:
        monkeypatch.delenv(name, raising=False)
    return tmp_path


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "db" / "conversations.db"


@pytest.fixture
def connection(db_path):
    manager = ConnectionManager(db_path)
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def store(connection) -> ConversationStore:
    return ConversationStore(connection)
