"""Conversation store tests: CRUD, listing, counters, cascade, atomic saves."""

from __future__ import annotations

import sqlite3

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from snapask.errors import ValidationError
from snapask.lib.hashing import hash_screenshot
from snapask.lib.titles import UNTITLED
from snapask.storage.connection import ConnectionManager
from snapask.storage.records import ConversationItem, ConversationUpdate
from snapask.storage.repository import ConversationStore
from snapask.types import Role

SCREENSHOT = "data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNk"


def _message_rows(store: ConversationStore, conversation_id: str) -> int:
    return store.connection.handle.execute(
        "SELECT COUNT(*) FROM messages WHERE conversation_id = ?", (conversation_id,)
    ).fetchone()[0]


# =============================================================================
# Create
# =============================================================================


class TestCreateConversation:
    def test_new_conversation_is_empty(self, store):
        created = store.create_conversation()
        record = store.get_conversation(created.id)

        assert record is not None
        assert record.message_count == 0
        assert record.created_at == created.created_at == record.updated_at
        assert record.screenshot_data_url is None
        assert record.screenshot_hash is None
        assert record.title is None
        assert record.starred is False
        assert record.archived is False

    def test_screenshot_is_stored_and_hashed(self, store):
        created = store.create_conversation(SCREENSHOT)
        record = store.get_conversation(created.id)

        assert record.screenshot_data_url == SCREENSHOT
        assert record.screenshot_hash == hash_screenshot(SCREENSHOT)
        assert len(record.screenshot_hash) == 64

    def test_ids_are_unique(self, store):
        ids = {store.create_conversation().id for _ in range(20)}
        assert len(ids) == 20

    def test_non_string_screenshot_rejected(self, store):
        with pytest.raises(ValidationError):
            store.create_conversation(b"raw bytes")  # type: ignore[arg-type]


# =============================================================================
# Messages
# =============================================================================


class TestSaveMessage:
    def test_append_updates_counter_and_timestamp(self, store):
        created = store.create_conversation()
        saved = store.save_message(created.id, "user", "What is this?")
        record = store.get_conversation(created.id)

        assert record.message_count == 1
        assert record.updated_at == saved.timestamp
        assert saved.timestamp >= created.created_at

    def test_messages_come_back_in_append_order(self, store):
        created = store.create_conversation()
        contents = [f"message {i}" for i in range(10)]
        for i, content in enumerate(contents):
            store.save_message(created.id, Role.USER if i % 2 == 0 else Role.ASSISTANT, content)

        loaded = store.get_conversation_with_messages(created.id)
        assert [m.content for m in loaded.messages] == contents
        timestamps = [m.timestamp for m in loaded.messages]
        assert timestamps == sorted(timestamps)

    def test_same_millisecond_keeps_insertion_order(self, store, monkeypatch):
        monkeypatch.setattr("snapask.storage.repository.now_ms", lambda: 1_000)
        created = store.create_conversation()
        for content in ("first", "second", "third"):
            store.save_message(created.id, "user", content)

        loaded = store.get_conversation_with_messages(created.id)
        assert [m.content for m in loaded.messages] == ["first", "second", "third"]

    def test_clock_going_backwards_never_reorders(self, store, monkeypatch):
        clock = iter([5_000, 5_000, 4_000])
        monkeypatch.setattr("snapask.storage.repository.now_ms", lambda: next(clock))
        created = store.create_conversation()
        first = store.save_message(created.id, "user", "q")
        second = store.save_message(created.id, "assistant", "a")

        assert second.timestamp >= first.timestamp

    def test_error_flag_round_trips(self, store):
        created = store.create_conversation()
        store.save_message(created.id, "assistant", "Rate limit exceeded.", error=True)

        (message,) = store.get_conversation_with_messages(created.id).messages
        assert message.error is True
        assert message.role is Role.ASSISTANT

    @pytest.mark.parametrize("role", ["system", "USER", "", None])
    def test_invalid_role_rejected_before_write(self, store, role):
        created = store.create_conversation()
        with pytest.raises(ValidationError, match="Invalid role"):
            store.save_message(created.id, role, "hello")  # type: ignore[arg-type]
        assert _message_rows(store, created.id) == 0
        assert store.get_conversation(created.id).message_count == 0

    @pytest.mark.parametrize("conversation_id", ["", "   ", None])
    def test_empty_conversation_id_rejected(self, store, conversation_id):
        with pytest.raises(ValidationError):
            store.save_message(conversation_id, "user", "hello")  # type: ignore[arg-type]

    def test_non_string_content_rejected(self, store):
        created = store.create_conversation()
        with pytest.raises(ValidationError):
            store.save_message(created.id, "user", 42)  # type: ignore[arg-type]

    def test_missing_parent_is_a_constraint_error(self, store):
        """The foreign key, not a lookup, rejects orphan messages."""
        with pytest.raises(sqlite3.IntegrityError):
            store.save_message("does-not-exist", "user", "hello")
        assert store.connection.handle.execute("SELECT COUNT(*) FROM messages").fetchone()[0] == 0
        assert not store.connection.handle.in_transaction

    def test_first_user_message_names_conversation(self, store):
        created = store.create_conversation()
        store.save_message(created.id, "assistant", "Greetings")
        store.save_message(created.id, "user", "  Explain this chart  ")
        store.save_message(created.id, "user", "And this one?")

        assert store.get_conversation(created.id).title == "Explain this chart"

    def test_renamed_title_is_kept(self, store):
        created = store.create_conversation()
        store.update_conversation(created.id, ConversationUpdate(title="Mine"))
        store.save_message(created.id, "user", "Something else")

        assert store.get_conversation(created.id).title == "Mine"


@settings(max_examples=25, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
@given(roles=st.lists(st.sampled_from(["user", "assistant"]), max_size=15))
def test_message_count_matches_rows(tmp_path_factory, roles):
    """message_count always equals the number of message rows."""
    path = tmp_path_factory.mktemp("count") / "conversations.db"
    with ConnectionManager(path) as manager:
        store = ConversationStore(manager)
        created = store.create_conversation()
        for i, role in enumerate(roles):
            store.save_message(created.id, role, f"content {i}")

        record = store.get_conversation(created.id)
        assert record.message_count == len(roles) == _message_rows(store, created.id)


# =============================================================================
# Reads
# =============================================================================


class TestGetConversation:
    def test_missing_returns_none(self, store):
        assert store.get_conversation("nope") is None
        assert store.get_conversation_with_messages("nope") is None

    def test_with_messages_shape(self, store):
        created = store.create_conversation(SCREENSHOT)
        store.save_message(created.id, "user", "Q")
        store.save_message(created.id, "assistant", "A")

        payload = store.get_conversation_with_messages(created.id).to_payload()
        assert payload["id"] == created.id
        assert payload["screenshotDataUrl"] == SCREENSHOT
        assert payload["messageCount"] == 2
        assert [set(m) for m in payload["messages"]] == [{"id", "role", "content", "timestamp", "error"}] * 2
        assert [m["role"] for m in payload["messages"]] == ["user", "assistant"]


class TestListConversations:
    def test_most_recent_activity_first(self, store, monkeypatch):
        clock = iter(range(1_000, 100_000, 10))
        monkeypatch.setattr("snapask.storage.repository.now_ms", lambda: next(clock))
        older = store.create_conversation()
        newer = store.create_conversation()
        store.save_message(older.id, "user", "bump")

        ids = [c.id for c in store.get_all_conversations()]
        assert ids == [older.id, newer.id]

    def test_ties_are_stable(self, store, monkeypatch):
        monkeypatch.setattr("snapask.storage.repository.now_ms", lambda: 1_000)
        created = [store.create_conversation().id for _ in range(5)]

        first = [c.id for c in store.get_all_conversations()]
        second = [c.id for c in store.get_all_conversations()]
        assert first == second == list(reversed(created))

    def test_summary_fields(self, store):
        created = store.create_conversation()
        store.save_message(created.id, "user", "Q" * 80)
        store.save_message(created.id, "assistant", "A" * 150)

        (summary,) = store.get_all_conversations()
        assert summary.id == created.id
        assert summary.title == "Q" * 50 + "..."
        assert summary.preview == "A" * 100
        assert summary.message_count == 2
        assert set(summary.to_payload()) == {
            "id", "title", "preview", "createdAt", "updatedAt", "messageCount", "starred", "archived",
        }

    def test_empty_conversation_summary(self, store):
        store.create_conversation()
        (summary,) = store.get_all_conversations()
        assert summary.title == UNTITLED
        assert summary.preview == ""

    def test_reset_title_falls_back_to_first_prompt(self, store):
        created = store.create_conversation()
        store.save_message(created.id, "user", "Original question")
        store.update_conversation(created.id, ConversationUpdate(title="Renamed"))
        assert store.get_all_conversations()[0].title == "Renamed"

        store.update_conversation(created.id, ConversationUpdate(title=None))
        assert store.get_all_conversations()[0].title == "Original question"

    def test_archived_hidden_by_default(self, store):
        visible = store.create_conversation()
        hidden = store.create_conversation()
        store.update_conversation(hidden.id, {"archived": True})

        assert [c.id for c in store.get_all_conversations()] == [visible.id]
        assert [c.id for c in store.get_all_conversations(filters={"archived": True})] == [hidden.id]
        assert [c.id for c in store.get_all_conversations(filters={"archived": False})] == [visible.id]

    def test_starred_filter_excludes_archived(self, store):
        plain = store.create_conversation()
        starred = store.create_conversation()
        starred_archived = store.create_conversation()
        store.update_conversation(starred.id, {"starred": True})
        store.update_conversation(starred_archived.id, {"starred": True, "archived": True})

        result = store.get_all_conversations(filters={"starred": True})
        assert [c.id for c in result] == [starred.id]
        assert {c.id for c in store.get_all_conversations(filters={"starred": False})} == {plain.id, starred.id}

    def test_pagination(self, store):
        ids = [store.create_conversation().id for _ in range(7)]
        expected = list(reversed(ids))

        page1 = [c.id for c in store.get_all_conversations(limit=3)]
        page2 = [c.id for c in store.get_all_conversations(limit=3, offset=3)]
        page3 = [c.id for c in store.get_all_conversations(limit=3, offset=6)]
        assert page1 + page2 + page3 == expected

    @pytest.mark.parametrize("limit, offset", [(0, 0), (-1, 0), (10, -1), (True, 0)])
    def test_bad_paging_rejected(self, store, limit, offset):
        with pytest.raises(ValidationError):
            store.get_all_conversations(limit=limit, offset=offset)

    def test_invalid_filter_rejected(self, store):
        with pytest.raises(ValidationError):
            store.get_all_conversations(filters={"starred": "maybe"})

    def test_count_and_stats(self, store):
        a = store.create_conversation()
        b = store.create_conversation()
        store.create_conversation()
        store.update_conversation(a.id, {"starred": True})
        store.update_conversation(b.id, {"archived": True})
        store.save_message(a.id, "user", "hi")

        assert store.count_conversations() == 2
        assert store.count_conversations({"archived": True}) == 1
        assert store.count_conversations({"starred": True}) == 1
        stats = store.stats()
        assert (stats.conversations, stats.messages, stats.starred, stats.archived) == (3, 1, 1, 1)


# =============================================================================
# Update
# =============================================================================


class TestUpdateConversation:
    def test_empty_update_writes_nothing(self, store, monkeypatch):
        created = store.create_conversation()
        monkeypatch.setattr("snapask.storage.repository.now_ms", lambda: created.created_at + 10_000)

        assert store.update_conversation(created.id, ConversationUpdate()) is False
        assert store.update_conversation(created.id, {}) is False
        assert store.get_conversation(created.id).updated_at == created.created_at

    def test_star_changes_only_starred_and_updated_at(self, store, monkeypatch):
        created = store.create_conversation(SCREENSHOT)
        store.save_message(created.id, "user", "Hello there")
        before = store.get_conversation(created.id)
        monkeypatch.setattr("snapask.storage.repository.now_ms", lambda: before.updated_at + 5)

        assert store.update_conversation(created.id, {"starred": True}) is True

        after = store.get_conversation(created.id)
        assert after.starred is True
        assert after.updated_at == before.updated_at + 5
        unchanged = {"starred", "updated_at"}
        assert before.model_dump(exclude=unchanged) == after.model_dump(exclude=unchanged)

    def test_mapping_updates_are_validated(self, store):
        created = store.create_conversation()
        assert store.update_conversation(created.id, {"title": "  Trimmed  ", "archived": True})
        record = store.get_conversation(created.id)
        assert record.title == "Trimmed"
        assert record.archived is True

    @pytest.mark.parametrize(
        "updates",
        [
            {"id": "other"},
            {"created_at": 0},
            {"message_count": 99},
            {"title": "   "},
            {"starred": None},
            {"starred": "sometimes"},
        ],
    )
    def test_invalid_updates_rejected(self, store, updates):
        created = store.create_conversation()
        before = store.get_conversation(created.id)

        with pytest.raises(ValidationError):
            store.update_conversation(created.id, updates)
        assert store.get_conversation(created.id) == before

    def test_missing_conversation(self, store):
        assert store.update_conversation("nope", {"starred": True}) is False


# =============================================================================
# Delete
# =============================================================================


class TestDeleteConversation:
    def test_delete_cascades_to_messages(self, store):
        created = store.create_conversation()
        for i in range(4):
            store.save_message(created.id, "user" if i % 2 == 0 else "assistant", str(i))
        other = store.create_conversation()
        store.save_message(other.id, "user", "keep me")

        assert store.delete_conversation(created.id) is True

        assert store.get_conversation(created.id) is None
        assert _message_rows(store, created.id) == 0
        assert _message_rows(store, other.id) == 1

    def test_delete_missing(self, store):
        assert store.delete_conversation("nope") is False


# =============================================================================
# Complete save
# =============================================================================


class TestSaveCompleteConversation:
    def test_pairs_become_alternating_messages(self, store):
        created = store.save_complete_conversation(
            None,
            [{"prompt": "p1", "answer": "a1"}, ConversationItem(prompt="p2", answer="a2", error=True)],
        )
        loaded = store.get_conversation_with_messages(created.id)

        assert [(m.role.value, m.content, m.error) for m in loaded.messages] == [
            ("user", "p1", False),
            ("assistant", "a1", False),
            ("user", "p2", False),
            ("assistant", "a2", True),
        ]
        assert loaded.message_count == 4
        assert loaded.title == "p1"
        assert loaded.screenshot_data_url is None

    def test_screenshot_kept(self, store):
        created = store.save_complete_conversation(SCREENSHOT, [{"prompt": "p", "answer": "a"}])
        assert store.get_conversation(created.id).screenshot_hash == hash_screenshot(SCREENSHOT)

    def test_invalid_item_writes_nothing(self, store):
        with pytest.raises(ValidationError, match="index 1"):
            store.save_complete_conversation(None, [{"prompt": "p", "answer": "a"}, {"prompt": "p2"}])
        assert store.stats().conversations == 0

    def test_failure_mid_sequence_leaves_nothing(self, store, monkeypatch):
        """A storage failure part-way through rolls back the whole conversation."""
        calls = {"n": 0}
        original = ConversationStore._append_message

        def flaky(conn, conversation_id, role, content, error):
            calls["n"] += 1
            if calls["n"] == 3:
                raise sqlite3.OperationalError("disk I/O error")
            return original(conn, conversation_id, role, content, error)

        monkeypatch.setattr(ConversationStore, "_append_message", staticmethod(flaky))

        with pytest.raises(sqlite3.OperationalError):
            store.save_complete_conversation(
                None, [{"prompt": "p1", "answer": "a1"}, {"prompt": "p2", "answer": "a2"}]
            )

        stats = store.stats()
        assert (stats.conversations, stats.messages) == (0, 0)
        assert not store.connection.handle.in_transaction


# =============================================================================
# End to end
# =============================================================================


def test_create_save_save_load(store):
    created = store.create_conversation(SCREENSHOT)
    store.save_message(created.id, "user", "What is this?")
    store.save_message(created.id, "assistant", "A cat.")

    loaded = store.get_conversation_with_messages(created.id)
    assert loaded.message_count == 2
    assert [(m.role, m.content) for m in loaded.messages] == [
        (Role.USER, "What is this?"),
        (Role.ASSISTANT, "A cat."),
    ]
    (summary,) = store.get_all_conversations()
    assert summary.title == "What is this?"
    assert summary.preview == "A cat."
