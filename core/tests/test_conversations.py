from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from chatdesk_core.db.conversations import ConversationMetadataStore
from chatdesk_core.db.migrate import DatabaseConfig, DatabaseMigrator
from chatdesk_core.db.migrations import CONVERSATION_MIGRATIONS


@pytest.fixture
def store(tmp_path: Path) -> Iterator[ConversationMetadataStore]:
    config = DatabaseConfig(
        name="conversations",
        path=tmp_path / "conversations.db",
        migrations=CONVERSATION_MIGRATIONS,
    )
    with DatabaseMigrator(config) as m:
        assert m.migrate().success
        yield ConversationMetadataStore(m.connection)


def test_upsert_only_changes_given_fields(store: ConversationMetadataStore) -> None:
    created = store.upsert_metadata("t1", custom_name="Trip plans", tags=["travel"])
    assert created.custom_name == "Trip plans"
    assert created.tags == ["travel"]
    assert created.is_pinned is False

    updated = store.upsert_metadata("t1", is_pinned=True)
    assert updated.custom_name == "Trip plans"
    assert updated.tags == ["travel"]
    assert updated.is_pinned is True
    assert updated.created_at == created.created_at


def test_list_hides_archived_and_puts_pinned_first(store: ConversationMetadataStore) -> None:
    store.upsert_metadata("a")
    store.upsert_metadata("b", is_pinned=True)
    store.upsert_metadata("c", is_archived=True)

    visible = [m.thread_id for m in store.list_metadata()]
    assert visible[0] == "b"
    assert set(visible) == {"a", "b"}

    everything = {m.thread_id for m in store.list_metadata(include_archived=True)}
    assert everything == {"a", "b", "c"}


def test_record_message_tracks_counts_and_average(store: ConversationMetadataStore) -> None:
    store.record_message("t1", role="user", tokens=10)
    store.record_message("t1", role="ai", tokens=40, response_time_ms=100)
    stats = store.record_message("t1", role="ai", tokens=30, response_time_ms=300)

    assert stats.message_count == 3
    assert stats.total_tokens == 80
    assert stats.user_message_count == 1
    assert stats.ai_response_count == 2
    assert stats.avg_response_time_ms == 200
    assert stats.first_message_at is not None
    assert stats.last_message_at >= stats.first_message_at

    # Recording a message creates the metadata row for unknown threads.
    assert store.get_metadata("t1") is not None


def test_untimed_ai_responses_do_not_dilute_average(store: ConversationMetadataStore) -> None:
    store.record_message("t1", role="ai", tokens=5)
    stats = store.record_message("t1", role="ai", tokens=5, response_time_ms=1000)

    assert stats.ai_response_count == 2
    assert stats.timed_response_count == 1
    assert stats.avg_response_time_ms == 1000

    stats = store.record_message("t1", role="ai", response_time_ms=500)
    assert stats.timed_response_count == 2
    assert stats.avg_response_time_ms == 750


def test_timed_count_backfilled_for_existing_statistics(tmp_path: Path) -> None:
    config = DatabaseConfig(
        name="conversations",
        path=tmp_path / "conversations.db",
        migrations=CONVERSATION_MIGRATIONS[:3],
    )
    with DatabaseMigrator(config) as m:
        assert m.migrate().success
        for thread_id, ai_count, avg in (("timed", 2, 300), ("untimed", 1, 0)):
            m.connection.execute(
                "INSERT INTO conversation_metadata (thread_id) VALUES (?);", (thread_id,)
            )
            m.connection.execute(
                "INSERT INTO conversation_statistics"
                " (thread_id, ai_response_count, avg_response_time_ms) VALUES (?, ?, ?);",
                (thread_id, ai_count, avg),
            )

    config = DatabaseConfig(
        name="conversations",
        path=tmp_path / "conversations.db",
        migrations=CONVERSATION_MIGRATIONS,
    )
    with DatabaseMigrator(config) as m:
        assert m.migrate().success
        store = ConversationMetadataStore(m.connection)
        assert store.get_statistics("timed").timed_response_count == 2
        assert store.get_statistics("untimed").timed_response_count == 0

        stats = store.record_message("timed", role="ai", response_time_ms=600)
        assert stats.avg_response_time_ms == 400


def test_record_message_rejects_unknown_role(store: ConversationMetadataStore) -> None:
    with pytest.raises(ValueError):
        store.record_message("t1", role="system")  # type: ignore[arg-type]
    assert store.get_metadata("t1") is None


def test_delete_thread_removes_metadata_and_statistics(store: ConversationMetadataStore) -> None:
    store.record_message("t1", role="user")

    assert store.delete_thread("t1") is True
    assert store.get_metadata("t1") is None
    assert store.get_statistics("t1") is None
    assert store.delete_thread("t1") is False
