from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from chatdesk_core.db import execute_statements
from chatdesk_core.db.migrate import (
    DatabaseConfig,
    DatabaseMigrator,
    Migration,
    MigrationManager,
)
from chatdesk_core.db.migrations import get_database_configs
from chatdesk_core.home import ensure_chatdesk_layout


def _table_names(db_path: Path) -> set[str]:
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name ASC;"
        ).fetchall()
    return {r[0] for r in rows}


def _index_names(db_path: Path) -> set[str]:
    with sqlite3.connect(db_path) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='index';").fetchall()
    return {r[0] for r in rows}


def _sql(*statements: str):
    def step(conn: sqlite3.Connection) -> None:
        execute_statements(conn, *statements)

    return step


def _boom(conn: sqlite3.Connection) -> None:
    raise RuntimeError("boom")


def _widgets_migrations() -> list[Migration]:
    return [
        Migration(
            version=1,
            description="Create widgets",
            up=_sql("CREATE TABLE widgets (id INTEGER PRIMARY KEY, name TEXT);"),
            down=_sql("DROP TABLE widgets;"),
        ),
        Migration(
            version=2,
            description="Create gadgets",
            up=_sql("CREATE TABLE gadgets (id INTEGER PRIMARY KEY);"),
            down=_sql("DROP TABLE gadgets;"),
        ),
        Migration(
            version=3,
            description="Index widgets",
            up=_sql("CREATE INDEX idx_widgets_name ON widgets(name);"),
            down=_sql("DROP INDEX idx_widgets_name;"),
        ),
    ]


def _widgets_config(tmp_path: Path) -> DatabaseConfig:
    return DatabaseConfig(name="widgets", path=tmp_path / "w.db", migrations=_widgets_migrations())


def test_shipped_migrations_blank_to_latest(tmp_path: Path) -> None:
    paths = ensure_chatdesk_layout(tmp_path)
    manager = MigrationManager(paths.backups_dir)
    for db_config in get_database_configs(paths):
        manager.add_database(db_config)

    assert manager.migrate_all().success
    assert manager.migrate_all().success  # idempotent

    statuses = manager.get_all_status()
    assert list(statuses) == ["encryption", "apikeys", "conversations", "settings"]
    assert statuses["encryption"].current_version == 2
    assert statuses["apikeys"].current_version == 1
    assert statuses["conversations"].current_version == 4
    assert statuses["settings"].current_version == 3
    assert all(s.pending_migrations == 0 for s in statuses.values())
    manager.close_all()

    assert {"schema_migrations", "encryption_keys"} <= _table_names(paths.db_dir / "encryption.db")
    assert "api_keys" in _table_names(paths.db_dir / "apikeys.db")
    assert {"conversation_metadata", "conversation_statistics"} <= _table_names(
        paths.db_dir / "conversations.db"
    )
    assert {"user_settings", "initial_setup"} <= _table_names(paths.db_dir / "settings.db")
    assert "idx_api_keys_service_model" in _index_names(paths.db_dir / "apikeys.db")


def test_every_shipped_migration_can_roll_back_to_zero(tmp_path: Path) -> None:
    paths = ensure_chatdesk_layout(tmp_path)
    for db_config in get_database_configs(paths):
        assert all(m.down is not None for m in db_config.migrations)

        with DatabaseMigrator(db_config) as migrator:
            assert migrator.migrate().success
            result = migrator.rollback(0)
            assert result.success, result.errors
            assert migrator.get_current_version() == 0

        # AUTOINCREMENT leaves sqlite_sequence behind; it is SQLite's, not ours.
        assert _table_names(db_config.path) - {"sqlite_sequence"} == {"schema_migrations"}


def test_migrate_applies_in_version_order_and_records_history(tmp_path: Path) -> None:
    shuffled = list(reversed(_widgets_migrations()))
    config = DatabaseConfig(name="widgets", path=tmp_path / "w.db", migrations=shuffled)
    assert [m.version for m in config.migrations] == [1, 2, 3]

    with DatabaseMigrator(config) as migrator:
        assert migrator.get_current_version() == 0
        assert len(migrator.get_pending_migrations()) == 3

        result = migrator.migrate()
        assert result.success
        assert result.errors == []

        applied = migrator.get_applied_migrations()
        assert [r.version for r in applied] == [1, 2, 3]
        assert applied[0].description == "Create widgets"
        assert applied[0].applied_at.endswith("Z")
        assert migrator.get_pending_migrations() == []


def test_failed_migration_rolls_back_the_whole_batch(tmp_path: Path) -> None:
    migrations = [
        *_widgets_migrations()[:2],
        Migration(version=3, description="Broken", up=_boom, down=_sql("SELECT 1;")),
    ]
    config = DatabaseConfig(name="widgets", path=tmp_path / "w.db", migrations=migrations)

    with DatabaseMigrator(config) as migrator:
        result = migrator.migrate()

        assert result.success is False
        assert result.errors == ["Failed to apply migration 3: boom"]
        assert migrator.get_current_version() == 0
        assert migrator.get_applied_migrations() == []

    assert _table_names(tmp_path / "w.db") == {"schema_migrations"}


def test_rollback_then_migrate_restores_schema(tmp_path: Path) -> None:
    config = _widgets_config(tmp_path)

    with DatabaseMigrator(config) as migrator:
        assert migrator.migrate().success
        before = _table_names(config.path)

        result = migrator.rollback(1)
        assert result.success
        assert migrator.get_current_version() == 1
        assert "gadgets" not in _table_names(config.path)
        assert "idx_widgets_name" not in _index_names(config.path)

        assert migrator.migrate().success
        assert migrator.get_current_version() == 3
        assert _table_names(config.path) == before


def test_rollback_to_current_or_higher_is_a_no_op(tmp_path: Path) -> None:
    config = _widgets_config(tmp_path)

    with DatabaseMigrator(config) as migrator:
        assert migrator.migrate().success
        assert migrator.rollback(3).success
        assert migrator.rollback(10).success
        assert migrator.get_current_version() == 3


def test_rollback_without_down_aborts_everything(tmp_path: Path) -> None:
    migrations = _widgets_migrations()
    migrations[1] = Migration(
        version=2,
        description="Create gadgets (irreversible)",
        up=_sql("CREATE TABLE gadgets (id INTEGER PRIMARY KEY);"),
    )
    config = DatabaseConfig(name="widgets", path=tmp_path / "w.db", migrations=migrations)

    with DatabaseMigrator(config) as migrator:
        assert migrator.migrate().success

        result = migrator.rollback(0)
        assert result.success is False
        assert result.errors == [
            "Failed to rollback migration 2: No rollback defined for migration 2"
        ]
        # Migration 3 was undone inside the aborted transaction and is restored.
        assert migrator.get_current_version() == 3
        assert "idx_widgets_name" in _index_names(config.path)


def test_failing_down_keeps_version(tmp_path: Path) -> None:
    migrations = _widgets_migrations()
    migrations[2] = Migration(
        version=3,
        description="Index widgets",
        up=_sql("CREATE INDEX idx_widgets_name ON widgets(name);"),
        down=_boom,
    )
    config = DatabaseConfig(name="widgets", path=tmp_path / "w.db", migrations=migrations)

    with DatabaseMigrator(config) as migrator:
        assert migrator.migrate().success
        result = migrator.rollback(0)
        assert result.errors == ["Failed to rollback migration 3: boom"]
        assert migrator.get_current_version() == 3


def test_invalid_migration_definitions_are_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        Migration(version=0, description="zero", up=_sql("SELECT 1;"))

    with pytest.raises(ValueError):
        DatabaseConfig(
            name="dupes",
            path=tmp_path / "d.db",
            migrations=[
                Migration(version=1, description="a", up=_sql("SELECT 1;")),
                Migration(version=1, description="b", up=_sql("SELECT 1;")),
            ],
        )


def test_migrate_all_continues_after_a_failure(tmp_path: Path) -> None:
    manager = MigrationManager(tmp_path / "backups")
    manager.add_database(
        DatabaseConfig(
            name="broken",
            path=tmp_path / "broken.db",
            migrations=[Migration(version=1, description="Broken", up=_boom)],
        )
    )
    manager.add_database(
        _widgets_config(tmp_path)
    )

    result = manager.migrate_all()

    assert result.success is False
    assert result.results["broken"].success is False
    assert result.results["widgets"].success is True
    assert manager.get_migrator("widgets").get_current_version() == 3
    manager.close_all()


def test_backup_database_copies_file_with_timestamped_name(tmp_path: Path) -> None:
    manager = MigrationManager(tmp_path / "backups")
    manager.add_database(
        _widgets_config(tmp_path)
    )
    manager.migrate_all()

    backup_path = manager.backup_database("widgets")

    assert backup_path is not None
    assert backup_path.parent == tmp_path / "backups"
    assert backup_path.name.startswith("widgets_")
    assert backup_path.suffix == ".db"
    assert ":" not in backup_path.name
    assert {"widgets", "gadgets"} <= _table_names(backup_path)

    assert manager.backup_database("missing") is None
    manager.close_all()


def test_close_is_idempotent_and_blocks_further_use(tmp_path: Path) -> None:
    config = _widgets_config(tmp_path)
    migrator = DatabaseMigrator(config)

    migrator.close()
    migrator.close()

    assert migrator.closed
    with pytest.raises(RuntimeError):
        migrator.get_current_version()


def test_add_database_replaces_previous_migrator(tmp_path: Path) -> None:
    manager = MigrationManager(tmp_path / "backups")
    config = _widgets_config(tmp_path)

    first = manager.add_database(config)
    second = manager.add_database(config)

    assert first.closed
    assert manager.get_migrator("widgets") is second
    assert manager.database_names() == ["widgets"]
    manager.close_all()
    assert manager.database_names() == []
