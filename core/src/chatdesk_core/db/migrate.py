"""Versioned, transactional schema migrations for independent SQLite databases.

Each `DatabaseConfig` gets its own `DatabaseMigrator`: one connection, one
`schema_migrations` bookkeeping table and one transaction per `migrate()` or
`rollback()` batch. `MigrationManager` is a registry over several of them.
"""

from __future__ import annotations

import logging
import shutil
import sqlite3
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from chatdesk_core.db import connect_database, transaction, utc_now_sqlite_iso

logger = logging.getLogger(__name__)

MigrationStep = Callable[[sqlite3.Connection], None]


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    up: MigrationStep
    # No `down` means the migration cannot be rolled back.
    down: MigrationStep | None = None

    def __post_init__(self) -> None:
        if self.version < 1:
            raise ValueError(f"Migration version must be positive, got {self.version}")


@dataclass(frozen=True)
class DatabaseConfig:
    name: str
    path: Path
    migrations: Sequence[Migration]

    def __post_init__(self) -> None:
        versions = [m.version for m in self.migrations]
        if len(set(versions)) != len(versions):
            raise ValueError(f"Duplicate migration versions for database {self.name!r}")

        object.__setattr__(self, "path", Path(self.path))
        object.__setattr__(
            self, "migrations", tuple(sorted(self.migrations, key=lambda m: m.version))
        )


@dataclass(frozen=True)
class SchemaMigrationRecord:
    version: int
    description: str
    applied_at: str


@dataclass(frozen=True)
class MigrationResult:
    success: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class MigrationStatus:
    name: str
    current_version: int
    pending_migrations: int
    applied_migrations: list[SchemaMigrationRecord]


@dataclass(frozen=True)
class MigrateAllResult:
    success: bool
    results: dict[str, MigrationResult]


class DatabaseMigrator:
    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._conn: sqlite3.Connection | None = connect_database(config.path)
        self._initialize_migration_table()

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def closed(self) -> bool:
        return self._conn is None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"Database {self.name} is closed")
        return self._conn

    def __enter__(self) -> DatabaseMigrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def _initialize_migration_table(self) -> None:
        self.connection.execute(
            "CREATE TABLE IF NOT EXISTS schema_migrations ("
            " version INTEGER PRIMARY KEY,"
            " description TEXT NOT NULL,"
            " applied_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"
            ");"
        )

    def get_current_version(self) -> int:
        row = self.connection.execute(
            "SELECT MAX(version) AS version FROM schema_migrations;"
        ).fetchone()
        return int(row["version"]) if row["version"] is not None else 0

    def get_applied_migrations(self) -> list[SchemaMigrationRecord]:
        rows = self.connection.execute(
            "SELECT version, description, applied_at FROM schema_migrations ORDER BY version;"
        ).fetchall()
        return [
            SchemaMigrationRecord(
                version=int(r["version"]),
                description=r["description"],
                applied_at=r["applied_at"],
            )
            for r in rows
        ]

    def get_pending_migrations(self) -> list[Migration]:
        current = self.get_current_version()
        return [m for m in self._config.migrations if m.version > current]

    def migrate(self) -> MigrationResult:
        """Apply every pending migration in one transaction.

        A failing `up` rolls back the whole batch, including records for
        migrations that ran before it. Nothing is retried.
        """

        pending = self.get_pending_migrations()
        if not pending:
            logger.info("[%s] No pending migrations", self.name)
            return MigrationResult(success=True)

        logger.info("[%s] Running %d migration(s)...", self.name, len(pending))

        conn = self.connection
        errors: list[str] = []
        try:
            with transaction(conn):
                for migration in pending:
                    logger.info(
                        "[%s] Applying migration %d: %s",
                        self.name,
                        migration.version,
                        migration.description,
                    )
                    try:
                        migration.up(conn)
                        conn.execute(
                            "INSERT INTO schema_migrations (version, description, applied_at)"
                            " VALUES (?, ?, ?);",
                            (migration.version, migration.description, utc_now_sqlite_iso()),
                        )
                    except Exception as exc:
                        errors.append(f"Failed to apply migration {migration.version}: {exc}")
                        raise
        except Exception as exc:
            if not errors:
                errors.append(f"Migration transaction failed: {exc}")
            logger.error(
                "[%s] Migration failed, transaction rolled back: %s", self.name, errors[-1]
            )
            return MigrationResult(success=False, errors=errors)

        logger.info("[%s] All migrations completed successfully", self.name)
        return MigrationResult(success=True)

    def rollback(self, target_version: int) -> MigrationResult:
        """Undo migrations above `target_version`, newest first, in one transaction.

        A migration without `down` aborts the whole rollback.
        """

        current = self.get_current_version()
        if target_version >= current:
            logger.info(
                "[%s] Already at or below target version %d", self.name, target_version
            )
            return MigrationResult(success=True)

        to_rollback = sorted(
            (m for m in self._config.migrations if target_version < m.version <= current),
            key=lambda m: m.version,
            reverse=True,
        )
        logger.info("[%s] Rolling back %d migration(s)...", self.name, len(to_rollback))

        conn = self.connection
        errors: list[str] = []
        try:
            with transaction(conn):
                for migration in to_rollback:
                    logger.info(
                        "[%s] Rolling back migration %d: %s",
                        self.name,
                        migration.version,
                        migration.description,
                    )
                    try:
                        if migration.down is None:
                            raise RuntimeError(
                                f"No rollback defined for migration {migration.version}"
                            )
                        migration.down(conn)
                        conn.execute(
                            "DELETE FROM schema_migrations WHERE version = ?;",
                            (migration.version,),
                        )
                    except Exception as exc:
                        errors.append(f"Failed to rollback migration {migration.version}: {exc}")
                        raise
        except Exception as exc:
            if not errors:
                errors.append(f"Rollback transaction failed: {exc}")
            logger.error("[%s] Rollback failed, transaction rolled back: %s", self.name, errors[-1])
            return MigrationResult(success=False, errors=errors)

        logger.info(
            "[%s] Rollback completed successfully to version %d", self.name, target_version
        )
        return MigrationResult(success=True)

    def get_status(self) -> MigrationStatus:
        return MigrationStatus(
            name=self.name,
            current_version=self.get_current_version(),
            pending_migrations=len(self.get_pending_migrations()),
            applied_migrations=self.get_applied_migrations(),
        )

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


def backup_timestamp() -> str:
    # 2024-05-01T12:30:45.123Z -> 2024-05-01T12-30-45-123Z
    return utc_now_sqlite_iso().replace(":", "-").replace(".", "-")


class MigrationManager:
    """Registry of named migrators, migrated and backed up as a group."""

    def __init__(self, backup_dir: Path) -> None:
        self._backup_dir = Path(backup_dir)
        self._migrators: dict[str, DatabaseMigrator] = {}

    @property
    def backup_dir(self) -> Path:
        return self._backup_dir

    def add_database(self, config: DatabaseConfig) -> DatabaseMigrator:
        previous = self._migrators.pop(config.name, None)
        if previous is not None:
            previous.close()

        migrator = DatabaseMigrator(config)
        self._migrators[config.name] = migrator
        return migrator

    def get_migrator(self, name: str) -> DatabaseMigrator | None:
        return self._migrators.get(name)

    def database_names(self) -> list[str]:
        return list(self._migrators)

    def migrate_all(self) -> MigrateAllResult:
        results: dict[str, MigrationResult] = {}

        logger.info("Starting migration for all databases...")
        for name, migrator in self._migrators.items():
            logger.info("Migrating %s", name)
            try:
                result = migrator.migrate()
            except Exception as exc:
                logger.exception("Migration raised for %s", name)
                result = MigrationResult(success=False, errors=[str(exc)])
            results[name] = result

            if not result.success:
                logger.error("Migration failed for %s: %s", name, result.errors)

        for name, result in results.items():
            logger.info("%s: %s", name, "SUCCESS" if result.success else "FAILED")

        return MigrateAllResult(
            success=all(r.success for r in results.values()),
            results=results,
        )

    def get_all_status(self) -> dict[str, MigrationStatus]:
        return {name: migrator.get_status() for name, migrator in self._migrators.items()}

    def create_backup_directory(self) -> Path:
        self._backup_dir.mkdir(parents=True, exist_ok=True)
        return self._backup_dir

    def backup_database(self, name: str) -> Path | None:
        """Copy the live database file into the backup directory.

        Returns None when the database is not registered or the copy fails.
        """

        migrator = self._migrators.get(name)
        if migrator is None:
            logger.error("Database %s not found", name)
            return None

        try:
            backup_dir = self.create_backup_directory()
            backup_path = backup_dir / f"{name}_{backup_timestamp()}.db"
            shutil.copyfile(migrator.config.path, backup_path)
        except OSError:
            logger.exception("Failed to backup database %s", name)
            return None

        logger.info("Database %s backed up to: %s", name, backup_path)
        return backup_path

    def close_all(self) -> None:
        for migrator in self._migrators.values():
            migrator.close()
        self._migrators.clear()
