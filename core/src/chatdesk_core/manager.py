"""Lifecycle of every local database: migrate, inspect, back up, shut down.

One `DatabaseManager` owns all connections (through its `MigrationManager`)
and hands them to the stores it builds; nothing else opens these files.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path

from chatdesk_core.config import CoreConfig
from chatdesk_core.crypto.encryption import DataEncryption
from chatdesk_core.crypto.key_manager import EncryptionKeyManager
from chatdesk_core.crypto.secure_storage import KeyFileSecureStorage, SecureStorage
from chatdesk_core.db import API_KEYS_DB, CONVERSATIONS_DB, ENCRYPTION_DB, SETTINGS_DB
from chatdesk_core.db.api_keys import ApiKeyStore
from chatdesk_core.db.conversations import ConversationMetadataStore
from chatdesk_core.db.migrate import (
    MigrateAllResult,
    MigrationManager,
    MigrationResult,
    MigrationStatus,
)
from chatdesk_core.db.migrations import get_database_configs
from chatdesk_core.db.settings import SettingsStore
from chatdesk_core.home import ChatDeskPaths

logger = logging.getLogger(__name__)


class DatabaseNotInitializedError(RuntimeError):
    pass


@dataclass(frozen=True)
class InitializeResult:
    success: bool
    errors: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DatabaseHealth:
    healthy: bool
    error: str | None = None


@dataclass(frozen=True)
class HealthStatus:
    overall: bool
    databases: dict[str, DatabaseHealth]


@dataclass(frozen=True)
class BackupResult:
    success: bool
    backup_paths: list[Path]
    errors: list[str]


@dataclass(frozen=True)
class SingleBackupResult:
    success: bool
    backup_path: Path | None = None
    error: str | None = None


class DatabaseManager:
    def __init__(
        self,
        paths: ChatDeskPaths,
        config: CoreConfig | None = None,
        *,
        secure_storage: SecureStorage | None = None,
    ) -> None:
        self._paths = paths
        self._config = config or CoreConfig()
        self._secure_storage = secure_storage or KeyFileSecureStorage(
            paths.config_dir / self._config.crypto.secure_storage_key_file
        )
        self._migration_manager = MigrationManager(paths.backups_dir)
        self._initialized = False

        self._key_manager: EncryptionKeyManager | None = None
        self._api_keys: ApiKeyStore | None = None
        self._settings: SettingsStore | None = None
        self._conversations: ConversationMetadataStore | None = None

    def __enter__(self) -> DatabaseManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def migration_manager(self) -> MigrationManager:
        return self._migration_manager

    def _require(self, store, name: str):
        if store is None:
            raise DatabaseNotInitializedError(f"{name} is not available before initialize()")
        return store

    @property
    def key_manager(self) -> EncryptionKeyManager:
        return self._require(self._key_manager, "Encryption key manager")

    @property
    def api_keys(self) -> ApiKeyStore:
        return self._require(self._api_keys, "API key store")

    @property
    def settings(self) -> SettingsStore:
        return self._require(self._settings, "Settings store")

    @property
    def conversations(self) -> ConversationMetadataStore:
        return self._require(self._conversations, "Conversation metadata store")

    def is_initialized(self) -> bool:
        return self._initialized

    def _connection(self, name: str) -> sqlite3.Connection:
        migrator = self._migration_manager.get_migrator(name)
        if migrator is None:
            raise DatabaseNotInitializedError(f"Database {name} is not registered")
        return migrator.connection

    def initialize(self) -> InitializeResult:
        """Register and migrate every database, then build the stores.

        A master key that secure storage cannot decrypt is not reported in
        the result: SecureStorageError propagates and startup aborts.
        """

        if self._initialized:
            logger.info("Database system already initialized")
            return InitializeResult(success=True)

        logger.info("Initializing database system...")

        try:
            for db_config in get_database_configs(self._paths):
                self._migration_manager.add_database(db_config)
            result = self._migration_manager.migrate_all()
        except (OSError, sqlite3.Error) as exc:
            logger.exception("Database initialization error")
            return InitializeResult(
                success=False, errors=[f"Database initialization error: {exc}"]
            )

        if not result.success:
            errors = [
                f"{name}: {error}"
                for name, db_result in result.results.items()
                if not db_result.success
                for error in db_result.errors
            ]
            logger.error("Database system initialization failed")
            for error in errors:
                logger.error("  - %s", error)
            return InitializeResult(success=False, errors=errors)

        self._build_stores()
        self._initialized = True
        logger.info("Database system initialized successfully")
        self.log_migration_status()
        return InitializeResult(success=True)

    def _build_stores(self) -> None:
        key_manager = EncryptionKeyManager(self._connection(ENCRYPTION_DB), self._secure_storage)
        secret = key_manager.get_or_create_encryption_key(self._config.crypto.master_key_name)
        encryption = DataEncryption(secret, iterations=self._config.crypto.kdf_iterations)

        self._key_manager = key_manager
        self._api_keys = ApiKeyStore(self._connection(API_KEYS_DB), encryption)
        self._settings = SettingsStore(self._connection(SETTINGS_DB))
        self._conversations = ConversationMetadataStore(self._connection(CONVERSATIONS_DB))

    def get_migration_info(self) -> dict[str, MigrationStatus]:
        return self._migration_manager.get_all_status()

    def log_migration_status(self) -> None:
        for name, status in self.get_migration_info().items():
            logger.info(
                "%s: version=%d pending=%d applied=%d",
                name,
                status.current_version,
                status.pending_migrations,
                len(status.applied_migrations),
            )
            for record in status.applied_migrations[-3:]:
                logger.info(
                    "  v%d: %s (%s)", record.version, record.description, record.applied_at
                )

    def health_check(self) -> HealthStatus:
        """Structural check: each known database has a live, readable migrator."""

        databases: dict[str, DatabaseHealth] = {}
        for db_config in get_database_configs(self._paths):
            migrator = self._migration_manager.get_migrator(db_config.name)
            if migrator is None:
                databases[db_config.name] = DatabaseHealth(
                    healthy=False, error="Migrator not found"
                )
                continue
            try:
                migrator.get_status()
            except (sqlite3.Error, RuntimeError) as exc:
                databases[db_config.name] = DatabaseHealth(
                    healthy=False, error=f"Health check failed: {exc}"
                )
                continue
            databases[db_config.name] = DatabaseHealth(healthy=True)

        return HealthStatus(
            overall=all(h.healthy for h in databases.values()),
            databases=databases,
        )

    def create_backup(self) -> BackupResult:
        backup_paths: list[Path] = []
        errors: list[str] = []

        for db_config in get_database_configs(self._paths):
            backup_path = self._migration_manager.backup_database(db_config.name)
            if backup_path is None:
                error = f"Failed to create backup for {db_config.name}"
                logger.error(error)
                errors.append(error)
            else:
                backup_paths.append(backup_path)

        return BackupResult(success=not errors, backup_paths=backup_paths, errors=errors)

    def backup_single(self, name: str) -> SingleBackupResult:
        backup_path = self._migration_manager.backup_database(name)
        if backup_path is None:
            return SingleBackupResult(success=False, error=f"Failed to create backup for {name}")
        return SingleBackupResult(success=True, backup_path=backup_path)

    def rollback_database(self, name: str, target_version: int) -> MigrationResult:
        migrator = self._migration_manager.get_migrator(name)
        if migrator is None:
            return MigrationResult(success=False, errors=[f"Database {name} not found"])

        logger.info("Rolling back %s to version %d...", name, target_version)
        result = migrator.rollback(target_version)
        if result.success:
            logger.info("Rollback completed for %s", name)
        else:
            logger.error("Rollback failed for %s: %s", name, result.errors)
        return result

    def force_migration(self) -> MigrateAllResult:
        logger.info("Force re-running all migrations...")
        return self._migration_manager.migrate_all()

    def shutdown(self) -> None:
        """Close every connection. Safe to call more than once."""

        logger.info("Shutting down database system...")
        self._key_manager = None
        self._api_keys = None
        self._settings = None
        self._conversations = None

        try:
            self._migration_manager.close_all()
        except sqlite3.Error:
            logger.exception("Error during database shutdown")

        self._initialized = False
        logger.info("Database system shutdown completed")
