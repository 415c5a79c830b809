from __future__ import annotations

import sqlite3

from chatdesk_core.db import (
    API_KEYS_DB,
    CONVERSATIONS_DB,
    ENCRYPTION_DB,
    SETTINGS_DB,
    execute_statements,
    resolve_db_path,
)
from chatdesk_core.db.migrate import DatabaseConfig, Migration
from chatdesk_core.home import ChatDeskPaths

_NOW = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"


def _statements(*statements: str):
    def step(conn: sqlite3.Connection) -> None:
        execute_statements(conn, *statements)

    return step


ENCRYPTION_KEY_MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Create encryption_keys table",
        up=_statements(
            f"""
CREATE TABLE IF NOT EXISTS encryption_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    key_name TEXT UNIQUE NOT NULL,
    encrypted_key BLOB NOT NULL,
    created_at TEXT NOT NULL DEFAULT {_NOW},
    updated_at TEXT NOT NULL DEFAULT {_NOW}
);
""",
        ),
        down=_statements("DROP TABLE IF EXISTS encryption_keys;"),
    ),
    Migration(
        version=2,
        description="Add index on key_name for encryption_keys",
        up=_statements(
            "CREATE INDEX IF NOT EXISTS idx_encryption_keys_key_name ON encryption_keys(key_name);"
        ),
        down=_statements("DROP INDEX IF EXISTS idx_encryption_keys_key_name;"),
    ),
]


API_KEY_MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Create api_keys table with support for multiple models per service",
        up=_statements(
            f"""
CREATE TABLE IF NOT EXISTS api_keys (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service_name TEXT NOT NULL,
    ai_model TEXT,
    encrypted_api_key TEXT NOT NULL,
    description TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_used_at TEXT,
    created_at TEXT NOT NULL DEFAULT {_NOW},
    updated_at TEXT NOT NULL DEFAULT {_NOW}
);
""",
            "CREATE INDEX IF NOT EXISTS idx_api_keys_service_name ON api_keys(service_name);",
            "CREATE INDEX IF NOT EXISTS idx_api_keys_service_model"
            " ON api_keys(service_name, ai_model);",
        ),
        down=_statements(
            "DROP INDEX IF EXISTS idx_api_keys_service_model;",
            "DROP INDEX IF EXISTS idx_api_keys_service_name;",
            "DROP TABLE IF EXISTS api_keys;",
        ),
    ),
]


# Conversation history itself belongs to the checkpoint library; these are
# side tables keyed by its thread ids.
CONVERSATION_MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Create conversation metadata table",
        up=_statements(
            f"""
CREATE TABLE IF NOT EXISTS conversation_metadata (
    thread_id TEXT PRIMARY KEY,
    custom_name TEXT,
    tags_json TEXT NOT NULL DEFAULT '[]',
    is_archived INTEGER NOT NULL DEFAULT 0,
    is_pinned INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT {_NOW},
    updated_at TEXT NOT NULL DEFAULT {_NOW}
);
""",
        ),
        down=_statements("DROP TABLE IF EXISTS conversation_metadata;"),
    ),
    Migration(
        version=2,
        description="Add indexes for conversation metadata",
        up=_statements(
            "CREATE INDEX IF NOT EXISTS idx_conversation_metadata_archived"
            " ON conversation_metadata(is_archived);",
            "CREATE INDEX IF NOT EXISTS idx_conversation_metadata_pinned"
            " ON conversation_metadata(is_pinned);",
            "CREATE INDEX IF NOT EXISTS idx_conversation_metadata_created_at"
            " ON conversation_metadata(created_at);",
        ),
        down=_statements(
            "DROP INDEX IF EXISTS idx_conversation_metadata_archived;",
            "DROP INDEX IF EXISTS idx_conversation_metadata_pinned;",
            "DROP INDEX IF EXISTS idx_conversation_metadata_created_at;",
        ),
    ),
    Migration(
        version=3,
        description="Create conversation statistics table",
        up=_statements(
            f"""
CREATE TABLE IF NOT EXISTS conversation_statistics (
    thread_id TEXT PRIMARY KEY,
    message_count INTEGER NOT NULL DEFAULT 0,
    total_tokens INTEGER NOT NULL DEFAULT 0,
    ai_response_count INTEGER NOT NULL DEFAULT 0,
    user_message_count INTEGER NOT NULL DEFAULT 0,
    first_message_at TEXT,
    last_message_at TEXT,
    avg_response_time_ms INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT {_NOW},
    updated_at TEXT NOT NULL DEFAULT {_NOW},
    FOREIGN KEY(thread_id) REFERENCES conversation_metadata(thread_id) ON DELETE RESTRICT
);
""",
        ),
        down=_statements("DROP TABLE IF EXISTS conversation_statistics;"),
    ),
    Migration(
        version=4,
        description="Count AI responses that carry a response time",
        up=_statements(
            "ALTER TABLE conversation_statistics"
            " ADD COLUMN timed_response_count INTEGER NOT NULL DEFAULT 0;",
            # Existing averages were taken over every AI response.
            "UPDATE conversation_statistics SET timed_response_count = ai_response_count"
            " WHERE avg_response_time_ms > 0;",
        ),
        down=_statements(
            "ALTER TABLE conversation_statistics DROP COLUMN timed_response_count;"
        ),
    ),
]


SETTINGS_MIGRATIONS: list[Migration] = [
    Migration(
        version=1,
        description="Create user_settings table",
        up=_statements(
            f"""
CREATE TABLE IF NOT EXISTS user_settings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    setting_key TEXT UNIQUE NOT NULL,
    setting_value TEXT NOT NULL,
    setting_type TEXT NOT NULL DEFAULT 'string',
    description TEXT,
    created_at TEXT NOT NULL DEFAULT {_NOW},
    updated_at TEXT NOT NULL DEFAULT {_NOW}
);
""",
        ),
        down=_statements("DROP TABLE IF EXISTS user_settings;"),
    ),
    Migration(
        version=2,
        description="Add index on setting_key for user_settings",
        up=_statements(
            "CREATE INDEX IF NOT EXISTS idx_user_settings_setting_key"
            " ON user_settings(setting_key);"
        ),
        down=_statements("DROP INDEX IF EXISTS idx_user_settings_setting_key;"),
    ),
    Migration(
        version=3,
        description="Create initial_setup table",
        up=_statements(
            f"""
CREATE TABLE IF NOT EXISTS initial_setup (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    is_completed INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    created_at TEXT NOT NULL DEFAULT {_NOW},
    updated_at TEXT NOT NULL DEFAULT {_NOW}
);
""",
        ),
        down=_statements("DROP TABLE IF EXISTS initial_setup;"),
    ),
]


def get_database_configs(paths: ChatDeskPaths) -> list[DatabaseConfig]:
    """All managed databases, in the order they are registered and migrated."""

    return [
        DatabaseConfig(
            name=ENCRYPTION_DB,
            path=resolve_db_path(paths, ENCRYPTION_DB),
            migrations=ENCRYPTION_KEY_MIGRATIONS,
        ),
        DatabaseConfig(
            name=API_KEYS_DB,
            path=resolve_db_path(paths, API_KEYS_DB),
            migrations=API_KEY_MIGRATIONS,
        ),
        DatabaseConfig(
            name=CONVERSATIONS_DB,
            path=resolve_db_path(paths, CONVERSATIONS_DB),
            migrations=CONVERSATION_MIGRATIONS,
        ),
        DatabaseConfig(
            name=SETTINGS_DB,
            path=resolve_db_path(paths, SETTINGS_DB),
            migrations=SETTINGS_MIGRATIONS,
        ),
    ]
