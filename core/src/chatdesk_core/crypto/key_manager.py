from __future__ import annotations

import logging
import sqlite3
import uuid

from chatdesk_core.crypto.secure_storage import SecureStorage
from chatdesk_core.db import utc_now_sqlite_iso

logger = logging.getLogger(__name__)

DEFAULT_KEY_NAME = "api_keys"


class EncryptionKeyManager:
    """Per-purpose master secrets, stored encrypted by secure storage.

    This is the root of trust: a stored secret that cannot be decrypted
    raises SecureStorageError instead of being skipped or regenerated.
    """

    def __init__(self, conn: sqlite3.Connection, secure_storage: SecureStorage) -> None:
        self._conn = conn
        self._secure_storage = secure_storage

    def has_key(self, key_name: str = DEFAULT_KEY_NAME) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM encryption_keys WHERE key_name = ?;", (key_name,)
        ).fetchone()
        return row is not None

    def get_or_create_encryption_key(self, key_name: str = DEFAULT_KEY_NAME) -> str:
        row = self._conn.execute(
            "SELECT encrypted_key FROM encryption_keys WHERE key_name = ?;", (key_name,)
        ).fetchone()

        if row is not None:
            return self._secure_storage.decrypt_string(bytes(row["encrypted_key"]))

        new_key = str(uuid.uuid4())
        encrypted = self._secure_storage.encrypt_string(new_key)

        now = utc_now_sqlite_iso()
        self._conn.execute(
            """
            INSERT INTO encryption_keys (key_name, encrypted_key, created_at, updated_at)
            VALUES (?, ?, ?, ?);
            """.strip(),
            (key_name, encrypted, now, now),
        )
        logger.info("Created new encryption key: %s", key_name)
        return new_key
