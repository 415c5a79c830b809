"""Encrypted API-key vault.

A record is identified by `(service_name, ModelKey)`. `ModelKey.DEFAULT`
stands for "no specific model" and is stored as NULL; matching uses
`ai_model IS ?` so the default key compares equal to itself.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import ClassVar

from chatdesk_core.crypto.encryption import DataEncryption, DecryptPolicy, decrypt_with_policy
from chatdesk_core.db import transaction, utc_now_sqlite_iso

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelKey:
    name: str | None = None

    DEFAULT: ClassVar[ModelKey]

    @classmethod
    def named(cls, name: str) -> ModelKey:
        name = name.strip()
        if not name:
            raise ValueError("model name must be non-empty; use ModelKey.DEFAULT")
        return cls(name)

    @classmethod
    def of(cls, value: str | ModelKey | None) -> ModelKey:
        if isinstance(value, ModelKey):
            return value
        if value is None or not value.strip():
            return cls.DEFAULT
        return cls.named(value)

    @property
    def is_default(self) -> bool:
        return self.name is None


ModelKey.DEFAULT = ModelKey()


@dataclass(frozen=True)
class ApiKeyInfo:
    id: int
    service_name: str
    api_key: str = field(repr=False)
    ai_model: str | None
    description: str | None
    is_active: bool
    last_used_at: str | None
    created_at: str
    updated_at: str

    @property
    def model_key(self) -> ModelKey:
        return ModelKey.of(self.ai_model)


@dataclass(frozen=True)
class StoredServiceModel:
    id: int
    service_name: str
    ai_model: str | None


_SELECT_COLUMNS = """
SELECT id, service_name, encrypted_api_key, ai_model, description,
       is_active, last_used_at, created_at, updated_at
FROM api_keys
""".strip()


class ApiKeyStore:
    def __init__(
        self,
        conn: sqlite3.Connection,
        encryption: DataEncryption,
        *,
        decrypt_policy: DecryptPolicy = DecryptPolicy.SKIP_ON_FAILURE,
    ) -> None:
        self._conn = conn
        self._encryption = encryption
        self.decrypt_policy = decrypt_policy

    def _info_from_row(self, row: sqlite3.Row) -> ApiKeyInfo | None:
        api_key = decrypt_with_policy(
            self._encryption,
            row["encrypted_api_key"],
            self.decrypt_policy,
            context=f"API key id={row['id']}",
        )
        if api_key is None:
            return None

        return ApiKeyInfo(
            id=int(row["id"]),
            service_name=row["service_name"],
            api_key=api_key,
            ai_model=row["ai_model"],
            description=row["description"],
            is_active=bool(int(row["is_active"])),
            last_used_at=row["last_used_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save_api_key(
        self,
        service_name: str,
        api_key: str,
        ai_model: str | ModelKey | None = None,
        description: str | None = None,
    ) -> int:
        """Encrypt and upsert by (service_name, model); returns the record id.

        Re-saving an existing pair replaces ciphertext and description and
        keeps id, is_active and last_used_at.
        """

        model_key = ModelKey.of(ai_model)
        encrypted = self._encryption.encrypt(api_key)
        now = utc_now_sqlite_iso()

        with transaction(self._conn):
            existing = self._conn.execute(
                "SELECT id FROM api_keys WHERE service_name = ? AND ai_model IS ?;",
                (service_name, model_key.name),
            ).fetchone()

            if existing is not None:
                key_id = int(existing["id"])
                self._conn.execute(
                    """
                    UPDATE api_keys
                    SET encrypted_api_key = ?, description = ?, updated_at = ?
                    WHERE id = ?;
                    """.strip(),
                    (encrypted, description, now, key_id),
                )
            else:
                cur = self._conn.execute(
                    """
                    INSERT INTO api_keys (
                        service_name, ai_model, encrypted_api_key, description,
                        created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?);
                    """.strip(),
                    (service_name, model_key.name, encrypted, description, now, now),
                )
                key_id = int(cur.lastrowid)

        logger.info(
            "Saved API key id=%d for service=%s model=%s", key_id, service_name, model_key.name
        )
        return key_id

    def get_api_key_info(
        self, service_name: str, ai_model: str | ModelKey | None = None
    ) -> ApiKeyInfo | None:
        """Exact match when a model is given, else the newest key for the service."""

        if ai_model is not None:
            row = self._conn.execute(
                f"""
                {_SELECT_COLUMNS}
                WHERE service_name = ? AND ai_model IS ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1;
                """.strip(),
                (service_name, ModelKey.of(ai_model).name),
            ).fetchone()
        else:
            row = self._conn.execute(
                f"""
                {_SELECT_COLUMNS}
                WHERE service_name = ?
                ORDER BY created_at DESC, id DESC
                LIMIT 1;
                """.strip(),
                (service_name,),
            ).fetchone()

        return self._info_from_row(row) if row is not None else None

    def get_api_key(
        self, service_name: str, ai_model: str | ModelKey | None = None
    ) -> str | None:
        info = self.get_api_key_info(service_name, ai_model)
        return info.api_key if info is not None else None

    def get_api_key_by_id(self, key_id: int) -> ApiKeyInfo | None:
        row = self._conn.execute(
            f"{_SELECT_COLUMNS} WHERE id = ?;", (key_id,)
        ).fetchone()
        return self._info_from_row(row) if row is not None else None

    def get_all_api_keys_for_service(self, service_name: str) -> list[ApiKeyInfo]:
        rows = self._conn.execute(
            f"""
            {_SELECT_COLUMNS}
            WHERE service_name = ?
            ORDER BY ai_model, created_at DESC, id DESC;
            """.strip(),
            (service_name,),
        ).fetchall()

        items: list[ApiKeyInfo] = []
        for row in rows:
            info = self._info_from_row(row)
            if info is not None:
                items.append(info)
        return items

    def delete_api_key(self, service_name: str, ai_model: str | ModelKey | None = None) -> int:
        """Delete one (service, model) record, or every record of the service
        when no model is given. Returns the number of rows removed."""

        if ai_model is not None:
            cur = self._conn.execute(
                "DELETE FROM api_keys WHERE service_name = ? AND ai_model IS ?;",
                (service_name, ModelKey.of(ai_model).name),
            )
        else:
            cur = self._conn.execute(
                "DELETE FROM api_keys WHERE service_name = ?;", (service_name,)
            )

        logger.info("Deleted %d API key(s) for service=%s", cur.rowcount, service_name)
        return cur.rowcount

    def delete_api_key_by_id(self, key_id: int) -> bool:
        cur = self._conn.execute("DELETE FROM api_keys WHERE id = ?;", (key_id,))
        return cur.rowcount > 0

    def touch_last_used(self, key_id: int) -> None:
        now = utc_now_sqlite_iso()
        self._conn.execute(
            "UPDATE api_keys SET last_used_at = ?, updated_at = ? WHERE id = ?;",
            (now, now, key_id),
        )

    def get_stored_services(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT service_name FROM api_keys ORDER BY service_name;"
        ).fetchall()
        return [r["service_name"] for r in rows]

    def get_stored_service_models(self) -> list[StoredServiceModel]:
        rows = self._conn.execute(
            "SELECT id, service_name, ai_model FROM api_keys ORDER BY service_name, ai_model;"
        ).fetchall()
        return [
            StoredServiceModel(
                id=int(r["id"]),
                service_name=r["service_name"],
                ai_model=r["ai_model"],
            )
            for r in rows
        ]
