from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Literal, get_args

from chatdesk_core.db import utc_now_sqlite_iso

logger = logging.getLogger(__name__)

SettingType = Literal["string", "number", "boolean", "json"]
SETTING_TYPES: tuple[str, ...] = get_args(SettingType)

USER_NAME = "user_name"
AI_SERVICE = "ai_service"
AI_MODEL = "ai_model"
API_KEY_ID = "api_key_id"


@dataclass(frozen=True)
class UserSetting:
    setting_key: str
    setting_value: str
    setting_type: str
    description: str | None
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class InitialSetupConfig:
    user_name: str
    ai_service: str
    ai_model: str
    api_key_id: int


@dataclass(frozen=True)
class CurrentConfig:
    user_name: str | None = None
    ai_service: str | None = None
    ai_model: str | None = None
    api_key_id: int | None = None


def _parse_number(raw: str) -> int | float:
    try:
        return int(raw)
    except ValueError:
        return float(raw)


def coerce_record_id(value: Any) -> int | None:
    """A positive integral id, or None for anything else (bools, fractions, free text)."""

    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and value > 0:
        return value
    return None


def serialize_setting(value: Any, setting_type: str) -> str:
    if setting_type == "json":
        return json.dumps(value, ensure_ascii=False)
    if setting_type == "boolean":
        return "1" if value else "0"
    if setting_type == "number":
        if isinstance(value, bool):
            raise ValueError("boolean is not a number setting")
        text = str(value).strip()
        _parse_number(text)
        return text
    if setting_type == "string":
        return str(value)
    raise ValueError(f"Unknown setting type: {setting_type!r}")


def deserialize_setting(raw: str, setting_type: str) -> Any:
    if setting_type == "json":
        return json.loads(raw)
    if setting_type == "boolean":
        return raw == "1"
    if setting_type == "number":
        return _parse_number(raw)
    return raw


_SELECT_SETTING = """
SELECT setting_key, setting_value, setting_type, description, created_at, updated_at
FROM user_settings
""".strip()


def _setting_from_db(row: sqlite3.Row) -> UserSetting:
    return UserSetting(
        setting_key=row["setting_key"],
        setting_value=row["setting_value"],
        setting_type=row["setting_type"],
        description=row["description"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SettingsStore:
    """Typed user settings plus the append-only initial-setup log."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def set_setting(
        self,
        key: str,
        value: Any,
        setting_type: SettingType = "string",
        description: str | None = None,
    ) -> None:
        raw = serialize_setting(value, setting_type)
        now = utc_now_sqlite_iso()

        self._conn.execute(
            """
            INSERT INTO user_settings (
                setting_key, setting_value, setting_type, description, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(setting_key) DO UPDATE SET
                setting_value = excluded.setting_value,
                setting_type = excluded.setting_type,
                description = excluded.description,
                updated_at = excluded.updated_at;
            """.strip(),
            (key, raw, setting_type, description, now, now),
        )
        logger.info("Setting saved: %s", key)

    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self._conn.execute(
            "SELECT setting_value, setting_type FROM user_settings WHERE setting_key = ?;",
            (key,),
        ).fetchone()
        if row is None:
            return default

        try:
            return deserialize_setting(row["setting_value"], row["setting_type"])
        except ValueError:
            logger.warning(
                "Stored value for setting %s is not a valid %s", key, row["setting_type"]
            )
            return default

    def get_api_key_id(self) -> int | None:
        """The active API key id; a malformed stored value reads as unset."""

        value = self.get_setting(API_KEY_ID)
        if value is None:
            return None

        api_key_id = coerce_record_id(value)
        if api_key_id is None:
            logger.warning("Ignoring stored %s setting that is not a valid id", API_KEY_ID)
        return api_key_id

    def get_user_setting(self, key: str) -> UserSetting | None:
        row = self._conn.execute(
            f"{_SELECT_SETTING} WHERE setting_key = ?;", (key,)
        ).fetchone()
        return _setting_from_db(row) if row is not None else None

    def get_all_settings(self) -> list[UserSetting]:
        rows = self._conn.execute(f"{_SELECT_SETTING} ORDER BY setting_key;").fetchall()
        return [_setting_from_db(r) for r in rows]

    def delete_setting(self, key: str) -> bool:
        cur = self._conn.execute("DELETE FROM user_settings WHERE setting_key = ?;", (key,))
        if cur.rowcount:
            logger.info("Setting deleted: %s", key)
        return cur.rowcount > 0

    def is_initial_setup_completed(self) -> bool:
        row = self._conn.execute(
            "SELECT is_completed FROM initial_setup ORDER BY id DESC LIMIT 1;"
        ).fetchone()
        return bool(int(row["is_completed"])) if row is not None else False

    def mark_initial_setup_completed(self) -> None:
        now = utc_now_sqlite_iso()
        self._conn.execute(
            """
            INSERT INTO initial_setup (is_completed, completed_at, created_at, updated_at)
            VALUES (1, ?, ?, ?);
            """.strip(),
            (now, now, now),
        )
        logger.info("Initial setup marked as completed")

    def save_initial_setup(self, config: InitialSetupConfig) -> None:
        # Completion is appended last: a failure part way leaves setup incomplete.
        self.set_setting(USER_NAME, config.user_name, "string", "Name of the user")
        self.set_setting(AI_SERVICE, config.ai_service, "string", "AI service in use")
        self.set_setting(AI_MODEL, config.ai_model, "string", "AI model in use")
        self.set_setting(API_KEY_ID, config.api_key_id, "number", "ID of the active API key")
        self.mark_initial_setup_completed()

    def get_current_config(self) -> CurrentConfig:
        return CurrentConfig(
            user_name=self.get_setting(USER_NAME),
            ai_service=self.get_setting(AI_SERVICE),
            ai_model=self.get_setting(AI_MODEL),
            api_key_id=self.get_api_key_id(),
        )
