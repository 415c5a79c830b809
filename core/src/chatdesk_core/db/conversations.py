from __future__ import annotations

import json
import sqlite3
from dataclasses import dataclass
from typing import Any, Literal

from chatdesk_core.db import transaction, utc_now_sqlite_iso

MessageRole = Literal["user", "ai"]


def _loads_tags(raw: str | None) -> list[str]:
    if raw is None:
        return []
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return []
    return [str(t) for t in value] if isinstance(value, list) else []


@dataclass(frozen=True)
class ConversationMetadata:
    thread_id: str
    custom_name: str | None
    tags: list[str]
    is_archived: bool
    is_pinned: bool
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class ConversationStatistics:
    thread_id: str
    message_count: int
    total_tokens: int
    ai_response_count: int
    user_message_count: int
    first_message_at: str | None
    last_message_at: str | None
    avg_response_time_ms: int
    timed_response_count: int


def _metadata_from_db(row: sqlite3.Row) -> ConversationMetadata:
    return ConversationMetadata(
        thread_id=row["thread_id"],
        custom_name=row["custom_name"],
        tags=_loads_tags(row["tags_json"]),
        is_archived=bool(int(row["is_archived"])),
        is_pinned=bool(int(row["is_pinned"])),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _statistics_from_db(row: sqlite3.Row) -> ConversationStatistics:
    return ConversationStatistics(
        thread_id=row["thread_id"],
        message_count=int(row["message_count"]),
        total_tokens=int(row["total_tokens"]),
        ai_response_count=int(row["ai_response_count"]),
        user_message_count=int(row["user_message_count"]),
        first_message_at=row["first_message_at"],
        last_message_at=row["last_message_at"],
        avg_response_time_ms=int(row["avg_response_time_ms"]),
        timed_response_count=int(row["timed_response_count"]),
    )


class ConversationMetadataStore:
    """Per-thread side data for conversations held by the checkpoint library."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _ensure_metadata_row(self, thread_id: str, now: str) -> None:
        self._conn.execute(
            """
            INSERT INTO conversation_metadata (thread_id, created_at, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(thread_id) DO NOTHING;
            """.strip(),
            (thread_id, now, now),
        )

    def upsert_metadata(
        self,
        thread_id: str,
        *,
        custom_name: str | None = None,
        tags: list[str] | None = None,
        is_archived: bool | None = None,
        is_pinned: bool | None = None,
    ) -> ConversationMetadata:
        """Create the row if needed and update only the fields passed."""

        now = utc_now_sqlite_iso()
        sets = ["updated_at = ?"]
        params: list[Any] = [now]
        if custom_name is not None:
            sets.append("custom_name = ?")
            params.append(custom_name)
        if tags is not None:
            sets.append("tags_json = ?")
            params.append(json.dumps(tags, ensure_ascii=False))
        if is_archived is not None:
            sets.append("is_archived = ?")
            params.append(1 if is_archived else 0)
        if is_pinned is not None:
            sets.append("is_pinned = ?")
            params.append(1 if is_pinned else 0)

        with transaction(self._conn):
            self._ensure_metadata_row(thread_id, now)
            self._conn.execute(
                f"UPDATE conversation_metadata SET {', '.join(sets)} WHERE thread_id = ?;",
                [*params, thread_id],
            )

        row = self.get_metadata(thread_id)
        if row is None:
            raise RuntimeError("Failed to read conversation metadata after upsert")
        return row

    def get_metadata(self, thread_id: str) -> ConversationMetadata | None:
        row = self._conn.execute(
            """
            SELECT thread_id, custom_name, tags_json, is_archived, is_pinned,
                   created_at, updated_at
            FROM conversation_metadata
            WHERE thread_id = ?;
            """.strip(),
            (thread_id,),
        ).fetchone()
        return _metadata_from_db(row) if row is not None else None

    def list_metadata(self, *, include_archived: bool = False) -> list[ConversationMetadata]:
        where = "" if include_archived else "WHERE is_archived = 0"
        rows = self._conn.execute(
            f"""
            SELECT thread_id, custom_name, tags_json, is_archived, is_pinned,
                   created_at, updated_at
            FROM conversation_metadata
            {where}
            ORDER BY is_pinned DESC, created_at DESC, thread_id ASC;
            """.strip()
        ).fetchall()
        return [_metadata_from_db(r) for r in rows]

    def record_message(
        self,
        thread_id: str,
        *,
        role: MessageRole,
        tokens: int = 0,
        response_time_ms: int | None = None,
    ) -> ConversationStatistics:
        """Fold one message into the thread's statistics.

        avg_response_time_ms is a running average over the AI responses that
        carried a response time; untimed responses count toward
        ai_response_count only.
        """

        if role not in ("user", "ai"):
            raise ValueError(f"Unknown message role: {role!r}")

        now = utc_now_sqlite_iso()
        with transaction(self._conn):
            self._ensure_metadata_row(thread_id, now)
            self._conn.execute(
                """
                INSERT INTO conversation_statistics (thread_id, created_at, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(thread_id) DO NOTHING;
                """.strip(),
                (thread_id, now, now),
            )
            current = self._conn.execute(
                """
                SELECT timed_response_count, avg_response_time_ms
                FROM conversation_statistics
                WHERE thread_id = ?;
                """.strip(),
                (thread_id,),
            ).fetchone()

            ai_delta = 1 if role == "ai" else 0
            timed_delta = 0
            avg = int(current["avg_response_time_ms"])
            if role == "ai" and response_time_ms is not None:
                timed = int(current["timed_response_count"])
                avg = round((avg * timed + response_time_ms) / (timed + 1))
                timed_delta = 1

            self._conn.execute(
                """
                UPDATE conversation_statistics
                SET message_count = message_count + 1,
                    total_tokens = total_tokens + ?,
                    ai_response_count = ai_response_count + ?,
                    user_message_count = user_message_count + ?,
                    first_message_at = COALESCE(first_message_at, ?),
                    last_message_at = ?,
                    avg_response_time_ms = ?,
                    timed_response_count = timed_response_count + ?,
                    updated_at = ?
                WHERE thread_id = ?;
                """.strip(),
                (tokens, ai_delta, 1 - ai_delta, now, now, avg, timed_delta, now, thread_id),
            )

        stats = self.get_statistics(thread_id)
        if stats is None:
            raise RuntimeError("Failed to read conversation statistics after update")
        return stats

    def get_statistics(self, thread_id: str) -> ConversationStatistics | None:
        row = self._conn.execute(
            """
            SELECT thread_id, message_count, total_tokens, ai_response_count,
                   user_message_count, first_message_at, last_message_at, avg_response_time_ms,
                   timed_response_count
            FROM conversation_statistics
            WHERE thread_id = ?;
            """.strip(),
            (thread_id,),
        ).fetchone()
        return _statistics_from_db(row) if row is not None else None

    def delete_thread(self, thread_id: str) -> bool:
        with transaction(self._conn):
            self._conn.execute(
                "DELETE FROM conversation_statistics WHERE thread_id = ?;", (thread_id,)
            )
            cur = self._conn.execute(
                "DELETE FROM conversation_metadata WHERE thread_id = ?;", (thread_id,)
            )
        return cur.rowcount > 0
