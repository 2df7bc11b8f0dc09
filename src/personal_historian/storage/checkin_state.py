"""Check-in state storage.

One row per user holding the next check-in time (UTC) and the user's
timezone. Every write is a blind overwrite; the last writer wins.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from personal_historian.config import settings
from personal_historian.storage.database import connect
from personal_historian.utils.timeutils import ensure_utc, utc_now


def _to_db(value: datetime) -> str:
    # Fixed-width UTC text so SQL string comparison orders correctly
    return ensure_utc(value).isoformat(timespec="microseconds")


def _from_db(value: str) -> datetime:
    return ensure_utc(datetime.fromisoformat(value))


@dataclass
class UserCheckinState:
    """Check-in schedule for one user."""

    user_id: str
    next_checkin_at: datetime
    timezone: str

    def is_due(self, now: datetime) -> bool:
        return self.next_checkin_at <= ensure_utc(now)


class CheckinStateStore:
    """SQLite-backed store of UserCheckinState rows."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = db_path or settings.STATE_DB_PATH
        self._schema_ready = False

    def get_connection(self) -> sqlite3.Connection:
        conn = connect(self._db_path)
        self._ensure_schema(conn)
        return conn

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        """Create the state table and due-time index."""
        if self._schema_ready:
            return
        conn.execute("""
            CREATE TABLE IF NOT EXISTS checkin_state (
                user_id TEXT PRIMARY KEY,
                next_checkin_at TEXT NOT NULL,
                timezone TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_checkin_state_next ON checkin_state(next_checkin_at)"
        )
        conn.commit()
        self._schema_ready = True

    def upsert(self, user_id: str, next_checkin_at: datetime, timezone: str) -> None:
        """Create or overwrite the row for ``user_id``."""
        now = _to_db(utc_now())
        conn = self.get_connection()
        try:
            conn.execute("""
                INSERT INTO checkin_state (user_id, next_checkin_at, timezone, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    next_checkin_at = excluded.next_checkin_at,
                    timezone = excluded.timezone,
                    updated_at = excluded.updated_at
            """, (str(user_id), _to_db(next_checkin_at), timezone, now, now))
            conn.commit()
        finally:
            conn.close()

    def get(self, user_id: str) -> UserCheckinState | None:
        conn = self.get_connection()
        try:
            row = conn.execute(
                "SELECT * FROM checkin_state WHERE user_id = ?",
                (str(user_id),),
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_state(row) if row else None

    def due(self, now: datetime) -> list[UserCheckinState]:
        """All users whose next check-in is at or before ``now``."""
        conn = self.get_connection()
        try:
            rows = conn.execute(
                """
                SELECT * FROM checkin_state
                WHERE next_checkin_at <= ?
                ORDER BY next_checkin_at ASC
                """,
                (_to_db(now),),
            ).fetchall()
        finally:
            conn.close()
        return [self._row_to_state(row) for row in rows]

    def set_next(self, user_id: str, next_checkin_at: datetime) -> bool:
        """Move the due time of an existing row.

        Unknown users are left alone (no row is created).

        Returns:
            True if a row was updated.
        """
        conn = self.get_connection()
        try:
            cursor = conn.execute(
                """
                UPDATE checkin_state
                SET next_checkin_at = ?, updated_at = ?
                WHERE user_id = ?
                """,
                (_to_db(next_checkin_at), _to_db(utc_now()), str(user_id)),
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    @staticmethod
    def _row_to_state(row: sqlite3.Row) -> UserCheckinState:
        return UserCheckinState(
            user_id=row["user_id"],
            next_checkin_at=_from_db(row["next_checkin_at"]),
            timezone=row["timezone"],
        )
