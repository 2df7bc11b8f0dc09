"""Links from the bot's outbound messages to the records they ask about.

When a handler asks a follow-up question, the id of the message the bot sent
is stored with the handler topic and the record id, so that a later reply to
that message can be routed back to the same record.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from pathlib import Path

from personal_historian.config import settings
from personal_historian.storage.database import connect
from personal_historian.utils.timeutils import utc_now


@dataclass(frozen=True)
class ReplyLink:
    user_id: str
    outbound_message_id: str
    topic: str
    record_id: str


class ReplyLinkStore:
    """SQLite table mapping (user, outbound message id) -> (topic, record id)."""

    def __init__(self, db_path: Path | str | None = None) -> None:
        self._db_path = db_path or settings.STATE_DB_PATH
        self._schema_ready = False

    def get_connection(self) -> sqlite3.Connection:
        conn = connect(self._db_path)
        if not self._schema_ready:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS reply_links (
                    user_id TEXT NOT NULL,
                    outbound_message_id TEXT NOT NULL,
                    topic TEXT NOT NULL,
                    record_id TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (user_id, outbound_message_id)
                )
            """)
            conn.commit()
            self._schema_ready = True
        return conn

    def link(self, user_id: str, outbound_message_id: str, topic: str, record_id: str) -> None:
        conn = self.get_connection()
        try:
            conn.execute(
                """
                INSERT OR REPLACE INTO reply_links
                    (user_id, outbound_message_id, topic, record_id, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (str(user_id), str(outbound_message_id), topic, str(record_id), utc_now().isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def resolve(self, user_id: str, outbound_message_id: str) -> ReplyLink | None:
        conn = self.get_connection()
        try:
            row = conn.execute(
                """
                SELECT * FROM reply_links
                WHERE user_id = ? AND outbound_message_id = ?
                """,
                (str(user_id), str(outbound_message_id)),
            ).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        return ReplyLink(
            user_id=row["user_id"],
            outbound_message_id=row["outbound_message_id"],
            topic=row["topic"],
            record_id=row["record_id"],
        )
