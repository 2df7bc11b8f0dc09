"""File-backed journal and record storage.

Layout under ``DATA_ROOT``:
- ``daily/YYYY-MM-DD.md``: append-only markdown journal, one line per entry
- ``attachments/<file>``: photos referenced from the daily journal
- ``<collection>/YYYY-MM.jsonl``: structured records, one JSON object per line
- ``<collection>/photos/<file>``: photos attached to structured records

Records are keyed by ``message_id``; updates merge fields in place.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from personal_historian.config import settings
from personal_historian.utils.records import merge_fields
from personal_historian.utils.timeutils import monthly_file_path, utc_now

logger = logging.getLogger(__name__)


class StorageError(Exception):
    """Raised when a journal or record write cannot be completed."""


class RecordStore:
    """Journal, attachment and JSON-lines record storage rooted at a directory."""

    DAILY_FOLDER = "daily"
    ATTACHMENTS_FOLDER = "attachments"

    def __init__(self, root: Path | str | None = None) -> None:
        self.root = Path(root or settings.DATA_ROOT).resolve()
        self._lock = threading.Lock()

    def _resolve(self, relative_path: str) -> Path:
        """Resolve a storage-relative path, refusing anything outside the root."""
        path = (self.root / relative_path).resolve()
        if path != self.root and self.root not in path.parents:
            raise StorageError(f"Path escapes storage root: {relative_path}")
        return path

    # ------------------------------------------------------------------
    # Daily journal
    # ------------------------------------------------------------------

    def daily_path(self, date_key: str) -> Path:
        return self._resolve(f"{self.DAILY_FOLDER}/{date_key}.md")

    def append_line(self, date_key: str, text: str, time_label: str) -> str:
        """Append ``- [HH:MM] text`` to the day's journal, creating it if needed.

        Returns:
            The line that was written.
        """
        line = f"- [{time_label}] {text}"
        path = self.daily_path(date_key)
        try:
            with self._lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                if path.exists():
                    current = path.read_text(encoding="utf-8").rstrip("\n")
                    updated = f"{current}\n{line}\n" if current else f"{line}\n"
                else:
                    updated = f"# {date_key}\n\n{line}\n"
                path.write_text(updated, encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to append to {path.name}: {e}") from e

        logger.debug(f"Appended to daily file {path.name}: {line}")
        return line

    def read_daily(self, date_key: str) -> list[str]:
        """Entry lines (``- [..] ..``) of a day's journal; empty when absent."""
        path = self.daily_path(date_key)
        if not path.exists():
            return []
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to read {path.name}: {e}") from e
        return [line for line in content.splitlines() if line.startswith("- [")]

    # ------------------------------------------------------------------
    # Binary uploads
    # ------------------------------------------------------------------

    def upload_binary(self, relative_path: str, data: bytes) -> str:
        """Store ``data`` at ``relative_path``.

        Returns:
            The storage-relative reference to the stored file.
        """
        path = self._resolve(relative_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Failed to store {relative_path}: {e}") from e

        logger.debug(f"Stored binary {relative_path} ({len(data)} bytes)")
        return relative_path

    # ------------------------------------------------------------------
    # Structured records (JSON lines)
    # ------------------------------------------------------------------

    def append_record(
        self,
        collection: str,
        record: dict[str, Any],
        when: datetime | None = None,
    ) -> str:
        """Append a record to the collection's monthly file.

        Returns:
            The storage-relative path of the file written.
        """
        relative_path = monthly_file_path(collection, when or utc_now())
        path = self._resolve(relative_path)
        line = json.dumps(record, ensure_ascii=False)
        try:
            with self._lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                with path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
        except OSError as e:
            raise StorageError(f"Failed to append to {relative_path}: {e}") from e

        logger.debug(f"Appended record to {relative_path}: {line}")
        return relative_path

    def _collection_files(self, collection: str) -> list[Path]:
        folder = self._resolve(collection)
        if not folder.exists():
            return []
        # Newest month first
        return sorted(folder.glob("*.jsonl"), reverse=True)

    @staticmethod
    def _read_lines(path: Path) -> list[str]:
        try:
            return [line for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]
        except OSError as e:
            raise StorageError(f"Failed to read {path.name}: {e}") from e

    @staticmethod
    def _parse(line: str, path: Path) -> dict[str, Any] | None:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON line in {path.name}: {line[:80]}")
            return None
        return entry if isinstance(entry, dict) else None

    def find_record(self, collection: str, record_id: str | int) -> dict[str, Any] | None:
        """Locate a record by ``message_id`` (searches newest files first)."""
        for path in self._collection_files(collection):
            for line in self._read_lines(path):
                entry = self._parse(line, path)
                if entry is not None and str(entry.get("message_id")) == str(record_id):
                    return entry
        return None

    def update_record(
        self,
        collection: str,
        record_id: str | int,
        partial_fields: dict[str, Any],
    ) -> bool:
        """Merge ``partial_fields`` into the record with the given ``message_id``.

        Unknown (None) values never clear existing ones.

        Returns:
            True if the record was found and rewritten.
        """
        with self._lock:
            for path in self._collection_files(collection):
                lines = self._read_lines(path)
                updated = False
                new_lines = []
                for line in lines:
                    entry = self._parse(line, path)
                    if entry is not None and not updated and str(entry.get("message_id")) == str(record_id):
                        new_lines.append(json.dumps(merge_fields(entry, partial_fields), ensure_ascii=False))
                        updated = True
                    else:
                        new_lines.append(line)

                if updated:
                    try:
                        path.write_text("\n".join(new_lines) + "\n", encoding="utf-8")
                    except OSError as e:
                        raise StorageError(f"Failed to update {path.name}: {e}") from e
                    logger.debug(f"Updated entry {record_id} in {path.name}")
                    return True

        logger.info(f"No entry found with message_id {record_id} in {collection}")
        return False
