"""SQLite access for the small per-user state tables."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any, Callable, TypeVar

from personal_historian.config import settings

T = TypeVar("T")


def connect(db_path: Path | str) -> sqlite3.Connection:
    """Open a SQLite connection with row access by column name."""
    path = Path(db_path)
    if str(path) != ":memory:":
        path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path), timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    return conn


async def run_blocking(func: Callable[..., T], *args: Any, timeout: float | None = None) -> T:
    """Run a blocking storage call in a worker thread, bounded by a timeout.

    Raises:
        asyncio.TimeoutError: If the call does not finish in time.
    """
    limit = timeout if timeout is not None else settings.STORAGE_TIMEOUT_SECONDS
    return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=limit)
