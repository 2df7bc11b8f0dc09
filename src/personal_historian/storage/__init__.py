"""Persistence: check-in state, reply links, journal and structured records."""

from personal_historian.storage.checkin_state import CheckinStateStore, UserCheckinState
from personal_historian.storage.record_store import RecordStore, StorageError
from personal_historian.storage.database import run_blocking
from personal_historian.storage.reply_links import ReplyLink, ReplyLinkStore

__all__ = [
    "CheckinStateStore",
    "UserCheckinState",
    "RecordStore",
    "StorageError",
    "ReplyLink",
    "ReplyLinkStore",
    "run_blocking",
]
