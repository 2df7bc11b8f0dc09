"""Content handler contract.

A handler owns a topic prefix (``"food:"``) and the shape of the records it
stores. Handlers are registered explicitly, in precedence order, on a
``HandlerRegistry``.

Handlers that ask follow-up questions return the id of the record the
question is about in ``HandlerResult.record_id``. The channel links the id
of the message it sends to that record so a later reply can be routed back
to the same record (see ``ReplyLinkStore``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping

from personal_historian.llm.client import Enricher
from personal_historian.storage import RecordStore
from personal_historian.utils.timeutils import utc_now


@dataclass
class HandlerResult:
    response_text: str
    should_reschedule: bool = True
    # Record the response asks about, if a follow-up question was included
    record_id: str | None = None
    topic: str | None = None


class ContentHandler(ABC):
    """Base class for prefix-dispatched content handlers."""

    topic: str = ""
    collection: str = ""
    supports_photos: bool = False

    def __init__(self, record_store: RecordStore, enricher: Enricher) -> None:
        self.record_store = record_store
        self.enricher = enricher

    @property
    def prefix(self) -> str:
        return f"{self.topic}:"

    def can_handle(self, text: str | None) -> bool:
        """Case-insensitive match of the topic prefix at the start of ``text``."""
        if not text:
            return False
        return text.strip().lower().startswith(self.prefix.lower())

    def strip_prefix(self, text: str) -> str:
        stripped = text.strip()
        if stripped.lower().startswith(self.prefix.lower()):
            return stripped[len(self.prefix):].strip()
        return stripped

    @abstractmethod
    async def handle_message(
        self,
        text: str,
        user_id: str,
        message_id: str,
        timezone: str,
        reply_to_message_id: str | None = None,
    ) -> HandlerResult:
        """Handle a new entry, or a reply when ``reply_to_message_id`` is set."""
        raise NotImplementedError

    async def handle_photo(
        self,
        photo_bytes: bytes,
        caption: str,
        user_id: str,
        message_id: str,
        timezone: str,
    ) -> HandlerResult:
        raise NotImplementedError(f"{type(self).__name__} does not handle photos")


def create_base_entry(message_id: str | int, user_id: str, time: str, date: str) -> dict[str, Any]:
    """Fields every structured record carries."""
    return {
        "message_id": str(message_id),
        "user_id": str(user_id),
        "date": date,
        "time": time,
        "logged_at": utc_now().isoformat(),
    }


def format_missing_question(
    field: str,
    questions: Mapping[str, str],
    descriptions: Mapping[str, str] | None = None,
) -> str:
    """Question asking about one missing attribute."""
    if field in questions:
        return questions[field]
    description = (descriptions or {}).get(field, field.replace("_", " "))
    return f"What's your {description}?"
