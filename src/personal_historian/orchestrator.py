"""Conversation orchestrator.

Turns one inbound event into one reply:

1. resolve the user's timezone from the check-in state (default if unknown)
2. resolve a reply-to id through the reply link table
3. dispatch to a content handler, or take the default journal path
4. persist, then move the user's next check-in forward
5. return the reply text (an apology if anything above failed)

Turns for the same user are serialized. A turn never raises and never
leaves the user without a next check-in time.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable

from personal_historian.config import settings
from personal_historian.handlers import HandlerRegistry, NoHandlerFound
from personal_historian.llm import Enricher, process_user_message
from personal_historian.logging import format_log_context, get_logger, truncate_log_text
from personal_historian.storage import (
    CheckinStateStore,
    RecordStore,
    ReplyLinkStore,
    UserCheckinState,
    run_blocking,
)
from personal_historian.utils.timeutils import (
    clock_time,
    date_key,
    is_valid_timezone,
    local_now,
    minutes_from,
    photo_filename_for_sender,
    utc_now,
)

logger = get_logger(__name__)

WELCOME_TEXT = (
    "Welcome to your Personal Historian! 📝\n\n"
    "I'm here to help you document your daily activities and experiences. "
    "Just send me messages about what you're doing, and I'll keep track of everything in your daily notes.\n\n"
    "You can send me:\n"
    "• Text messages about your activities\n"
    "• Photos with captions\n"
    "• Work updates, personal moments, anything!\n\n"
    "I'll check in with you periodically to see how things are going. Let's start documenting your life! 🚀"
)
TEXT_APOLOGY = "Sorry, I had trouble processing that. Let me try again in a moment."
PHOTO_APOLOGY = "I received your photo but had trouble processing it. I'll try to check back later!"
STORAGE_FAILURE_NOTE = "\n\n(I couldn't save this to your journal just now.)"
DEFAULT_PHOTO_CAPTION = "Photo shared"


@dataclass
class Reply:
    """Outbound reply; ``topic``/``record_id`` are set when it asks about a record."""

    text: str
    topic: str | None = None
    record_id: str | None = None


class ConversationOrchestrator:
    """Routes inbound events and owns check-in state transitions."""

    def __init__(
        self,
        state_store: CheckinStateStore,
        record_store: RecordStore,
        registry: HandlerRegistry,
        enricher: Enricher,
        reply_links: ReplyLinkStore,
        default_timezone: str | None = None,
    ) -> None:
        self.state_store = state_store
        self.record_store = record_store
        self.registry = registry
        self.enricher = enricher
        self.reply_links = reply_links
        self.default_timezone = default_timezone or settings.DEFAULT_TIMEZONE
        self._user_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        if user_id not in self._user_locks:
            self._user_locks[user_id] = asyncio.Lock()
        return self._user_locks[user_id]

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_session(self, user_id: str, now: datetime | None = None) -> str:
        """Create (or reset) the user's state: first check-in one default interval from now."""
        now = now or utc_now()
        state = await self._get_state(user_id)
        timezone = state.timezone if state else self.default_timezone
        next_at = minutes_from(now, settings.CHECKIN_DEFAULT_MINUTES)
        try:
            await run_blocking(self.state_store.upsert, user_id, next_at, timezone)
            logger.info(f"{format_log_context('start', user=user_id)} next_checkin_at={next_at.isoformat()}")
        except Exception as e:
            logger.error(f"{format_log_context('start', user=user_id)} failed to save state: {e}")
        return WELCOME_TEXT

    async def status_text(self, user_id: str) -> str:
        state = await self._get_state(user_id)
        if state is None:
            return "No check-in scheduled yet. Send /start to begin."
        when = local_now(state.timezone, state.next_checkin_at)
        return (
            f"Next check-in: {when.strftime('%Y-%m-%d %H:%M')} ({state.timezone})"
        )

    async def set_timezone(self, user_id: str, timezone: str | None, now: datetime | None = None) -> str:
        """Store the user's display timezone, keeping the current next check-in time."""
        if not timezone or not is_valid_timezone(timezone):
            return "Unknown timezone. Use an IANA name, e.g. /timezone America/New_York"

        state = await self._get_state(user_id)
        next_at = state.next_checkin_at if state else minutes_from(now or utc_now(), settings.CHECKIN_DEFAULT_MINUTES)
        try:
            await run_blocking(self.state_store.upsert, user_id, next_at, timezone)
        except Exception as e:
            logger.error(f"{format_log_context('timezone', user=user_id)} failed to save: {e}")
            return "Sorry, I couldn't save your timezone. Please try again."
        return f"Timezone set to {timezone}."

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    async def handle_text(
        self,
        user_id: str,
        message_id: str,
        text: str,
        reply_to_message_id: str | None = None,
        now: datetime | None = None,
    ) -> Reply:
        async with self._lock_for(user_id):
            now = now or utc_now()
            ctx = format_log_context("turn", user=user_id, type="text", message_id=message_id, reply_to=reply_to_message_id)
            logger.info(f'{ctx} text="{truncate_log_text(text)}"')

            state = await self._get_state(user_id)
            timezone = state.timezone if state else self.default_timezone
            try:
                record_id, topic = await self._resolve_reply(user_id, reply_to_message_id)
                try:
                    result = await self.registry.route_message(
                        text,
                        user_id,
                        message_id,
                        timezone,
                        reply_to_message_id=record_id,
                        reply_topic=topic,
                    )
                except NoHandlerFound:
                    return await self._journal_text(user_id, text, timezone, now, ctx)

                logger.info(f"{ctx} handled by {result.topic}")
                if result.should_reschedule:
                    await self._advance(user_id, timezone, settings.CHECKIN_DEFAULT_MINUTES, now)
                return Reply(result.response_text, topic=result.topic, record_id=result.record_id)
            except Exception as e:
                logger.error(f"{ctx} failed: {e}")
                await self._advance(user_id, timezone, settings.CHECKIN_DEFAULT_MINUTES, now)
                return Reply(TEXT_APOLOGY)

    async def handle_photo(
        self,
        user_id: str,
        message_id: str,
        caption: str | None,
        download: Callable[[], Awaitable[bytes]],
        now: datetime | None = None,
    ) -> Reply:
        """Handle a photo; ``download`` fetches its bytes from the transport."""
        async with self._lock_for(user_id):
            now = now or utc_now()
            ctx = format_log_context("turn", user=user_id, type="photo", message_id=message_id)
            logger.info(f'{ctx} caption="{truncate_log_text(caption)}"')

            state = await self._get_state(user_id)
            timezone = state.timezone if state else self.default_timezone
            try:
                photo_bytes = await asyncio.wait_for(download(), timeout=settings.TRANSPORT_TIMEOUT_SECONDS)
                try:
                    result = await self.registry.route_photo(photo_bytes, caption, user_id, message_id, timezone)
                except NoHandlerFound:
                    return await self._journal_photo(user_id, message_id, photo_bytes, caption, timezone, now, ctx)

                logger.info(f"{ctx} handled by {result.topic}")
                if result.should_reschedule:
                    await self._advance(user_id, timezone, settings.CHECKIN_DEFAULT_MINUTES, now)
                return Reply(result.response_text, topic=result.topic, record_id=result.record_id)
            except Exception as e:
                logger.error(f"{ctx} failed: {e}")
                await self._advance(user_id, timezone, settings.CHECKIN_DEFAULT_MINUTES, now)
                return Reply(PHOTO_APOLOGY)

    async def remember_reply(self, user_id: str, outbound_message_id: str | None, reply: Reply) -> None:
        """Link the sent message to the record it asks about, if any."""
        if outbound_message_id is None or not reply.topic or not reply.record_id:
            return
        try:
            await run_blocking(
                self.reply_links.link,
                user_id,
                str(outbound_message_id),
                reply.topic,
                reply.record_id,
            )
        except Exception as e:
            logger.error(f"{format_log_context('link', user=user_id, message_id=outbound_message_id)} failed: {e}")

    # ------------------------------------------------------------------
    # Default journal path
    # ------------------------------------------------------------------

    async def _journal_text(self, user_id: str, text: str, timezone: str, now: datetime, ctx: str) -> Reply:
        enriched = await process_user_message(self.enricher, text, False, timezone, now)
        saved = await self._append_journal(enriched.activity_summary, timezone, now, ctx)
        await self._advance(user_id, timezone, enriched.next_checkin_minutes, now)
        return Reply(enriched.response_text if saved else enriched.response_text + STORAGE_FAILURE_NOTE)

    async def _journal_photo(
        self,
        user_id: str,
        message_id: str,
        photo_bytes: bytes,
        caption: str | None,
        timezone: str,
        now: datetime,
        ctx: str,
    ) -> Reply:
        caption = (caption or "").strip() or DEFAULT_PHOTO_CAPTION
        enriched = await process_user_message(self.enricher, caption, True, timezone, now)

        filename = photo_filename_for_sender(user_id, now, message_id)
        line = enriched.activity_summary
        uploaded = False
        try:
            await run_blocking(
                self.record_store.upload_binary,
                f"{RecordStore.ATTACHMENTS_FOLDER}/{filename}",
                photo_bytes,
            )
            uploaded = True
        except Exception as e:
            logger.error(f"{ctx} failed to store photo {filename}: {e}")
        else:
            line = f"![{caption}](../{RecordStore.ATTACHMENTS_FOLDER}/{filename}) {line}"

        # Without the binary the summary is still journaled, just unlinked
        saved = await self._append_journal(line, timezone, now, ctx) and uploaded

        await self._advance(user_id, timezone, enriched.next_checkin_minutes, now)
        return Reply(enriched.response_text if saved else enriched.response_text + STORAGE_FAILURE_NOTE)

    async def _append_journal(self, text: str, timezone: str, now: datetime, ctx: str) -> bool:
        try:
            await run_blocking(
                self.record_store.append_line,
                date_key(timezone, now),
                text,
                clock_time(timezone, now),
            )
        except Exception as e:
            logger.error(f"{ctx} failed to append journal line: {e}")
            return False
        return True

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def _get_state(self, user_id: str) -> UserCheckinState | None:
        try:
            return await run_blocking(self.state_store.get, user_id)
        except Exception as e:
            logger.error(f"{format_log_context('state', user=user_id)} read failed: {e}")
            return None

    async def _resolve_reply(self, user_id: str, reply_to_message_id: str | None) -> tuple[str | None, str | None]:
        """Map a reply-to id to (record id, topic).

        Ids unknown to the link table pass through unchanged with no topic.
        """
        if reply_to_message_id is None:
            return None, None
        try:
            link = await run_blocking(self.reply_links.resolve, user_id, str(reply_to_message_id))
        except Exception as e:
            logger.warning(f"{format_log_context('link', user=user_id)} lookup failed: {e}")
            link = None
        if link is None:
            return str(reply_to_message_id), None
        return link.record_id, link.topic

    async def _advance(self, user_id: str, timezone: str, minutes: int, now: datetime) -> None:
        """Move the next check-in to ``now + minutes``, creating the row if missing."""
        next_at = minutes_from(now, minutes)
        try:
            updated = await run_blocking(self.state_store.set_next, user_id, next_at)
            if not updated:
                await run_blocking(self.state_store.upsert, user_id, next_at, timezone)
        except Exception as e:
            logger.error(f"{format_log_context('state', user=user_id)} failed to reschedule: {e}")
            return
        logger.debug(f"{format_log_context('state', user=user_id)} next_checkin_at={next_at.isoformat()}")
