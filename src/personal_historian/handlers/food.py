"""Food journal handler (``food:`` prefix).

Entries are stored in ``food-journal/YYYY-MM.jsonl``. Each entry carries a
food description plus four optional attributes. When attributes are missing,
the reply asks about the first one; a reply to that question fills it in.
"""

from __future__ import annotations

import logging
from typing import Any

from personal_historian.handlers.base import (
    ContentHandler,
    HandlerResult,
    create_base_entry,
    format_missing_question,
)
from personal_historian.llm.prompts import FOOD_PARSE_SYSTEM_PROMPT, FOOD_REPLY_SYSTEM_PROMPT
from personal_historian.llm.schemas import FoodParse, FoodReplyParse
from personal_historian.logging import format_log_context, truncate_log_text
from personal_historian.storage import run_blocking
from personal_historian.utils.records import known_subset, merge_fields, missing_fields
from personal_historian.utils.timeutils import (
    local_now,
    parse_time_from_message,
    photo_filename_for_description,
)

logger = logging.getLogger(__name__)

FOOD_ATTRIBUTES: dict[str, str] = {
    "context": "eating context (alone, with friends, at work, etc.)",
    "work_state": "work state (still working, on break, done for the day, not a work day)",
    "current_activity": "current activity while eating",
    "eating_trigger": "reason for eating (timer, hunger, saw food, stress, celebration)",
}

FIELD_QUESTIONS: dict[str, str] = {
    "context": "Where/with whom are you eating?",
    "work_state": "Are you still working, on break, done for the day, or is it not a work day?",
    "current_activity": "What are you doing right now? (working, watching TV, pacing, lying down, etc.)",
    "eating_trigger": (
        "Why are you eating? (timer/reminder, stomach growling, saw food, "
        "felt you should, stress/boredom, celebration)"
    ),
}

FAILURE_TEXT = "Sorry, I had trouble processing your food entry. Please try again."
PHOTO_SAVED_SUFFIX = "\n\nPhoto saved! 📸"
PHOTO_FAILURE_TEXT = "I saved your food entry but had trouble with the photo. Please try again."
THANKS_TEXT = "Thanks for the additional info!"


class FoodHandler(ContentHandler):
    topic = "food"
    collection = "food-journal"
    supports_photos = True

    async def handle_message(
        self,
        text: str,
        user_id: str,
        message_id: str,
        timezone: str,
        reply_to_message_id: str | None = None,
    ) -> HandlerResult:
        ctx = format_log_context("food", user=user_id, message_id=message_id, reply_to=reply_to_message_id)
        try:
            if reply_to_message_id is not None:
                result = await self._handle_reply(text, str(reply_to_message_id), ctx)
                if result is not None:
                    return result
                logger.info(f"{ctx} no entry for reply, logging as new entry")

            entry, missing = await self._create_entry(text, user_id, message_id, timezone)
            return self._new_entry_result(entry, missing)
        except Exception as e:
            logger.error(f"{ctx} failed: {e}")
            return HandlerResult(FAILURE_TEXT)

    async def handle_photo(
        self,
        photo_bytes: bytes,
        caption: str,
        user_id: str,
        message_id: str,
        timezone: str,
    ) -> HandlerResult:
        ctx = format_log_context("food_photo", user=user_id, message_id=message_id)
        try:
            entry, missing = await self._create_entry(caption, user_id, message_id, timezone)
        except Exception as e:
            logger.error(f"{ctx} failed to log entry: {e}")
            return HandlerResult(FAILURE_TEXT)

        result = self._new_entry_result(entry, missing)
        try:
            filename = photo_filename_for_description(
                entry["food_description"], local_now(timezone), message_id
            )
            await run_blocking(
                self.record_store.upload_binary,
                f"{self.collection}/photos/{filename}",
                photo_bytes,
            )
            await run_blocking(
                self.record_store.update_record,
                self.collection,
                entry["message_id"],
                {"photo_filename": filename},
            )
        except Exception as e:
            logger.error(f"{ctx} failed to store photo: {e}")
            # No question is asked, so the message must not be linked to the record
            return HandlerResult(PHOTO_FAILURE_TEXT)

        result.response_text += PHOTO_SAVED_SUFFIX
        return result

    # ------------------------------------------------------------------
    # New entries
    # ------------------------------------------------------------------

    async def _create_entry(
        self,
        text: str,
        user_id: str,
        message_id: str,
        timezone: str,
    ) -> tuple[dict[str, Any], list[str]]:
        content = self.strip_prefix(text)
        now = local_now(timezone)
        time_label, date_label = parse_time_from_message(content, timezone, now)

        parsed = await self.enricher.complete(
            f'Parse this food entry: "{content}"',
            FoodParse,
            FoodParse(food_description=content),
            system=FOOD_PARSE_SYSTEM_PROMPT,
        )

        entry = create_base_entry(message_id, user_id, time_label, date_label)
        entry["food_description"] = parsed.food_description or content
        for name in FOOD_ATTRIBUTES:
            entry[name] = getattr(parsed, name)

        await run_blocking(self.record_store.append_record, self.collection, entry, now)
        logger.info(f"Logged food entry {message_id}: {truncate_log_text(entry['food_description'])}")
        return entry, missing_fields(entry, FOOD_ATTRIBUTES)

    def _new_entry_result(self, entry: dict[str, Any], missing: list[str]) -> HandlerResult:
        response = f"Got it! Logged: {entry['food_description']} at {entry['time']}"
        if not missing:
            return HandlerResult(response)
        question = format_missing_question(missing[0], FIELD_QUESTIONS, FOOD_ATTRIBUTES)
        return HandlerResult(f"{response}\n\n{question}", record_id=entry["message_id"])

    # ------------------------------------------------------------------
    # Replies to follow-up questions
    # ------------------------------------------------------------------

    async def _handle_reply(self, text: str, record_id: str, ctx: str) -> HandlerResult | None:
        """Merge answers into an existing entry; None when the entry is unknown."""
        existing = await run_blocking(self.record_store.find_record, self.collection, record_id)
        if existing is None:
            return None

        missing = missing_fields(existing, FOOD_ATTRIBUTES)
        if not missing:
            return HandlerResult(THANKS_TEXT)

        content = self.strip_prefix(text)
        # The question asked was about the first missing attribute
        fallback = FoodReplyParse(**{missing[0]: content})
        parsed = await self.enricher.complete(
            f'Parse this response: "{content}"',
            FoodReplyParse,
            fallback,
            system=FOOD_REPLY_SYSTEM_PROMPT.format(
                missing_fields=", ".join(missing),
                field_descriptions="\n".join(f"- {name}: {FOOD_ATTRIBUTES[name]}" for name in missing),
            ),
        )
        updates = known_subset(parsed.model_dump(), missing)
        if not updates:
            return HandlerResult(THANKS_TEXT)

        found = await run_blocking(self.record_store.update_record, self.collection, record_id, updates)
        if not found:
            return None

        logger.info(f"{ctx} updated fields={','.join(updates)}")
        summary = ", ".join(f"{name.replace('_', ' ')}: {value}" for name, value in updates.items())
        response = f"Updated your food entry with {summary}. Thanks!"

        still_missing = missing_fields(merge_fields(existing, updates), FOOD_ATTRIBUTES)
        if not still_missing:
            return HandlerResult(response)
        question = format_missing_question(still_missing[0], FIELD_QUESTIONS, FOOD_ATTRIBUTES)
        return HandlerResult(f"{response}\n\n{question}", record_id=record_id)
