"""Enrichment of plain journal messages."""

from __future__ import annotations

from datetime import datetime

from personal_historian.config import settings
from personal_historian.llm.client import Enricher
from personal_historian.llm.prompts import ACTIVITY_SYSTEM_PROMPT, activity_user_prompt
from personal_historian.llm.schemas import ActivityReply
from personal_historian.utils.timeutils import local_now

FALLBACK_RESPONSE = "Got it! I've recorded that for you."


def fallback_activity(message: str) -> ActivityReply:
    return ActivityReply(
        response_text=FALLBACK_RESPONSE,
        next_checkin_minutes=settings.CHECKIN_DEFAULT_MINUTES,
        activity_summary=message[:100],
        context_tags=[],
    )


async def process_user_message(
    enricher: Enricher,
    message: str,
    has_photo: bool = False,
    timezone: str | None = None,
    now: datetime | None = None,
) -> ActivityReply:
    """Turn a user message into a reply, a next check-in delay and a summary.

    Never raises; a failed enrichment returns the fixed acknowledgement with
    the default delay and the first 100 characters of the message as summary.
    """
    current_time = local_now(timezone or settings.DEFAULT_TIMEZONE, now).strftime(
        "%A, %B %d, %Y %I:%M %p %Z"
    )
    result = await enricher.complete(
        activity_user_prompt(message, has_photo),
        ActivityReply,
        fallback_activity(message),
        system=ACTIVITY_SYSTEM_PROMPT.format(current_time=current_time),
    )
    if not result.activity_summary.strip():
        result = result.model_copy(update={"activity_summary": message[:100]})
    return result
