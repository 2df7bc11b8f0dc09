"""Check-in prompt text."""

from __future__ import annotations

import re
from datetime import datetime

from personal_historian.llm.client import Enricher
from personal_historian.llm.prompts import CHECKIN_SYSTEM_PROMPT
from personal_historian.utils.timeutils import local_now

FALLBACK_CHECKIN = "What are you up to?"

_JOURNAL_LINE = re.compile(r"^- \[\d{2}:\d{2}\]\s*")


def last_activity_from_lines(lines: list[str]) -> str | None:
    """Text of the most recent journal line, without its time label."""
    if not lines:
        return None
    text = _JOURNAL_LINE.sub("", lines[-1]).strip()
    return text or None


async def generate_checkin_message(
    enricher: Enricher,
    timezone: str | None,
    last_activity: str | None = None,
    now: datetime | None = None,
) -> str:
    """Short, friendly check-in prompt; ``FALLBACK_CHECKIN`` when enrichment fails."""
    current_time = local_now(timezone, now).strftime("%A, %I:%M %p")
    context = f"\nUser's last activity: {last_activity}" if last_activity else ""
    return await enricher.complete_text(
        "Write the check-in message now.",
        FALLBACK_CHECKIN,
        system=CHECKIN_SYSTEM_PROMPT.format(current_time=current_time, last_activity=context),
    )
