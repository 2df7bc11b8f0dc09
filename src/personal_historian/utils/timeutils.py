"""Time, timezone and filename helpers shared by the journal and the handlers.

All comparisons happen in UTC. Zone names are only used to render
local dates and clock times for the journal and the user.
"""

import logging
import re
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)

_AMPM_PATTERN = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE)
_CLOCK_PATTERN = re.compile(r"\b(\d{1,2}):(\d{2})\b")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_valid_timezone(name: str | None) -> bool:
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def get_zone(name: str | None, default: str = "UTC") -> ZoneInfo:
    """Resolve an IANA zone name, falling back to ``default`` when unknown."""
    if is_valid_timezone(name):
        return ZoneInfo(name)
    if name:
        logger.warning(f"Unknown timezone {name!r}, using {default}")
    return ZoneInfo(default) if is_valid_timezone(default) else ZoneInfo("UTC")


def local_now(tz_name: str | None, now: datetime | None = None) -> datetime:
    """``now`` (default: current time) expressed in the given zone."""
    return ensure_utc(now or utc_now()).astimezone(get_zone(tz_name))


def date_key(tz_name: str | None, now: datetime | None = None) -> str:
    """Local calendar date (YYYY-MM-DD) used to key the daily journal."""
    return local_now(tz_name, now).strftime("%Y-%m-%d")


def clock_time(tz_name: str | None, now: datetime | None = None) -> str:
    """Local wall-clock time as HH:MM."""
    return local_now(tz_name, now).strftime("%H:%M")


def minutes_from(now: datetime, minutes: int | float) -> datetime:
    return ensure_utc(now) + timedelta(minutes=minutes)


def clamp_minutes(value: int | float | None, minimum: int, maximum: int, default: int) -> int:
    """Bound a model-proposed delay; non-numeric input yields ``default``."""
    try:
        minutes = int(round(float(value)))
    except (TypeError, ValueError):
        return default
    return max(minimum, min(maximum, minutes))


def parse_time_from_message(
    message: str,
    tz_name: str | None,
    now: datetime | None = None,
) -> tuple[str, str]:
    """Find an explicit clock time ("8am", "8:30 pm", "12:45") in a message.

    Returns:
        (time "HH:MM", date "YYYY-MM-DD") in the user's zone. Without a
        recognizable time the current local time is used.
    """
    current = local_now(tz_name, now)
    parsed = current

    match = _AMPM_PATTERN.search(message)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = match.group(3).lower()
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    else:
        match = _CLOCK_PATTERN.search(message)
        if match:
            hour = int(match.group(1))
            minute = int(match.group(2))

    if match and 0 <= hour <= 23 and 0 <= minute <= 59:
        parsed = current.replace(hour=hour, minute=minute, second=0, microsecond=0)

    return parsed.strftime("%H:%M"), parsed.strftime("%Y-%m-%d")


def slug_from_description(description: str, max_words: int = 4) -> str:
    """First few alphanumeric words of a description, dash-joined."""
    cleaned = re.sub(r"[^a-z0-9\s]", "", description.lower())
    words = [word for word in cleaned.split() if word][:max_words]
    return "-".join(words) or "item"


def _safe_token(value: str | int) -> str:
    return re.sub(r"[^A-Za-z0-9-]", "_", str(value))


def photo_filename_for_sender(sender_id: str | int, timestamp: datetime, message_id: str | int) -> str:
    """Attachment name for a journal photo: ``YYYY-MM-DD-HH-MM-SS-<sender>-<message>.jpg`` (UTC).

    The inbound message id keeps photos sent within the same second apart.
    """
    stamp = ensure_utc(timestamp).strftime("%Y-%m-%d-%H-%M-%S")
    return f"{stamp}-{_safe_token(sender_id)}-{_safe_token(message_id)}.jpg"


def photo_filename_for_description(
    description: str,
    timestamp: datetime,
    message_id: str | int,
    extension: str = "jpg",
) -> str:
    """Attachment name for a handler photo: ``YYYY-MM-DD-HH-MM-SS-<slug>-<message>.<ext>``."""
    stamp = timestamp.strftime("%Y-%m-%d-%H-%M-%S")
    return f"{stamp}-{slug_from_description(description)}-{_safe_token(message_id)}.{extension}"


def monthly_file_path(folder: str, when: datetime) -> str:
    return f"{folder}/{when.strftime('%Y-%m')}.jsonl"
