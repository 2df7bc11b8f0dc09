from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeChannel, ScriptedEnricher
from personal_historian.channels.base import MessageFormat
from personal_historian.config import settings
from personal_historian.handlers import HandlerRegistry
from personal_historian.handlers.food import FIELD_QUESTIONS, PHOTO_FAILURE_TEXT
from personal_historian.llm.activity import FALLBACK_RESPONSE
from personal_historian.llm.client import Enricher
from personal_historian.llm.schemas import ActivityReply, FoodParse, FoodReplyParse
from personal_historian.orchestrator import (
    PHOTO_APOLOGY,
    STORAGE_FAILURE_NOTE,
    WELCOME_TEXT,
    ConversationOrchestrator,
)


def _failing_enricher() -> Enricher:
    model = MagicMock()
    model.with_structured_output.return_value.ainvoke = AsyncMock(side_effect=RuntimeError("model down"))
    model.ainvoke = AsyncMock(side_effect=RuntimeError("model down"))
    return Enricher(model=model, timeout=1)


@pytest.mark.asyncio
async def test_start_creates_state_one_hour_out(orchestrator, state_store, now) -> None:
    text = await orchestrator.start_session("42", now=now)

    assert text == WELCOME_TEXT
    state = state_store.get("42")
    assert state.next_checkin_at == now + timedelta(hours=1)
    assert state.timezone == "UTC"


@pytest.mark.asyncio
async def test_start_keeps_existing_timezone(orchestrator, state_store, now) -> None:
    state_store.upsert("42", now, "Europe/Paris")

    await orchestrator.start_session("42", now=now)

    assert state_store.get("42").timezone == "Europe/Paris"


@pytest.mark.asyncio
async def test_plain_message_goes_to_journal(orchestrator, enricher, state_store, record_store, now) -> None:
    await orchestrator.start_session("42", now=now)
    enricher.queue(ActivityReply(
        response_text="Nice! How's it going?",
        next_checkin_minutes=90,
        activity_summary="working on the bot",
    ))

    reply = await orchestrator.handle_text("42", "1", "working on the bot", now=now)

    assert reply.text == "Nice! How's it going?"
    assert reply.record_id is None
    assert record_store.read_daily("2026-03-10") == ["- [17:30] working on the bot"]
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=90)


@pytest.mark.asyncio
async def test_model_delay_is_clamped(orchestrator, enricher, state_store, now) -> None:
    enricher.queue(ActivityReply(response_text="Sleep well", next_checkin_minutes=5000, activity_summary="sleeping"))
    enricher.queue(ActivityReply(response_text="Ok", next_checkin_minutes=1, activity_summary="quick call"))

    await orchestrator.handle_text("42", "1", "going to bed", now=now)
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=1440)

    await orchestrator.handle_text("42", "2", "quick call", now=now)
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_enrichment_failure_uses_fallback(state_store, record_store, reply_links, now) -> None:
    enricher = _failing_enricher()
    orchestrator = ConversationOrchestrator(
        state_store, record_store, HandlerRegistry(), enricher, reply_links, default_timezone="UTC"
    )
    await orchestrator.start_session("42", now=now - timedelta(hours=2))

    reply = await orchestrator.handle_text("42", "1", "working on the bot", now=now)

    assert reply.text == FALLBACK_RESPONSE
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=60)
    assert record_store.read_daily("2026-03-10") == ["- [17:30] working on the bot"]


@pytest.mark.asyncio
async def test_first_message_without_start_creates_state(orchestrator, state_store, now) -> None:
    await orchestrator.handle_text("new", "1", "hello", now=now)

    state = state_store.get("new")
    assert state is not None
    assert state.next_checkin_at == now + timedelta(minutes=60)


@pytest.mark.asyncio
async def test_journal_storage_failure_still_replies(orchestrator, enricher, record_store, state_store, now, monkeypatch) -> None:
    def broken(*args):
        raise OSError("read-only file system")

    monkeypatch.setattr(record_store, "append_line", broken)
    enricher.queue(ActivityReply(response_text="Noted!", next_checkin_minutes=30, activity_summary="reading"))

    reply = await orchestrator.handle_text("42", "1", "reading", now=now)

    assert reply.text == "Noted!" + STORAGE_FAILURE_NOTE
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=30)


@pytest.mark.asyncio
async def test_journal_uses_user_timezone(orchestrator, enricher, state_store, record_store, now) -> None:
    state_store.upsert("42", now, "America/Los_Angeles")
    enricher.queue(ActivityReply(response_text="ok", next_checkin_minutes=60, activity_summary="coffee"))

    await orchestrator.handle_text("42", "1", "coffee", now=now)

    # 17:30 UTC is 10:30 PDT
    assert record_store.read_daily("2026-03-10") == ["- [10:30] coffee"]


@pytest.mark.asyncio
async def test_photo_default_path(orchestrator, enricher, record_store, state_store, now) -> None:
    enricher.queue(ActivityReply(response_text="Lovely!", next_checkin_minutes=120, activity_summary="evening walk"))

    async def download() -> bytes:
        return b"jpeg"

    reply = await orchestrator.handle_photo("42", "9", "sunset walk", download, now=now)

    filename = "2026-03-10-17-30-00-42-9.jpg"
    assert reply.text == "Lovely!"
    assert (record_store.root / "attachments" / filename).read_bytes() == b"jpeg"
    assert record_store.read_daily("2026-03-10") == [
        f"- [17:30] ![sunset walk](../attachments/{filename}) evening walk"
    ]
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=120)


@pytest.mark.asyncio
async def test_photo_without_caption_uses_default(orchestrator, record_store, now) -> None:
    async def download() -> bytes:
        return b"jpeg"

    await orchestrator.handle_photo("42", "9", None, download, now=now)

    assert record_store.read_daily("2026-03-10")[0].startswith("- [17:30] ![Photo shared](../attachments/")


@pytest.mark.asyncio
async def test_photo_download_failure_apologizes(orchestrator, state_store, now) -> None:
    async def download() -> bytes:
        raise ConnectionError("telegram unavailable")

    reply = await orchestrator.handle_photo("42", "9", "lunch", download, now=now)

    assert reply.text == PHOTO_APOLOGY
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=60)


@pytest.mark.asyncio
async def test_status_and_timezone_commands(orchestrator, state_store, now) -> None:
    assert "/start" in await orchestrator.status_text("42")

    await orchestrator.start_session("42", now=now)
    assert (await orchestrator.set_timezone("42", "Mars/Olympus")).startswith("Unknown timezone")
    assert await orchestrator.set_timezone("42", "Europe/Paris") == "Timezone set to Europe/Paris."

    state = state_store.get("42")
    assert state.timezone == "Europe/Paris"
    assert state.next_checkin_at == now + timedelta(hours=1)
    # 18:30 UTC is 19:30 CET
    assert await orchestrator.status_text("42") == "Next check-in: 2026-03-10 19:30 (Europe/Paris)"


# =============================================================================
# Through the channel: reply links
# =============================================================================

@pytest.mark.asyncio
async def test_food_follow_up_round_trip_through_channel(channel: FakeChannel, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="cereal", context="alone"))
    await channel.handle_message(MessageFormat("food: cereal alone", "42", "100"))

    (_, first_reply), = channel.sent
    assert FIELD_QUESTIONS["work_state"] in first_reply
    question_id = "1001"

    # Plain reply to the bot's question, no prefix
    enricher.queue(FoodReplyParse(work_state="done for the day", current_activity="watching TV"))
    await channel.handle_message(MessageFormat("done, watching TV", "42", "101", reply_to_message_id=question_id))

    record = record_store.find_record("food-journal", "100")
    assert record["context"] == "alone"
    assert record["work_state"] == "done for the day"
    assert record["current_activity"] == "watching TV"
    assert FIELD_QUESTIONS["eating_trigger"] in channel.sent[1][1]

    # Answering the follow-up of the follow-up reaches the same record
    enricher.queue(FoodReplyParse(eating_trigger="stress/boredom"))
    await channel.handle_message(MessageFormat("boredom", "42", "102", reply_to_message_id="1002"))

    assert record_store.find_record("food-journal", "100")["eating_trigger"] == "stress/boredom"
    assert "?" not in channel.sent[2][1]


@pytest.mark.asyncio
async def test_reply_to_unlinked_message_without_prefix_goes_to_journal(channel: FakeChannel, enricher, record_store) -> None:
    enricher.queue(ActivityReply(response_text="ok", next_checkin_minutes=60, activity_summary="still coding"))

    await channel.handle_message(MessageFormat("still coding", "42", "5", reply_to_message_id="4242"))

    assert channel.sent == [("42", "ok")]
    (daily_file,) = (record_store.root / "daily").glob("*.md")
    assert daily_file.read_text(encoding="utf-8").rstrip().endswith("still coding")


@pytest.mark.asyncio
async def test_unauthorized_sender_is_dropped(channel: FakeChannel, state_store, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_ALLOWED_USER_IDS", "7")

    await channel.handle_message(MessageFormat("hello", "42", "1"))

    assert channel.attempts == []
    assert state_store.get("42") is None



# =============================================================================
# Photo storage
# =============================================================================

def _photo(data: bytes):
    async def download() -> bytes:
        return data
    return download


@pytest.mark.asyncio
async def test_photos_in_the_same_second_are_kept_apart(orchestrator, enricher, record_store, now) -> None:
    enricher.queue(ActivityReply(response_text="ok", next_checkin_minutes=60, activity_summary="first"))
    enricher.queue(ActivityReply(response_text="ok", next_checkin_minutes=60, activity_summary="second"))

    await orchestrator.handle_photo("42", "9", "album", _photo(b"first"), now=now)
    await orchestrator.handle_photo("42", "10", "album", _photo(b"second"), now=now)

    attachments = record_store.root / "attachments"
    assert (attachments / "2026-03-10-17-30-00-42-9.jpg").read_bytes() == b"first"
    assert (attachments / "2026-03-10-17-30-00-42-10.jpg").read_bytes() == b"second"
    lines = record_store.read_daily("2026-03-10")
    assert "42-9.jpg) first" in lines[0]
    assert "42-10.jpg) second" in lines[1]


@pytest.mark.asyncio
async def test_photo_upload_failure_still_journals_summary(
    orchestrator, enricher, record_store, state_store, now, monkeypatch
) -> None:
    def broken_upload(relative_path, data):
        raise OSError("read-only file system")

    monkeypatch.setattr(record_store, "upload_binary", broken_upload)
    enricher.queue(ActivityReply(response_text="Lovely!", next_checkin_minutes=120, activity_summary="evening walk"))

    reply = await orchestrator.handle_photo("42", "9", "sunset walk", _photo(b"jpeg"), now=now)

    assert reply.text == "Lovely!" + STORAGE_FAILURE_NOTE
    assert record_store.read_daily("2026-03-10") == ["- [17:30] evening walk"]
    assert state_store.get("42").next_checkin_at == now + timedelta(minutes=120)


@pytest.mark.asyncio
async def test_reply_to_failed_food_photo_does_not_touch_record(
    orchestrator, enricher, record_store, now, monkeypatch
) -> None:
    def broken_upload(relative_path, data):
        raise OSError("disk full")

    monkeypatch.setattr(record_store, "upload_binary", broken_upload)
    enricher.queue(FoodParse(food_description="green salad", context="alone"))

    reply = await orchestrator.handle_photo("42", "500", "food: green salad", _photo(b"jpeg"), now=now)
    assert reply.text == PHOTO_FAILURE_TEXT
    await orchestrator.remember_reply("42", "900", reply)

    await orchestrator.handle_text("42", "501", "ok will retry", reply_to_message_id="900", now=now)

    record = record_store.find_record("food-journal", "500")
    assert record["context"] == "alone"
    assert record["work_state"] is None
    assert "ok will retry" not in record.values()


# =============================================================================
# Per-user turns
# =============================================================================

class _CountingEnricher(ScriptedEnricher):
    """Tracks how many enrichment calls are in flight at once."""

    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.peak = 0

    async def complete(self, prompt, schema, fallback, system=None):
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.05)
        finally:
            self.active -= 1
        return await super().complete(prompt, schema, fallback, system)


def _counting_orchestrator(state_store, record_store, reply_links) -> tuple[ConversationOrchestrator, _CountingEnricher]:
    enricher = _CountingEnricher()
    orchestrator = ConversationOrchestrator(
        state_store, record_store, HandlerRegistry(), enricher, reply_links, default_timezone="UTC"
    )
    return orchestrator, enricher


@pytest.mark.asyncio
async def test_turns_for_one_user_run_one_at_a_time(state_store, record_store, reply_links, now) -> None:
    orchestrator, enricher = _counting_orchestrator(state_store, record_store, reply_links)

    await asyncio.gather(
        orchestrator.handle_text("42", "1", "coffee", now=now),
        orchestrator.handle_text("42", "2", "emails", now=now),
    )

    assert enricher.peak == 1
    assert record_store.read_daily("2026-03-10") == ["- [17:30] coffee", "- [17:30] emails"]


@pytest.mark.asyncio
async def test_turns_for_different_users_overlap(state_store, record_store, reply_links, now) -> None:
    orchestrator, enricher = _counting_orchestrator(state_store, record_store, reply_links)

    await asyncio.gather(
        orchestrator.handle_text("42", "1", "coffee", now=now),
        orchestrator.handle_text("43", "1", "emails", now=now),
    )

    assert enricher.peak == 2
