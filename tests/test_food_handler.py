from __future__ import annotations

import re

import pytest

from personal_historian.handlers.food import FAILURE_TEXT, FIELD_QUESTIONS, PHOTO_FAILURE_TEXT, FoodHandler
from personal_historian.llm.schemas import FoodParse, FoodReplyParse
from personal_historian.storage.record_store import StorageError


def _record(record_store, message_id):
    return record_store.find_record("food-journal", message_id)


@pytest.mark.asyncio
async def test_new_entry_asks_exactly_one_question(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="cereal", context="alone"))

    result = await food_handler.handle_message("food: cereal alone", "42", "100", "UTC")

    record = _record(record_store, "100")
    assert record["food_description"] == "cereal"
    assert record["context"] == "alone"
    assert record["work_state"] is None
    assert record["current_activity"] is None
    assert record["eating_trigger"] is None

    assert re.match(r"Got it! Logged: cereal at \d{2}:\d{2}\n\n", result.response_text)
    assert FIELD_QUESTIONS["work_state"] in result.response_text
    assert FIELD_QUESTIONS["current_activity"] not in result.response_text
    assert FIELD_QUESTIONS["eating_trigger"] not in result.response_text
    assert result.response_text.count("?") == 1
    assert result.record_id == "100"
    assert result.should_reschedule is True


@pytest.mark.asyncio
async def test_complete_entry_asks_nothing(food_handler: FoodHandler, enricher) -> None:
    enricher.queue(FoodParse(
        food_description="pizza",
        context="at my desk",
        work_state="still working",
        current_activity="coding",
        eating_trigger="stomach growling",
    ))

    result = await food_handler.handle_message("food: pizza", "42", "100", "UTC")

    assert "?" not in result.response_text
    assert result.record_id is None


@pytest.mark.asyncio
async def test_explicit_time_is_recorded(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="bowl of cereal"))

    result = await food_handler.handle_message("food: 8am bowl of cereal", "42", "100", "UTC")

    assert result.response_text.startswith("Got it! Logged: bowl of cereal at 08:00")
    assert _record(record_store, "100")["time"] == "08:00"


@pytest.mark.asyncio
async def test_reply_fills_missing_fields_without_overwriting(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="salad", context="alone", current_activity="reading"))
    await food_handler.handle_message("food: salad alone, reading", "42", "100", "UTC")

    enricher.queue(FoodReplyParse(
        work_state="on break",
        eating_trigger="timer",
        context="with friends",
    ))
    result = await food_handler.handle_message("on break, timer went off", "42", "101", "UTC", reply_to_message_id="100")

    record = _record(record_store, "100")
    assert record["context"] == "alone"
    assert record["current_activity"] == "reading"
    assert record["work_state"] == "on break"
    assert record["eating_trigger"] == "timer"
    assert result.response_text.startswith("Updated your food entry with")
    assert result.record_id is None
    assert _record(record_store, "101") is None


@pytest.mark.asyncio
async def test_partial_reply_asks_about_next_missing_field(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="cereal", context="alone"))
    await food_handler.handle_message("food: cereal alone", "42", "100", "UTC")

    enricher.queue(FoodReplyParse(work_state="done for the day"))
    result = await food_handler.handle_message("done for the day", "42", "101", "UTC", reply_to_message_id="100")

    assert FIELD_QUESTIONS["current_activity"] in result.response_text
    assert result.record_id == "100"


@pytest.mark.asyncio
async def test_reply_parse_failure_answers_the_asked_field(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="cereal", context="alone"))
    await food_handler.handle_message("food: cereal alone", "42", "100", "UTC")

    # Nothing queued for FoodReplyParse: the enricher falls back
    await food_handler.handle_message("done for the day", "42", "101", "UTC", reply_to_message_id="100")

    assert _record(record_store, "100")["work_state"] == "done for the day"


@pytest.mark.asyncio
async def test_reply_to_unknown_id_creates_new_entry(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="apple"))

    result = await food_handler.handle_message("food: apple", "42", "200", "UTC", reply_to_message_id="999")

    assert result.response_text.startswith("Got it! Logged: apple")
    assert _record(record_store, "200")["food_description"] == "apple"
    assert _record(record_store, "999") is None


@pytest.mark.asyncio
async def test_parse_failure_keeps_raw_description(food_handler: FoodHandler, record_store) -> None:
    result = await food_handler.handle_message("Food: leftover curry", "42", "300", "UTC")

    assert _record(record_store, "300")["food_description"] == "leftover curry"
    assert FIELD_QUESTIONS["context"] in result.response_text


@pytest.mark.asyncio
async def test_storage_failure_returns_apology(enricher) -> None:
    class BrokenStore:
        def append_record(self, *args):
            raise OSError("disk full")

        def find_record(self, *args):
            raise OSError("disk full")

    handler = FoodHandler(BrokenStore(), enricher)

    result = await handler.handle_message("food: toast", "42", "1", "UTC")

    assert result.response_text == FAILURE_TEXT
    assert result.should_reschedule is True


@pytest.mark.asyncio
async def test_photo_is_saved_and_linked(food_handler: FoodHandler, enricher, record_store) -> None:
    enricher.queue(FoodParse(food_description="green salad", context="alone"))

    result = await food_handler.handle_photo(b"jpeg-bytes", "food: green salad", "42", "400", "UTC")

    record = _record(record_store, "400")
    photo_path = record_store.root / "food-journal" / "photos" / record["photo_filename"]
    assert photo_path.read_bytes() == b"jpeg-bytes"
    assert record["photo_filename"].endswith("-green-salad-400.jpg")
    assert result.response_text.endswith("Photo saved! 📸")
    assert result.record_id == "400"

    lines = (record_store.root / "food-journal").glob("*.jsonl")
    assert sum(len(p.read_text(encoding="utf-8").splitlines()) for p in lines) == 1
    assert record["context"] == "alone"


@pytest.mark.asyncio
async def test_photo_upload_failure_is_not_linked_for_replies(
    food_handler: FoodHandler, enricher, record_store, monkeypatch
) -> None:
    def broken_upload(relative_path, data):
        raise StorageError("disk full")

    monkeypatch.setattr(record_store, "upload_binary", broken_upload)
    enricher.queue(FoodParse(food_description="green salad", context="alone"))

    result = await food_handler.handle_photo(b"jpeg-bytes", "food: green salad", "42", "500", "UTC")

    assert result.response_text == PHOTO_FAILURE_TEXT
    assert result.record_id is None
    record = _record(record_store, "500")
    assert record["context"] == "alone"
    assert record.get("photo_filename") is None
