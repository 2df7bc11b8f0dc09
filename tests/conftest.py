"""Shared fixtures and configuration for pytest."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest

from personal_historian.channels.base import BaseChannel
from personal_historian.handlers import FoodHandler, HandlerRegistry
from personal_historian.llm.client import Enricher
from personal_historian.orchestrator import ConversationOrchestrator
from personal_historian.storage import CheckinStateStore, RecordStore, ReplyLinkStore


# =============================================================================
# Test doubles
# =============================================================================

class ScriptedEnricher(Enricher):
    """Enricher that replays queued results per schema.

    When nothing is queued for a schema the caller's fallback is returned,
    exactly as a failed model call would.
    """

    def __init__(self, text: str | None = None) -> None:
        super().__init__(model=MagicMock(), timeout=1)
        self.structured: dict[type, list[Any]] = defaultdict(list)
        self.text = text
        self.calls: list[dict[str, Any]] = []

    def queue(self, result: Any) -> "ScriptedEnricher":
        self.structured[type(result)].append(result)
        return self

    async def complete(self, prompt, schema, fallback, system=None):
        self.calls.append({"prompt": prompt, "schema": schema, "system": system})
        if self.structured[schema]:
            return self.structured[schema].pop(0)
        return fallback

    async def complete_text(self, prompt, fallback, system=None):
        self.calls.append({"prompt": prompt, "schema": str, "system": system})
        return self.text or fallback


class FakeChannel(BaseChannel):
    """In-memory transport.

    Sends to users in ``failing`` raise; sends to users in ``delays`` sleep first.
    """

    def __init__(self, orchestrator=None) -> None:
        super().__init__(orchestrator)
        self.sent: list[tuple[str, str]] = []
        self.attempts: list[str] = []
        self.failing: set[str] = set()
        self.delays: dict[str, float] = {}
        self.files: dict[str, bytes] = {}
        self._next_id = 1000

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None

    async def send_message(self, user_id: str, content: str, **kwargs: Any) -> str | None:
        self.attempts.append(user_id)
        if user_id in self.delays:
            await asyncio.sleep(self.delays[user_id])
        if user_id in self.failing:
            raise ConnectionError(f"send to {user_id} failed")
        self._next_id += 1
        self.sent.append((user_id, content))
        return str(self._next_id)

    async def download_file(self, file_ref: str) -> bytes:
        return self.files[file_ref]


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 10, 17, 30, tzinfo=timezone.utc)


@pytest.fixture
def state_store(tmp_path) -> CheckinStateStore:
    return CheckinStateStore(tmp_path / "state.db")


@pytest.fixture
def reply_links(tmp_path) -> ReplyLinkStore:
    return ReplyLinkStore(tmp_path / "state.db")


@pytest.fixture
def record_store(tmp_path) -> RecordStore:
    return RecordStore(tmp_path / "data")


@pytest.fixture
def enricher() -> ScriptedEnricher:
    return ScriptedEnricher()


@pytest.fixture
def food_handler(record_store, enricher) -> FoodHandler:
    return FoodHandler(record_store, enricher)


@pytest.fixture
def registry(food_handler) -> HandlerRegistry:
    return HandlerRegistry([food_handler])


@pytest.fixture
def orchestrator(state_store, record_store, registry, enricher, reply_links) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        state_store=state_store,
        record_store=record_store,
        registry=registry,
        enricher=enricher,
        reply_links=reply_links,
        default_timezone="UTC",
    )


@pytest.fixture
def channel(orchestrator) -> FakeChannel:
    return FakeChannel(orchestrator)
