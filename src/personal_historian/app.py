"""Application object graph.

Everything the bot needs is built once here and passed explicitly: stores,
the handler registry, the enricher, the orchestrator, the channel and the
check-in scheduler. ``start``/``stop`` own the lifecycle.
"""

from __future__ import annotations

import logging
from pathlib import Path

from personal_historian.channels.base import BaseChannel
from personal_historian.checkin import CheckinScheduler
from personal_historian.config import settings
from personal_historian.handlers import FoodHandler, HandlerRegistry
from personal_historian.llm import Enricher
from personal_historian.logging import format_log_context
from personal_historian.orchestrator import ConversationOrchestrator
from personal_historian.storage import CheckinStateStore, RecordStore, ReplyLinkStore

logger = logging.getLogger(__name__)


class AppContext:
    """Wires the components together and starts/stops them in order."""

    def __init__(
        self,
        channel: BaseChannel | None = None,
        enricher: Enricher | None = None,
        data_root: Path | str | None = None,
        db_path: Path | str | None = None,
    ) -> None:
        self.enricher = enricher or Enricher()
        self.state_store = CheckinStateStore(db_path)
        self.reply_links = ReplyLinkStore(db_path)
        self.record_store = RecordStore(data_root)

        # Registration order is dispatch precedence
        self.registry = HandlerRegistry()
        self.registry.register(FoodHandler(self.record_store, self.enricher))

        self.orchestrator = ConversationOrchestrator(
            state_store=self.state_store,
            record_store=self.record_store,
            registry=self.registry,
            enricher=self.enricher,
            reply_links=self.reply_links,
            default_timezone=settings.DEFAULT_TIMEZONE,
        )

        if channel is None:
            from personal_historian.channels.telegram import TelegramChannel

            channel = TelegramChannel()
        channel.orchestrator = self.orchestrator
        self.channel = channel

        self.scheduler = CheckinScheduler(
            state_store=self.state_store,
            channel=self.channel,
            enricher=self.enricher,
            record_store=self.record_store,
        )

    async def start(self) -> None:
        ctx = format_log_context("system", component="startup")
        await self.channel.start()
        logger.info(f"{ctx} channel_started name={self.channel.get_channel_name()}")
        self.scheduler.start()
        logger.info(f"{ctx} scheduler_started")

    async def stop(self) -> None:
        ctx = format_log_context("system", component="shutdown")
        self.scheduler.stop()
        logger.info(f"{ctx} scheduler_stopped")
        await self.channel.stop()
        logger.info(f"{ctx} channel_stopped")
