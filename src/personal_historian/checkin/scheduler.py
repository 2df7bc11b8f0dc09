"""Recurring check-in scheduler using APScheduler.

Every poll the scheduler reads the users whose next check-in is due, sends
each of them one prompt, and moves their due time forward:

- sent: ``now + CHECKIN_DEFAULT_MINUTES``
- send failed: ``now + CHECKIN_RETRY_MINUTES``

Users are processed concurrently and independently. A user whose previous
check-in is still in flight is skipped for the current tick.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from personal_historian.channels.base import BaseChannel
from personal_historian.checkin.messages import generate_checkin_message, last_activity_from_lines
from personal_historian.config import settings
from personal_historian.llm.client import Enricher
from personal_historian.logging import format_log_context, truncate_log_text
from personal_historian.storage import CheckinStateStore, RecordStore, UserCheckinState, run_blocking
from personal_historian.utils.timeutils import date_key, ensure_utc, utc_now

logger = logging.getLogger(__name__)

JOB_ID = "checkin_poll"


class CheckinScheduler:
    """Polls the check-in state store and sends due check-ins."""

    def __init__(
        self,
        state_store: CheckinStateStore,
        channel: BaseChannel,
        enricher: Enricher,
        record_store: RecordStore | None = None,
        poll_seconds: int | None = None,
        default_minutes: int | None = None,
        retry_minutes: int | None = None,
        send_timeout: float | None = None,
    ) -> None:
        self.state_store = state_store
        self.channel = channel
        self.enricher = enricher
        self.record_store = record_store
        self.poll_seconds = poll_seconds or settings.CHECKIN_POLL_SECONDS
        self.default_interval = timedelta(minutes=default_minutes or settings.CHECKIN_DEFAULT_MINUTES)
        self.retry_interval = timedelta(minutes=retry_minutes or settings.CHECKIN_RETRY_MINUTES)
        self.send_timeout = send_timeout or settings.TRANSPORT_TIMEOUT_SECONDS
        self._scheduler: AsyncIOScheduler | None = None
        self._user_locks: dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def start(self) -> None:
        """Start polling. Must be called with a running event loop."""
        ctx = format_log_context("system", component="scheduler")
        if self.running:
            logger.warning(f"{ctx} already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.tick,
            IntervalTrigger(seconds=self.poll_seconds),
            id=JOB_ID,
            replace_existing=True,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"{ctx} started poll_seconds={self.poll_seconds}")

    def stop(self) -> None:
        if not self.running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info(f"{format_log_context('system', component='scheduler')} stopped")

    def status(self) -> dict[str, Any]:
        """Running flag and the next poll time (UTC ISO string or None)."""
        next_poll = None
        if self.running:
            job = self._scheduler.get_job(JOB_ID)
            if job is not None and job.next_run_time is not None:
                next_poll = ensure_utc(job.next_run_time).isoformat()
        return {
            "running": self.running,
            "poll_seconds": self.poll_seconds,
            "next_poll_at": next_poll,
        }

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> int:
        """Process every due user once.

        Returns:
            Number of check-ins sent successfully.
        """
        now = ensure_utc(now or utc_now())
        ctx = format_log_context("system", component="scheduler")

        try:
            due = await run_blocking(self.state_store.due, now)
        except Exception as e:
            logger.error(f"{ctx} failed to read due users: {e}")
            return 0

        if not due:
            return 0

        logger.info(f"{ctx} processing due_users={len(due)}")
        results = await asyncio.gather(*(self._process_user(state, now) for state in due))
        return sum(1 for sent in results if sent)

    async def _process_user(self, state: UserCheckinState, now: datetime) -> bool:
        ctx = format_log_context("checkin", component="scheduler", user=state.user_id)
        lock = self._user_locks.setdefault(state.user_id, asyncio.Lock())
        if lock.locked():
            logger.debug(f"{ctx} skipped, previous check-in still in flight")
            return False

        async with lock:
            try:
                return await self._send_checkin(state, now, ctx)
            except Exception as e:
                logger.error(f"{ctx} unexpected failure: {e}")
                return False

    async def _send_checkin(self, state: UserCheckinState, now: datetime, ctx: str) -> bool:
        last_activity = await self._last_activity(state, now)
        message = await generate_checkin_message(self.enricher, state.timezone, last_activity, now)

        try:
            await asyncio.wait_for(
                self.channel.send_message(state.user_id, message),
                timeout=self.send_timeout,
            )
        except Exception as e:
            logger.warning(f"{ctx} send failed, retrying in {self.retry_interval}: {e}")
            await self._reschedule(state.user_id, now + self.retry_interval, ctx)
            return False

        await self._reschedule(state.user_id, now + self.default_interval, ctx)
        logger.info(f"{ctx} sent: {truncate_log_text(message)}")
        return True

    async def _last_activity(self, state: UserCheckinState, now: datetime) -> str | None:
        if self.record_store is None:
            return None
        try:
            lines = await run_blocking(self.record_store.read_daily, date_key(state.timezone, now))
        except Exception as e:
            logger.debug(f"Could not read journal for {state.user_id}: {e}")
            return None
        return last_activity_from_lines(lines)

    async def _reschedule(self, user_id: str, next_checkin_at: datetime, ctx: str) -> None:
        try:
            await run_blocking(self.state_store.set_next, user_id, next_checkin_at)
        except Exception as e:
            logger.error(f"{ctx} failed to reschedule: {e}")
