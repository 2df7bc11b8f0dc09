"""Sender allowlist for the Telegram channel."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from personal_historian.config.settings import settings

logger = logging.getLogger(__name__)

_warned_open = False


@dataclass(frozen=True)
class Allowlist:
    users: frozenset[str]

    @property
    def is_open(self) -> bool:
        return not self.users


def load_allowlist() -> Allowlist:
    return Allowlist(users=frozenset(settings.allowed_user_ids))


def is_authorized(user_id: str | int | None, allowlist: Allowlist | None = None) -> bool:
    """Whether ``user_id`` may talk to the bot.

    An empty allowlist admits everyone (logged once).
    """
    global _warned_open

    if user_id is None:
        return False
    allowlist = allowlist or load_allowlist()
    if allowlist.is_open:
        if not _warned_open:
            logger.warning("TELEGRAM_ALLOWED_USER_IDS not set - allowing all users")
            _warned_open = True
        return True
    return str(user_id) in allowlist.users
