"""Ordered registry of content handlers."""

from __future__ import annotations

import logging
from typing import Iterable

from personal_historian.handlers.base import ContentHandler, HandlerResult

logger = logging.getLogger(__name__)


class NoHandlerFound(Exception):
    """No registered handler claims the input; take the default journal path."""


class HandlerRegistry:
    """Dispatches messages to the first registered handler that claims them."""

    def __init__(self, handlers: Iterable[ContentHandler] | None = None) -> None:
        self._handlers: list[ContentHandler] = []
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: ContentHandler) -> None:
        self._handlers.append(handler)
        logger.debug(f"Registered handler {type(handler).__name__} prefix={handler.prefix!r}")

    @property
    def handlers(self) -> tuple[ContentHandler, ...]:
        return tuple(self._handlers)

    def get(self, topic: str | None) -> ContentHandler | None:
        for handler in self._handlers:
            if handler.topic == topic:
                return handler
        return None

    def find_handler(self, text: str | None, photos_only: bool = False) -> ContentHandler | None:
        for handler in self._handlers:
            if photos_only and not handler.supports_photos:
                continue
            if handler.can_handle(text):
                return handler
        return None

    async def route_message(
        self,
        text: str,
        user_id: str,
        message_id: str,
        timezone: str,
        reply_to_message_id: str | None = None,
        reply_topic: str | None = None,
    ) -> HandlerResult:
        """Dispatch a text message.

        A known ``reply_topic`` (a reply to a follow-up question) routes to its
        handler even without the prefix; otherwise the prefix decides.

        Raises:
            NoHandlerFound: If no handler claims the message.
        """
        handler = self.get(reply_topic) if reply_topic else None
        if handler is None:
            handler = self.find_handler(text)
        if handler is None:
            raise NoHandlerFound(text)

        result = await handler.handle_message(
            text,
            user_id,
            message_id,
            timezone,
            reply_to_message_id=reply_to_message_id,
        )
        result.topic = result.topic or handler.topic
        return result

    async def route_photo(
        self,
        photo_bytes: bytes,
        caption: str | None,
        user_id: str,
        message_id: str,
        timezone: str,
    ) -> HandlerResult:
        """Dispatch a photo by its caption to the first photo-capable handler.

        Raises:
            NoHandlerFound: If no photo-capable handler claims the caption.
        """
        handler = self.find_handler(caption, photos_only=True)
        if handler is None:
            raise NoHandlerFound(caption or "")

        result = await handler.handle_photo(photo_bytes, caption or "", user_id, message_id, timezone)
        result.topic = result.topic or handler.topic
        return result
