"""Telegram channel implementation using python-telegram-bot."""

from __future__ import annotations

import asyncio
import re
from typing import TYPE_CHECKING, Any

from loguru import logger
from telegram import Update
from telegram.error import BadRequest
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from personal_historian.channels.base import BaseChannel, MessageFormat
from personal_historian.config.settings import settings
from personal_historian.logging import format_log_context, truncate_log_text
from personal_historian.storage.user_allowlist import is_authorized

if TYPE_CHECKING:
    from personal_historian.orchestrator import ConversationOrchestrator


class TelegramChannel(BaseChannel):
    """
    Telegram bot channel implementation.

    This channel handles:
    - Receiving text messages, photos and commands via long polling
    - Passing them to the conversation orchestrator
    - Sending replies and check-in prompts

    Private chats only: the sender id doubles as the chat id for outbound
    messages.

    Attributes:
        token: Telegram bot token from BotFather.
        application: python-telegram-bot Application instance.
        _user_locks: Per-user asyncio locks so one user's updates are handled in order.
    """

    # Telegram message length limit
    MAX_MESSAGE_LENGTH = 4096

    def __init__(
        self,
        token: str | None = None,
        orchestrator: ConversationOrchestrator | None = None,
    ) -> None:
        token = token or settings.TELEGRAM_BOT_TOKEN
        if not token:
            raise ValueError("Telegram bot token not provided")

        super().__init__(orchestrator)
        self.token = token
        self.application: Application | None = None
        self._user_locks: dict[str, asyncio.Lock] = {}

    def _get_user_lock(self, user_id: str) -> asyncio.Lock:
        """Get or create a lock for the given user."""
        if user_id not in self._user_locks:
            self._user_locks[user_id] = asyncio.Lock()
        return self._user_locks[user_id]

    async def start(self) -> None:
        """Start the Telegram bot with polling."""
        self.application = Application.builder().token(self.token).build()

        self.application.add_handler(CommandHandler("start", self._start_command))
        self.application.add_handler(CommandHandler("status", self._status_command))
        self.application.add_handler(CommandHandler("timezone", self._timezone_command))
        self.application.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._message_handler)
        )
        self.application.add_handler(MessageHandler(filters.PHOTO, self._photo_handler))
        self.application.add_error_handler(self._error_handler)

        ctx = format_log_context("system", component="telegram")
        logger.info(f"{ctx} initializing")
        await self.application.initialize()
        await self.application.start()
        await self.application.updater.start_polling(drop_pending_updates=True)
        logger.info(f"{ctx} polling_started")

    async def stop(self) -> None:
        """Stop the Telegram bot gracefully."""
        if self.application:
            await self.application.updater.stop()
            await self.application.stop()
            await self.application.shutdown()
            self.application = None

    async def _error_handler(
        self,
        update: object,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Log Telegram errors with context."""
        user_id = None
        if isinstance(update, Update) and update.effective_user:
            user_id = update.effective_user.id
        ctx = format_log_context(
            "system",
            component="telegram",
            user=user_id,
            update_id=getattr(update, "update_id", None),
        )
        logger.opt(exception=context.error).error(f"{ctx} unhandled exception")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_message(self, user_id: str, content: str, **kwargs: Any) -> str | None:
        """Send a message to a Telegram chat.

        Splits messages longer than MAX_MESSAGE_LENGTH into multiple messages.
        Falls back to plain text if Markdown parsing fails.

        Returns:
            The message id of the last chunk sent.
        """
        if not self.application:
            raise RuntimeError("Telegram channel is not started")
        if not content:
            return None

        ctx = format_log_context("message", channel="telegram", user=user_id, type="text")
        logger.debug(f'{ctx} send text="{truncate_log_text(content)}"')

        message_id = None
        for chunk in self._split_message(content):
            sent = await self._send_with_fallback(user_id, chunk, "Markdown", **kwargs)
            message_id = str(sent.message_id)
        return message_id

    async def _send_with_fallback(
        self,
        chat_id: str,
        content: str,
        parse_mode: str,
        **kwargs: Any,
    ):
        """Send message with Markdown formatting, falling back to plain text on parse error."""
        try:
            return await self.application.bot.send_message(
                chat_id=chat_id,
                text=content,
                parse_mode=parse_mode,
                **kwargs,
            )
        except BadRequest as e:
            if "can't parse entities" in str(e).lower() or "can't find end" in str(e).lower():
                return await self.application.bot.send_message(
                    chat_id=chat_id,
                    text=self._strip_markdown(content),
                    parse_mode=None,
                    **kwargs,
                )
            raise

    @staticmethod
    def _strip_markdown(text: str) -> str:
        """Strip markdown special characters for plain text fallback."""
        text = re.sub(r"\*\*([^*]+)\*\*", r"\1", text)  # **bold**
        text = re.sub(r"\*([^*]+)\*", r"\1", text)  # *italic*
        text = re.sub(r"__([^_]+)__", r"\1", text)  # __bold__
        text = re.sub(r"_([^_]+)_", r"\1", text)  # _italic_
        text = re.sub(r"```(.+?)```", r"\1", text, flags=re.DOTALL)  # ```pre```
        text = re.sub(r"`([^`]+)`", r"\1", text)  # `code`
        return text

    @classmethod
    def _split_message(cls, content: str) -> list[str]:
        """Split at newlines into chunks of at most MAX_MESSAGE_LENGTH."""
        if len(content) <= cls.MAX_MESSAGE_LENGTH:
            return [content]

        chunks = []
        current_chunk = ""
        for line in content.split("\n"):
            if len(current_chunk) + len(line) + 1 > cls.MAX_MESSAGE_LENGTH:
                if current_chunk:
                    chunks.append(current_chunk.rstrip())
                # A single line that is too long is force-split
                if len(line) > cls.MAX_MESSAGE_LENGTH:
                    for i in range(0, len(line), cls.MAX_MESSAGE_LENGTH):
                        chunks.append(line[i:i + cls.MAX_MESSAGE_LENGTH])
                    current_chunk = ""
                else:
                    current_chunk = line + "\n"
            else:
                current_chunk += line + "\n"

        if current_chunk:
            chunks.append(current_chunk.rstrip())
        return [chunk for chunk in chunks if chunk]

    async def download_file(self, file_ref: str) -> bytes:
        if not self.application:
            raise RuntimeError("Telegram channel is not started")
        file = await self.application.bot.get_file(file_ref)
        return bytes(await file.download_as_bytearray())

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    @staticmethod
    def _sender_id(update: Update) -> str | None:
        return str(update.effective_user.id) if update.effective_user else None

    async def _authorized(self, update: Update) -> str | None:
        """Sender id when the sender may use the bot; unauthorized updates are dropped."""
        user_id = self._sender_id(update)
        if not update.message or not is_authorized(user_id):
            ctx = format_log_context("message", channel="telegram", user=user_id, update_id=update.update_id)
            logger.info(f"{ctx} dropped")
            return None
        return user_id

    async def _start_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /start command."""
        user_id = await self._authorized(update)
        if user_id is None or self.orchestrator is None:
            return
        async with self._get_user_lock(user_id):
            await update.message.reply_text(await self.orchestrator.start_session(user_id))

    async def _status_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /status command."""
        user_id = await self._authorized(update)
        if user_id is None or self.orchestrator is None:
            return
        await update.message.reply_text(await self.orchestrator.status_text(user_id))

    async def _timezone_command(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle /timezone <IANA name>."""
        user_id = await self._authorized(update)
        if user_id is None or self.orchestrator is None:
            return
        zone = context.args[0] if context.args else None
        async with self._get_user_lock(user_id):
            await update.message.reply_text(await self.orchestrator.set_timezone(user_id, zone))

    async def _message_handler(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle incoming text messages."""
        user_id = await self._authorized(update)
        if user_id is None or not update.message.text:
            return

        reply_to = update.message.reply_to_message
        message = MessageFormat(
            content=update.message.text,
            user_id=user_id,
            message_id=str(update.message.message_id),
            reply_to_message_id=str(reply_to.message_id) if reply_to else None,
            metadata={
                "username": update.effective_user.username,
                "telegram_date": update.message.date.isoformat() if update.message.date else None,
            },
        )
        async with self._get_user_lock(user_id):
            await self.handle_message(message)

    async def _photo_handler(
        self,
        update: Update,
        context: ContextTypes.DEFAULT_TYPE,
    ) -> None:
        """Handle incoming photos (highest resolution, caption as text)."""
        user_id = await self._authorized(update)
        if user_id is None or not update.message.photo:
            return

        photo = update.message.photo[-1]
        message = MessageFormat(
            content=update.message.caption or "",
            user_id=user_id,
            message_id=str(update.message.message_id),
            attachments=[{"type": "photo", "file_ref": photo.file_id}],
        )
        async with self._get_user_lock(user_id):
            await self.handle_message(message)
