"""Abstract base class for messaging channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from personal_historian.logging import format_log_context, get_logger, truncate_log_text
from personal_historian.storage.user_allowlist import is_authorized

if TYPE_CHECKING:
    from personal_historian.orchestrator import ConversationOrchestrator

logger = get_logger(__name__)


class MessageFormat(dict):
    """
    Standardized inbound message format across channels.

    Attributes:
        content: Text content (or photo caption) of the message.
        user_id: Sender identifier on the channel.
        message_id: Identifier of this message.
        reply_to_message_id: Identifier of the message this one replies to.
        attachments: Photo attachments as ``{"type": "photo", "file_ref": ...}``.
        metadata: Additional channel-specific data.
    """

    def __init__(
        self,
        content: str,
        user_id: str,
        message_id: str,
        reply_to_message_id: str | None = None,
        attachments: list[dict] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.content = content
        self.user_id = user_id
        self.message_id = message_id
        self.reply_to_message_id = reply_to_message_id
        self.attachments = attachments or []
        self.metadata = metadata or {}
        super().__init__(
            content=content,
            user_id=user_id,
            message_id=message_id,
            reply_to_message_id=reply_to_message_id,
            attachments=self.attachments,
            metadata=self.metadata,
        )

    @property
    def photo(self) -> dict | None:
        for attachment in self.attachments:
            if attachment.get("type") == "photo":
                return attachment
        return None


class BaseChannel(ABC):
    """
    Abstract base class for messaging channels.

    A channel receives user events, passes them to the conversation
    orchestrator, sends the reply, and reports the id of the sent message
    back so replies to follow-up questions can be correlated.

    Attributes:
        orchestrator: The conversation orchestrator that produces replies.
    """

    def __init__(self, orchestrator: ConversationOrchestrator | None = None) -> None:
        self.orchestrator = orchestrator

    def get_channel_name(self) -> str:
        """Get the channel name (e.g., 'telegram')."""
        return self.__class__.__name__.lower().replace("channel", "")

    @abstractmethod
    async def start(self) -> None:
        """Start receiving messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving messages and release resources."""

    @abstractmethod
    async def send_message(self, user_id: str, content: str, **kwargs: Any) -> str | None:
        """
        Send a message to a user.

        Returns:
            Id of the (last) message sent, if the channel reports one.

        Raises:
            Exception: If the message could not be delivered.
        """

    @abstractmethod
    async def download_file(self, file_ref: str) -> bytes:
        """Fetch an attachment's bytes by its channel file reference."""

    async def handle_message(self, message: MessageFormat) -> None:
        """Route an inbound message through the orchestrator and send the reply."""
        ctx = format_log_context(
            "message",
            channel=self.get_channel_name(),
            user=message.user_id,
            message_id=message.message_id,
            reply_to=message.reply_to_message_id,
            type="photo" if message.photo else "text",
        )
        if not is_authorized(message.user_id):
            logger.info(f"{ctx} dropped unauthorized sender")
            return
        if self.orchestrator is None:
            logger.error(f"{ctx} no orchestrator attached")
            return

        photo = message.photo
        if photo is not None:
            reply = await self.orchestrator.handle_photo(
                message.user_id,
                message.message_id,
                message.content,
                lambda: self.download_file(photo["file_ref"]),
            )
        else:
            reply = await self.orchestrator.handle_text(
                message.user_id,
                message.message_id,
                message.content,
                reply_to_message_id=message.reply_to_message_id,
            )

        try:
            outbound_id = await self.send_message(message.user_id, reply.text)
        except Exception as e:
            logger.error(f'{ctx} reply failed error="{e}"')
            return
        logger.info(f'{ctx} replied text="{truncate_log_text(reply.text)}"')
        await self.orchestrator.remember_reply(message.user_id, outbound_id, reply)
