"""Messaging channels."""

from personal_historian.channels.base import BaseChannel, MessageFormat

__all__ = ["BaseChannel", "MessageFormat"]
