"""Prefix-dispatched content handlers."""

from personal_historian.handlers.base import ContentHandler, HandlerResult
from personal_historian.handlers.food import FoodHandler
from personal_historian.handlers.registry import HandlerRegistry, NoHandlerFound

__all__ = [
    "ContentHandler",
    "FoodHandler",
    "HandlerRegistry",
    "HandlerResult",
    "NoHandlerFound",
]
