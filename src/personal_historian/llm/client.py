"""Bounded, fail-safe access to the chat model.

Every call carries a timeout and a caller-supplied fallback. Callers never
see a model exception: on timeout, provider error, or a reply that does not
fit the requested schema, the fallback is returned and the failure logged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, TypeVar

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel

from personal_historian.config import create_model, settings
from personal_historian.logging import truncate_log_text

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


class Enricher:
    """Structured and free-text completions with timeout + fallback."""

    def __init__(
        self,
        model: BaseChatModel | None = None,
        timeout: float | None = None,
        model_factory: Callable[[], BaseChatModel] | None = None,
    ) -> None:
        self._model = model
        self._model_factory = model_factory or create_model
        self.timeout = timeout if timeout is not None else settings.LLM_TIMEOUT_SECONDS

    def _get_model(self) -> BaseChatModel:
        # Created lazily so a missing API key only degrades enrichment
        if self._model is None:
            self._model = self._model_factory()
        return self._model

    @staticmethod
    def _messages(prompt: str, system: str | None) -> list:
        messages = []
        if system:
            messages.append(SystemMessage(content=system))
        messages.append(HumanMessage(content=prompt))
        return messages

    async def complete(
        self,
        prompt: str,
        schema: type[T],
        fallback: T,
        system: str | None = None,
    ) -> T:
        """Ask for a reply shaped like ``schema``; return ``fallback`` on any failure."""
        try:
            structured = self._get_model().with_structured_output(schema)
            result = await asyncio.wait_for(
                structured.ainvoke(self._messages(prompt, system)),
                timeout=self.timeout,
            )
            if isinstance(result, dict):
                result = schema.model_validate(result)
            if not isinstance(result, schema):
                raise TypeError(f"Unexpected structured output: {type(result).__name__}")
            return result
        except asyncio.TimeoutError:
            logger.warning(f"Enrichment timed out after {self.timeout}s ({schema.__name__})")
        except Exception as e:
            logger.warning(f"Enrichment failed ({schema.__name__}): {e}")
        return fallback

    async def complete_text(
        self,
        prompt: str,
        fallback: str,
        system: str | None = None,
    ) -> str:
        """Free-text completion; empty or failed replies yield ``fallback``."""
        try:
            response = await asyncio.wait_for(
                self._get_model().ainvoke(self._messages(prompt, system)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Text completion timed out after {self.timeout}s")
            return fallback
        except Exception as e:
            logger.warning(f"Text completion failed: {e}")
            return fallback

        content = getattr(response, "content", response)
        if isinstance(content, list):
            content = "".join(
                part.get("text", "") if isinstance(part, dict) else str(part) for part in content
            )
        text = str(content or "").strip()
        if not text:
            logger.debug("Empty text completion, using fallback")
            return fallback
        logger.debug(f"Text completion: {truncate_log_text(text)}")
        return text
