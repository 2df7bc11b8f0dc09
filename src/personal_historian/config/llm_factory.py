"""Chat model construction for the configured provider."""

import logging
from collections.abc import Callable
from typing import Literal

from langchain_anthropic import ChatAnthropic
from langchain_core.language_models import BaseChatModel
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from personal_historian.config.settings import settings

logger = logging.getLogger(__name__)

Provider = Literal["openai", "anthropic", "ollama"]

# Providers that refuse to start without an API key
API_KEY_SETTINGS = {"openai": "OPENAI_API_KEY", "anthropic": "ANTHROPIC_API_KEY"}


def _get_model_name(provider: str) -> str:
    """Resolve the model for ``provider``.

    ``<PROVIDER>_DEFAULT_MODEL`` wins over ``DEFAULT_LLM_MODEL``.

    Raises:
        ValueError: If neither is set.
    """
    specific = f"{provider.upper()}_DEFAULT_MODEL"
    name = getattr(settings, specific, None) or settings.DEFAULT_LLM_MODEL
    if not name:
        raise ValueError(f"No model configured for {provider}: set {specific} or DEFAULT_LLM_MODEL.")
    return name


def _api_key(provider: str) -> str | None:
    key_setting = API_KEY_SETTINGS.get(provider)
    return getattr(settings, key_setting, None) if key_setting else None


def validate_llm_config() -> None:
    """Check the default provider can be built.

    Raises:
        ValueError: Listing every problem found.
    """
    provider = settings.DEFAULT_LLM_PROVIDER
    problems = []

    try:
        _get_model_name(provider)
    except ValueError as e:
        problems.append(str(e))

    if provider in API_KEY_SETTINGS and not _api_key(provider):
        problems.append(f"DEFAULT_LLM_PROVIDER={provider} requires {API_KEY_SETTINGS[provider]}.")

    if problems:
        raise ValueError("LLM configuration errors:\n" + "\n".join(f"  - {p}" for p in problems))


class LLMFactory:
    """Builds LangChain chat models from settings."""

    @staticmethod
    def _openai(model: str, **kwargs) -> BaseChatModel:
        kwargs.setdefault("max_retries", 1)
        return ChatOpenAI(model=model, api_key=settings.OPENAI_API_KEY, **kwargs)

    @staticmethod
    def _anthropic(model: str, **kwargs) -> BaseChatModel:
        kwargs.setdefault("max_retries", 1)
        kwargs.setdefault("max_tokens", 1024)
        return ChatAnthropic(model=model, api_key=settings.ANTHROPIC_API_KEY, **kwargs)

    @staticmethod
    def _ollama(model: str, **kwargs) -> BaseChatModel:
        return ChatOllama(model=model, base_url=settings.OLLAMA_BASE_URL, **kwargs)

    @classmethod
    def builders(cls) -> dict[str, Callable[..., BaseChatModel]]:
        return {"openai": cls._openai, "anthropic": cls._anthropic, "ollama": cls._ollama}

    @classmethod
    def create(cls, provider: Provider | None = None, **kwargs) -> BaseChatModel:
        """Create a chat model for ``provider`` (default: ``DEFAULT_LLM_PROVIDER``).

        Extra keyword arguments go to the model constructor; ``temperature``
        defaults to ``LLM_TEMPERATURE``.

        Raises:
            ValueError: Unknown provider, missing model name or missing API key.
        """
        provider = provider or settings.DEFAULT_LLM_PROVIDER
        build = cls.builders().get(provider)
        if build is None:
            raise ValueError(f"Unknown provider: {provider}")
        if provider in API_KEY_SETTINGS and not _api_key(provider):
            raise ValueError(f"{API_KEY_SETTINGS[provider]} not set")

        kwargs.setdefault("temperature", settings.LLM_TEMPERATURE)
        model = _get_model_name(provider)
        logger.debug(f"Creating {provider} chat model {model}")
        return build(model, **kwargs)


def create_model(provider: str | None = None, **kwargs) -> BaseChatModel:
    """Create a new model instance (uncached)."""
    return LLMFactory.create(provider, **kwargs)
