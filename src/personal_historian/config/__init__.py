"""Configuration module for Personal Historian."""

from personal_historian.config.settings import Settings, settings
from personal_historian.config.llm_factory import LLMFactory, create_model

__all__ = ["Settings", "settings", "LLMFactory", "create_model"]
