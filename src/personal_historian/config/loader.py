"""YAML defaults loader.

Reads ``config.yaml`` (if present) and flattens nested sections into
upper-case keys, e.g. ``checkin: {poll_seconds: 60}`` -> ``CHECKIN_POLL_SECONDS``.
"""

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config.yaml")


def _flatten(data: dict[str, Any], prefix: str = "") -> dict[str, Any]:
    flat: dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}_{key}" if prefix else str(key)
        if isinstance(value, dict):
            flat.update(_flatten(value, full_key))
        else:
            flat[full_key.upper()] = value
    return flat


def load_yaml_config(path: Path | None = None) -> dict[str, Any]:
    """Load and flatten a YAML config file. Missing file yields an empty dict."""
    path = path or Path(os.getenv("HISTORIAN_CONFIG", DEFAULT_CONFIG_PATH))
    if not path.exists():
        return {}

    with path.open(encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}

    if not isinstance(raw, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")

    return _flatten(raw)


@lru_cache
def get_yaml_defaults() -> dict[str, Any]:
    """Get flattened YAML defaults (cached)."""
    try:
        return load_yaml_config()
    except (OSError, yaml.YAMLError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config.yaml: {e}")
        return {}
