"""Per-tool JSON configuration with hardcoded fallbacks.

Each tool owns one file in data/config/ (e.g. "case-file.json").  Modules
read their tunables through get_config_value() at import time, so a missing
or unreadable file simply means "use the defaults".
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "data" / "config"


def _config_path(tool_name: str) -> Path:
    return CONFIG_DIR / f"{tool_name}.json"


def load_config(tool_name: str) -> dict | None:
    """Load a tool's config dict.  Returns None if missing, unreadable or not an object."""
    path = _config_path(tool_name)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", path, exc)
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected an object", path)
        return None
    return data


def get_config_value(tool_name: str, key: str, default: Any) -> Any:
    """Return config[key], or *default* when the file or key is absent."""
    config = load_config(tool_name)
    if config is None:
        return default
    return config.get(key, default)


def get_config_number(tool_name: str, key: str, default: float) -> float:
    """Like get_config_value() but falls back to *default* for non-numeric values."""
    value = get_config_value(tool_name, key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        logger.warning("Config %s.%s is not a number (%r); using %r", tool_name, key, value, default)
        return default
    return value
