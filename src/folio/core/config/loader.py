"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < user config < project config < env vars
"""

import json
import logging
import os
from pathlib import Path
from typing import Any

from .models import FolioConfig

logger = logging.getLogger(__name__)

# Global cache to avoid reloading config multiple times per session
_config_cache: FolioConfig | None = None


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_user_config_path() -> Path:
    """Path to ~/.config/folio/config.json (or XDG equivalent)."""
    return get_xdg_config_home() / "folio" / "config.json"


def get_project_config_path(cwd: Path | None = None) -> Path:
    """Path to .folio.json in the project root."""
    if cwd is None:
        cwd = Path.cwd()
    return cwd / ".folio.json"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Recursively merge two dictionaries, ``override`` winning.

    Example:
        >>> deep_merge({"sync": {"grace_delay": 1, "pending_timeout": 10}},
        ...            {"sync": {"pending_timeout": 5}})
        {'sync': {'grace_delay': 1, 'pending_timeout': 5}}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_json_file(path: Path) -> dict[str, Any] | None:
    """
    Load a JSON object from a file.

    Returns:
        Parsed object, or None if the file is missing or not a JSON object
    """
    if not path.exists():
        return None
    try:
        with path.open(encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        # Config must stay loadable even with a broken file
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None
    if isinstance(data, dict):
        return data
    logger.warning("Ignoring config at %s: expected a JSON object", path)
    return None


def _env_float(name: str, minimum: float = 0.0) -> float | None:
    raw = os.environ.get(name)
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s value '%s', ignoring", name, raw)
        return None
    if value <= minimum:
        logger.warning("%s must be > %s, got %s, ignoring", name, minimum, value)
        return None
    return value


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        FOLIO_TICK_SECONDS - overrides scheduler.tick_seconds
        FOLIO_PENDING_TIMEOUT - overrides sync.pending_timeout
        FOLIO_EFFORT_THRESHOLD - overrides validation.effort_threshold_percent
        FOLIO_BACKEND - overrides storage.backend

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()

    overrides: list[tuple[str, str, float | None]] = [
        ("scheduler", "tick_seconds", _env_float("FOLIO_TICK_SECONDS")),
        ("sync", "pending_timeout", _env_float("FOLIO_PENDING_TIMEOUT")),
        ("validation", "effort_threshold_percent", _env_float("FOLIO_EFFORT_THRESHOLD")),
    ]
    for section, key, value in overrides:
        if value is not None:
            result[section] = {**result.get(section, {}), key: value}

    if backend := os.environ.get("FOLIO_BACKEND"):
        result["storage"] = {**result.get("storage", {}), "backend": backend}

    return result


def get_default_config() -> dict[str, Any]:
    """Hardcoded default configuration."""
    return {
        "scheduler": {"enabled": True, "tick_seconds": 60.0},
        "sync": {"grace_delay": 0.5, "pending_timeout": 10.0},
        "audit": {"max_execution_log": 10},
        "validation": {"effort_threshold_percent": 15.0},
    }


def load_config(project_dir: Path | None = None, use_cache: bool = True) -> FolioConfig:
    """
    Load configuration with multi-layer merging.

    Configuration precedence (highest to lowest):
        1. Environment variables (FOLIO_*)
        2. Project config (.folio.json)
        3. User config (~/.config/folio/config.json)
        4. Hardcoded defaults

    Args:
        project_dir: Project directory to load .folio.json from (defaults to cwd)
        use_cache: If True, return cached config from previous load

    Returns:
        Validated FolioConfig instance

    Raises:
        pydantic.ValidationError: If the merged config fails validation
    """
    global _config_cache

    if use_cache and _config_cache is not None:
        return _config_cache

    merged = get_default_config()

    if user_config := load_json_file(get_user_config_path()):
        merged = deep_merge(merged, user_config)

    if project_config := load_json_file(get_project_config_path(project_dir)):
        merged = deep_merge(merged, project_config)

    merged = apply_env_overrides(merged)

    config = FolioConfig(**merged)
    _config_cache = config
    return config


def clear_cache() -> None:
    """Clear the cached configuration."""
    global _config_cache
    _config_cache = None
