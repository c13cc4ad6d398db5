"""
Configuration loading with multi-layer merging.

Implements the configuration precedence chain:
    defaults < .worklog/config.defaults.yaml < .worklog/config.yaml < env vars
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from .env import load_layered_env
from .models import WorklogConfig

logger = logging.getLogger(__name__)

CONFIG_DIR = ".worklog"
CONFIG_FILE = "config.yaml"
CONFIG_DEFAULTS_FILE = "config.defaults.yaml"

# Env var -> config key
ENV_OVERRIDES = {
    "WORKLOG_SYNC_REMOTE": "syncRemote",
    "WORKLOG_SYNC_BRANCH": "syncBranch",
    "WORKLOG_PREFIX": "prefix",
}


def get_config_dir(project_dir: Path | None = None) -> Path:
    if project_dir is None:
        project_dir = Path.cwd()
    return project_dir / CONFIG_DIR


def get_config_path(project_dir: Path | None = None) -> Path:
    return get_config_dir(project_dir) / CONFIG_FILE


def get_config_defaults_path(project_dir: Path | None = None) -> Path:
    return get_config_dir(project_dir) / CONFIG_DEFAULTS_FILE


def load_yaml_file(path: Path) -> dict[str, Any] | None:
    """
    Load a YAML mapping, returning None if it doesn't exist or is invalid.

    Args:
        path: Path to YAML file

    Returns:
        Parsed mapping, or None if the file is missing, unparsable, or not a mapping
    """
    if not path.exists():
        return None

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Failed to parse config at %s: %s", path, e)
        return None

    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config at %s: expected a mapping", path)
        return None
    return data


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        WORKLOG_SYNC_REMOTE - overrides syncRemote
        WORKLOG_SYNC_BRANCH - overrides syncBranch
        WORKLOG_PREFIX - overrides prefix
        WORKLOG_AUTO_SYNC - overrides autoSync ("false", "0" and "" disable)
    """
    result = config_dict.copy()

    for env_name, key in ENV_OVERRIDES.items():
        if value := os.environ.get(env_name):
            result[key] = value

    auto_sync = os.environ.get("WORKLOG_AUTO_SYNC")
    if auto_sync is not None:
        result["autoSync"] = auto_sync.strip().lower() not in ("false", "0", "")

    return result


def _normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Map snake_case keys onto their camelCase aliases so layers merge by key."""
    aliases = {
        name: field.alias for name, field in WorklogConfig.model_fields.items() if field.alias
    }
    return {aliases.get(k, k): v for k, v in data.items()}


def load_config(project_dir: Path | None = None) -> WorklogConfig:
    """
    Load configuration with multi-layer merging.

    `.env` and `.env.local` in the project directory are loaded into the
    process environment first (never overriding variables already set).

    Args:
        project_dir: Project root containing `.worklog/` (defaults to cwd)

    Returns:
        Validated WorklogConfig instance

    Raises:
        ValidationError: If the merged config fails Pydantic validation
    """
    if project_dir is None:
        project_dir = Path.cwd()

    load_layered_env(project_dir=project_dir)

    merged: dict[str, Any] = {}
    for path in (get_config_defaults_path(project_dir), get_config_path(project_dir)):
        if layer := load_yaml_file(path):
            logger.debug("Loaded config layer %s", path)
            merged.update(_normalize_keys(layer))

    merged = apply_env_overrides(merged)
    return WorklogConfig.model_validate(merged)
