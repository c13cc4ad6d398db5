"""
Configuration model and loading.

Layers: defaults < .worklog/config.defaults.yaml < .worklog/config.yaml < env vars.
"""

from .env import load_layered_env
from .loader import (
    get_config_defaults_path,
    get_config_dir,
    get_config_path,
    load_config,
)
from .models import DEFAULT_DATA_FILE, DEFAULT_DB_FILE, WorklogConfig

__all__ = [
    # Model
    "DEFAULT_DATA_FILE",
    "DEFAULT_DB_FILE",
    "WorklogConfig",
    # Loader functions
    "get_config_defaults_path",
    "get_config_dir",
    "get_config_path",
    "load_config",
    "load_layered_env",
]
