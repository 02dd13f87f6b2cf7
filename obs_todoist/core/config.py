"""
Configuration management for obs-todoist.
"""

import os
from pathlib import Path
from typing import Optional

from .models import BridgeConfig
from .paths import get_path_manager


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    return get_path_manager().config_path


def load_config(config_path: Optional[str] = None) -> BridgeConfig:
    """
    Load configuration from file or return defaults.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        BridgeConfig object
    """
    if config_path is None:
        config_path = str(get_default_config_path())

    return BridgeConfig.load_from_file(config_path)


def save_config(config: BridgeConfig, config_path: Optional[str] = None):
    """
    Save configuration to file.

    Args:
        config: BridgeConfig object to save
        config_path: Optional path to save to. Uses default if not provided.
    """
    if config_path is None:
        manager = get_path_manager()
        manager.ensure_directories()
        config_path = str(manager.config_path)

    config_dir = os.path.dirname(os.path.abspath(os.path.expanduser(config_path)))
    os.makedirs(config_dir, exist_ok=True)

    config.save_to_file(config_path)


def get_data_dir() -> Path:
    """Get the data directory holding the sync journal."""
    manager = get_path_manager()
    manager.ensure_directories()
    return manager.data_dir


def get_log_dir() -> Path:
    """Get the log directory."""
    manager = get_path_manager()
    manager.ensure_directories()
    return manager.log_dir
