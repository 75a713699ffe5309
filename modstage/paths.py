"""Configuration and data path helpers for modstage."""

import os
from pathlib import Path

CONFIG_ENV = "MODSTAGE_CONFIG"
CONFIG_FILE = "config.json"


def get_config_dir() -> Path:
    """Return XDG-compliant config directory: ~/.config/modstage"""
    return Path.home() / ".config" / "modstage"


def get_config_path(create: bool = False) -> Path:
    """Return path to user config file.

    Priority:
    1. MODSTAGE_CONFIG environment variable (if set)
    2. ~/.config/modstage/config.json (default XDG location)

    Args:
        create: If True, create the parent directory if missing
    """
    if CONFIG_ENV in os.environ:
        path = Path(os.environ[CONFIG_ENV])
    else:
        path = get_config_dir() / CONFIG_FILE
    if create:
        path.parent.mkdir(parents=True, exist_ok=True)
    return path


def get_records_dir() -> Path:
    """Default directory for stored plan records."""
    return get_config_dir() / "records"


__all__ = ["CONFIG_ENV", "get_config_dir", "get_config_path", "get_records_dir"]
