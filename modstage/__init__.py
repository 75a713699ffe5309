"""modstage: declarative mod installer and deployment pipeline."""

import logging

from modstage.config import Settings, load_config, load_settings
from modstage.errors import (
    ConfigError,
    ConstraintViolation,
    DigestMismatch,
    ExecError,
    LeaseError,
    ModstageError,
    ParseError,
    ParseWarning,
    PlanError,
    RecordError,
    SelectionError,
    UnsafePathError,
    format_error,
    format_field_error,
    format_suggestion,
)
from modstage.paths import get_config_dir, get_config_path, get_records_dir

__version__ = "0.1.0"

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

_debug_enabled = False


def set_debug(enabled: bool):
    """Enable or disable debug mode globally."""
    global _debug_enabled
    _debug_enabled = enabled


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return _debug_enabled


def setup_logging(debug: bool = False) -> None:
    """Configure the root logger once: DEBUG with --debug, WARNING otherwise."""
    set_debug(debug)
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)


__all__ = [
    "__version__",
    "set_debug",
    "is_debug",
    "setup_logging",
    "Settings",
    "load_config",
    "load_settings",
    "get_config_dir",
    "get_config_path",
    "get_records_dir",
    "ModstageError",
    "ConfigError",
    "ParseError",
    "ParseWarning",
    "ConstraintViolation",
    "SelectionError",
    "PlanError",
    "UnsafePathError",
    "ExecError",
    "DigestMismatch",
    "LeaseError",
    "RecordError",
    "format_error",
    "format_field_error",
    "format_suggestion",
]
