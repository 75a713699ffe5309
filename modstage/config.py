"""Settings file loading and validation.

Settings files are JSON-ish (trailing commas and ``//`` line comments are
tolerated) or YAML when the file name ends in ``.yaml``/``.yml``.
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

import yaml

from modstage.errors import ConfigError, format_field_error
from modstage.paths import get_config_path, get_records_dir

_logging = logging.getLogger(__name__)

DEPLOY_METHODS = ("symlink", "hardlink", "copy")
YAML_SUFFIXES = (".yaml", ".yml")


@dataclass
class Settings:
    deploy_method: str = "symlink"
    data_dir: str = "Data"
    records_dir: str = ""
    default_profile: str | None = None

    def __post_init__(self):
        if not self.records_dir:
            self.records_dir = str(get_records_dir())

    def to_dict(self) -> dict:
        return asdict(self)


def _skip_blank(text: str, i: int) -> int:
    """Index of the next character that is not whitespace or inside a // comment."""
    n = len(text)
    while i < n:
        if text[i] in " \t\r\n":
            i += 1
        elif text.startswith("//", i):
            while i < n and text[i] != "\n":
                i += 1
        else:
            break
    return i


def preprocess_jsonish(text: str) -> str:
    """Turn JSON-ish text into strict JSON.

    ``//`` comments and trailing commas are blanked out with spaces, so line
    and column numbers in later parse errors still match the original text.
    String contents (including escaped quotes) are left untouched.
    """
    out = []
    i = 0
    n = len(text)
    in_string = False
    while i < n:
        char = text[i]
        if in_string:
            out.append(char)
            if char == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if char == '"':
                in_string = False
            i += 1
        elif char == '"':
            in_string = True
            out.append(char)
            i += 1
        elif text.startswith("//", i):
            end = text.find("\n", i)
            end = n if end == -1 else end
            out.append(" " * (end - i))
            i = end
        elif char == ",":
            following = _skip_blank(text, i + 1)
            trailing = following < n and text[following] in "]}"
            out.append(" " if trailing else ",")
            i += 1
        else:
            out.append(char)
            i += 1
    return "".join(out)


def _format_syntax_error(original_text: str, error: json.JSONDecodeError) -> str:
    """Describe a JSON syntax error with the offending line and a caret."""
    lines = original_text.split("\n")
    parts = [f"Config syntax error at line {error.lineno}, col {error.colno}: {error.msg}"]
    if 1 <= error.lineno <= len(lines):
        parts.append(lines[error.lineno - 1])
        parts.append(" " * (error.colno - 1) + "^")
    return "\n".join(parts)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}")
    except PermissionError:
        raise ConfigError(f"Permission denied reading config file: {path}")
    except UnicodeDecodeError:
        raise ConfigError(f"Config file is not valid UTF-8: {path}")
    except OSError as e:
        raise ConfigError(f"Error reading config file {path}: {e}")


def load_config(path_or_text: Path | str, yaml_format: bool | None = None) -> dict:
    """Load a config mapping from a file or raw text.

    Args:
        path_or_text: Path to a config file, or the config text itself
        yaml_format: Force YAML parsing; by default only ``.yaml``/``.yml``
            paths are read as YAML

    Raises:
        ConfigError: If the file cannot be read or contains syntax errors
        TypeError: If path_or_text is neither Path nor str
    """
    if isinstance(path_or_text, Path):
        original_text = _read_text(path_or_text)
        if yaml_format is None:
            yaml_format = path_or_text.suffix.lower() in YAML_SUFFIXES
    elif isinstance(path_or_text, str):
        original_text = path_or_text
    else:
        raise TypeError(f"path_or_text must be Path or str, got {type(path_or_text).__name__}")

    if yaml_format:
        try:
            result = yaml.safe_load(original_text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Config YAML error: {e}") from e
        if result is None:
            result = {}
    else:
        try:
            result = json.loads(preprocess_jsonish(original_text))
        except json.JSONDecodeError as e:
            raise ConfigError(_format_syntax_error(original_text, e)) from e

    if not isinstance(result, dict):
        raise ConfigError(f"Config must be an object, got {type(result).__name__}")
    return result


def validate_settings(data: dict) -> Settings:
    """Build ``Settings`` from a loaded mapping.

    Raises:
        ConfigError: With the offending field on any invalid value
    """
    known = set(Settings.__dataclass_fields__)
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigError(
            f"Unknown config field(s): {', '.join(unknown)} "
            f"(expected: {', '.join(sorted(known))})"
        )

    for name in ("deploy_method", "data_dir", "records_dir"):
        if name in data and not isinstance(data[name], str):
            raise ConfigError(format_field_error("Settings", name, "must be a string"))
    if data.get("default_profile") is not None and not isinstance(data["default_profile"], str):
        raise ConfigError(format_field_error("Settings", "default_profile", "must be a string"))

    method = data.get("deploy_method", "symlink")
    if method not in DEPLOY_METHODS:
        raise ConfigError(
            format_field_error(
                "Settings",
                "deploy_method",
                f"must be one of: {', '.join(DEPLOY_METHODS)} (got '{method}')",
            )
        )
    data_dir = data.get("data_dir", "Data")
    if not data_dir.strip() or "/" in data_dir or "\\" in data_dir or data_dir in (".", ".."):
        raise ConfigError(format_field_error("Settings", "data_dir", "must be a single directory name"))

    return Settings(**data)


def load_settings(path: Path | None = None) -> Settings:
    """Load settings, returning defaults when no config file exists."""
    path = path or get_config_path()
    if not path.exists():
        _logging.debug(f"No config at {path}, using defaults")
        return Settings()
    settings = validate_settings(load_config(path))
    _logging.debug(f"Loaded settings from {path}")
    return settings


def save_settings(settings: Settings, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.to_dict(), indent=2) + "\n", encoding="utf-8")


__all__ = [
    "DEPLOY_METHODS",
    "Settings",
    "preprocess_jsonish",
    "load_config",
    "validate_settings",
    "load_settings",
    "save_settings",
]
