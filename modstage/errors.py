"""Error types and formatting utilities for consistent error messages.

Every failure the installer pipeline surfaces to a caller derives from
``ModstageError``. Advisory findings (parse warnings, plan conflicts) are
plain records, not exceptions.

Error Style Guide:
- User-facing errors use 'Error: ' prefix
- Field errors use structured format: '<entity> field '<field>' <issue>'
- Use present tense: 'must be', 'is required'
- Include actionable hints where helpful
"""

from dataclasses import dataclass


class ModstageError(Exception):
    """Base class for all errors raised by modstage."""


class ConfigError(ModstageError):
    """Raised when config loading or parsing fails.

    Provides detailed error messages including line numbers,
    column positions, and caret indicators for syntax errors.
    """


class ParseError(ModstageError):
    """Fatal installer document error. The installer is unusable."""

    def __init__(self, path: str, cause: str):
        self.path = path
        self.cause = cause
        super().__init__(f"{path}: {cause}" if path else cause)


@dataclass(frozen=True)
class ParseWarning:
    """Non-fatal installer document finding (unknown construct, lossy decode)."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}" if self.path else self.message


class ConstraintViolation(ModstageError):
    """A visible group does not satisfy its cardinality."""

    def __init__(self, step_name: str, group_name: str, message: str):
        self.step_name = step_name
        self.group_name = group_name
        super().__init__(message)


class SelectionError(ModstageError):
    """A selection mutation was refused (hidden or forced option)."""


class PlanError(ModstageError):
    """The plan compiler cannot produce a plan."""


class UnsafePathError(PlanError):
    """An installer path escapes its root."""


class ExecError(ModstageError):
    """An apply attempt failed. Always carries the recovered state."""

    def __init__(
        self,
        transaction_id: str,
        message: str,
        recovered_state: str,
        log: dict | None = None,
    ):
        self.transaction_id = transaction_id
        self.recovered_state = recovered_state
        self.log = log or {}
        super().__init__(
            f"transaction {transaction_id} failed: {message} "
            f"(recovered state: {recovered_state})"
        )


class DigestMismatch(ModstageError):
    """The installer changed since the selection was persisted."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"installer changed (recorded digest {expected[:12]}, "
            f"current digest {actual[:12]}); a fresh selection is required"
        )


class LeaseError(ModstageError):
    """Another writer holds the exclusive lease on a tree."""


class RecordError(ModstageError):
    """A stored plan record is unreadable or cannot be written."""


def format_error(message: str) -> str:
    """Format an error message with consistent prefix.

    Examples:
        >>> format_error("file not found")
        'Error: file not found'
    """
    return f"Error: {message}"


def format_field_error(entity: str, field: str, issue: str) -> str:
    """Format a field validation error with structured format.

    Examples:
        >>> format_field_error("Group 'Textures'", "type", "is required")
        "Group 'Textures' field 'type' is required"
    """
    return f"{entity} field '{field}' {issue}"


def format_suggestion(message: str, suggestion: str) -> str:
    """Format an error message with a helpful suggestion.

    Examples:
        >>> format_suggestion("no installer found", "pass the extracted archive root")
        'Error: no installer found. Hint: pass the extracted archive root'
    """
    return f"{format_error(message)}. Hint: {suggestion}"


__all__ = [
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
