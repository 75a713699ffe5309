"""Condition expressions and their evaluation.

Conditions gate step visibility, option visibility, option requirement
kinds and conditional install rules. Evaluation never mutates the flag set
and never fails: an absent flag compares equal only to ``UNSET``.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

from packaging import version as pkg_version

# FOMOD writes an empty value to mean "flag not set".
UNSET = ""


class FileStatus(Enum):
    ACTIVE = "Active"
    INACTIVE = "Inactive"
    MISSING = "Missing"

    @classmethod
    def parse(cls, value: str) -> "FileStatus":
        for status in cls:
            if status.value.lower() == value.strip().lower():
                return status
        raise ValueError(f"unknown file state '{value}'")


@dataclass(frozen=True)
class Always:
    pass


@dataclass(frozen=True)
class FlagEquals:
    flag: str
    value: str


@dataclass(frozen=True)
class AllOf:
    terms: tuple = ()


@dataclass(frozen=True)
class AnyOf:
    terms: tuple = ()


@dataclass(frozen=True)
class Not:
    term: object


@dataclass(frozen=True)
class FileState:
    path: str
    state: FileStatus


@dataclass(frozen=True)
class VersionAtLeast:
    subject: str
    version: str


ConditionExpr = Always | FlagEquals | AllOf | AnyOf | Not | FileState | VersionAtLeast

ALWAYS = Always()
NEVER = Not(ALWAYS)


@dataclass(frozen=True)
class EvaluationContext:
    """Read-only facts about the environment an installer runs against.

    ``file_states`` maps plugin file names (case-insensitive) to their
    state; anything absent is Missing. ``versions`` maps a subject such as
    ``"game"`` or ``"script_extender"`` to its installed version string.
    """

    file_states: Mapping[str, FileStatus] = field(default_factory=dict)
    versions: Mapping[str, str] = field(default_factory=dict)

    def file_status(self, path: str) -> FileStatus:
        wanted = path.replace("\\", "/").lower()
        for name, status in self.file_states.items():
            if name.replace("\\", "/").lower() == wanted:
                return status
        return FileStatus.MISSING


EMPTY_CONTEXT = EvaluationContext()


def evaluate(
    expr: ConditionExpr,
    flags: Mapping[str, str],
    context: EvaluationContext | None = None,
) -> bool:
    context = context or EMPTY_CONTEXT

    if isinstance(expr, Always):
        return True
    if isinstance(expr, FlagEquals):
        return flags.get(expr.flag, UNSET) == expr.value
    if isinstance(expr, AllOf):
        return all(evaluate(term, flags, context) for term in expr.terms)
    if isinstance(expr, AnyOf):
        return any(evaluate(term, flags, context) for term in expr.terms)
    if isinstance(expr, Not):
        return not evaluate(expr.term, flags, context)
    if isinstance(expr, FileState):
        return context.file_status(expr.path) == expr.state
    if isinstance(expr, VersionAtLeast):
        return _version_at_least(context.versions.get(expr.subject), expr.version)

    raise TypeError(f"not a condition expression: {expr!r}")


def _version_at_least(installed: str | None, minimum: str) -> bool:
    if not installed:
        return False
    try:
        return pkg_version.parse(installed) >= pkg_version.parse(minimum)
    except pkg_version.InvalidVersion:
        return False


def all_of(terms) -> ConditionExpr:
    """Conjunction that collapses trivial cases."""
    terms = tuple(t for t in terms if not isinstance(t, Always))
    if not terms:
        return ALWAYS
    if len(terms) == 1:
        return terms[0]
    return AllOf(terms)


def any_of(terms) -> ConditionExpr:
    """Disjunction that collapses trivial cases."""
    terms = tuple(terms)
    if any(isinstance(t, Always) for t in terms):
        return ALWAYS
    if len(terms) == 1:
        return terms[0]
    return AnyOf(terms)


def negate(term: ConditionExpr) -> ConditionExpr:
    if isinstance(term, Not):
        return term.term
    return Not(term)


def referenced_flags(expr: ConditionExpr) -> set[str]:
    """Names of all flags an expression reads."""
    if isinstance(expr, FlagEquals):
        return {expr.flag}
    if isinstance(expr, (AllOf, AnyOf)):
        names: set[str] = set()
        for term in expr.terms:
            names |= referenced_flags(term)
        return names
    if isinstance(expr, Not):
        return referenced_flags(expr.term)
    return set()


def describe(expr: ConditionExpr) -> str:
    """Render an expression for display, e.g. ``(F = 1 and not G = x)``."""
    if isinstance(expr, Always):
        return "always"
    if isinstance(expr, FlagEquals):
        shown = expr.value if expr.value != UNSET else "<unset>"
        return f"{expr.flag} = {shown}"
    if isinstance(expr, AllOf):
        if not expr.terms:
            return "always"
        return "(" + " and ".join(describe(t) for t in expr.terms) + ")"
    if isinstance(expr, AnyOf):
        if not expr.terms:
            return "never"
        return "(" + " or ".join(describe(t) for t in expr.terms) + ")"
    if isinstance(expr, Not):
        if isinstance(expr.term, Always):
            return "never"
        return f"not {describe(expr.term)}"
    if isinstance(expr, FileState):
        return f"{expr.path} is {expr.state.value.lower()}"
    if isinstance(expr, VersionAtLeast):
        return f"{expr.subject} >= {expr.version}"
    raise TypeError(f"not a condition expression: {expr!r}")


__all__ = [
    "UNSET",
    "FileStatus",
    "Always",
    "FlagEquals",
    "AllOf",
    "AnyOf",
    "Not",
    "FileState",
    "VersionAtLeast",
    "ConditionExpr",
    "ALWAYS",
    "NEVER",
    "EvaluationContext",
    "evaluate",
    "all_of",
    "any_of",
    "negate",
    "referenced_flags",
    "describe",
]
