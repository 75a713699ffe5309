"""Data models for the installer: steps, groups, options and rules."""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from .conditions import (
    ALWAYS,
    ConditionExpr,
    EvaluationContext,
    evaluate,
)


class GroupKind(Enum):
    EXACTLY_ONE = "SelectExactlyOne"
    AT_MOST_ONE = "SelectAtMostOne"
    AT_LEAST_ONE = "SelectAtLeastOne"
    ALL = "SelectAll"
    OPTIONAL = "SelectAny"

    @property
    def is_radio(self) -> bool:
        return self in (GroupKind.EXACTLY_ONE, GroupKind.AT_MOST_ONE)

    def accepts(self, count: int, available: int) -> bool:
        """Whether ``count`` selections out of ``available`` visible options suffice."""
        if available == 0:
            return True
        if self is GroupKind.EXACTLY_ONE:
            return count == 1
        if self is GroupKind.AT_MOST_ONE:
            return count <= 1
        if self is GroupKind.AT_LEAST_ONE:
            return count >= 1
        if self is GroupKind.ALL:
            return count == available
        return True

    def requirement_text(self) -> str:
        return {
            GroupKind.EXACTLY_ONE: "exactly one option",
            GroupKind.AT_MOST_ONE: "at most one option",
            GroupKind.AT_LEAST_ONE: "at least one option",
            GroupKind.ALL: "all options",
            GroupKind.OPTIONAL: "any options",
        }[self]


class OptionKind(Enum):
    REQUIRED = "Required"
    RECOMMENDED = "Recommended"
    OPTIONAL = "Optional"
    COULD_BE_USABLE = "CouldBeUsable"
    NOT_USABLE = "NotUsable"


class RuleKind(Enum):
    FILE = "file"
    FOLDER = "folder"


@dataclass(frozen=True)
class InstallRule:
    source: str
    destination: str
    kind: RuleKind = RuleKind.FILE
    condition: ConditionExpr = ALWAYS
    priority: int = 0
    # Install even when the owning option is not selected (always, or while visible).
    always_install: bool = False
    install_if_usable: bool = False


@dataclass(frozen=True)
class TypePattern:
    condition: ConditionExpr
    kind: OptionKind


@dataclass(frozen=True)
class OptionItem:
    name: str
    description: str = ""
    image: str | None = None
    kind: OptionKind = OptionKind.OPTIONAL
    patterns: tuple[TypePattern, ...] = ()
    visible: ConditionExpr = ALWAYS
    flags: tuple[tuple[str, str], ...] = ()
    rules: tuple[InstallRule, ...] = ()

    def requirement(
        self, flags: Mapping[str, str], context: EvaluationContext | None = None
    ) -> OptionKind:
        for pattern in self.patterns:
            if evaluate(pattern.condition, flags, context):
                return pattern.kind
        return self.kind


@dataclass(frozen=True)
class Group:
    name: str
    kind: GroupKind
    options: tuple[OptionItem, ...] = ()


@dataclass(frozen=True)
class InstallStep:
    name: str
    groups: tuple[Group, ...] = ()
    visible: ConditionExpr = ALWAYS


@dataclass(frozen=True)
class ModuleInfo:
    name: str = ""
    author: str = ""
    version: str = ""
    website: str = ""
    description: str = ""
    groups: tuple[str, ...] = ()


@dataclass(frozen=True)
class Installer:
    module_name: str
    steps: tuple[InstallStep, ...] = ()
    default_flags: tuple[tuple[str, str], ...] = ()
    required_rules: tuple[InstallRule, ...] = ()
    conditional_rules: tuple[InstallRule, ...] = ()
    module_condition: ConditionExpr = ALWAYS
    info: ModuleInfo | None = None
    image: str | None = None
    digest: str = ""

    @property
    def requires_wizard(self) -> bool:
        return bool(self.steps)

    @property
    def display_name(self) -> str:
        if self.module_name:
            return self.module_name
        if self.info and self.info.name:
            return self.info.name
        return "<unnamed installer>"

    def option(self, step: int, group: int, option: int) -> OptionItem:
        return self.steps[step].groups[group].options[option]

    def summary(self) -> str:
        groups = sum(len(s.groups) for s in self.steps)
        options = sum(len(g.options) for s in self.steps for g in s.groups)
        return f"{len(self.steps)} step(s), {groups} group(s), {options} option(s)"


@dataclass(frozen=True)
class OptionRef:
    """Identity of an option inside an installer."""

    step: int
    group: int
    option: int

    def as_tuple(self) -> tuple[int, int, int]:
        return (self.step, self.group, self.option)


@dataclass
class LintFinding:
    location: str
    message: str


__all__ = [
    "GroupKind",
    "OptionKind",
    "RuleKind",
    "InstallRule",
    "TypePattern",
    "OptionItem",
    "Group",
    "InstallStep",
    "ModuleInfo",
    "Installer",
    "OptionRef",
    "LintFinding",
]
