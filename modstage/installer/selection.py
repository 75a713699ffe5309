"""Selection state machine driving an installer wizard.

A ``SelectionState`` owns the user's option selections for one installer and
derives everything else from them: step and option visibility, option
requirement kinds, the flag set and group satisfaction. Derived state is
recomputed in full after every mutation.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from modstage.errors import ConstraintViolation, SelectionError

from .conditions import EvaluationContext, describe, evaluate
from .models import Group, GroupKind, Installer, OptionItem, OptionKind, OptionRef

_logging = logging.getLogger(__name__)

Ref = tuple[int, int, int]


class StepStatus(Enum):
    HIDDEN = "hidden"
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"


@dataclass(frozen=True)
class OptionView:
    ref: OptionRef
    name: str
    description: str
    image: str | None
    kind: OptionKind
    visible: bool
    selected: bool
    locked: bool


@dataclass(frozen=True)
class GroupView:
    index: int
    name: str
    kind: GroupKind
    options: tuple[OptionView, ...]
    satisfied: bool

    @property
    def is_radio(self) -> bool:
        return self.kind.is_radio


@dataclass(frozen=True)
class StepView:
    index: int
    name: str
    status: StepStatus
    groups: tuple[GroupView, ...]

    @property
    def visible(self) -> bool:
        return self.status is not StepStatus.HIDDEN


@dataclass(frozen=True)
class WizardView:
    """Read-only projection of a selection state for presentation layers."""

    installer_name: str
    steps: tuple[StepView, ...]
    current_step: int | None
    commit_eligible: bool
    flags: tuple[tuple[str, str], ...]
    violations: tuple[str, ...]


def _is_forced(group: Group, kind: OptionKind) -> bool:
    return kind is OptionKind.REQUIRED or group.kind is GroupKind.ALL


class SelectionState:
    def __init__(
        self,
        installer: Installer,
        default_flags: Mapping[str, str] | None = None,
        context: EvaluationContext | None = None,
        apply_defaults: bool = True,
    ):
        self.installer = installer
        self.context = context
        self.preset_flags = dict(default_flags or {})
        self._base_flags = dict(installer.default_flags)
        self._base_flags.update(self.preset_flags)
        self._selected: set[Ref] = set()
        self._step_visible: list[bool] = []
        self._option_visible: dict[Ref, bool] = {}
        self._option_kind: dict[Ref, OptionKind] = {}
        self._flags: dict[str, str] = {}
        self._current = 0

        self._recompute()
        if apply_defaults:
            self._apply_defaults()
        self._current = self._first_visible(0, 1) or 0

    @classmethod
    def from_refs(
        cls,
        installer: Installer,
        refs: Iterable[OptionRef | Ref],
        default_flags: Mapping[str, str] | None = None,
        context: EvaluationContext | None = None,
    ) -> "SelectionState":
        """Build a state pre-seeded with previously chosen options."""
        state = cls(installer, default_flags, context, apply_defaults=False)
        for ref in refs:
            key = ref.as_tuple() if isinstance(ref, OptionRef) else tuple(ref)
            state._lookup(*key)
            state._selected.add(key)
        state._recompute()
        return state

    # -- derived state -----------------------------------------------------

    def _recompute(self) -> None:
        steps = self.installer.steps
        flags = dict(self._base_flags)
        self._step_visible = []
        self._option_visible = {}
        self._option_kind = {}

        for s, step in enumerate(steps):
            # Step s only sees flags from steps before it.
            before = dict(flags)
            self._step_visible.append(evaluate(step.visible, before, self.context))
            for g, group in enumerate(step.groups):
                for o, option in enumerate(group.options):
                    ref = (s, g, o)
                    self._option_visible[ref] = evaluate(option.visible, before, self.context)
                    self._option_kind[ref] = option.requirement(before, self.context)
                self._enforce_forced(s, g, group)

            if not self._step_visible[s]:
                continue
            for ref in sorted(r for r in self._selected if r[0] == s):
                if self._option_visible.get(ref, False):
                    for name, value in self._lookup(*ref).flags:
                        flags[name] = value

        self._flags = flags

    def _enforce_forced(self, s: int, g: int, group: Group) -> None:
        forced = [
            (s, g, o)
            for o in range(len(group.options))
            if self._option_visible[(s, g, o)] and _is_forced(group, self._option_kind[(s, g, o)])
        ]
        if not forced:
            return
        if group.kind.is_radio:
            for o in range(len(group.options)):
                if (s, g, o) not in forced:
                    self._selected.discard((s, g, o))
        self._selected.update(forced)

    def _apply_defaults(self) -> None:
        for s, step in enumerate(self.installer.steps):
            for g, group in enumerate(step.groups):
                visible = [
                    (s, g, o) for o in range(len(group.options)) if self._option_visible[(s, g, o)]
                ]
                if not visible or group.kind is GroupKind.ALL:
                    continue
                preferred = [
                    ref
                    for ref in visible
                    if self._option_kind[ref] in (OptionKind.REQUIRED, OptionKind.RECOMMENDED)
                ]
                if group.kind.is_radio:
                    preferred = preferred[:1]
                self._selected.update(preferred)
                if group.kind in (GroupKind.EXACTLY_ONE, GroupKind.AT_LEAST_ONE) and not any(
                    ref in self._selected for ref in visible
                ):
                    self._selected.add(visible[0])
            # Later steps must see this step's defaults.
            self._recompute()

    # -- queries -----------------------------------------------------------

    def _lookup(self, step: int, group: int, option: int) -> OptionItem:
        if min(step, group, option) < 0:
            raise SelectionError(f"no option at {step}/{group}/{option}")
        try:
            return self.installer.option(step, group, option)
        except IndexError:
            raise SelectionError(f"no option at {step}/{group}/{option}")

    @property
    def flags(self) -> dict[str, str]:
        return dict(self._flags)

    def step_visible(self, step: int) -> bool:
        return self._step_visible[step]

    def option_visible(self, step: int, group: int, option: int) -> bool:
        return self._step_visible[step] and self._option_visible[(step, group, option)]

    def option_kind(self, step: int, group: int, option: int) -> OptionKind:
        return self._option_kind[(step, group, option)]

    def is_selected(self, step: int, group: int, option: int) -> bool:
        return (step, group, option) in self._selected

    def is_active(self, step: int, group: int, option: int) -> bool:
        """Selected, visible and in a visible step."""
        return self.is_selected(step, group, option) and self.option_visible(step, group, option)

    def is_locked(self, step: int, group: int, option: int) -> bool:
        group_obj = self.installer.steps[step].groups[group]
        return self._option_visible[(step, group, option)] and _is_forced(
            group_obj, self._option_kind[(step, group, option)]
        )

    def selected_refs(self) -> list[OptionRef]:
        """Active selections in step/group/option order."""
        return [OptionRef(*ref) for ref in sorted(self._selected) if self.is_active(*ref)]

    def group_satisfied(self, step: int, group: int) -> bool:
        group_obj = self.installer.steps[step].groups[group]
        available = count = 0
        for o in range(len(group_obj.options)):
            if self._option_visible[(step, group, o)]:
                available += 1
                if (step, group, o) in self._selected:
                    count += 1
        return group_obj.kind.accepts(count, available)

    def step_status(self, step: int) -> StepStatus:
        if not self._step_visible[step]:
            return StepStatus.HIDDEN
        groups = self.installer.steps[step].groups
        if all(self.group_satisfied(step, g) for g in range(len(groups))):
            return StepStatus.COMPLETE
        return StepStatus.INCOMPLETE

    def violations(self) -> list[ConstraintViolation]:
        found = []
        if not evaluate(self.installer.module_condition, self._base_flags, self.context):
            found.append(
                ConstraintViolation(
                    "",
                    "",
                    "Installer requirements are not met: "
                    f"{describe(self.installer.module_condition)}",
                )
            )
        for s, step in enumerate(self.installer.steps):
            if not self._step_visible[s]:
                continue
            for g, group in enumerate(step.groups):
                if not self.group_satisfied(s, g):
                    found.append(
                        ConstraintViolation(
                            step.name,
                            group.name,
                            f"Select {group.kind.requirement_text()} in group '{group.name}'",
                        )
                    )
        return found

    def is_commit_eligible(self) -> bool:
        return not self.violations()

    # -- navigation --------------------------------------------------------

    def _first_visible(self, start: int, direction: int) -> int | None:
        index = start
        while 0 <= index < len(self._step_visible):
            if self._step_visible[index]:
                return index
            index += direction
        return None

    @property
    def current_step(self) -> int | None:
        """Index of the current step, skipping forward past hidden steps."""
        if not self.installer.steps:
            return None
        found = self._first_visible(self._current, 1)
        if found is None:
            found = self._first_visible(self._current, -1)
        return found

    def next_step(self) -> int | None:
        """Advance to the next visible step; None when already on the last one."""
        current = self.current_step
        if current is None:
            return None
        found = self._first_visible(current + 1, 1)
        if found is not None:
            self._current = found
        return found

    def previous_step(self) -> int | None:
        current = self.current_step
        if current is None:
            return None
        found = self._first_visible(current - 1, -1)
        if found is not None:
            self._current = found
        return found

    # -- mutation ----------------------------------------------------------

    def toggle(self, step: int, group: int, option: int) -> None:
        group_obj = self._group_for(step, group, option)
        selected = (step, group, option) in self._selected
        if selected and group_obj.kind is GroupKind.EXACTLY_ONE:
            return
        self.set_selected(step, group, option, not selected)

    def set_selected(self, step: int, group: int, option: int, selected: bool) -> None:
        item = self._lookup(step, group, option)
        group_obj = self._group_for(step, group, option)
        ref = (step, group, option)

        if not self.option_visible(step, group, option):
            raise SelectionError(f"option '{item.name}' is not available")
        if selected == (ref in self._selected):
            return

        if not selected:
            if self.is_locked(step, group, option):
                raise SelectionError(f"option '{item.name}' is required and cannot be deselected")
            self._selected.discard(ref)
        else:
            if group_obj.kind.is_radio:
                others = [
                    (step, group, o)
                    for o in range(len(group_obj.options))
                    if o != option and (step, group, o) in self._selected
                ]
                for other in others:
                    if self.is_locked(*other):
                        name = self._lookup(*other).name
                        raise SelectionError(
                            f"option '{name}' is required in group '{group_obj.name}' "
                            f"and cannot be replaced"
                        )
                self._selected.difference_update(others)
            self._selected.add(ref)

        _logging.debug(
            f"{'Selected' if selected else 'Deselected'} '{item.name}' "
            f"in group '{group_obj.name}'"
        )
        self._recompute()

    def _group_for(self, step: int, group: int, option: int) -> Group:
        self._lookup(step, group, option)
        return self.installer.steps[step].groups[group]

    # -- presentation ------------------------------------------------------

    def view(self) -> WizardView:
        steps = []
        for s, step in enumerate(self.installer.steps):
            groups = []
            for g, group in enumerate(step.groups):
                options = tuple(
                    OptionView(
                        ref=OptionRef(s, g, o),
                        name=option.name,
                        description=option.description,
                        image=option.image,
                        kind=self._option_kind[(s, g, o)],
                        visible=self._option_visible[(s, g, o)],
                        selected=(s, g, o) in self._selected,
                        locked=self.is_locked(s, g, o),
                    )
                    for o, option in enumerate(group.options)
                )
                groups.append(
                    GroupView(
                        index=g,
                        name=group.name,
                        kind=group.kind,
                        options=options,
                        satisfied=self.group_satisfied(s, g),
                    )
                )
            steps.append(
                StepView(index=s, name=step.name, status=self.step_status(s), groups=tuple(groups))
            )

        return WizardView(
            installer_name=self.installer.display_name,
            steps=tuple(steps),
            current_step=self.current_step,
            commit_eligible=self.is_commit_eligible(),
            flags=tuple(sorted(self._flags.items())),
            violations=tuple(str(v) for v in self.violations()),
        )


__all__ = [
    "StepStatus",
    "OptionView",
    "GroupView",
    "StepView",
    "WizardView",
    "SelectionState",
]
