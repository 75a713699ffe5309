"""Interactive installer wizard.

Renders a ``SelectionState`` step by step with questionary prompts. The
wizard never decides anything itself: every answer is turned into
``set_selected`` calls and the state machine reports what is allowed.
"""

import sys

import click
import questionary
from prompt_toolkit.styles import Style

from modstage.errors import SelectionError
from modstage.installer import GroupKind, OptionKind, SelectionState, StepStatus
from modstage.installer.selection import GroupView, OptionView

WIZARD_STYLE = Style(
    [
        ("qmark", "fg:ansicyan bold"),
        ("question", "bold"),
        ("pointer", "fg:ansicyan bold"),
        ("highlighted", "fg:ansicyan bold"),
        ("selected", "fg:ansigreen"),
        ("disabled", "fg:ansibrightblack italic"),
        ("instruction", "fg:ansibrightblack"),
    ]
)

_KIND_MARKERS = {
    OptionKind.REQUIRED: " (required)",
    OptionKind.RECOMMENDED: " (recommended)",
    OptionKind.COULD_BE_USABLE: " (may not work)",
}

NONE_CHOICE = "__none__"


def _option_title(option: OptionView) -> str:
    return option.name + _KIND_MARKERS.get(option.kind, "")


def _group_question(group: GroupView) -> str:
    return f"{group.name} (select {group.kind.requirement_text()})"


def _ask_radio(state: SelectionState, step: int, group: GroupView) -> bool:
    options = [o for o in group.options if o.visible]
    current = next((o.ref for o in options if o.selected), None)
    locked = any(o.locked for o in options)

    choices = [
        questionary.Choice(
            title=_option_title(o),
            value=o.ref,
            description=o.description or None,
        )
        for o in options
    ]
    if group.kind is GroupKind.AT_MOST_ONE and not locked:
        choices.append(questionary.Choice(title="(none)", value=NONE_CHOICE))

    default = next((c for c in choices if c.value == current), None)
    answer = questionary.select(
        _group_question(group),
        choices=choices,
        default=default,
        style=WIZARD_STYLE,
    ).ask()
    if answer is None:
        return False

    if answer == NONE_CHOICE:
        if current is not None:
            state.set_selected(*current.as_tuple(), False)
    elif answer != current:
        state.set_selected(*answer.as_tuple(), True)
    return True


def _ask_checkbox(state: SelectionState, step: int, group: GroupView) -> bool:
    options = [o for o in group.options if o.visible]
    choices = [
        questionary.Choice(
            title=_option_title(o),
            value=o.ref,
            checked=o.selected,
            disabled="required" if o.locked else None,
            description=o.description or None,
        )
        for o in options
    ]
    answer = questionary.checkbox(
        _group_question(group),
        choices=choices,
        instruction="Space to toggle, Enter to confirm",
        style=WIZARD_STYLE,
    ).ask()
    if answer is None:
        return False

    wanted = set(answer) | {o.ref for o in options if o.locked}
    # Deselect first so AtLeastOne never dips through an invalid count mid-way.
    for option in options:
        if option.selected and option.ref not in wanted:
            state.set_selected(*option.ref.as_tuple(), False)
    for option in options:
        if not option.selected and option.ref in wanted:
            state.set_selected(*option.ref.as_tuple(), True)
    return True


def _run_step(state: SelectionState, step: int) -> bool:
    view = state.view().steps[step]
    click.echo(click.style(f"\n== {view.name} ==", bold=True))
    for group in view.groups:
        if not any(o.visible for o in group.options):
            continue
        ask = _ask_radio if group.kind.is_radio else _ask_checkbox
        try:
            if not ask(state, step, group):
                return False
        except SelectionError as e:
            click.echo(click.style(f"  {e}", fg="yellow"))
    return True


def run_wizard(state: SelectionState) -> bool:
    """Walk the user through every visible step.

    Returns:
        True when the user finished with a commit-eligible selection, False
        if they cancelled

    Raises:
        RuntimeError: If not running in a TTY
    """
    if not sys.stdin.isatty():
        raise RuntimeError("Interactive installer wizard requires a TTY")

    while True:
        step = state.current_step
        if step is None:
            return state.is_commit_eligible()

        if not _run_step(state, step):
            return False

        if state.step_status(step) is StepStatus.INCOMPLETE:
            for violation in state.violations():
                if violation.step_name == state.installer.steps[step].name:
                    click.echo(click.style(f"  {violation}", fg="red"))
            continue

        view = state.view()
        is_last = all(not s.visible for s in view.steps[step + 1:])
        actions = ["Finish" if is_last else "Next"]
        if any(s.visible for s in view.steps[:step]):
            actions.append("Back")
        actions.append("Cancel")

        action = questionary.select("Continue?", choices=actions, style=WIZARD_STYLE).ask()
        if action is None or action == "Cancel":
            return False
        if action == "Back":
            state.previous_step()
        elif action == "Finish":
            if state.is_commit_eligible():
                return True
            for violation in state.violations():
                click.echo(click.style(f"  {violation}", fg="red"))
        else:
            state.next_step()


__all__ = ["WIZARD_STYLE", "run_wizard"]
