"""Shared utility functions for commands."""

import sys
from pathlib import Path

import click

from modstage import format_error
from modstage.config import load_config
from modstage.deploy import DeploymentUnit
from modstage.errors import ConfigError, SelectionError, format_field_error
from modstage.installer import Installer, SelectionState


def fail(message: str) -> None:
    """Print a formatted error and exit with status 1."""
    click.echo(format_error(message), err=True)
    sys.exit(1)


def parse_flag_assignments(values: tuple[str, ...]) -> dict[str, str]:
    """Parse ``NAME=VALUE`` pairs; an empty value is allowed.

    Raises:
        click.BadParameter: If an entry has no '='
    """
    flags = {}
    for item in values:
        name, sep, value = item.partition("=")
        if not sep or not name.strip():
            raise click.BadParameter(f"'{item}' must look like NAME=VALUE", param_hint="--flag")
        flags[name.strip()] = value
    return flags


def _match(names: list[str], wanted: str, what: str) -> int:
    lowered = wanted.strip().casefold()
    for index, name in enumerate(names):
        if name.casefold() == lowered:
            return index
    if wanted.strip().isdigit() and int(wanted) < len(names):
        return int(wanted)
    raise SelectionError(
        f"no {what} named '{wanted}' (available: {', '.join(names) or 'none'})"
    )


def resolve_option_spec(installer: Installer, spec: str) -> tuple[int, int, int]:
    """Resolve ``STEP/GROUP/OPTION`` (names or 0-based indices) to indices."""
    parts = spec.split("/")
    if len(parts) != 3:
        raise SelectionError(f"'{spec}' must look like STEP/GROUP/OPTION")
    s = _match([st.name for st in installer.steps], parts[0], "step")
    step = installer.steps[s]
    g = _match([gr.name for gr in step.groups], parts[1], f"group in step '{step.name}'")
    group = step.groups[g]
    o = _match([op.name for op in group.options], parts[2], f"option in group '{group.name}'")
    return (s, g, o)


def apply_option_specs(state: SelectionState, specs: tuple[str, ...]) -> None:
    """Make each mentioned group select exactly the listed options.

    Groups that are not mentioned keep their defaults. Steps are handled in
    order so later steps see the flags set by earlier choices.
    """
    by_group: dict[tuple[int, int], list[int]] = {}
    for spec in specs:
        s, g, o = resolve_option_spec(state.installer, spec)
        by_group.setdefault((s, g), []).append(o)

    for (s, g), wanted in sorted(by_group.items()):
        group = state.installer.steps[s].groups[g]
        for o in range(len(group.options)):
            if o not in wanted and state.is_selected(s, g, o) and not state.is_locked(s, g, o):
                if state.option_visible(s, g, o):
                    state.set_selected(s, g, o, False)
        for o in wanted:
            state.set_selected(s, g, o, True)


def load_units_file(path: Path) -> list[DeploymentUnit]:
    """Read a units file: ``{"units": [{name, path, priority, enabled}]}``.

    Relative unit paths are resolved against the units file's directory.
    Disabled units are skipped.
    """
    data = load_config(path)
    entries = data.get("units")
    if not isinstance(entries, list):
        raise ConfigError(format_field_error("Units file", "units", "must be a list"))

    units = []
    for i, entry in enumerate(entries):
        entity = f"units[{i}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{entity} must be an object")
        for field in ("name", "path"):
            if not isinstance(entry.get(field), str) or not entry[field].strip():
                raise ConfigError(format_field_error(entity, field, "is required"))
        priority = entry.get("priority", i)
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise ConfigError(format_field_error(entity, "priority", "must be an integer"))
        if not entry.get("enabled", True):
            continue
        root = Path(entry["path"]).expanduser()
        if not root.is_absolute():
            root = path.parent / root
        if not root.is_dir():
            raise ConfigError(format_field_error(entity, "path", f"is not a directory: {root}"))
        units.append(DeploymentUnit.from_directory(entry["name"], root, priority))
    return units


__all__ = [
    "fail",
    "parse_flag_assignments",
    "resolve_option_spec",
    "apply_option_specs",
    "load_units_file",
]
