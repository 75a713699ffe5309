"""Inspect command implementation."""

import json
from pathlib import Path

import click

from modstage.errors import ModstageError
from modstage.installer import (
    Installer,
    SelectionState,
    describe,
    lint_installer,
    load_installer,
)
from modstage.commands.utils import fail


def installer_to_dict(installer: Installer) -> dict:
    return {
        "module_name": installer.display_name,
        "digest": installer.digest,
        "info": None
        if installer.info is None
        else {
            "name": installer.info.name,
            "author": installer.info.author,
            "version": installer.info.version,
            "website": installer.info.website,
            "description": installer.info.description,
        },
        "steps": [
            {
                "name": step.name,
                "visible": describe(step.visible),
                "groups": [
                    {
                        "name": group.name,
                        "type": group.kind.value,
                        "options": [
                            {
                                "name": option.name,
                                "type": option.kind.value,
                                "visible": describe(option.visible),
                                "flags": dict(option.flags),
                                "files": len(option.rules),
                            }
                            for option in group.options
                        ],
                    }
                    for group in step.groups
                ],
            }
            for step in installer.steps
        ],
        "required_files": len(installer.required_rules),
        "conditional_files": len(installer.conditional_rules),
    }


def render_installer(installer: Installer) -> str:
    state = SelectionState(installer)
    lines = [f"Installer: {installer.display_name}"]
    if installer.info and installer.info.author:
        lines.append(f"Author: {installer.info.author}")
    if installer.info and installer.info.version:
        lines.append(f"Version: {installer.info.version}")
    lines.append(f"Contents: {installer.summary()}")
    if not installer.requires_wizard:
        lines.append("No wizard steps: required and conditional files install directly.")

    for s, step in enumerate(installer.steps):
        lines.append("")
        header = f"Step {s + 1}: {step.name}"
        if not state.step_visible(s):
            header += f"  [hidden: {describe(step.visible)}]"
        lines.append(header)
        for g, group in enumerate(step.groups):
            lines.append(f"  {group.name} (select {group.kind.requirement_text()})")
            for o, option in enumerate(group.options):
                mark = "x" if state.is_selected(s, g, o) else " "
                lines.append(f"    [{mark}] {option.name}  <{option.kind.value}>")
    return "\n".join(lines)


@click.command()
@click.argument("staging", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print the parsed installer as JSON")
@click.pass_context
def inspect(ctx, staging: Path, as_json: bool):
    """Show the installer found in an extracted package.

    STAGING: Directory the package archive was extracted into
    """
    try:
        result = load_installer(staging)
    except ModstageError as e:
        fail(str(e))

    installer = result.installer
    findings = lint_installer(installer)

    if as_json:
        data = installer_to_dict(installer)
        data["warnings"] = [str(w) for w in result.warnings]
        data["lint"] = [f"{f.location}: {f.message}" for f in findings]
        click.echo(json.dumps(data, indent=2))
        return

    click.echo(render_installer(installer))
    if result.warnings:
        click.echo("\nWarnings:")
        for warning in result.warnings:
            click.echo(f"  ⚠️  {warning}")
    if findings:
        click.echo("\nLint:")
        for finding in findings:
            click.echo(f"  • {finding.location}: {finding.message}")
