"""Plan command implementation."""

import logging
from pathlib import Path

import click

from modstage.config import Settings, load_settings
from modstage.errors import ModstageError
from modstage.installer import (
    InstallPlan,
    JsonRecordStore,
    SelectionState,
    compile_plan,
    load_installer,
    plan_from_record,
    record_key,
    render_plan,
    snapshot_owners,
)
from modstage.commands.utils import apply_option_specs, fail, parse_flag_assignments
from modstage.tui import run_wizard

_logging = logging.getLogger(__name__)


def selection_options(func):
    """Options shared by ``plan`` and ``install``."""
    decorators = [
        click.argument("staging", type=click.Path(exists=True, file_okay=False, path_type=Path)),
        click.argument("target", type=click.Path(file_okay=False, path_type=Path)),
        click.option("--package", "-p", required=True, help="Package name recorded as owner"),
        click.option("--profile", help="Profile the selection is stored under"),
        click.option(
            "--select",
            "-s",
            "selects",
            multiple=True,
            metavar="STEP/GROUP/OPTION",
            help="Choose an option (names or 0-based indices); repeatable",
        ),
        click.option(
            "--flag",
            "flags",
            multiple=True,
            metavar="NAME=VALUE",
            help="Preset a condition flag before the first step; repeatable",
        ),
        click.option("--interactive", "-i", is_flag=True, help="Run the installer wizard"),
        click.option("--reuse", is_flag=True, help="Replay the stored selection for this package"),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


def prepare_plan(
    staging: Path,
    target: Path,
    package: str,
    profile: str | None,
    selects: tuple[str, ...],
    flags: tuple[str, ...],
    interactive: bool,
    reuse: bool,
    settings: Settings,
) -> InstallPlan | None:
    """Parse, select and compile. Returns None if the wizard was cancelled."""
    result = load_installer(staging)
    for warning in result.warnings:
        click.echo(f"⚠️  {warning}", err=True)
    installer = result.installer
    profile = profile or settings.default_profile
    owners = snapshot_owners(target, package)

    if reuse:
        if selects or flags:
            raise click.UsageError("--reuse cannot be combined with --select or --flag")
        store = JsonRecordStore(Path(settings.records_dir))
        record = store.get(record_key(package, profile))
        if record is None:
            raise click.UsageError(f"no stored selection for '{record_key(package, profile)}'")
        _logging.info(f"Replaying selection recorded at {record.timestamp}")
        return plan_from_record(installer, record, staging, target, owners=owners)

    state = SelectionState(installer, default_flags=parse_flag_assignments(flags))
    apply_option_specs(state, selects)

    if interactive and installer.requires_wizard:
        if not run_wizard(state):
            return None

    return compile_plan(state, staging, target, package, profile=profile, owners=owners)


@click.command()
@selection_options
@click.option("--json", "as_json", is_flag=True, help="Print the plan as JSON")
@click.pass_context
def plan(
    ctx,
    staging: Path,
    target: Path,
    package: str,
    profile: str | None,
    selects: tuple[str, ...],
    flags: tuple[str, ...],
    interactive: bool,
    reuse: bool,
    as_json: bool,
):
    """Preview what installing a package would do. Nothing is written.

    STAGING: Directory the package archive was extracted into
    TARGET: Directory the package would be installed into
    """
    try:
        settings = load_settings()
        compiled = prepare_plan(
            staging, target, package, profile, selects, flags, interactive, reuse, settings
        )
    except (ModstageError, RuntimeError) as e:
        fail(str(e))

    if compiled is None:
        click.echo("Cancelled.")
        return
    click.echo(compiled.to_json() if as_json else render_plan(compiled))
