"""Install command implementation."""

import logging
from pathlib import Path

import click

from modstage.config import load_settings
from modstage.errors import ExecError, ModstageError
from modstage.installer import JsonRecordStore, apply_plan, record_from_plan, render_plan
from modstage.commands.plan import prepare_plan, selection_options
from modstage.commands.utils import fail

_logging = logging.getLogger(__name__)


@click.command()
@selection_options
@click.option("--yes", "-y", is_flag=True, help="Apply without asking for confirmation")
@click.pass_context
def install(
    ctx,
    staging: Path,
    target: Path,
    package: str,
    profile: str | None,
    selects: tuple[str, ...],
    flags: tuple[str, ...],
    interactive: bool,
    reuse: bool,
    yes: bool,
):
    """Install a package into TARGET atomically.

    The plan is previewed first. On success the selection is stored so a
    later --reuse replays it without prompting.

    STAGING: Directory the package archive was extracted into
    TARGET: Directory to install the package into
    """
    try:
        settings = load_settings()
        plan = prepare_plan(
            staging, target, package, profile, selects, flags, interactive, reuse, settings
        )
    except (ModstageError, RuntimeError) as e:
        fail(str(e))

    if plan is None:
        click.echo("Cancelled.")
        return

    click.echo(render_plan(plan))
    click.echo("")
    if not yes and not click.confirm("Proceed with installation?", default=True):
        click.echo("Cancelled.")
        return

    try:
        manifest = apply_plan(plan)
    except ExecError as e:
        fail(f"{e}")

    click.echo(f"✅ Installed {len(manifest.files)} file(s) into {manifest.target_root}")

    try:
        JsonRecordStore(Path(settings.records_dir)).put(record_from_plan(plan))
    except ModstageError as e:
        click.echo(f"⚠️  Installed, but the selection could not be saved: {e}", err=True)
