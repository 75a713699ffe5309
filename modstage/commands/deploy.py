"""Deploy command implementation."""

from pathlib import Path

import click

from modstage.config import DEPLOY_METHODS, load_settings
from modstage.deploy import DeployMethod, deploy_units
from modstage.errors import ModstageError
from modstage.commands.utils import fail, load_units_file


@click.command()
@click.argument("units_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.argument("game_root", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--method",
    "-m",
    type=click.Choice(DEPLOY_METHODS),
    help="How files are placed (default: deploy_method from config)",
)
@click.option("--data-dir", help="Data directory name under GAME_ROOT (default: from config)")
@click.option("--verbose", "-v", is_flag=True, help="List every shadowed file")
@click.pass_context
def deploy(ctx, units_file: Path, game_root: Path, method: str | None, data_dir: str | None, verbose: bool):
    """Deploy installed packages into a game directory.

    UNITS_FILE lists the packages to deploy as
    {"units": [{"name": ..., "path": ..., "priority": ..., "enabled": ...}]}.
    Higher priority wins conflicts. An empty list purges the deployment.

    GAME_ROOT: Game installation directory
    """
    try:
        settings = load_settings()
        units = load_units_file(units_file)
        report = deploy_units(
            units,
            game_root,
            data_dir=data_dir or settings.data_dir,
            method=DeployMethod(method or settings.deploy_method),
        )
    except ModstageError as e:
        fail(str(e))

    if report.purged:
        click.echo(f"✅ Purged deployment in {report.data_path}")
        return

    click.echo(
        f"✅ Deployed {report.files_deployed} file(s) from {len(report.units)} unit(s) "
        f"using {report.method.value}"
    )
    if report.overridden_files:
        click.echo(f"   {len(report.overridden_files)} game file(s) set aside while overridden")
    if report.loader_files:
        click.echo(f"   Loader files in game root: {', '.join(report.loader_files)}")
    if report.shadowed:
        click.echo(f"   {len(report.shadowed)} file(s) overridden by higher priority units")
        if verbose:
            for conflict in report.shadowed:
                click.echo(f"     {conflict.path}: {conflict.describe()}")
