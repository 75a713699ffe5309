"""CLI command definitions for modstage."""

import click

from modstage import __version__, setup_logging
from modstage.commands.config import config
from modstage.commands.deploy import deploy
from modstage.commands.inspect import inspect
from modstage.commands.install import install
from modstage.commands.plan import plan


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug output for troubleshooting")
@click.version_option(__version__, prog_name="modstage")
@click.pass_context
def cli(ctx, debug):
    """Install and deploy FOMOD mod packages deterministically."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    setup_logging(debug)


# Register all commands
cli.add_command(inspect)
cli.add_command(plan)
cli.add_command(install)
cli.add_command(deploy)
cli.add_command(config)

__all__ = ["cli"]


if __name__ == "__main__":
    cli()
