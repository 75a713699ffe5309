"""Initialize config command implementation."""

import sys

import click

from modstage import format_error
from modstage.config import Settings, save_settings
from modstage.paths import get_config_path


@click.command(name="init")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Force re-initialization, overwriting existing config",
)
@click.pass_context
def config_init(ctx, force: bool):
    """Initialize or re-initialize the user config file.

    Writes ~/.config/modstage/config.json (or $MODSTAGE_CONFIG) with default
    settings. Use --force to overwrite an existing config (creates backup first).
    """
    config_path = get_config_path(create=False)

    if config_path.exists() and not force:
        click.echo(f"Config file already exists: {config_path}")
        click.echo("Use --force to re-initialize (creates backup first).")
        sys.exit(1)

    try:
        if config_path.exists():
            backup_path = config_path.with_name(config_path.name + ".bak")
            click.echo(f"Backing up existing config to {backup_path}...")
            config_path.rename(backup_path)
            click.echo("✅ Backup created")

        click.echo(f"Initializing config at {config_path}...")
        save_settings(Settings(), config_path)
    except OSError as e:
        click.echo(format_error(f"initialization failed: {e}"), err=True)
        sys.exit(1)

    click.echo("✅ Config initialized successfully")
