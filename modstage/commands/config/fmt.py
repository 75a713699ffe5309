"""Format config command implementation."""

import json
import sys
import uuid
from pathlib import Path

import click

from modstage import ConfigError, format_error
from modstage.config import load_config
from modstage.paths import get_config_path


@click.command(name="fmt")
@click.argument("file", required=False, type=click.Path(path_type=Path))
@click.option(
    "--write",
    "-w",
    is_flag=True,
    help="Overwrite the file instead of printing to stdout",
)
@click.pass_context
def config_fmt(ctx, file: Path | None, write: bool):
    """Format a config file as strict JSON.

    Accepts trailing commas and // comments (or YAML for .yaml/.yml files).
    Comments are not preserved.

    FILE: Path to config file (default: ~/.config/modstage/config.json)
    """
    file_path = file or get_config_path(create=False)

    if not file_path.exists():
        click.echo(format_error(f"File not found: {file_path}"), err=True)
        sys.exit(1)

    try:
        data = load_config(file_path)
    except ConfigError as e:
        click.echo(format_error(str(e)), err=True)
        sys.exit(1)

    formatted = json.dumps(data, indent=2, sort_keys=False)

    if not write:
        click.echo(formatted)
        return

    # Write atomically with unique temp file name
    temp_path = file_path.with_suffix(f".tmp.{uuid.uuid4().hex[:8]}")
    try:
        with open(temp_path, "w", encoding="utf-8") as f:
            f.write(formatted)
            f.write("\n")
        temp_path.replace(file_path)
    except OSError as e:
        if temp_path.exists():
            temp_path.unlink()
        click.echo(format_error(f"Error writing file: {e}"), err=True)
        sys.exit(1)
    click.echo(f"Formatted {file_path}")
