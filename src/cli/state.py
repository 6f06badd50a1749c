"""Checkpoint commands.

``status`` shows where the agent will resume; ``reset`` clears or rewinds
the checkpoint so the next cycle re-enumerates the catalog.
"""

import json
from pathlib import Path
from typing import Optional

import typer

from src.cli.utils import (
    DEFAULT_CONFIG_PATH,
    display_success,
    display_warning,
    handle_errors,
    load_config,
)
from src.models.sync import Checkpoint
from src.services.cursor_store import FileCursorStore


@handle_errors
def status_command(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to sync config YAML",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print status as JSON"),
):
    """Show the stored checkpoint and agent settings."""
    config = load_config(config_path)
    checkpoint = FileCursorStore(config.state.state_file).get()

    status = {
        "checkpoint": None if checkpoint.is_epoch else checkpoint.token,
        "enabled": config.agent.enabled,
        "interval_seconds": config.agent.interval_seconds,
        "output_folder": str(config.agent.output_folder),
        "state_file": str(config.state.state_file),
        "catalog_url": str(config.catalog.base_url),
        "has_credentials": config.credentials.token is not None,
        "webhook_enabled": config.notifications.webhook.enabled,
    }

    if as_json:
        typer.echo(json.dumps(status, indent=2))
        return

    typer.secho("Video sync status", bold=True)
    if checkpoint.is_epoch:
        display_warning("  Checkpoint: none (next cycle syncs the full catalog)")
    else:
        typer.echo(f"  Checkpoint: {checkpoint.token}")
    typer.echo(f"  Enabled: {'yes' if status['enabled'] else 'no'}")
    typer.echo(f"  Interval: {status['interval_seconds']}s")
    typer.echo(f"  Output folder: {status['output_folder']}")
    typer.echo(f"  State file: {status['state_file']}")
    typer.echo(f"  Catalog: {status['catalog_url']}")
    typer.echo(f"  Credentials: {'configured' if status['has_credentials'] else 'none'}")


@handle_errors
def reset_command(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to sync config YAML",
    ),
    to: Optional[str] = typer.Option(
        None, "--to", help="ISO-8601 timestamp to rewind the checkpoint to"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Clear the checkpoint, or set it to a given timestamp.

    Examples:
        python -m src.cli reset --yes
        python -m src.cli reset --to 2026-10-01T00:00:00Z
    """
    target: Optional[Checkpoint] = None
    if to is not None:
        try:
            target = Checkpoint.parse(to)
        except ValueError as e:
            raise typer.BadParameter(f"Invalid timestamp {to!r}: {e}", param_hint="--to")

    config = load_config(config_path)
    store = FileCursorStore(config.state.state_file)

    prompt = (
        f"Set checkpoint to {target.token}?"
        if target
        else "Clear checkpoint? The next cycle will sync the full catalog."
    )
    if not yes and not typer.confirm(prompt):
        display_warning("Aborted.")
        raise typer.Exit(code=1)

    if target is None:
        store.reset()
        display_success("Checkpoint cleared.")
    else:
        store.set(target)
        display_success(f"Checkpoint set to {target.token}.")
