"""Validate command for configuration files.

Validates configuration file syntax and semantics.
"""

from pathlib import Path

import typer

from src.cli.utils import display_error, display_success, handle_errors
from src.services.config_manager import ConfigManager


@handle_errors
def validate_command(
    config_path: Path = typer.Argument(..., help="Config file to validate"),
):
    """Validate configuration file syntax and semantics."""
    try:
        manager = ConfigManager(config_path=str(config_path))
        config = manager.load_config()
    except Exception as e:
        display_error(f"Validation failed: {e}")
        raise typer.Exit(code=1)

    display_success("Configuration is valid! ✅")
    typer.echo(f"  Catalog: {config.catalog.base_url}")
    typer.echo(f"  Output folder: {config.agent.output_folder}")
    typer.echo(f"  Interval: {config.agent.interval_seconds}s")
