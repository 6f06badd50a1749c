"""Shared CLI utilities.

Provides common functionality for all CLI commands.
"""

import functools
from pathlib import Path
from typing import Callable, TypeVar

import structlog
import typer

from src.models.config import SyncConfig
from src.observability.logging import configure_logging
from src.services.config_manager import ConfigManager, ConfigValidationError

# Configure structured logging
configure_logging(json_output=False)
logger = structlog.get_logger()

# Type variable for decorator
F = TypeVar("F", bound=Callable)

DEFAULT_CONFIG_PATH = "config/sync_config.yaml"


def load_config(config_path: Path) -> SyncConfig:
    """Load and validate configuration.

    Args:
        config_path: Path to configuration file.

    Returns:
        Validated SyncConfig.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    config_manager = ConfigManager(config_path=str(config_path))
    try:
        return config_manager.load_config()
    except ConfigValidationError as e:
        typer.secho(f"Configuration Error: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


def apply_logging(config: SyncConfig) -> None:
    """Reconfigure logging from the config file's logging section."""
    configure_logging(
        level=config.logging.level.value,
        json_output=config.logging.json_output,
    )


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling.

    Catches exceptions and displays user-friendly error messages.

    Args:
        func: Function to wrap.

    Returns:
        Wrapped function with error handling.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except Exception as e:
            logger.exception("command_failed")
            typer.secho(f"Error: {e}", fg=typer.colors.RED)
            raise typer.Exit(code=1)

    return wrapper  # type: ignore[return-value]


def display_success(message: str) -> None:
    typer.secho(message, fg=typer.colors.GREEN)


def display_warning(message: str) -> None:
    typer.secho(message, fg=typer.colors.YELLOW)


def display_error(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED)


def display_info(message: str) -> None:
    typer.secho(message, fg=typer.colors.CYAN)
