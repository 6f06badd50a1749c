"""Video sync CLI Package.

Provides command-line interface for the video sync agent.

Usage:
    python -m src.cli run --config config/sync_config.yaml
    python -m src.cli once
    python -m src.cli status
    python -m src.cli reset --to 2026-10-01T00:00:00Z
    python -m src.cli validate config/sync_config.yaml
"""

import typer

from src.cli.run import once_command, run_command
from src.cli.state import reset_command, status_command
from src.cli.validate import validate_command

# Create main app
app = typer.Typer(help="Video sync agent: mirror new catalog videos to local storage")

app.command(name="run")(run_command)
app.command(name="once")(once_command)
app.command(name="status")(status_command)
app.command(name="reset")(reset_command)
app.command(name="validate")(validate_command)

__all__ = [
    "app",
    "run_command",
    "once_command",
    "status_command",
    "reset_command",
    "validate_command",
]
