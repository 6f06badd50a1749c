"""Run commands for the sync agent.

``run`` keeps the agent on its timer until interrupted; ``once`` executes a
single cycle in the foreground and reports the result.
"""

import signal
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer

from src.cli.utils import (
    DEFAULT_CONFIG_PATH,
    apply_logging,
    display_error,
    display_info,
    display_success,
    display_warning,
    handle_errors,
    load_config,
    logger,
)
from src.observability.metrics import start_metrics_server

if TYPE_CHECKING:
    from src.orchestration import CycleResult


@handle_errors
def run_command(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to sync config YAML",
    ),
    interval: Optional[int] = typer.Option(
        None, "--interval", "-i", help="Override seconds between cycles"
    ),
    metrics_port: Optional[int] = typer.Option(
        None, "--metrics-port", "-p", help="Serve Prometheus metrics on this port"
    ),
):
    """Run the sync agent daemon.

    Cycles run every interval until Ctrl+C or SIGTERM. An in-flight cycle
    is allowed to finish before the process exits.

    Examples:
        python -m src.cli run
        python -m src.cli run --interval 300 --metrics-port 9100
    """
    from src.orchestration import SyncVideoAgent

    config = load_config(config_path)
    apply_logging(config)

    agent = SyncVideoAgent.from_config(config)
    if interval is not None:
        agent.arm_timer(interval)

    if metrics_port is not None:
        start_metrics_server(metrics_port)
        display_info(f"Metrics endpoint: http://localhost:{metrics_port}/metrics")

    typer.secho("Starting video sync agent", fg=typer.colors.CYAN, bold=True)
    typer.echo(f"  Config: {config_path}")
    typer.echo(f"  Output folder: {config.agent.output_folder}")
    typer.echo(f"  Interval: {agent.interval_seconds}s")
    if not agent.is_enabled:
        display_warning("  Agent is disabled; cycles will be skipped")
    typer.echo("\nPress Ctrl+C to stop.\n")

    stop_event = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())

    agent.start()
    try:
        _wait_for_shutdown(stop_event)
    except KeyboardInterrupt:
        display_warning("\nInterrupted, finishing current cycle...")
    finally:
        agent.stop()
        agent.hub.close()

    display_success("Sync agent stopped.")


def _wait_for_shutdown(stop_event: threading.Event) -> None:
    while not stop_event.wait(1.0):
        pass
    logger.info("shutdown_signal_received")


@handle_errors
def once_command(
    config_path: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        help="Path to sync config YAML",
    ),
    force: bool = typer.Option(
        False, "--force", "-f", help="Run even if the agent is disabled"
    ),
):
    """Run one sync cycle in the foreground."""
    from src.orchestration import SyncVideoAgent

    config = load_config(config_path)
    apply_logging(config)

    agent = SyncVideoAgent.from_config(config)
    if force:
        agent.enable()

    display_info(f"Syncing into {config.agent.output_folder} ...")
    try:
        result = agent.execute()
    finally:
        agent.hub.close()

    if result is None:
        if agent.is_enabled:
            display_warning("Cycle skipped: another cycle is already running.")
        else:
            display_warning("Cycle skipped: agent is disabled (use --force to run).")
        return

    _display_result(result)
    if result.failed:
        raise typer.Exit(code=1)


def _display_result(result: "CycleResult") -> None:
    typer.echo("")
    if result.failed:
        display_error(f"Sync cycle failed: {result.error}")
    else:
        typer.secho("Sync cycle completed!", fg=typer.colors.GREEN, bold=True)

    typer.echo(f"  Pages processed: {result.pages_processed}")
    typer.echo(f"  Items attempted: {result.items_attempted}")
    typer.echo(f"  Items succeeded: {result.items_succeeded}")
    typer.echo(f"  Items already present: {result.items_skipped}")
    typer.echo(f"  Checkpoint: {result.new_checkpoint.token}")

    if result.failed_items:
        display_warning(f"\nFailed items: {len(result.failed_items)}")
        for item_id in result.failed_items:
            typer.echo(f"  - {item_id}")
