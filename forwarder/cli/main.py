"""Problem forwarder CLI.

Usage:
    forwarder run               Poll Dynatrace and forward problems (foreground)
    forwarder run --background  Same, detached, with a pid file beside the config
    forwarder stop              Stop the background forwarder
    forwarder clear-cache       Forget every tracked problem
    forwarder stats             Show cache and forward statistics
    forwarder test-dynatrace    Check the Dynatrace API connection
    forwarder test-connectors   Send a test problem to every connector

Every command accepts `--config/-c PATH`, before or after the command name.
"""

import logging
import os
import signal
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import NoReturn, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from forwarder.application.services import admin_service
from forwarder.application.services.forwarding_service import ForwardingEngine
from forwarder.application.services.scheduler import CycleScheduler
from forwarder.core.config import ForwarderConfig, load_config, settings
from forwarder.core.errors import ForwarderError
from forwarder.core.logging import setup_logging
from forwarder.utils import process

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="forwarder",
    help="Forward Dynatrace problems to HTTP connectors",
    no_args_is_help=True,
)

console = Console()

# --- Global state ---
_config_path: Optional[str] = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", envvar="CONFIG_PATH", help="Path to the YAML config file"
    ),
):
    """Dynatrace problem forwarder."""
    global _config_path
    _config_path = config


def _config_option():
    return typer.Option(None, "--config", "-c", help="Path to the YAML config file")


def _use_config(config: Optional[str]) -> None:
    """A `-c` given after the command name overrides the global one."""
    global _config_path
    if config:
        _config_path = config


def _config_file() -> Path:
    return Path(_config_path or settings.CONFIG_PATH)


def _fail(message: str) -> NoReturn:
    console.print(f"[red]Error:[/red] {escape(message)}")
    raise typer.Exit(1)


def _load() -> ForwarderConfig:
    try:
        cfg = load_config(_config_file())
    except ForwarderError as e:
        _fail(str(e))
    setup_logging(settings.LOG_LEVEL or cfg.logging.level, settings.LOG_FORMAT or cfg.logging.format)
    return cfg


def _engine(cfg: ForwarderConfig) -> ForwardingEngine:
    try:
        return ForwardingEngine(cfg)
    except ForwarderError as e:
        _fail(str(e))


def _format_ts(epoch: Optional[int]) -> str:
    if epoch is None:
        return "never"
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


# --- Lifecycle ---


@app.command()
def run(
    background: bool = typer.Option(
        False, "--background", "--nohup", help="Run detached from the terminal"
    ),
    config: Optional[str] = _config_option(),
):
    """Start polling and forwarding."""
    _use_config(config)
    cfg = _load()
    config_file = _config_file()
    pid_file = process.pid_file_for(config_file)

    if background:
        argv = [sys.executable, "-m", "forwarder", "--config", str(config_file.resolve()), "run"]
        try:
            pid = process.start_background(argv, pid_file, process.log_file_for(config_file))
        except ForwarderError as e:
            _fail(str(e))
        console.print(f"[green]Forwarder started in background[/green] (PID {pid})")
        console.print(f"  logs: {process.log_file_for(config_file)}")
        console.print(f"  stop with: forwarder --config {config_file} stop")
        return

    engine = _engine(cfg)
    try:
        process.claim_pid_file(pid_file)
        _ = engine.upstream
    except ForwarderError as e:
        _fail(str(e))

    stop = threading.Event()

    def _on_signal(signum, _frame):
        _log.info("Received signal %d, shutting down...", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    console.print(
        f"[bold]Forwarding problems to {len(engine.connectors)} connector(s) "
        f"every {cfg.polling.interval_seconds}s[/bold]"
    )
    scheduler = CycleScheduler(engine.poll_and_forward, cfg.polling.interval_seconds)
    try:
        scheduler.run_forever(stop)
    finally:
        if process.read_pid_file(pid_file) == os.getpid():
            process.remove_pid_file(pid_file)
    console.print("Forwarder stopped.")


@app.command()
def stop(config: Optional[str] = _config_option()):
    """Stop the background forwarder."""
    _use_config(config)
    pid_file = process.pid_file_for(_config_file())
    if process.stop_background(pid_file):
        console.print("[green]Forwarder stopped.[/green]")
    else:
        console.print("[yellow]Forwarder is not running.[/yellow]")


# --- Administration ---


@app.command("clear-cache")
def clear_cache(
    confirm: bool = typer.Option(False, "--confirm", help="Skip the confirmation prompt"),
    config: Optional[str] = _config_option(),
):
    """Forget every tracked problem: all of them are forwarded again on the next poll."""
    _use_config(config)
    cfg = _load()
    if not confirm:
        typer.confirm(
            "This will clear all cached problems and they will be re-forwarded. Continue?",
            abort=True,
        )
    engine = _engine(cfg)
    try:
        n = admin_service.clear_state(engine)
    except ForwarderError as e:
        _fail(str(e))
    console.print(f"[green]Cleared {n} problem(s) from cache.[/green]")


@app.command()
def stats(config: Optional[str] = _config_option()):
    """Show cache and forward statistics."""
    _use_config(config)
    cfg = _load()
    engine = _engine(cfg)
    try:
        s = admin_service.statistics(engine)
    except ForwarderError as e:
        _fail(str(e))

    table = Table(title="Problem forwarder statistics")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Total problems", str(s.total_problems))
    table.add_row("Open problems", str(s.open_problems))
    table.add_row("Closed problems", str(s.closed_problems))
    for status, count in sorted(s.by_status.items()):
        table.add_row(f"  status {status}", str(count))
    table.add_row("Forward attempts", str(s.total_forwards))
    table.add_row("  success", str(s.successful_forwards))
    table.add_row("  retrying", str(s.retrying_forwards))
    table.add_row("  failed", str(s.failed_forwards))
    table.add_row("Last successful poll", _format_ts(s.last_successful_poll_at))
    console.print(table)


@app.command("test-dynatrace")
def test_dynatrace(config: Optional[str] = _config_option()):
    """Check the connection to the Dynatrace Problems API."""
    _use_config(config)
    cfg = _load()
    engine = _engine(cfg)
    console.print(f"Testing Dynatrace API connection to {cfg.dynatrace.problems_url()}...")
    try:
        total = admin_service.test_dynatrace(engine)
    except ForwarderError as e:
        _fail(f"Dynatrace connection failed: {e}")
    console.print(f"[green]Connected.[/green] Found {total} problem(s).")


@app.command("test-connectors")
def test_connectors(config: Optional[str] = _config_option()):
    """Send a synthetic test problem to every configured connector."""
    _use_config(config)
    cfg = _load()
    engine = _engine(cfg)
    results = admin_service.test_connectors(engine)

    failed = 0
    for r in results:
        if r.ok:
            console.print(f"  [green]✓[/green] {r.connector_name} (HTTP {r.response_code})")
        else:
            failed += 1
            console.print(f"  [red]✗[/red] {r.connector_name}: {escape(r.error_message or '')}")

    if failed:
        console.print(f"[red]{failed} of {len(results)} connector(s) failed.[/red]")
        raise typer.Exit(1)
    console.print(f"[green]All {len(results)} connector(s) OK.[/green]")
