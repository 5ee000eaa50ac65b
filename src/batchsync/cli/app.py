"""
Root Typer application for the batchsync CLI.

    batchsync run myproject.syncs:nightly --echo
    batchsync status nightly
    batchsync unlock nightly --log-dir /var/log/syncs/nightly
"""

from __future__ import annotations

import importlib
import json
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from batchsync.core.errors import ConfigurationError, OverlapError
from batchsync.core.logging import configure_logging
from batchsync.core.settings import get_settings
from batchsync.execution.lock import LockInfo, lock_path_for, release_lock
from batchsync.orchestration.sync import RunReport, Sync

console = Console()
err_console = Console(stderr=True)

EXIT_ABORTED = 1
EXIT_CONFIGURATION = 2
EXIT_OVERLAP = 3

app = typer.Typer(
    name="batchsync",
    help="batchsync: run and inspect multi-step batch synchronizations.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from batchsync import __version__

        typer.echo(f"batchsync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("WARNING", "--log-level", help="Level for library diagnostics."),
) -> None:
    """batchsync CLI: run syncs and manage their locks."""
    configure_logging(level=log_level)


# ── Helpers ──────────────────────────────────────────────────────────────


def load_sync(target: str) -> Sync:
    """Resolve ``package.module:attr`` to a Sync (or a zero-arg factory of one)."""
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise typer.BadParameter(f"expected 'module:attribute', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise typer.BadParameter(f"cannot import {module_name!r}: {e}") from e

    obj: Any = module
    for part in attr.split("."):
        obj = getattr(obj, part, None)
        if obj is None:
            raise typer.BadParameter(f"{module_name!r} has no attribute {attr!r}")
    if not isinstance(obj, Sync) and callable(obj):
        obj = obj()
    if not isinstance(obj, Sync):
        raise typer.BadParameter(f"{target!r} is not a Sync")
    return obj


def _log_dir(name: str, log_dir: Path | None) -> Path:
    return log_dir or get_settings().log_root / name


def render_report(report: RunReport) -> None:
    table = Table(title=f"Sync {report.name} ({report.env})")
    table.add_column("Step")
    table.add_column("Status")
    table.add_column("Message")
    colors = {"finished": "green", "skipped": "yellow", "failed": "red", "pending": "dim"}
    for record in report.steps:
        status = record.status.value
        table.add_row(record.identifier, f"[{colors[status]}]{status}[/{colors[status]}]", record.message)
    console.print(table)
    console.print(f"State: [bold]{report.state.value}[/bold]  elapsed {report.elapsed:.2f}s  log {report.log_file}")


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run")
def run_sync(
    target: str = typer.Argument(..., help="Sync to run, as 'package.module:attribute'"),
    allow_overlap: bool = typer.Option(False, "--allow-overlap", help="Do not check the lock."),
    profile_sql: bool = typer.Option(False, "--profile-sql", help="Log SQL statistics per step."),
    echo: bool = typer.Option(False, "--echo", help="Mirror the run log to stdout."),
    env: str | None = typer.Option(None, "--env", help="Environment label."),
    json_out: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """Run a sync once."""
    sync = load_sync(target)
    if allow_overlap:
        sync.allow_overlapping()
    if profile_sql:
        sync.profile_sql()
    if echo:
        sync.send_output_to_echo()
    if env:
        sync.set_env(env)

    try:
        report = sync.perform()
    except OverlapError as e:
        err_console.print(f"[bold red]Already running:[/bold red] {e.message}")
        raise typer.Exit(code=EXIT_OVERLAP) from e
    except ConfigurationError as e:
        err_console.print(f"[bold red]Configuration error:[/bold red] {e.message}")
        raise typer.Exit(code=EXIT_CONFIGURATION) from e

    if json_out:
        console.print_json(json.dumps(report.to_dict(), default=str))
    else:
        render_report(report)
    if report.aborted:
        raise typer.Exit(code=EXIT_ABORTED)


@app.command("status")
def status(
    name: str = typer.Argument(..., help="Sync name"),
    log_dir: Path | None = typer.Option(None, "--log-dir", help="Log directory of the sync."),
) -> None:
    """Show whether a sync is currently locked."""
    info = LockInfo.read(lock_path_for(_log_dir(name, log_dir), name))
    if info is None:
        console.print(f"[green]{name}[/green] is not running")
        return
    console.print(f"[yellow]{name}[/yellow] is locked: {info.path}")
    if info.pid is not None:
        console.print(f"  pid {info.pid} on {info.host}, since {info.acquired_at}")


@app.command("unlock")
def unlock(
    name: str = typer.Argument(..., help="Sync name"),
    log_dir: Path | None = typer.Option(None, "--log-dir", help="Log directory of the sync."),
) -> None:
    """Remove a lock left behind by a killed run."""
    directory = _log_dir(name, log_dir)
    if release_lock(directory, name):
        console.print(f"Removed lock for [bold]{name}[/bold]")
    else:
        err_console.print(f"No lock for {name} in {directory}")
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
