"""Command line interface for the Asana / Google Tasks bridge."""

import asyncio
import sys

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from gtasks_bridge.asana.client import AsanaClient
from gtasks_bridge.auth.credentials import CredentialStore, GoogleCredentialManager
from gtasks_bridge.config import Settings, get_settings
from gtasks_bridge.database.session import cleanup_db_connections
from gtasks_bridge.database.store import CorrelationStore
from gtasks_bridge.errors import BridgeError
from gtasks_bridge.google_tasks.client import GoogleTasksClient
from gtasks_bridge.infrastructure.pid_manager import PIDLockError, PIDManager
from gtasks_bridge.sync.engine import CycleReport, ReconciliationEngine
from gtasks_bridge.sync.scheduler import SyncScheduler
from gtasks_bridge.utils.logging_config import configure_logging
from gtasks_bridge.utils.shutdown import ShutdownHandler, get_shutdown_handler

console = Console()


def _load_settings() -> Settings:
    try:
        settings = get_settings()
    except ValidationError as e:
        console.print("[red]Invalid configuration:[/red]")
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            console.print(f"  • {field}: {error['msg']}")
        sys.exit(2)
    configure_logging(settings.log_level, settings.log_format)
    return settings


def build_engine(settings: Settings, shutdown_handler: ShutdownHandler | None = None) -> ReconciliationEngine:
    """Wire credentials, providers and the correlation store into an engine."""
    credentials = CredentialStore.from_settings(settings)
    asana_client = AsanaClient(
        credentials.asana_access_token,
        settings.asana_project_gid,
        due_date_timezone=settings.due_date_timezone,
    )
    google_client = GoogleTasksClient(
        credentials.google,
        tasklist_title=settings.google_tasklist_title,
        tasklist_id=settings.google_tasklist_id,
    )
    store = CorrelationStore(settings.correlation_db_path)

    should_continue = None
    if shutdown_handler is not None:
        should_continue = lambda: not shutdown_handler.shutdown_requested  # noqa: E731

    return ReconciliationEngine(asana_client, google_client, store, should_continue=should_continue)


def _print_report(report: CycleReport) -> None:
    table = Table(title=f"Sync cycle {report.cycle_id}")
    table.add_column("")
    table.add_column("Asana", justify="right")
    table.add_column("Google", justify="right")
    table.add_row("Tasks listed", str(report.asana_task_count), str(report.google_task_count))
    table.add_row("Created", str(report.created_on_asana), str(report.created_on_google))
    table.add_row("Updated", str(report.updated_on_asana), str(report.updated_on_google))
    table.add_row("Deleted", str(report.deleted_on_asana), str(report.deleted_on_google))
    console.print(table)

    console.print(
        f"Conflicts resolved: {report.conflicts_resolved}  "
        f"Adopted: {report.adopted}  Records removed: {report.records_removed}"
    )
    for failure in report.failures:
        console.print(
            f"[yellow]• {failure.operation} on {failure.provider} "
            f"({failure.task_id}): {failure.error}[/yellow]"
        )
    if report.cancelled:
        console.print("[yellow]Cycle was cancelled before finishing[/yellow]")
    if report.persisted:
        console.print("[green]✓[/green] Correlations saved")


@click.group()
@click.version_option(package_name="gtasks-bridge")
def main():
    """Bridge between one Asana project and one Google Tasks list.

    Every poll interval the two lists are compared and creations, edits,
    completions and deletions are copied across.
    """
    pass


@main.command()
def start():
    """Run the sync loop until SIGINT or SIGTERM."""
    settings = _load_settings()

    async def _run() -> None:
        shutdown_handler = get_shutdown_handler(settings.shutdown_timeout)
        shutdown_handler.install_signal_handlers()
        shutdown_handler.register_cleanup_callback(cleanup_db_connections)

        engine = build_engine(settings, shutdown_handler)
        scheduler = SyncScheduler(engine, settings.poll_interval_seconds, shutdown_handler)
        try:
            await scheduler.run_forever()
        finally:
            await shutdown_handler.shutdown()

    try:
        with PIDManager(settings.pid_file):
            console.print(
                f"[bold green]Syncing every {settings.poll_interval_seconds}s[/bold green] "
                f"(project {settings.asana_project_gid} ↔ list '{settings.google_tasklist_title}')"
            )
            asyncio.run(_run())
    except PIDLockError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print("[green]✓[/green] Bridge stopped")


@main.command()
def sync():
    """Run exactly one sync cycle and print what it did."""
    settings = _load_settings()
    engine = build_engine(settings)

    try:
        with PIDManager(settings.pid_file):
            report = asyncio.run(engine.run_cycle())
    except PIDLockError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    except BridgeError as e:
        console.print(f"[red]✗ Sync cycle failed:[/red] {e}")
        sys.exit(1)
    finally:
        cleanup_db_connections()

    _print_report(report)
    if report.has_failures:
        sys.exit(1)


@main.command()
def status():
    """Show the running process and the persisted correlations."""
    settings = _load_settings()

    pid = PIDManager(settings.pid_file).get_running_pid()
    if pid:
        console.print(f"[green]● Bridge running[/green] (PID {pid})")
    else:
        console.print("[dim]○ Bridge not running[/dim]")

    records = CorrelationStore(settings.correlation_db_path).load()
    cleanup_db_connections()
    if not records:
        console.print("[yellow]No correlations recorded yet.[/yellow]")
        return

    table = Table(title=f"Correlations ({len(records)})")
    table.add_column("Status")
    table.add_column("Asana task")
    table.add_column("Google task")
    table.add_column("Asana updated")
    table.add_column("Google updated")
    for record in sorted(records.values(), key=lambda r: (r.last_sync_status.value, r.asana_task_id or "")):
        table.add_row(
            record.last_sync_status.value,
            record.asana_task_id or "-",
            record.google_task_id or "-",
            record.last_known_asana_updated_at.isoformat() if record.last_known_asana_updated_at else "-",
            record.last_known_google_updated_at.isoformat() if record.last_known_google_updated_at else "-",
        )
    console.print(table)


@main.command()
@click.option("--port", default=0, show_default=True, help="Local port for the OAuth redirect (0 picks one)")
def authorize(port: int):
    """Run the Google consent flow once and cache the token."""
    settings = _load_settings()

    if not settings.google_client_secret_path.exists():
        console.print(f"[red]Client secret not found at {settings.google_client_secret_path}[/red]")
        sys.exit(1)

    manager = GoogleCredentialManager(settings.google_token_path)
    manager.authorize(settings.google_client_secret_path, port=port)
    console.print(f"[green]✓[/green] Token saved to {settings.google_token_path}")


@main.command()
@click.option("--timeout", default=90, show_default=True, help="Seconds to wait before SIGKILL")
def stop(timeout: int):
    """Stop a running bridge."""
    settings = _load_settings()

    try:
        if PIDManager(settings.pid_file).stop_bridge(timeout=timeout):
            console.print("[green]✓[/green] Bridge stopped")
        else:
            console.print("[yellow]No bridge is currently running[/yellow]")
    except PIDLockError as e:
        console.print(f"[red]Error stopping bridge: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
