"""
Worklog CLI - Typer Commands

Thin command layer: parse options, run one service call inside an
ApplicationRuntime, print the outcome with rich.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import List, Optional, TypeVar

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from worklog.config import WorklogConfig, load_config, save_config
from worklog.duration import seconds_to_hour_and_min, str_to_datetime
from worklog.exceptions import (
    ActiveTimerExistsError,
    ConfigError,
    InputError,
    NoActiveTimerError,
    NothingToSyncError,
    UnauthorizedError,
    WorklogError,
)
from worklog.runtime import ApplicationRuntime
from worklog.sync.reconciler import SyncReport

logger = logging.getLogger(__name__)
console = Console()
T = TypeVar("T")

app = typer.Typer(
    name="worklog",
    help="Track time locally and keep it in sync with the issue tracker's work logs",
    add_completion=False,
    no_args_is_help=True,
)
timer_app = typer.Typer(help="Run a single timer and submit it as a work log", no_args_is_help=True)
app.add_typer(timer_app, name="timer")


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr"),
) -> None:
    """Track time locally and keep it in sync with the issue tracker's work logs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _run(action: Callable[[ApplicationRuntime], Awaitable[T]]) -> T:
    """
    Build the runtime, run one action, and map errors to exit codes.

    Exit codes: 1 general failure, 2 rejected credentials, 4 nothing to sync.
    """
    try:
        runtime = ApplicationRuntime(load_config())
    except ConfigError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        raise typer.Exit(1)

    async def _main() -> T:
        async with runtime:
            return await action(runtime)

    try:
        return asyncio.run(_main())
    except NothingToSyncError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(NothingToSyncError.exit_code)
    except UnauthorizedError as e:
        console.print(f"[bold red]Not authorized:[/bold red] {e.message}")
        console.print("Check the user and token in ~/.config/worklog/config.json or WORKLOG_TOKEN.")
        raise typer.Exit(2)
    except ActiveTimerExistsError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        console.print("Use 'worklog timer stop' or 'worklog timer discard' first.")
        raise typer.Exit(1)
    except NoActiveTimerError as e:
        console.print(f"[yellow]{e.message}[/yellow]")
        raise typer.Exit(1)
    except WorklogError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)


def _parse_time(value: Optional[str], exit_code: int = 1):
    if value is None:
        return None
    try:
        return str_to_datetime(value)
    except InputError as e:
        console.print(f"[bold red]Error:[/bold red] {e.message}")
        raise typer.Exit(exit_code)


def _show_sync_report(report: SyncReport) -> None:
    table = Table(show_header=True, header_style="bold")
    table.add_column("Issue")
    table.add_column("Summary")
    for issue in report.issues:
        status = "[red]failed[/red]" if issue.key.value in report.failures else ""
        table.add_row(issue.key.value, f"{issue.summary} {status}".strip())
    console.print(table)

    console.print(
        f"Fetched {report.worklogs_fetched} work logs, stored {report.worklogs_stored} "
        f"in {report.duration_seconds:.1f}s"
    )
    for key, error in sorted(report.failures.items()):
        console.print(f"[yellow]Could not fetch work logs for {key}:[/yellow] {error}")


@app.command()
def sync(
    started: Optional[str] = typer.Option(
        None, "--started", "-s", help="Only work logs started after this (YYYY-MM-DD, HH:MM, ISO 8601)"
    ),
    issues: Optional[List[str]] = typer.Option(None, "--issues", "-i", help="Issue key, repeatable"),
    projects: Optional[List[str]] = typer.Option(None, "--projects", "-p", help="Project key, repeatable"),
    all_users: bool = typer.Option(False, "--all-users", help="Keep every author's work logs"),
) -> None:
    """Pull work logs from the tracker into the local cache."""
    started_after = _parse_time(started, exit_code=NothingToSyncError.exit_code)

    report = _run(
        lambda runtime: runtime.reconciler.sync(
            started_after=started_after,
            issues=issues or [],
            projects=projects or [],
            all_users=all_users,
        )
    )
    _show_sync_report(report)


@app.command()
def add(
    issue: str = typer.Option(..., "--issue", "-i", help="Issue key"),
    durations: List[str] = typer.Option(
        ..., "--duration", "-d", help="'7,5h' or weekday entries like 'Mon:7,5h', repeatable"
    ),
    started: Optional[str] = typer.Option(None, "--started", "-s", help="Start of a single entry"),
    comment: Optional[str] = typer.Option(None, "--comment", "-c", help="Work log comment"),
) -> None:
    """Add work logs to the tracker without a timer."""
    start = _parse_time(started)
    added = _run(lambda runtime: runtime.entries.add(issue, durations, started=start, comment=comment))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Id", justify="right")
    table.add_column("Issue")
    table.add_column("Started")
    table.add_column("Duration", justify="right")
    for entry in added:
        table.add_row(
            str(entry.id),
            entry.issue_key.value,
            entry.started.strftime("%a %Y-%m-%d %H:%M"),
            seconds_to_hour_and_min(entry.duration_seconds),
        )
    console.print(table)


@app.command("del")
def delete(
    issue: str = typer.Option(..., "--issue", "-i", help="Issue key"),
    worklog_id: int = typer.Option(..., "--id", "-w", help="Work log id"),
) -> None:
    """Delete one of your own work logs from the tracker and the local cache."""
    removed = _run(lambda runtime: runtime.entries.delete(issue, worklog_id))
    console.print(
        f"[green]Deleted work log {removed.id}[/green] "
        f"({seconds_to_hour_and_min(removed.time_spent_seconds)} on {removed.started:%Y-%m-%d})"
    )


@app.command()
def purge(
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Empty the local work log cache; the tracker is not touched."""
    if not yes:
        typer.confirm("Delete every cached work log?", abort=True)
    removed = _run(lambda runtime: runtime.repository.purge_worklogs())
    console.print(f"Removed {removed} cached work logs")


@app.command()
def configure(
    url: str = typer.Option(..., "--url", help="Tracker base URL, e.g. https://example.atlassian.net"),
    token: str = typer.Option(..., "--token", help="API token", prompt=True, hide_input=True),
    user: str = typer.Option("", "--user", help="Account e-mail for basic auth"),
    auth: str = typer.Option("basic", "--auth", help="basic or bearer"),
) -> None:
    """Write the tracker connection to ~/.config/worklog/config.json."""
    try:
        current = load_config()
    except ConfigError:
        current = WorklogConfig()

    current.tracker_url = url.rstrip("/")
    current.user = user
    current.token = token
    current.auth = auth
    try:
        current.validate()
    except ConfigError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(1)

    save_config(current)
    console.print(f"[green]Saved configuration for {current.tracker_url}[/green]")


@timer_app.command("start")
def timer_start(
    issue: str = typer.Option(..., "--issue", "-i", help="Issue key"),
    comment: Optional[str] = typer.Option(None, "--comment", "-c", help="Work log comment"),
    at: Optional[str] = typer.Option(None, "--at", help="Start time, defaults to now"),
) -> None:
    """Start a timer on an issue."""
    started_at = _parse_time(at)
    timer = _run(lambda runtime: runtime.timers.start(issue, comment=comment, started_at=started_at))
    console.print(f"[green]Started timer {timer.id} on {timer.issue_key} at {timer.started_at:%H:%M}[/green]")


@timer_app.command("stop")
def timer_stop(
    at: Optional[str] = typer.Option(None, "--at", help="Stop time, defaults to now"),
    comment: Optional[str] = typer.Option(None, "--comment", "-c", help="Replace the timer comment"),
) -> None:
    """Stop the running timer."""
    stop_time = _parse_time(at)
    timer = _run(lambda runtime: runtime.timers.stop(stop_time, comment=comment))
    console.print(
        f"[green]Stopped timer {timer.id} on {timer.issue_key} after "
        f"{seconds_to_hour_and_min(timer.duration_seconds)}[/green]"
    )
    console.print("Run 'worklog timer sync' to submit it.")


@timer_app.command("discard")
def timer_discard() -> None:
    """Throw away the running timer."""
    timer = _run(lambda runtime: runtime.timers.discard())
    console.print(f"[green]Discarded timer {timer.id} on {timer.issue_key}[/green]")


@timer_app.command("sync")
def timer_sync() -> None:
    """Submit stopped timers to the tracker."""
    synced = _run(lambda runtime: runtime.timers.sync_to_jira())
    if not synced:
        console.print("[dim]No timers to submit[/dim]")
        return
    for timer in synced:
        console.print(
            f"[green]Submitted timer {timer.id}:[/green] {timer.issue_key} "
            f"{seconds_to_hour_and_min(timer.duration_seconds)}"
        )


@timer_app.command("status")
def timer_status() -> None:
    """Show the running timer."""

    async def _status(runtime: ApplicationRuntime):
        timer = await runtime.timers.active()
        if timer is None:
            return None, None
        return timer, await runtime.timers.total_time_for_issue(timer.issue_key)

    timer, total = _run(_status)
    if timer is None:
        console.print("[dim]No timer is running[/dim]")
        return

    body = (
        f"Issue: {timer.issue_key}\n"
        f"Started: {timer.started_at:%Y-%m-%d %H:%M}\n"
        f"Elapsed: {seconds_to_hour_and_min(timer.duration_seconds)}\n"
        f"Total on issue: {seconds_to_hour_and_min(int(total.total_seconds()))}"
    )
    if timer.comment:
        body += f"\nComment: {timer.comment}"
    console.print(Panel(body, title=f"Timer {timer.id}", border_style="green"))


def run() -> None:
    """Entry point wrapper that invokes the Typer app."""
    app()


if __name__ == "__main__":
    run()
