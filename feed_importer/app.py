"""Typer CLI entrypoint for the feed importer."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from .config import ConfigRepository, FeedConfig, ScheduleConfig, ScheduleType
from .errors import FeedImporterError
from .infra import SQLiteManager
from .logging_conf import available_feed_logs, configure_logging, log_dir, tail_log
from .orchestrator import Orchestrator
from .scheduler import APSchedulerAdapter, ImportDriver

app = typer.Typer(help="Job feed importer", no_args_is_help=True, rich_markup_mode=None)
feed_app = typer.Typer(name="feed", help="Manage configured feeds.", no_args_is_help=True, rich_markup_mode=None)
import_app = typer.Typer(name="import", help="Run and control the batch import.", no_args_is_help=True, rich_markup_mode=None)
log_app = typer.Typer(name="log", help="Inspect log files.", no_args_is_help=True, rich_markup_mode=None)

app.add_typer(feed_app, name="feed", help="Manage configured feeds (list/add/remove).")
app.add_typer(import_app, name="import", help="Run, inspect and control the batch import.")
app.add_typer(log_app, name="log", help="Inspect log files.")

console = Console()


@dataclass
class AppState:
    repository: ConfigRepository
    scheduler: APSchedulerAdapter
    orchestrator: Orchestrator
    storage: SQLiteManager


def build_state(verbose: bool) -> AppState:
    repository = ConfigRepository()
    configure_logging(verbose=verbose, settings=repository.load_global_config().logging)
    storage = SQLiteManager()
    orchestrator = Orchestrator(config_repository=repository, storage=storage)
    return AppState(
        repository=repository,
        scheduler=APSchedulerAdapter(),
        orchestrator=orchestrator,
        storage=storage,
    )


def _get_state(ctx: typer.Context) -> AppState:
    state = ctx.obj
    if state is None:
        state = build_state(verbose=False)
        ctx.obj = state
    return state


def _format_schedule(schedule: ScheduleConfig) -> str:
    data = schedule.value
    label = schedule.type.value
    if data in (None, "", [], {}):
        return label
    if schedule.type is ScheduleType.CRON:
        return f"cron ({data})"
    if schedule.type is ScheduleType.INTERVAL:
        return f"interval ({data})"
    return f"{label} ({data})"


def _render_feeds_table(feeds: Sequence[FeedConfig]) -> Table:
    table = Table(title=f"Feeds · {len(feeds)} configured", box=box.SIMPLE_HEAD)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("URL", style="green", overflow="fold")
    table.add_column("Enabled", style="magenta")
    for feed in feeds:
        table.add_row(feed.key, feed.url, "yes" if feed.enabled else "no")
    return table


def _render_fetch_table(summaries: Iterable[dict[str, Any]]) -> Table:
    table = Table(title="Feed refresh", box=box.SIMPLE_HEAD)
    table.add_column("Feed", style="cyan")
    table.add_column("Status")
    table.add_column("Bytes", justify="right")
    table.add_column("Items", justify="right", style="green")
    table.add_column("Error", style="red", overflow="fold")
    for summary in summaries:
        status_style = "green" if summary["status"] == "ok" else "red"
        table.add_row(
            summary["key"],
            f"[{status_style}]{summary['status']}[/{status_style}]",
            str(summary["bytes"]),
            str(summary["items"]),
            summary["error"],
        )
    return table


def _render_status_table(status: dict[str, Any], title: str = "Import status") -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAD, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    for key in (
        "status",
        "processed",
        "total",
        "created",
        "updated",
        "skipped",
        "duplicates_drafted",
        "complete",
        "batch_size",
        "time_elapsed",
    ):
        if key in status:
            table.add_row(key, str(status[key]))
    return table


def _print_logs(lines: Sequence[str], limit: int) -> None:
    for line in list(lines)[-limit:]:
        console.print(line, style="dim", markup=False)


@app.callback()
def main(
    ctx: typer.Context, verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging.", is_flag=True)
) -> None:
    ctx.obj = build_state(verbose)


# ----------------------------------------------------------------------
# feed
# ----------------------------------------------------------------------
@feed_app.command("list", help="Show configured feeds.")
def feed_list(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    feeds = state.repository.list_feeds()
    if not feeds:
        console.print("No feeds configured; add one with `feed-importer feed add KEY URL`.", style="yellow")
        raise typer.Exit(code=0)
    console.print(_render_feeds_table(feeds))


@feed_app.command("add", help="Add or replace a feed.")
def feed_add(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Short feed key, e.g. 'vdab'."),
    url: str = typer.Argument(..., help="Feed URL."),
    disabled: bool = typer.Option(False, "--disabled", help="Store the feed disabled.", is_flag=True),
) -> None:
    state = _get_state(ctx)
    try:
        feed = FeedConfig(key=key, url=url, enabled=not disabled)
    except ValueError as exc:
        console.print(f"Invalid feed: {exc}", style="red")
        raise typer.Exit(code=1)
    state.repository.add_feed(feed)
    console.print(f"Feed {feed.key} saved.", style="green")


@feed_app.command("remove", help="Remove a feed.")
def feed_remove(ctx: typer.Context, key: str = typer.Argument(...)) -> None:
    state = _get_state(ctx)
    if not state.repository.remove_feed(key):
        console.print(f"Feed {key} not found.", style="yellow")
        raise typer.Exit(code=1)
    console.print(f"Feed {key} removed.", style="green")


# ----------------------------------------------------------------------
# fetch / import
# ----------------------------------------------------------------------
@app.command("fetch", help="Fetch and normalize all enabled feeds, then rebuild the corpus.")
def fetch(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    summary = state.orchestrator.run_fetch_and_normalize()
    console.print(_render_fetch_table(summary["feeds"]))
    console.print(f"Corpus items: {summary['total']}", style="cyan")


@import_app.command("run", help="Run one import batch (or all of them).")
def import_run(
    ctx: typer.Context,
    start: Optional[int] = typer.Option(None, "--start", min=0, help="Requested start offset."),
    until_complete: bool = typer.Option(
        False, "--until-complete", help="Keep invoking batches until done.", is_flag=True
    ),
) -> None:
    state = _get_state(ctx)
    try:
        if until_complete:
            result = state.orchestrator.run_until_complete()
        else:
            result = state.orchestrator.run_batch(start)
    except FeedImporterError as exc:
        console.print(f"Import failed: {exc}", style="red")
        raise typer.Exit(code=1)
    payload = result.as_dict()
    console.print(_render_status_table(payload, title="Batch result"))
    _print_logs(result.logs, 20)
    style = "green" if result.success else "red"
    console.print(result.message, style=style)
    if not result.success:
        raise typer.Exit(code=1)


@import_app.command("status", help="Show the current checkpoint.")
def import_status(
    ctx: typer.Context,
    logs: int = typer.Option(10, "--logs", min=0, help="Number of log lines to show."),
) -> None:
    state = _get_state(ctx)
    status = state.orchestrator.status()
    console.print(_render_status_table(status))
    if status.get("cancel_requested"):
        console.print("Cancellation requested.", style="yellow")
    _print_logs(status.get("logs", []), logs)


@import_app.command("cancel", help="Ask the running import to stop at the next batch.")
def import_cancel(ctx: typer.Context) -> None:
    _get_state(ctx).orchestrator.cancel()
    console.print("Cancellation requested.", style="yellow")


@import_app.command("resume", help="Clear a cancellation so the import can continue.")
def import_resume(ctx: typer.Context) -> None:
    _get_state(ctx).orchestrator.resume()
    console.print("Cancellation cleared.", style="green")


@import_app.command("reset", help="Forget import progress and start from zero next time.")
def import_reset(ctx: typer.Context) -> None:
    _get_state(ctx).orchestrator.reset()
    console.print("Import progress reset.", style="green")


@import_app.command("finalize", help="Mark records missing from the completed run as stale.")
def import_finalize(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    try:
        result = state.orchestrator.finalize()
    except FeedImporterError as exc:
        console.print(f"Finalize failed: {exc}", style="red")
        raise typer.Exit(code=1)
    console.print(result.message, style="green" if result.success else "yellow")
    if not result.success:
        raise typer.Exit(code=1)


@app.command("serve", help="Run the scheduler in the foreground.")
def serve(ctx: typer.Context) -> None:
    state = _get_state(ctx)
    schedule = state.repository.load_global_config().schedule
    driver = ImportDriver(state.orchestrator, state.scheduler, schedule)
    driver.register()
    console.print(f"Scheduler running: {_format_schedule(schedule)}. Press Ctrl+C to stop.", style="cyan")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("Stopping scheduler.", style="yellow")
    finally:
        state.scheduler.shutdown()
        state.orchestrator.close()


# ----------------------------------------------------------------------
# log
# ----------------------------------------------------------------------
@log_app.command("list", help="List available feed logs.")
def log_list() -> None:
    logs = list(available_feed_logs())
    if not logs:
        console.print("No feed logs yet.", style="dim")
        return
    table = Table(box=box.SIMPLE_HEAD)
    table.add_column("File", style="green")
    for path in logs:
        table.add_row(path.name)
    console.print(table)


@log_app.command("show", help="Show the tail of the importer log or a feed log.")
def log_show(
    feed: Optional[str] = typer.Option(None, "--feed", help="Feed key; omit for the importer log."),
    tail: int = typer.Option(100, "--tail", min=1, help="Number of lines."),
) -> None:
    base = log_dir()
    path = base / "feeds" / f"{feed}.log" if feed else base / "importer.log"
    lines = tail_log(path, tail)
    if not lines:
        console.print("No log lines yet.", style="dim")
        return
    console.print(f"{path.name} · last {len(lines)} lines", style="cyan")
    console.print("".join(lines), markup=False)



def cli() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    cli()
