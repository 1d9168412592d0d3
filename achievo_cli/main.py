import asyncio
import json
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import questionary
import typer
from rich.console import Console
from rich.panel import Panel

from achievo_cli import dates
from achievo_cli.config import Settings
from achievo_cli.errors import AchievoError
from achievo_cli.log import get_logger, setup_logging
from achievo_cli.session import RepositorySession, Workspace
from achievo_cli.ui import (
    build_history_table,
    build_rollup_table,
    clear_screen,
    console,
    job_progress,
    print_welcome,
    render_base_chart,
    render_day,
    render_period,
    render_summary,
)

logger = get_logger("cli")
app = typer.Typer(help="Achievo daily progress tracker for Git repositories", add_completion=False)

Action = Callable[[RepositorySession], Awaitable[None]]

REPO_OPTION = typer.Option(None, "--repo", help="Path to the Git repository (overrides ACHIEVO_REPO_PATH)")
JSON_OPTION = typer.Option(False, "--json", help="Print results as JSON")


def load_settings(repo: Optional[str] = None) -> Settings:
    settings = Settings.from_env(repo_path=repo)
    log_file = settings.data_dir / settings.log_file_name if settings.log_to_file else None
    setup_logging(settings.log_level, settings.log_namespaces, log_file, console=Console(stderr=True))
    return settings


def _print_json(payload):
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _fail(err: str, export_json: bool):
    if export_json:
        _print_json({"error": err})
    else:
        console.print(f"[bold red]Error[/bold red]: {err}")
    raise typer.Exit(code=1)


def _run(action: Action, repo: Optional[str], export_json: bool):
    """Open a session for ``repo``, run ``action`` in it and close it again."""

    async def runner():
        workspace = Workspace(settings)
        try:
            await action(workspace.open())
        finally:
            await workspace.close()

    try:
        settings = load_settings(repo)
        asyncio.run(runner())
    except (AchievoError, ValueError) as e:
        _fail(str(e), export_json)


# ─── Actions (shared by the commands and the interactive shell) ─────────────


async def do_summary(session: RepositorySession, export_json: bool = False):
    if export_json:
        session.start_summary()
        status = await session.jobs.wait()
        _print_json(status.as_dict())
        return

    with job_progress() as progress:
        task = progress.add_task("[cyan]Summarizing today's changes...", total=100)
        unsubscribe = session.jobs.subscribe(lambda s: progress.update(task, completed=s.progress))
        session.start_summary()
        try:
            status = await session.jobs.wait()
        finally:
            unsubscribe()

    if status.status == "error":
        raise AchievoError(status.error or "summary failed")
    render_summary(status.result)


async def do_today(session: RepositorySession, export_json: bool = False):
    live = await session.orchestrator.today_live()
    row = await session.store.get_day(live["date"])
    if export_json:
        _print_json({"live": live, "day": row.model_dump() if row else None})
        return
    render_day(live, row)


async def do_history(session: RepositorySession, days: int = 14, export_json: bool = False):
    end = session.orchestrator.today()
    rows = await session.store.get_range(dates.shift_key(end, -(max(1, days) - 1)), end)
    if export_json:
        _print_json([r.model_dump() for r in rows])
        return
    if not rows:
        console.print("[dim]No recorded days in this range.[/dim]")
        return
    console.print(build_history_table(rows, f"Last {days} Days"))
    totals = await session.store.get_totals()
    console.print(f"[dim]All time: +{totals['insertions']} / -{totals['deletions']}[/dim]")
    render_base_chart(rows)


async def do_tick(session: RepositorySession, export_json: bool = False):
    changed = await session.poller.tick()
    status = session.poller.status()
    if export_json:
        _print_json({"changed": changed, **status})
        return
    if status["last_error"]:
        console.print(f"[bold red]Tick failed[/bold red]: {status['last_error']}")
    elif changed:
        console.print(f"[green]✔ Recorded changes up to[/green] {status['last_processed_commit'][:7]}")
    else:
        console.print("[dim]No new commits.[/dim]")


async def do_track(session: RepositorySession, interval: Optional[int] = None):
    task = session.poller.start(interval)
    console.print(f"[cyan]Tracking {session.repo_path} every {session.poller.interval}s. Press Ctrl+C to stop.[/cyan]")
    await task


async def do_rollup(session: RepositorySession, date: str, export_json: bool = False):
    key = dates.to_key(dates.parse_key(date))
    rows = await session.store.recompute_rollups(key)
    if export_json:
        _print_json({kind: row.model_dump() for kind, row in rows.items()})
        return
    console.print(build_rollup_table(rows))


async def do_period(session: RepositorySession, kind: str, key: str, export_json: bool = False):
    if kind == "week":
        row = await session.periods.generate_week_summary(key)
    else:
        row = await session.periods.generate_month_summary(key)
    if export_json:
        _print_json(row.model_dump())
        return
    render_period(kind, key, row)


async def do_export(session: RepositorySession, path: str, export_json: bool = False):
    dest = await session.store.export_to(Path(path))
    if export_json:
        _print_json({"exported": str(dest)})
    else:
        console.print(f"[green]✔ Exported[/green] {session.store.path} -> {dest}")


async def do_import(session: RepositorySession, path: str, export_json: bool = False):
    backup = await session.store.import_from(Path(path))
    if export_json:
        _print_json({"imported": str(path), "backup": str(backup) if backup else None})
    else:
        console.print(f"[green]✔ Imported[/green] {path}" + (f" [dim](backup: {backup})[/dim]" if backup else ""))


# ─── Commands ───────────────────────────────────────────────────────────────


@app.command(name="summary")
def summary_cmd(repo: Optional[str] = REPO_OPTION, export_json: bool = JSON_OPTION):
    """Analyze today's changes, score them and write a summary."""
    _run(lambda s: do_summary(s, export_json), repo, export_json)


@app.command(name="today")
def today_cmd(repo: Optional[str] = REPO_OPTION, export_json: bool = JSON_OPTION):
    """Show today's live line counts and stored scores."""
    _run(lambda s: do_today(s, export_json), repo, export_json)


@app.command(name="history")
def history_cmd(
    days: int = typer.Option(14, help="Number of days to show"),
    repo: Optional[str] = REPO_OPTION,
    export_json: bool = JSON_OPTION,
):
    """Show recorded days with a base-score chart."""
    _run(lambda s: do_history(s, days, export_json), repo, export_json)


@app.command(name="tick")
def tick_cmd(repo: Optional[str] = REPO_OPTION, export_json: bool = JSON_OPTION):
    """Record commits made since the last tick, once."""
    _run(lambda s: do_tick(s, export_json), repo, export_json)


@app.command(name="track")
def track_cmd(
    interval: Optional[int] = typer.Option(None, help="Seconds between ticks (default from settings)"),
    repo: Optional[str] = REPO_OPTION,
):
    """Poll the repository for new commits until interrupted."""
    try:
        _run(lambda s: do_track(s, interval), repo, False)
    except KeyboardInterrupt:
        console.print("\n[dim]Tracking stopped.[/dim]")


@app.command(name="rollup")
def rollup_cmd(
    date: str = typer.Argument(..., help="Date (YYYY-MM-DD) whose week/month/year to recompute"),
    repo: Optional[str] = REPO_OPTION,
    export_json: bool = JSON_OPTION,
):
    """Recompute the week, month and year rollups containing a date."""
    _run(lambda s: do_rollup(s, date, export_json), repo, export_json)


@app.command(name="week")
def week_cmd(
    key: Optional[str] = typer.Argument(None, help="ISO week key, e.g. 2024-W02 (default: this week)"),
    repo: Optional[str] = REPO_OPTION,
    export_json: bool = JSON_OPTION,
):
    """Generate the summary for an ISO week."""
    _run(lambda s: do_period(s, "week", key or dates.week_key(dates.today_key()), export_json), repo, export_json)


@app.command(name="month")
def month_cmd(
    key: Optional[str] = typer.Argument(None, help="Month key, e.g. 2024-01 (default: this month)"),
    repo: Optional[str] = REPO_OPTION,
    export_json: bool = JSON_OPTION,
):
    """Generate the summary for a month."""
    _run(lambda s: do_period(s, "month", key or dates.month_key(dates.today_key()), export_json), repo, export_json)


@app.command(name="export")
def export_cmd(
    path: str = typer.Argument(..., help="Destination file"),
    repo: Optional[str] = REPO_OPTION,
    export_json: bool = JSON_OPTION,
):
    """Copy this repository's store file to PATH."""
    _run(lambda s: do_export(s, path, export_json), repo, export_json)


@app.command(name="import")
def import_cmd(
    path: str = typer.Argument(..., help="Store file to import"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    repo: Optional[str] = REPO_OPTION,
    export_json: bool = JSON_OPTION,
):
    """Replace this repository's store with PATH (the current file is backed up)."""
    if not yes and not export_json:
        confirmed = questionary.confirm(f"Replace the current store with '{path}'?", default=False).ask()
        if not confirmed:
            console.print("[dim]Import cancelled.[/dim]")
            return
    _run(lambda s: do_import(s, path, export_json), repo, export_json)


# ─── Interactive shell ──────────────────────────────────────────────────────

_HELP = (
    "[bold cyan]Available Commands:[/bold cyan]\n"
    "  [bold]summary[/bold]           - Score today's changes and write a summary\n"
    "  [bold]today[/bold]             - Live line counts for today\n"
    "  [bold]history [days][/bold]    - Recorded days and base-score chart (default 14)\n"
    "  [bold]tick[/bold]              - Record new commits once\n"
    "  [bold]track on|off[/bold]      - Start or stop background tracking\n"
    "  [bold]week [key][/bold]        - Week summary (default this week)\n"
    "  [bold]month [key][/bold]       - Month summary (default this month)\n"
    "  [bold]cd <path>[/bold]         - Switch the active repository\n"
    "  [bold]clear[/bold]             - Clear the terminal screen\n"
    "  [bold]exit[/bold]              - Quit the session"
)


async def _dispatch(workspace: Workspace, raw: str):
    parts = raw.split()
    command, args = parts[0].lower(), parts[1:]

    if command == "cd":
        if not args:
            console.print("[yellow]Usage:[/yellow] cd <path>")
            return
        new_path = str(Path(" ".join(args)).expanduser())
        await workspace.switch_repository(new_path)
        console.print(f"[green]Working repository changed to:[/green] {new_path}")
        return

    session = workspace.active
    if command == "summary":
        await do_summary(session)
    elif command == "today":
        await do_today(session)
    elif command == "history":
        await do_history(session, int(args[0]) if args and args[0].isdigit() else 14)
    elif command == "tick":
        await do_tick(session)
    elif command == "track":
        if args and args[0] == "off":
            session.poller.stop()
            console.print("[dim]Tracking stopped.[/dim]")
        else:
            session.poller.start()
            console.print(f"[cyan]Tracking every {session.poller.interval}s.[/cyan]")
    elif command == "week":
        await do_period(session, "week", args[0] if args else dates.week_key(dates.today_key()))
    elif command == "month":
        await do_period(session, "month", args[0] if args else dates.month_key(dates.today_key()))
    else:
        console.print(f"[yellow]Unknown command:[/yellow] '{command}'. Type 'help' to see available commands.")


async def _shell(settings: Settings):
    workspace = Workspace(settings)
    if settings.repo_path:
        try:
            workspace.open()
            console.print(f"[bold green]✔ Success![/bold green] Connected to repository at '{settings.repo_path}'\n")
        except AchievoError as e:
            console.print(f"[red]Warning: {e}[/red]")
            console.print("[yellow]Use 'cd <path>' to choose a repository.[/yellow]\n")

    try:
        while True:
            label = workspace.session.repo_path if workspace.session else "-"
            try:
                raw = await asyncio.to_thread(input, f"[{label}] achievo> ")
            except EOFError:
                console.print("\n[dim]Session terminated.[/dim]")
                break

            raw = raw.strip()
            if not raw:
                continue
            if raw.lower() in ("exit", "quit", "q"):
                console.print("[dim]Goodbye![/dim]")
                break
            if raw.lower() == "clear":
                clear_screen()
                print_welcome(label)
                continue
            if raw.lower() in ("help", "?"):
                console.print(Panel(_HELP, title="Achievo Help", border_style="cyan", expand=False))
                continue

            try:
                await _dispatch(workspace, raw)
            except (AchievoError, ValueError) as e:
                console.print(f"[bold red]Error[/bold red]: {e}")
    finally:
        await workspace.close()


def interactive_settings(repo: Optional[str] = None) -> Settings:
    """Settings for the shell: --repo, then ACHIEVO_REPO_PATH, then the current directory."""
    settings = load_settings(repo)
    if not settings.repo_path:
        settings = settings.model_copy(update={"repo_path": str(Path.cwd())})
    return settings


@app.command(name="interactive")
def interactive_cmd(repo: Optional[str] = REPO_OPTION):
    """Start an interactive session; 'cd' switches repositories."""
    try:
        settings = interactive_settings(repo)
    except AchievoError as e:
        console.print(f"[bold red]Error[/bold red]: {e}")
        return
    print_welcome(settings.repo_path)
    try:
        asyncio.run(_shell(settings))
    except KeyboardInterrupt:
        console.print("\n[dim]Session terminated.[/dim]")


def main():
    if len(sys.argv) == 1:
        interactive_cmd(repo=None)
    else:
        app()


if __name__ == "__main__":
    main()
