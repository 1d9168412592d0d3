import os

import plotille
import pyfiglet
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console()


def clear_screen():
    os.system('cls' if os.name == 'nt' else 'clear')


def print_welcome(repo_path: str = None):
    clear_screen()
    ascii_banner = pyfiglet.figlet_format("ACHIEVO", font="slant")
    console.print(f"[bold magenta]{ascii_banner}[/bold magenta]")
    console.print("[dim]" + "─" * 80 + "[/dim]")
    if repo_path:
        console.print(f"[dim]Repository:[/dim] {repo_path}")
    console.print("[dim]Type 'help' for commands.[/dim]\n")


def format_trend(trend) -> str:
    if trend is None:
        return "[dim]-[/dim]"
    if trend > 0:
        return f"[green]+{trend}[/green]"
    return f"[dim]{trend}[/dim]"


def format_score(score, high: int = 70, mid: int = 40) -> str:
    if score is None:
        return "[dim]-[/dim]"
    if score >= high:
        color = "bold green"
    elif score >= mid:
        color = "yellow"
    else:
        color = "red"
    return f"[{color}]{score}[/{color}]"


def format_progress(pct) -> str:
    if pct is None:
        return "[dim]-[/dim]"
    return f"[cyan]{pct}%[/cyan]"


def build_history_table(days: list, title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold magenta")
    table.add_column("Date", style="dim", width=12)
    table.add_column("+Lines", justify="right", style="green")
    table.add_column("-Lines", justify="right", style="red")
    table.add_column("Base", justify="right")
    table.add_column("Trend", justify="right")
    table.add_column("Local", justify="center")
    table.add_column("AI", justify="center")
    table.add_column("Progress", justify="center")
    for d in days:
        table.add_row(
            d.date,
            str(d.insertions),
            str(d.deletions),
            str(d.base_score),
            format_trend(d.trend),
            format_score(d.local_score),
            format_score(d.ai_score),
            format_progress(d.progress_percent),
        )
    return table


def build_rollup_table(rows: dict) -> Table:
    table = Table(title="Rollups", show_header=True, header_style="bold cyan")
    table.add_column("Period", width=8)
    table.add_column("Key", style="dim")
    table.add_column("+Lines", justify="right", style="green")
    table.add_column("-Lines", justify="right", style="red")
    table.add_column("Base", justify="right")
    for kind, row in rows.items():
        key = getattr(row, kind)
        table.add_row(kind, key, str(row.insertions), str(row.deletions), str(row.base_score))
    return table


def render_summary(result: dict):
    """Panel for a finished today's-summary job."""
    header = (
        f"  Date            : {result['date']}\n"
        f"  Lines           : [green]+{result['insertions']}[/green] / [red]-{result['deletions']}[/red]\n"
        f"  Base score      : [bold]{result['base_score']}[/bold] ({format_trend(result['trend'])})\n"
        f"  Local score     : {format_score(result['local_score'])}"
        f"{' [dim](cold start)[/dim]' if result.get('cold_start') else ''}\n"
        f"  AI score        : {format_score(result.get('ai_score'))}\n"
        f"  Progress        : {format_progress(result['progress_percent'])}\n"
        f"  [dim]{result.get('features', '')}[/dim]"
    )
    console.print()
    console.print(Panel(header, title="[bold]Today's Progress[/bold]", border_style="magenta", expand=False, padding=(1, 4)))
    console.print(Panel(Markdown(result.get("summary") or ""), title=f"Summary ({result.get('provider')})", border_style="cyan"))
    console.print()


def render_day(live: dict, row):
    lines = [
        f"  Date     : {live['date']}",
        f"  Lines    : [green]+{live['insertions']}[/green] / [red]-{live['deletions']}[/red] (total {live['total']})",
        f"  Base     : [bold]{live['base_score']}[/bold] ({format_trend(live['trend'])})",
    ]
    if row is not None:
        lines.append(f"  Local    : {format_score(row.local_score)}   AI: {format_score(row.ai_score)}   Progress: {format_progress(row.progress_percent)}")
    console.print(Panel("\n".join(lines), title="[bold]Today[/bold]", border_style="green", expand=False))
    if row is not None and row.summary:
        console.print(Panel(Markdown(row.summary), border_style="dim"))


def render_period(kind: str, key: str, row):
    body = (
        f"  Lines    : [green]+{row.insertions}[/green] / [red]-{row.deletions}[/red]\n"
        f"  Base     : [bold]{row.base_score}[/bold] ({format_trend(row.trend)})\n"
        f"  Local    : {format_score(row.local_score)}   AI: {format_score(row.ai_score)}   "
        f"Progress: {format_progress(row.progress_percent)}"
    )
    console.print(Panel(body, title=f"[bold]{kind.title()} {key}[/bold]", border_style="cyan", expand=False))
    if row.summary:
        console.print(Panel(Markdown(row.summary), border_style="dim"))


def job_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        transient=True,
        console=console,
    )


def render_base_chart(days: list):
    if not days or len(days) < 3:
        console.print("[dim]Not enough days to draw a chart (need at least 3).[/dim]")
        return

    console.print("\n[bold cyan]Base Score Over Time[/bold cyan]")
    scores = [d.base_score for d in days]
    x_data = list(range(1, len(scores) + 1))

    fig = plotille.Figure()
    fig.width = 60
    fig.height = 15
    fig.set_x_limits(min_=1, max_=len(scores))
    fig.set_y_limits(min_=min(scores) - 1, max_=max(scores) + 1)
    fig.y_label = "Base"
    fig.x_label = f"Days ({days[0].date} -> {days[-1].date})"
    fig.plot(x_data, scores, lc='green')

    print(fig.show())
