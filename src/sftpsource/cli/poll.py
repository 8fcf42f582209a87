"""
sftpsource poll-once - Run a single poll cycle and print what happened.
"""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from sftpsource.exceptions import SftpSourceError
from sftpsource.service.server import SourceService
from sftpsource.source.poller import CycleResult

app = typer.Typer(name="poll-once", help="Run one poll cycle", invoke_without_command=True)

console = Console()


async def _poll_once(svc: SourceService) -> CycleResult | None:
    poller = svc.initialize()
    await svc.adapter.connect()
    try:
        return await poller.run_cycle()
    finally:
        await svc.stop()


def render_result(result: CycleResult) -> Table:
    table = Table(title=f"Poll cycle {result.cycle}", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    for metric in ("listed", "rejected", "accepted", "committed", "rolled_back", "failed", "skipped", "cleanup_errors"):
        table.add_row(metric, str(getattr(result, metric)))
    table.add_row("duration", f"{result.duration_s:.2f}s")
    return table


@app.callback()
def poll_once(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    List, filter and dispatch once, then exit. Exits 1 if the cycle aborted.
    """
    if ctx.invoked_subcommand is None:
        svc = SourceService(project_dir=project_dir, env=env)
        try:
            result = asyncio.run(_poll_once(svc))
        except SftpSourceError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1) from e

        if result is None:
            console.print("[yellow]Cycle dropped: another cycle was running[/yellow]")
            raise typer.Exit(1)

        console.print(render_result(result))
        for error in result.errors:
            console.print(f"[yellow]{error}[/yellow]")
        if result.aborted:
            console.print(f"[red]Cycle aborted: {result.error}[/red]")
            raise typer.Exit(1)
