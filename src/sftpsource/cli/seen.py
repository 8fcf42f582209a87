"""
sftpsource seen - List remote files already recorded as dispatched.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from sftpsource.config.loader import load_config
from sftpsource.exceptions import SftpSourceError
from sftpsource.source.seen_store import SeenFileStore, build_metadata_backend
from sftpsource.source.types import DEFAULT_NAMESPACE

app = typer.Typer(name="seen", help="Show the seen-file ledger", invoke_without_command=True)

console = Console()


@app.callback()
def seen(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    namespace: str | None = typer.Option(None, "--namespace", "-n", help="Namespace (default: metadata.namespace)"),
    limit: int = typer.Option(50, "--limit", help="Maximum rows to show (0 for all)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Print recorded keys with the time each was first seen.
    """
    if ctx.invoked_subcommand is None:
        try:
            config = load_config(project_dir, env=env)
            ns = namespace or str(config.get("metadata.namespace", DEFAULT_NAMESPACE))
            store = SeenFileStore(build_metadata_backend(config.data, project_dir=project_dir), ns)
            try:
                records = store.records()
            finally:
                store.close()
        except SftpSourceError as e:
            console.print(f"[red]Error: {e}[/red]")
            raise typer.Exit(1) from e

        if not records:
            console.print(f"[dim]No files recorded in namespace '{ns}'[/dim]")
            return

        shown = records if limit <= 0 else records[:limit]
        table = Table(title=f"Seen files ({len(records)}) - {ns}", show_header=True)
        table.add_column("Key", style="cyan")
        table.add_column("First seen", style="dim")
        for record in shown:
            table.add_row(record.key, record.first_seen_at.isoformat())
        console.print(table)
        if len(shown) < len(records):
            console.print(f"[dim]... {len(records) - len(shown)} more[/dim]")
