"""
sftpsource run - Long-running poller with the HTTP status API.

- GET /health - Health check
- GET /status - Poller state and last cycle
- POST /poll/run_once - Trigger one cycle
"""

from pathlib import Path

import typer

from sftpsource.exceptions import SftpSourceError
from sftpsource.service.server import run_service
from sftpsource.utils.logging import get_logger

logger = get_logger("sftpsource.cli.run")

app = typer.Typer(name="run", help="Run the poller as a long-running service", invoke_without_command=True)


@app.callback()
def run(
    ctx: typer.Context,
    env: str | None = typer.Option(None, help="Environment (dev, staging, prod)"),
    host: str | None = typer.Option(None, help="Host to bind to (default: service.host or 127.0.0.1)"),
    port: int | None = typer.Option(None, help="Port to bind to (default: service.port or 8080)"),
    project_dir: Path = typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory"),
) -> None:
    """
    Poll the configured remote directory until interrupted.
    """
    if ctx.invoked_subcommand is None:
        try:
            run_service(project_dir=project_dir, env=env, host=host, port=port)
        except SftpSourceError as e:
            logger.error(f"Startup failed: {e}")
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from e
