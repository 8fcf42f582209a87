"""
Main CLI entry point.
"""

import typer

from sftpsource import __version__
from sftpsource.cli import poll, run, seen


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"sftpsource version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="sftpsource",
    help="sftpsource - poll an SFTP directory and emit each new file once",
    add_completion=True,
)

app.add_typer(run.app, name="run")
app.add_typer(poll.app, name="poll-once")
app.add_typer(seen.app, name="seen")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        help="Show version and exit.",
    ),
):
    """
    sftpsource - poll an SFTP directory and emit each new file once.

    Run 'sftpsource <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        if not version:
            typer.echo(ctx.get_help())
            raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
