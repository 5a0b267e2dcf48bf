"""Constructrack CLI - command-line interface for the offline upload queue."""

import typer

from constructrack import __version__
from constructrack.cli_commands import config_app, run, status_command, submit, sync

app = typer.Typer(
    name="constructrack",
    help="Constructrack field agent - photo uploads that survive going offline.",
    no_args_is_help=True,
)

app.add_typer(config_app, name="config")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"constructrack-agent {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
) -> None:
    """Constructrack field agent - durable offline photo uploads."""


app.command(name="submit")(submit)
app.command(name="sync")(sync)
app.command(name="run")(run)
app.command(name="status")(status_command)


if __name__ == "__main__":
    app()
