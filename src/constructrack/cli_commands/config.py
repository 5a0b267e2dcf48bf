"""Configuration CLI commands."""

import json

import typer

from constructrack.config import get_settings

config_app = typer.Typer(
    name="config",
    help="Configuration management - view effective settings.",
    no_args_is_help=True,
)


@config_app.command()
def show(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show the effective configuration (environment and .env applied)."""
    settings = get_settings()

    config_data = {
        "server_url": settings.server_url,
        "upload_timeout": settings.upload_timeout,
        "drain_interval": settings.drain_interval,
        "max_concurrency": settings.max_concurrency,
        "probe_interval": settings.probe_interval,
        "probe_timeout": settings.probe_timeout,
        "queue_db": str(settings.queue_db_path),
        "log_level": settings.log_level,
    }

    if output_json:
        typer.echo(json.dumps(config_data, indent=2))
        return

    typer.echo("")
    typer.echo("Constructrack Configuration")
    typer.echo("---------------------------")
    typer.echo(f"Server URL: {settings.server_url}")
    typer.echo(f"Upload timeout: {settings.upload_timeout:g}s")
    typer.echo(f"Drain interval: {settings.drain_interval:g}s")
    typer.echo(f"Max concurrent uploads: {settings.max_concurrency}")
    typer.echo(f"Probe interval: {settings.probe_interval:g}s (timeout {settings.probe_timeout:g}s)")
    typer.echo(f"Queue database: {settings.queue_db_path}")
    typer.echo(f"Log level: {settings.log_level}")
    typer.echo("")
