"""Status command for the Constructrack CLI."""

import json
from datetime import datetime, timezone

import typer

from constructrack.config import get_settings
from constructrack.exceptions import StoreError
from constructrack.sync.store import QueueStore


def _format_time_ago(timestamp: datetime | None) -> str:
    """Format a timestamp as 'X minutes ago' style string."""
    if timestamp is None:
        return "Never"

    diff = datetime.now(timezone.utc) - timestamp

    seconds = max(int(diff.total_seconds()), 0)
    if seconds < 60:
        return f"{seconds} seconds ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    days = hours // 24
    return f"{days} day{'s' if days != 1 else ''} ago"


def status_command(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Show the local upload queue.

    Reads the queue database only; does not contact the server.
    """
    settings = get_settings()
    db_path = settings.queue_db_path

    pending = 0
    oldest = None
    failing = 0
    if db_path.exists():
        try:
            with QueueStore(db_path) as store:
                items = store.get_all()
        except StoreError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1)
        pending = len(items)
        oldest = items[0].enqueued_at if items else None
        failing = sum(1 for item in items if item.attempts > 0)

    status_data = {
        "pending_count": pending,
        "failed_attempts": failing,
        "oldest_enqueued_at": oldest.isoformat() if oldest else None,
        "queue_db": str(db_path),
    }

    if output_json:
        typer.echo(json.dumps(status_data))
        return

    typer.echo("")
    typer.echo("Upload Queue Status")
    typer.echo("-------------------")
    typer.echo(f"Queue: {pending} pending upload{'s' if pending != 1 else ''}")
    if pending:
        typer.echo(f"Oldest: {_format_time_ago(oldest)}")
    if failing:
        typer.echo(f"Retrying: {failing} upload{'s' if failing != 1 else ''} failed at least once")
    typer.echo("")

    if pending:
        typer.echo("Retry now with: constructrack sync")
