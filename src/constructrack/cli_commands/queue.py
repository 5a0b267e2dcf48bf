"""Queue CLI commands: submit photos, retry sync, run the agent."""

import asyncio
import json
from pathlib import Path

import typer

from constructrack.agent import UploadAgent
from constructrack.config import get_settings
from constructrack.exceptions import StoreError
from constructrack.logging import setup_logging


def _output(data: dict, as_json: bool, human_message: str) -> None:
    """Output data as JSON or human-readable format."""
    if as_json:
        typer.echo(json.dumps(data))
    else:
        typer.echo(human_message)


def _fail(message: str, as_json: bool) -> None:
    """Report an error and exit non-zero."""
    if as_json:
        typer.echo(json.dumps({"status": "error", "message": message}))
    else:
        typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


def _build_agent(as_json: bool) -> UploadAgent:
    settings = get_settings()
    setup_logging(settings.log_level, log_file=settings.log_file, device_id=settings.device_id)
    try:
        return UploadAgent(settings)
    except StoreError as e:
        _fail(str(e), as_json)


async def _submit(agent: UploadAgent, payload: bytes, destination: str) -> dict:
    try:
        await agent.check_connectivity()
        item_id = await agent.submit(payload, destination)
        queued = agent.store.get(item_id) is not None
        return {
            "id": item_id,
            "status": "queued" if queued else "delivered",
            "pending_count": agent.store.count(),
        }
    finally:
        await agent.stop()


def submit(
    file: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="Photo to upload",
    ),
    destination: str = typer.Argument(..., help="Remote storage path for the photo"),
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Submit a photo for upload.

    Uploads right away when the server is reachable, otherwise stores the
    photo in the local queue for the next sync.
    """
    if not destination.strip():
        _fail("destination must not be empty", output_json)

    agent = _build_agent(output_json)
    try:
        result = asyncio.run(_submit(agent, file.read_bytes(), destination))
    except StoreError as e:
        _fail(str(e), output_json)

    if result["status"] == "delivered":
        message = f"Uploaded {file.name} to {destination} (id: {result['id']})"
    else:
        message = (
            f"Queued {file.name} for upload (id: {result['id']}). "
            f"{result['pending_count']} pending."
        )
    _output(result, output_json, message)


async def _sync(agent: UploadAgent) -> dict:
    try:
        await agent.check_connectivity()
        await agent.retry_sync()
        return agent.get_status()
    finally:
        await agent.stop()


def sync(
    output_json: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output in JSON format",
    ),
) -> None:
    """Retry delivery of every queued photo once."""
    agent = _build_agent(output_json)
    try:
        status = asyncio.run(_sync(agent))
    except StoreError as e:
        _fail(str(e), output_json)

    pending = status["pending_count"]
    if pending == 0:
        message = "Sync complete. Queue is empty."
    else:
        message = f"Sync finished with {pending} photo{'s' if pending != 1 else ''} still pending."
    _output(status, output_json, message)
    if pending:
        raise typer.Exit(2)


def run() -> None:
    """Run the upload agent until interrupted.

    Probes the server periodically and drains the queue whenever it comes
    back online. Press Ctrl+C to stop.
    """
    agent = _build_agent(False)
    typer.echo(f"Upload agent running against {agent.config.server_url}. Press Ctrl+C to stop.")
    try:
        asyncio.run(agent.run_forever())
    except KeyboardInterrupt:
        typer.echo("\nStopping upload agent...")
