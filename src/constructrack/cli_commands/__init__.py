"""CLI command modules for the Constructrack field agent."""

from constructrack.cli_commands.config import config_app
from constructrack.cli_commands.queue import run, submit, sync
from constructrack.cli_commands.status import status_command

__all__ = ["config_app", "run", "status_command", "submit", "sync"]
