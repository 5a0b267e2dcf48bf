"""Constructrack field agent - durable offline upload queue for site photos."""

__version__ = "0.1.0"
