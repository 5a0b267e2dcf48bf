"""Structured JSON logging for the Constructrack field agent.

Provides audit-friendly logging with contextual fields for queue events,
upload attempts and sync state changes. Payload bytes are never logged.

Usage:
    from constructrack.logging import log_item_queued, setup_logging

    setup_logging("INFO", device_id="tablet-07")
    log = logging.getLogger("constructrack.sync.engine")
    log_item_queued(log, item_id, "sites/12/a.jpg", size=48213, reason="offline")
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

from pythonjsonlogger import jsonlogger

from constructrack import __version__

# Device identifier included in every record once set
_device_id: str | None = None


class ConstructrackJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that adds agent context to all log records."""

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        """Add standard fields to every log record."""
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = self.formatTime(record)
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["agent_version"] = __version__
        if _device_id:
            log_record["device_id"] = _device_id

        if "message" not in log_record and record.getMessage():
            log_record["message"] = record.getMessage()

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        """Format time as ISO 8601."""
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return dt.isoformat()


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    device_id: str | None = None,
    max_bytes: int = 10_000_000,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure the root logger with JSON formatting.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path for a rotating file handler
        device_id: Identifier of this device, added to every record
        max_bytes: Max size per log file for rotation
        backup_count: Number of backup files to keep
    """
    if device_id:
        set_device_id(device_id)

    formatter = ConstructrackJsonFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file).expanduser()
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def set_device_id(device_id: str | None) -> None:
    """Set the device identifier for log context."""
    global _device_id
    _device_id = device_id


# --- Audit Event Functions ---


def log_item_queued(
    logger: logging.Logger,
    item_id: str,
    destination: str,
    size: int,
    reason: str,
) -> None:
    """Log an item being written to the durable queue.

    Args:
        logger: Logger instance
        item_id: Queue item identifier
        destination: Remote destination key
        size: Payload size in bytes
        reason: Why the item was queued (offline, upload_failed)
    """
    logger.info(
        "Item queued",
        extra={
            "event": "item_queued",
            "item_id": item_id,
            "destination": destination,
            "size": size,
            "reason": reason,
        },
    )


def log_upload_success(
    logger: logging.Logger,
    item_id: str,
    remote_locator: str | None,
    elapsed_ms: float,
) -> None:
    """Log a confirmed delivery."""
    logger.info(
        "Upload successful",
        extra={
            "event": "upload_success",
            "item_id": item_id,
            "remote_locator": remote_locator,
            "elapsed_ms": round(elapsed_ms, 1),
        },
    )


def log_upload_failed(
    logger: logging.Logger,
    item_id: str,
    error: str,
    permanent: bool = False,
) -> None:
    """Log a failed delivery attempt.

    Permanent rejections are logged at error level since they will keep
    failing until someone looks at the item.
    """
    extra = {
        "event": "upload_failed",
        "item_id": item_id,
        "error": error,
        "permanent": permanent,
    }
    if permanent:
        logger.error("Upload rejected", extra=extra)
    else:
        logger.warning("Upload failed", extra=extra)


def log_state_change(
    logger: logging.Logger,
    old_state: str,
    new_state: str,
    trigger: str | None = None,
) -> None:
    """Log a sync state transition.

    Args:
        logger: Logger instance
        old_state: Previous state
        new_state: New state
        trigger: What triggered the change
    """
    extra = {
        "event": "state_change",
        "old_state": old_state,
        "new_state": new_state,
    }
    if trigger:
        extra["trigger"] = trigger
    logger.info("State changed", extra=extra)


def log_drain_finished(
    logger: logging.Logger,
    attempted: int,
    delivered: int,
    pending: int,
) -> None:
    """Log the outcome of one drain pass."""
    logger.info(
        "Drain finished",
        extra={
            "event": "drain_finished",
            "attempted": attempted,
            "delivered": delivered,
            "pending": pending,
        },
    )
