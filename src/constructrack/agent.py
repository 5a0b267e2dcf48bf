"""Upload agent wiring settings into the store, uploader, monitor and engine."""

import asyncio
import logging
from typing import Any

from constructrack.config import Settings
from constructrack.sync import (
    ConnectivityMonitor,
    HttpUploader,
    QueueState,
    QueueStore,
    SyncEngine,
)

logger = logging.getLogger(__name__)


class UploadAgent:
    """High-level entry point used by the CLI.

    Builds every queue component from Settings and owns their lifetimes.
    Nothing here is global: two agents with different settings are fully
    independent.

    Example:
        agent = UploadAgent(settings)
        await agent.start()
        item_id = await agent.submit(jpeg_bytes, "sites/12/2026-10-19/a.jpg")
        await agent.stop()
    """

    def __init__(self, config: Settings) -> None:
        """Initialize the agent.

        Args:
            config: Settings instance with all configuration

        Raises:
            StoreError: If the queue database cannot be opened
        """
        self.config = config

        self.store = QueueStore(config.queue_db_path)
        self.uploader = HttpUploader(
            server_url=config.server_url,
            timeout=config.upload_timeout,
        )
        self.monitor = ConnectivityMonitor(
            probe=self._probe_server,
            probe_interval=config.probe_interval,
            probe_timeout=config.probe_timeout,
        )
        self.engine = SyncEngine(
            store=self.store,
            uploader=self.uploader,
            monitor=self.monitor,
            attempt_timeout=config.upload_timeout,
            max_concurrency=config.max_concurrency,
            drain_interval=config.drain_interval,
        )
        self._running = False

    async def _probe_server(self) -> bool:
        return await self.uploader.check_server(timeout=self.config.probe_timeout)

    async def check_connectivity(self) -> bool:
        """Probe the server once and update the monitor."""
        return await self.monitor.probe_once()

    async def start(self) -> None:
        """Start probing and the background drain worker."""
        if self._running:
            return
        self._running = True
        logger.info(
            "Starting upload agent: server_url=%s, queue=%s",
            self.config.server_url,
            self.config.queue_db_path,
        )
        await self.monitor.start()
        await self.engine.start()

    async def run_forever(self) -> None:
        """Start and block until cancelled, then shut down cleanly."""
        await self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def submit(self, payload: bytes, destination: str) -> str:
        """Submit one photo; see SyncEngine.submit."""
        return await self.engine.submit(payload, destination)

    async def retry_sync(self) -> QueueState:
        """Run one manual drain; see SyncEngine.retry_sync."""
        return await self.engine.retry_sync()

    async def stop(self) -> None:
        """Stop workers and release the HTTP client and database."""
        self._running = False
        await self.engine.stop()
        await self.monitor.stop()
        await self.uploader.close()
        self.store.close()
        logger.info("Upload agent stopped")

    def get_status(self) -> dict[str, Any]:
        """Return the status view plus agent details for display."""
        status = self.engine.state.to_dict()
        status["running"] = self._running
        status["server_url"] = self.config.server_url
        status["queue_db"] = str(self.config.queue_db_path)
        return status
