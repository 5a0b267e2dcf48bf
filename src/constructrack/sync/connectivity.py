"""Connectivity monitor with edge-triggered online/offline notifications.

Reachability here is only a hint that an upload is worth attempting. The
platform (or a health probe) can say "online" while the upload endpoint is
down, so the sync engine still judges every attempt by the uploader result.
"""

import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

ConnectivityHandler = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Tracks best-known reachability and notifies on transitions.

    Observations arrive through report(), either from the platform or from
    the built-in probe loop. Subscribers are called once per edge
    (offline->online or online->offline), never for repeated identical
    observations.

    Example:
        monitor = ConnectivityMonitor(probe=uploader.check_server)
        monitor.subscribe(lambda online: print("online" if online else "offline"))
        await monitor.start()
    """

    def __init__(
        self,
        initially_online: bool = False,
        probe: Probe | None = None,
        probe_interval: float = 10.0,
        probe_timeout: float = 5.0,
    ) -> None:
        """Initialize the monitor.

        Args:
            initially_online: State assumed before the first observation
            probe: Coroutine function returning True when reachable
            probe_interval: Seconds between probes
            probe_timeout: Seconds before a probe counts as offline
        """
        self._online = initially_online
        self._handlers: list[ConnectivityHandler] = []
        self._probe = probe
        self._probe_interval = probe_interval
        self._probe_timeout = probe_timeout
        self._probe_task: asyncio.Task | None = None

    @property
    def is_online(self) -> bool:
        """Current best-known reachability."""
        return self._online

    def subscribe(self, handler: ConnectivityHandler) -> Callable[[], None]:
        """Register a handler called with the new state on every transition.

        Returns:
            A function that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def report(self, online: bool) -> bool:
        """Feed a reachability observation.

        Returns:
            True if the observation changed the state
        """
        if online == self._online:
            return False

        self._online = online
        logger.info("Connectivity changed: online=%s", online)
        for handler in list(self._handlers):
            try:
                handler(online)
            except Exception:
                logger.exception("Connectivity handler failed")
        return True

    async def probe_once(self) -> bool:
        """Run the probe once and report its result.

        A probe that raises or exceeds probe_timeout counts as offline.
        """
        if self._probe is None:
            return self._online

        try:
            online = bool(await asyncio.wait_for(self._probe(), timeout=self._probe_timeout))
        except asyncio.TimeoutError:
            online = False
        except Exception as e:
            logger.debug("Connectivity probe failed: %s", e)
            online = False

        self.report(online)
        return online

    async def _probe_loop(self) -> None:
        while True:
            await asyncio.sleep(self._probe_interval)
            await self.probe_once()

    async def start(self) -> None:
        """Probe once, then keep probing in the background."""
        if self._probe is None or self._probe_task is not None:
            return
        await self.probe_once()
        self._probe_task = asyncio.create_task(self._probe_loop())

    async def stop(self) -> None:
        """Stop the background probe loop."""
        task, self._probe_task = self._probe_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
