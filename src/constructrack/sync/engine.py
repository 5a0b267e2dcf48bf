"""Sync engine: submit, immediate delivery and draining of the upload queue."""

import asyncio
import dataclasses
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from constructrack.exceptions import DeliveryError, StoreError
from constructrack.logging import (
    log_drain_finished,
    log_item_queued,
    log_state_change,
    log_upload_failed,
    log_upload_success,
)
from constructrack.sync.connectivity import ConnectivityMonitor
from constructrack.sync.store import QueueItem, QueueStore
from constructrack.sync.uploader import Uploader, UploadResult

logger = logging.getLogger(__name__)


class SyncStatus(Enum):
    """Outcome of the most recent drain."""

    IDLE = "idle"
    SYNCING = "syncing"
    SYNCED = "synced"
    ERROR = "error"


@dataclass(frozen=True)
class QueueState:
    """Read-only status view for display.

    pending_count is read from the store every time, so it is the number of
    items not yet confirmed delivered and nothing more.
    """

    pending_count: int
    sync_status: SyncStatus
    is_online: bool
    oldest_enqueued_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_online": self.is_online,
            "sync_status": self.sync_status.value,
            "pending_count": self.pending_count,
            "oldest_enqueued_at": (
                self.oldest_enqueued_at.isoformat() if self.oldest_enqueued_at else None
            ),
        }


class SyncEngine:
    """Delivers submitted photos at least once, surviving outages and restarts.

    submit() tries the uploader right away when online and only falls back
    to the durable store when that is not possible. drain() walks the store
    and deletes each item once the uploader confirms it. Drains are started
    by online transitions, by a periodic timer while items are pending, at
    start-up with a non-empty store, and by retry_sync().

    The store, uploader and monitor are injected so tests can swap in fakes.

    Example:
        engine = SyncEngine(store, uploader, monitor)
        await engine.start()
        item_id = await engine.submit(jpeg_bytes, "sites/12/photo.jpg")
        ...
        await engine.stop()
    """

    def __init__(
        self,
        store: QueueStore,
        uploader: Uploader,
        monitor: ConnectivityMonitor,
        attempt_timeout: float = 30.0,
        max_concurrency: int = 4,
        drain_interval: float = 15.0,
    ) -> None:
        """Initialize the sync engine.

        Args:
            store: Durable store holding undelivered items
            uploader: Collaborator performing one delivery attempt
            monitor: Connectivity monitor used to gate attempts
            attempt_timeout: Seconds before a single upload attempt fails
            max_concurrency: Parallel uploads within one drain
            drain_interval: Seconds between drains while items are pending
        """
        self._store = store
        self._uploader = uploader
        self._monitor = monitor
        self._attempt_timeout = attempt_timeout
        self._max_concurrency = max_concurrency
        self._drain_interval = drain_interval

        self._status = SyncStatus.IDLE
        self._drain_lock = asyncio.Lock()
        self._in_flight: set[str] = set()
        self._last_enqueued_at: datetime | None = None

        # Background trigger handling
        self._wake = asyncio.Event()
        self._worker_task: asyncio.Task | None = None
        self._unsubscribe: Callable[[], None] | None = None

        # Callbacks
        self._state_callbacks: list[Callable[[QueueState], None]] = []
        self._last_state: QueueState | None = None

    @property
    def status(self) -> SyncStatus:
        """Status of the most recent drain."""
        return self._status

    @property
    def state(self) -> QueueState:
        """Current status view, with counts read from the store.

        Raises:
            StoreError: If the store cannot be read
        """
        return QueueState(
            pending_count=self._store.count(),
            sync_status=self._status,
            is_online=self._monitor.is_online,
            oldest_enqueued_at=self._store.oldest_enqueued_at(),
        )

    def on_state_change(self, callback: Callable[[QueueState], None]) -> None:
        """Register callback for status, pending count or connectivity changes.

        Args:
            callback: Function called with the new QueueState
        """
        self._state_callbacks.append(callback)

    def _notify(self) -> None:
        """Publish the current state to callbacks if it changed."""
        if not self._state_callbacks:
            return
        try:
            state = self.state
        except StoreError as e:
            logger.error("Cannot read queue state: %s", e)
            return
        if state == self._last_state:
            return
        self._last_state = state
        for callback in self._state_callbacks:
            try:
                callback(state)
            except Exception:
                logger.exception("State change callback failed")

    def _set_status(self, new_status: SyncStatus, trigger: str | None = None) -> None:
        if self._status != new_status:
            log_state_change(logger, self._status.value, new_status.value, trigger)
            self._status = new_status
        self._notify()

    def _next_enqueued_at(self) -> datetime:
        """Timestamp for a new item, never earlier than the previous one."""
        now = datetime.now(timezone.utc)
        if self._last_enqueued_at is not None and now < self._last_enqueued_at:
            now = self._last_enqueued_at
        self._last_enqueued_at = now
        return now

    async def _attempt(self, item: QueueItem) -> UploadResult:
        """Make one bounded delivery attempt. Never raises for delivery failures."""
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self._uploader.upload(item.payload, item.destination, item_id=item.id),
                timeout=self._attempt_timeout,
            )
        except asyncio.TimeoutError:
            result = UploadResult(
                success=False, error=f"Timed out after {self._attempt_timeout:g}s"
            )
        except DeliveryError as e:
            result = UploadResult(success=False, error=str(e), permanent=e.permanent)
        except Exception as e:
            # Any uploader crash is just a failed attempt; the item stays queued
            result = UploadResult(success=False, error=f"{type(e).__name__}: {e}")

        if result.success:
            elapsed_ms = (time.monotonic() - started) * 1000
            log_upload_success(logger, item.id, result.remote_locator, elapsed_ms)
        else:
            log_upload_failed(logger, item.id, result.error or "Unknown error", result.permanent)
        return result

    async def submit(self, payload: bytes, destination: str) -> str:
        """Hand a captured photo to the queue.

        Tries one immediate upload when online. If that is skipped or fails,
        the item is written to the store before this returns, so a submitted
        photo is always either delivered or durably queued.

        Args:
            payload: Image bytes; copied, so the caller may reuse its buffer
            destination: Remote storage key, treated as opaque

        Returns:
            The item id

        Raises:
            ValueError: If destination is empty
            StoreError: If the item had to be queued and could not be persisted
        """
        if not destination:
            raise ValueError("destination must not be empty")

        item = QueueItem(
            id=str(uuid.uuid4()),
            payload=bytes(payload),
            destination=destination,
            enqueued_at=self._next_enqueued_at(),
        )

        reason = "offline"
        if self._monitor.is_online:
            self._in_flight.add(item.id)
            try:
                result = await self._attempt(item)
            except asyncio.CancelledError:
                self._store.put(item)
                raise
            finally:
                self._in_flight.discard(item.id)

            if result.success:
                return item.id
            reason = "upload_failed"
            item = dataclasses.replace(item, attempts=1, last_error=result.error)

        self._store.put(item)
        log_item_queued(logger, item.id, item.destination, item.size, reason)
        self._notify()
        return item.id

    async def _deliver(self, item: QueueItem) -> bool:
        """Attempt one stored item and update the store with the outcome."""
        self._in_flight.add(item.id)
        try:
            result = await self._attempt(item)
            if result.success:
                self._store.delete(item.id)
                return True
            self._store.record_failure(item.id, result.error or "Unknown error")
            return False
        finally:
            self._in_flight.discard(item.id)

    def _settle(self, trigger: str) -> int:
        """Set SYNCED or ERROR from the store contents after a drain pass."""
        try:
            pending = self._store.count()
        except StoreError:
            self._set_status(SyncStatus.ERROR, "store_error")
            raise
        self._set_status(SyncStatus.SYNCED if pending == 0 else SyncStatus.ERROR, trigger)
        return pending

    async def drain(self, trigger: str = "manual") -> QueueState:
        """Attempt delivery of every pending item once.

        A drain that starts while another is running is skipped. Failed items
        stay in the store for the next drain; one failure never stops the
        rest of the batch. Cancelling a drain leaves every unconfirmed item
        in the store.

        Args:
            trigger: What started the drain, for logging

        Returns:
            The resulting QueueState

        Raises:
            StoreError: If the store failed; raised after the pass completes
        """
        if self._drain_lock.locked():
            logger.debug("Drain already running, skipping: trigger=%s", trigger)
            return self.state

        async with self._drain_lock:
            self._set_status(SyncStatus.SYNCING, trigger)
            try:
                items = [i for i in self._store.get_all() if i.id not in self._in_flight]
            except StoreError:
                self._set_status(SyncStatus.ERROR, "store_error")
                raise

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def bounded(item: QueueItem) -> bool:
                async with semaphore:
                    return await self._deliver(item)

            try:
                results = await asyncio.gather(
                    *(bounded(item) for item in items),
                    return_exceptions=True,
                )
            except asyncio.CancelledError:
                self._settle("cancelled")
                raise

            errors = [r for r in results if isinstance(r, BaseException)]
            delivered = sum(1 for r in results if r is True)
            pending = self._settle(trigger)
            log_drain_finished(logger, len(items), delivered, pending)

            if errors:
                self._set_status(SyncStatus.ERROR, "store_error")
                raise errors[0]

        return self.state

    async def retry_sync(self) -> QueueState:
        """Manually retry delivery of everything pending."""
        return await self.drain(trigger="manual")

    def acknowledge(self) -> None:
        """Reset SYNCED/ERROR to IDLE once the outcome has been displayed."""
        if self._status in (SyncStatus.SYNCED, SyncStatus.ERROR):
            self._set_status(SyncStatus.IDLE, "acknowledged")

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._wake.set()
        elif self._status in (SyncStatus.SYNCED, SyncStatus.ERROR):
            self._set_status(SyncStatus.IDLE, "offline")
        self._notify()

    async def _drain_worker(self) -> None:
        """Background worker draining on online edges and on a fixed interval.

        The timer keeps retrying while items are pending even without
        connectivity events, which covers an endpoint that is down while
        the network reports online.
        """
        while True:
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._drain_interval)
                trigger = "online"
            except asyncio.TimeoutError:
                trigger = "timer"
            self._wake.clear()

            if not self._monitor.is_online:
                continue

            try:
                if self._store.count() == 0:
                    continue
                await self.drain(trigger=trigger)
            except StoreError as e:
                logger.error("Drain failed, will retry: %s", e)
            except Exception:
                logger.exception("Unexpected error in drain worker, will retry")

    async def start(self) -> None:
        """Subscribe to connectivity changes and start the drain worker.

        Drains right away when online and items survived from a previous run.
        """
        if self._worker_task is not None:
            return

        self._unsubscribe = self._monitor.subscribe(self._on_connectivity_change)
        pending = self._store.count()
        logger.info(
            "Sync engine started: pending=%d, online=%s", pending, self._monitor.is_online
        )
        if pending and self._monitor.is_online:
            self._wake.set()
        self._worker_task = asyncio.create_task(self._drain_worker())
        self._notify()

    async def stop(self) -> None:
        """Stop the drain worker. Pending items stay in the store."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

        task, self._worker_task = self._worker_task, None
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
