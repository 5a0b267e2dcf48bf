"""Shared fixtures and fakes for the upload queue tests."""

import asyncio
from collections import Counter
from datetime import datetime, timezone

import pytest

from constructrack.sync import ConnectivityMonitor, QueueItem, QueueStore, SyncEngine, UploadResult


class FakeUploader:
    """In-memory uploader that records calls and fails on demand.

    Attributes:
        fail_destinations: Destinations that fail on every attempt
        failures_left: Per-destination count of failures before succeeding
        delay: Seconds each attempt takes
        gate: Optional event every attempt waits on before finishing
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.fail_destinations: set[str] = set()
        self.failures_left: Counter = Counter()
        self.delay = delay
        self.gate: asyncio.Event | None = None

        self.calls: list[tuple[str, str | None]] = []
        self.delivered: list[str] = []
        self.in_flight: Counter = Counter()
        self.max_in_flight = 0
        self.max_in_flight_per_id = 0
        self.on_upload = None

    async def upload(
        self, payload: bytes, destination: str, item_id: str | None = None
    ) -> UploadResult:
        self.calls.append((destination, item_id))
        key = item_id or destination
        self.in_flight[key] += 1
        self.max_in_flight_per_id = max(self.max_in_flight_per_id, self.in_flight[key])
        self.max_in_flight = max(self.max_in_flight, sum(self.in_flight.values()))
        try:
            if self.on_upload:
                self.on_upload(payload, destination, item_id)
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.gate is not None:
                await self.gate.wait()

            if destination in self.fail_destinations:
                return UploadResult(success=False, error="Server error: 503")
            if self.failures_left[destination] > 0:
                self.failures_left[destination] -= 1
                return UploadResult(success=False, error="Connection error: reset")

            self.delivered.append(destination)
            return UploadResult(success=True, remote_locator=f"https://storage.test/{destination}")
        finally:
            self.in_flight[key] -= 1


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """Poll predicate until it is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)


def make_item(item_id: str, destination: str = "sites/1/photo.jpg", payload: bytes = b"jpeg") -> QueueItem:
    return QueueItem(
        id=item_id,
        payload=payload,
        destination=destination,
        enqueued_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "queue.db"


@pytest.fixture
def store(db_path):
    queue_store = QueueStore(db_path)
    yield queue_store
    queue_store.close()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def monitor():
    return ConnectivityMonitor(initially_online=False)


@pytest.fixture
async def engine(store, uploader, monitor):
    sync_engine = SyncEngine(
        store,
        uploader,
        monitor,
        attempt_timeout=1.0,
        max_concurrency=4,
        drain_interval=60.0,
    )
    yield sync_engine
    await sync_engine.stop()
