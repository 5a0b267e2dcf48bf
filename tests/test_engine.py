"""Tests for the sync engine: submit, drain, triggers and failure handling."""

import asyncio
import random
import sqlite3

import pytest

from conftest import FakeUploader, make_item, wait_until
from constructrack.exceptions import PermanentRejection, StoreError, TransientDeliveryFailure
from constructrack.sync import ConnectivityMonitor, QueueStore, SyncEngine, SyncStatus


class TestSubmit:
    """Immediate delivery when online, durable queueing otherwise."""

    async def test_offline_submit_is_persisted(self, engine, store, uploader):
        item_id = await engine.submit(b"photo-a", "sites/1/a.jpg")

        assert uploader.calls == []
        assert [item.id for item in store.get_all()] == [item_id]
        assert engine.state.pending_count == 1

    async def test_online_submit_delivers_without_touching_store(self, engine, store, uploader, monitor):
        monitor.report(True)
        written = []
        original_put = store.put
        store.put = lambda item: written.append(item) or original_put(item)

        item_id = await engine.submit(b"photo-a", "sites/1/a.jpg")

        assert uploader.calls == [("sites/1/a.jpg", item_id)]
        assert written == []
        assert store.count() == 0

    async def test_failed_immediate_upload_is_persisted(self, engine, store, uploader, monitor):
        monitor.report(True)
        uploader.fail_destinations.add("sites/1/a.jpg")

        item_id = await engine.submit(b"photo-a", "sites/1/a.jpg")

        item = store.get(item_id)
        assert item is not None
        assert item.attempts == 1
        assert item.last_error == "Server error: 503"

    async def test_crashing_uploader_still_persists(self, store, monitor):
        class CrashingUploader:
            async def upload(self, payload, destination, item_id=None):
                raise RuntimeError("socket closed")

        monitor.report(True)
        engine = SyncEngine(store, CrashingUploader(), monitor)

        item_id = await engine.submit(b"photo", "sites/1/a.jpg")

        assert store.get(item_id).last_error == "RuntimeError: socket closed"

    async def test_empty_destination_rejected(self, engine, store):
        with pytest.raises(ValueError):
            await engine.submit(b"photo", "")
        assert store.count() == 0

    async def test_payload_is_copied(self, engine, store):
        buffer = bytearray(b"original")
        item_id = await engine.submit(buffer, "sites/1/a.jpg")

        buffer[:] = b"mutated!"

        assert store.get(item_id).payload == b"original"

    async def test_ids_are_unique(self, engine):
        ids = {await engine.submit(b"p", f"sites/1/{i}.jpg") for i in range(20)}
        assert len(ids) == 20

    async def test_enqueued_at_is_non_decreasing(self, engine, store):
        for i in range(10):
            await engine.submit(b"p", f"sites/1/{i}.jpg")

        stamps = [item.enqueued_at for item in store.get_all()]
        assert stamps == sorted(stamps)

    async def test_store_error_propagates_to_caller(self, uploader, monitor):
        class FullDiskStore(QueueStore):
            def put(self, item):
                raise StoreError("database or disk is full")

        store = FullDiskStore(":memory:")
        engine = SyncEngine(store, uploader, monitor)

        with pytest.raises(StoreError):
            await engine.submit(b"photo", "sites/1/a.jpg")
        store.close()


class TestDrain:
    """Draining the store."""

    async def test_drain_on_empty_store_is_noop(self, engine, uploader):
        state = await engine.drain()

        assert uploader.calls == []
        assert state.sync_status == SyncStatus.SYNCED
        assert state.pending_count == 0

    async def test_offline_then_online_scenario(self, engine, store, uploader, monitor):
        """Submit A offline, come online, drain delivers and empties the store."""
        await engine.start()
        await engine.submit(b"photo-a", "sites/1/a.jpg")
        assert store.count() == 1
        assert engine.state.pending_count == 1

        monitor.report(True)
        await wait_until(lambda: engine.status == SyncStatus.SYNCED)

        assert uploader.delivered == ["sites/1/a.jpg"]
        assert store.count() == 0
        assert engine.state.pending_count == 0

    async def test_partial_failure_then_manual_retry(self, engine, store, uploader, monitor):
        """B fails and C succeeds; a later manual retry delivers B."""
        id_b = await engine.submit(b"photo-b", "sites/1/b.jpg")
        await engine.submit(b"photo-c", "sites/1/c.jpg")
        monitor.report(True)
        uploader.fail_destinations.add("sites/1/b.jpg")

        state = await engine.drain()

        assert [item.id for item in store.get_all()] == [id_b]
        assert state.pending_count == 1
        assert state.sync_status == SyncStatus.ERROR

        uploader.fail_destinations.clear()
        state = await engine.retry_sync()

        assert store.count() == 0
        assert state.sync_status == SyncStatus.SYNCED
        assert sorted(uploader.delivered) == ["sites/1/b.jpg", "sites/1/c.jpg"]

    async def test_failed_items_record_attempts(self, engine, store, uploader):
        item_id = await engine.submit(b"photo", "sites/1/a.jpg")
        uploader.fail_destinations.add("sites/1/a.jpg")

        await engine.drain()
        await engine.drain()

        assert store.get(item_id).attempts == 2

    async def test_no_premature_deletion(self, engine, store, uploader):
        item_id = await engine.submit(b"photo", "sites/1/a.jpg")
        seen_in_store = []
        uploader.on_upload = lambda payload, destination, iid: seen_in_store.append(
            store.get(iid) is not None
        )

        await engine.drain()

        assert seen_in_store == [True]
        assert store.get(item_id) is None

    async def test_uploader_exceptions_do_not_escape(self, store, monitor):
        class RejectingUploader:
            async def upload(self, payload, destination, item_id=None):
                if destination.startswith("bad/"):
                    raise PermanentRejection("Client error: 400", status_code=400)
                raise TransientDeliveryFailure("Connection error")

        engine = SyncEngine(store, RejectingUploader(), monitor)
        bad_id = await engine.submit(b"p", "bad/path.jpg")
        await engine.submit(b"p", "sites/1/a.jpg")

        state = await engine.drain()

        assert state.pending_count == 2
        assert state.sync_status == SyncStatus.ERROR
        assert store.get(bad_id).last_error == "Client error: 400"

    async def test_slow_upload_times_out(self, store, monitor):
        uploader = FakeUploader(delay=1.0)
        engine = SyncEngine(store, uploader, monitor, attempt_timeout=0.05)
        item_id = await engine.submit(b"p", "sites/1/a.jpg")

        state = await engine.drain()

        assert state.sync_status == SyncStatus.ERROR
        assert store.get(item_id).last_error.startswith("Timed out")

    async def test_concurrency_is_bounded(self, store, monitor):
        uploader = FakeUploader(delay=0.02)
        engine = SyncEngine(store, uploader, monitor, max_concurrency=2)
        for i in range(6):
            await engine.submit(b"p", f"sites/1/{i}.jpg")

        await engine.drain()

        assert uploader.max_in_flight == 2
        assert store.count() == 0

    async def test_store_error_during_drain_propagates(self, uploader, monitor):
        class BrokenDeleteStore(QueueStore):
            def delete(self, item_id):
                raise StoreError("disk I/O error")

        store = BrokenDeleteStore(":memory:")
        engine = SyncEngine(store, uploader, monitor)
        await engine.submit(b"p", "sites/1/a.jpg")
        await engine.submit(b"p", "sites/1/b.jpg")

        with pytest.raises(StoreError):
            await engine.drain()

        # Both attempts still ran and nothing was lost
        assert len(uploader.calls) == 2
        assert store.count() == 2
        assert engine.status == SyncStatus.ERROR
        store.close()

    async def test_corrupt_row_ends_drain_in_error(self, engine, store, db_path, uploader):
        await engine.submit(b"p", "sites/1/a.jpg")
        conn = sqlite3.connect(db_path)
        with conn:
            conn.execute("UPDATE pending_uploads SET enqueued_at = 'garbage'")
        conn.close()

        with pytest.raises(StoreError):
            await engine.drain()

        assert engine.status == SyncStatus.ERROR
        assert uploader.calls == []
        assert store.count() == 1


class TestDrainConcurrency:
    """Overlapping drains are coalesced; no id is uploaded twice at once."""

    async def test_overlapping_drain_is_skipped(self, engine, store, uploader):
        for i in range(3):
            await engine.submit(b"p", f"sites/1/{i}.jpg")
        uploader.gate = asyncio.Event()

        first = asyncio.create_task(engine.drain())
        await wait_until(lambda: len(uploader.calls) == 3)
        assert engine.status == SyncStatus.SYNCING

        second = await engine.drain()
        assert second.sync_status == SyncStatus.SYNCING
        assert len(uploader.calls) == 3

        uploader.gate.set()
        state = await first

        assert state.sync_status == SyncStatus.SYNCED
        assert uploader.max_in_flight_per_id == 1
        assert len(uploader.calls) == 3

    async def test_many_concurrent_drains_never_duplicate(self, engine, store, uploader):
        uploader.delay = 0.01
        for i in range(10):
            await engine.submit(b"p", f"sites/1/{i}.jpg")

        await asyncio.gather(*(engine.drain() for _ in range(5)))

        assert uploader.max_in_flight_per_id == 1
        assert sorted(uploader.delivered) == sorted(f"sites/1/{i}.jpg" for i in range(10))
        assert store.count() == 0

    async def test_cancelled_drain_keeps_unconfirmed_items(self, engine, store, uploader):
        for i in range(3):
            await engine.submit(b"p", f"sites/1/{i}.jpg")
        uploader.gate = asyncio.Event()

        task = asyncio.create_task(engine.drain())
        await wait_until(lambda: len(uploader.calls) == 3)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert store.count() == 3
        assert engine.status == SyncStatus.ERROR

        # The queue recovers on the next drain
        uploader.gate = None
        state = await engine.drain()
        assert state.pending_count == 0


class TestStateMachine:
    """Status transitions and observer notifications."""

    async def test_initial_status_is_idle(self, engine):
        assert engine.status == SyncStatus.IDLE
        assert engine.state.is_online is False

    async def test_error_is_not_terminal(self, engine, uploader):
        await engine.submit(b"p", "sites/1/a.jpg")
        uploader.fail_destinations.add("sites/1/a.jpg")
        await engine.drain()
        assert engine.status == SyncStatus.ERROR

        uploader.fail_destinations.clear()
        await engine.drain()
        assert engine.status == SyncStatus.SYNCED

    async def test_acknowledge_resets_to_idle(self, engine):
        await engine.drain()
        engine.acknowledge()
        assert engine.status == SyncStatus.IDLE

    async def test_going_offline_resets_to_idle(self, engine, monitor):
        await engine.start()
        await engine.drain()
        assert engine.status == SyncStatus.SYNCED

        monitor.report(True)
        monitor.report(False)

        assert engine.status == SyncStatus.IDLE

    async def test_state_callbacks_see_transitions(self, engine):
        seen = []
        engine.on_state_change(seen.append)

        await engine.submit(b"p", "sites/1/a.jpg")
        await engine.drain()

        statuses = [state.sync_status for state in seen]
        assert statuses == [SyncStatus.IDLE, SyncStatus.SYNCING, SyncStatus.SYNCED]
        assert [state.pending_count for state in seen] == [1, 1, 0]

    async def test_state_to_dict(self, engine):
        await engine.submit(b"p", "sites/1/a.jpg")

        data = engine.state.to_dict()

        assert data["pending_count"] == 1
        assert data["sync_status"] == "idle"
        assert data["is_online"] is False
        assert data["oldest_enqueued_at"] is not None


class TestTriggers:
    """Background drains: start-up, online edges and the periodic timer."""

    async def test_crash_recovery(self, db_path):
        # Previous run left three items behind
        with QueueStore(db_path) as old_store:
            for name in ("a", "b", "c"):
                old_store.put(make_item(name, destination=f"sites/1/{name}.jpg"))

        store = QueueStore(db_path)
        uploader = FakeUploader()
        uploader.fail_destinations.add("sites/1/b.jpg")
        monitor = ConnectivityMonitor(initially_online=False)
        engine = SyncEngine(store, uploader, monitor, drain_interval=60.0)
        try:
            await engine.start()
            assert engine.state.pending_count == 3
            assert uploader.calls == []

            monitor.report(True)
            await wait_until(lambda: engine.status == SyncStatus.ERROR)

            assert engine.state.pending_count == 1
            assert [item.id for item in store.get_all()] == ["b"]
        finally:
            await engine.stop()
            store.close()

    async def test_start_online_with_pending_items_drains(self, store, uploader):
        store.put(make_item("leftover", destination="sites/1/leftover.jpg"))
        monitor = ConnectivityMonitor(initially_online=True)
        engine = SyncEngine(store, uploader, monitor, drain_interval=60.0)
        try:
            await engine.start()
            await wait_until(lambda: store.count() == 0)
        finally:
            await engine.stop()

        assert uploader.delivered == ["sites/1/leftover.jpg"]

    async def test_timer_retries_without_connectivity_events(self, store, monitor):
        """Online per the platform, endpoint down: the timer keeps retrying."""
        uploader = FakeUploader()
        uploader.failures_left["sites/1/a.jpg"] = 2
        monitor.report(True)
        engine = SyncEngine(store, uploader, monitor, drain_interval=0.02)
        uploader.fail_destinations.add("sites/1/a.jpg")
        await engine.submit(b"p", "sites/1/a.jpg")
        uploader.fail_destinations.clear()
        try:
            await engine.start()
            await wait_until(lambda: store.count() == 0)
        finally:
            await engine.stop()

        assert engine.status == SyncStatus.SYNCED
        assert len(uploader.calls) == 4

    async def test_timer_does_nothing_while_offline(self, store, uploader, monitor):
        engine = SyncEngine(store, uploader, monitor, drain_interval=0.01)
        await engine.submit(b"p", "sites/1/a.jpg")
        try:
            await engine.start()
            await asyncio.sleep(0.1)
        finally:
            await engine.stop()

        assert uploader.calls == []
        assert store.count() == 1

    async def test_stop_leaves_items_pending(self, engine, store):
        await engine.start()
        await engine.submit(b"p", "sites/1/a.jpg")
        await engine.stop()

        assert store.count() == 1


    async def test_worker_survives_failing_drain(self, db_path, uploader, monitor):
        class FlakyStore(QueueStore):
            snapshot_failures = 0

            def get_all(self):
                if self.snapshot_failures:
                    self.snapshot_failures -= 1
                    raise RuntimeError("driver crashed")
                return super().get_all()

        store = FlakyStore(db_path)
        engine = SyncEngine(store, uploader, monitor, drain_interval=0.02)
        await engine.submit(b"p", "sites/1/a.jpg")
        try:
            await engine.start()
            store.snapshot_failures = 2
            monitor.report(True)
            await wait_until(lambda: store.count() == 0)

            assert store.snapshot_failures == 0
            assert not engine._worker_task.done()
        finally:
            await engine.stop()
            store.close()

        assert uploader.delivered == ["sites/1/a.jpg"]
        assert engine.status == SyncStatus.SYNCED


class TestAtLeastOnceDelivery:
    """Randomized interleavings of submits, outages and transient failures."""

    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_every_submission_eventually_delivered(self, store, seed):
        rng = random.Random(seed)
        uploader = FakeUploader()
        monitor = ConnectivityMonitor(initially_online=rng.choice([True, False]))
        engine = SyncEngine(store, uploader, monitor, max_concurrency=3)

        submitted = []
        for i in range(30):
            destination = f"sites/{seed}/{i}.jpg"
            uploader.failures_left[destination] = rng.randint(0, 3)
            await engine.submit(b"photo", destination)
            submitted.append(destination)

            if rng.random() < 0.3:
                monitor.report(not monitor.is_online)
            if rng.random() < 0.2:
                await engine.drain()

        monitor.report(True)
        for _ in range(5):
            if store.count() == 0:
                break
            await engine.drain()

        assert store.count() == 0
        assert set(uploader.delivered) == set(submitted)
        assert uploader.max_in_flight_per_id == 1
