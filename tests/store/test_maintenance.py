"""Tests for the background compaction worker."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from devmind.config.models import DevMindConfig, StoreConfig
from devmind.store import MaintenanceEvent, MaintenanceQueue, MaintenanceWorker, MemoryStore, Session
from devmind.store.maintenance import WorkerState


class TestMaintenanceQueue:
    """Pending-event set."""

    def test_repeated_events_collapse(self) -> None:
        queue = MaintenanceQueue()
        for _ in range(10):
            queue.put(MaintenanceEvent.COMPACT)

        assert len(queue) == 1
        assert queue.drain() == [MaintenanceEvent.COMPACT]
        assert len(queue) == 0


class TestMaintenanceWorker:
    """Worker lifecycle and failure handling."""

    def test_compaction_runs_in_background(self, store: MemoryStore) -> None:
        worker = store.maintenance
        worker.start()

        worker.submit(MaintenanceEvent.COMPACT)

        assert worker.wait_idle(timeout=10)
        assert worker.status.completed == 1
        assert worker.status.last_error is None

    def test_submit_before_start_is_deferred(self, store: MemoryStore) -> None:
        """Events queued while stopped wait for the next flush."""
        worker = store.maintenance
        worker.submit(MaintenanceEvent.COMPACT)

        assert worker.status.queue_size == 1
        assert worker.status.completed == 0

    def test_failure_recorded_not_raised(self, store: MemoryStore) -> None:
        worker = MaintenanceWorker(store.db)
        worker.start()
        try:
            with patch.object(store.db, "vacuum", side_effect=RuntimeError("disk full")):
                worker.submit(MaintenanceEvent.COMPACT)
                assert worker.wait_idle(timeout=10)
        finally:
            worker.stop()

        assert worker.status.last_error == "disk full"
        assert worker.status.state is WorkerState.STOPPED


class TestCompactionScheduling:
    """Deletions enqueue compaction every N rows."""

    def test_enqueued_after_threshold(self, tmp_path: Path) -> None:
        config = DevMindConfig(store=StoreConfig(vacuum_every_n_deletes=3))
        store = MemoryStore(tmp_path / "m.db", config, start_maintenance=False)
        try:
            project = store.get_or_create_project("/p")
            session = store.create_session(project.id, "s")
            ids = [store.create_context(session.id, "code", f"row {i}") for i in range(4)]

            with patch.object(store.maintenance, "submit") as submit:
                store.delete_context(ids[0])
                store.delete_context(ids[1])
                submit.assert_not_called()
                store.delete_contexts_batch(ids[2:])
                submit.assert_called_once_with(MaintenanceEvent.COMPACT)
        finally:
            store.close()

    def test_vacuum_keeps_search_working(self, store: MemoryStore, session: Session) -> None:
        """The index keys on seq, which VACUUM leaves alone."""
        ids = [store.create_context(session.id, "code", f"keep {i}") for i in range(5)]
        store.delete_contexts_batch(ids[:3])
        survivor = store.create_context(session.id, "code", "fresh searchable row")

        store.vacuum()

        assert {c.id for c in store.search_contexts("keep")} == set(ids[3:])
        assert [c.id for c in store.search_contexts("searchable")] == [survivor]

    def test_edits_after_vacuum_hit_the_right_rows(self, store: MemoryStore, session: Session) -> None:
        """Updates and deletes after compaction touch only their own index entries."""
        ids = [store.create_context(session.id, "code", f"alpha {i}") for i in range(6)]
        store.delete_contexts_batch(ids[:3])
        before = {c.id: c.seq for c in store.list_all_contexts()}

        store.vacuum()
        store.update_context(ids[3], content="beta rewritten")
        store.delete_context(ids[4])

        assert {c.id: c.seq for c in store.list_all_contexts()} == {
            ids[3]: before[ids[3]],
            ids[5]: before[ids[5]],
        }
        assert [c.id for c in store.search_contexts("alpha")] == [ids[5]]
        assert [c.id for c in store.search_contexts("beta")] == [ids[3]]

    def test_cascade_deletes_count_toward_compaction(self, tmp_path: Path) -> None:
        config = DevMindConfig(store=StoreConfig(vacuum_every_n_deletes=3))
        store = MemoryStore(tmp_path / "m.db", config, start_maintenance=False)
        try:
            project = store.get_or_create_project("/p")
            first = store.create_session(project.id, "first")
            second = store.create_session(project.id, "second")
            for i in range(2):
                store.create_context(first.id, "code", f"first {i}")
                store.create_context(second.id, "code", f"second {i}")

            with patch.object(store.maintenance, "submit") as submit:
                assert store.delete_session(first.id) is True
                submit.assert_not_called()
                store.delete_project(project.id)
                submit.assert_called_once_with(MaintenanceEvent.COMPACT)
        finally:
            store.close()

    def test_missing_session_delete_counts_nothing(self, store: MemoryStore) -> None:
        with patch.object(store.maintenance, "submit") as submit:
            assert store.delete_session("missing") is False
        submit.assert_not_called()
