"""
Tests for journal persistence and queries (obs_todoist/sync/journal.py).
"""

import json
import os

import pytest

from obs_todoist.core.exceptions import JournalError
from obs_todoist.core.models import (
    JOURNAL_VERSION,
    DocumentLocation,
    OperationStatus,
    SyncDirection,
    SyncOperation,
    TaskSyncEntry,
)
from obs_todoist.sync.journal import JournalStore
from obs_todoist.todoist.ids import IdCanonicalizer
from tests.fakes import FakeTodoistService


def make_entry(remote_id="abc", path="Note.md", line=0, **kwargs):
    return TaskSyncEntry(remote_id=remote_id, location=DocumentLocation(path, line), **kwargs)


@pytest.fixture
def journal_path(temp_dir):
    return os.path.join(temp_dir, "data", "sync_journal.json")


@pytest.fixture
def store(journal_path, clock):
    store = JournalStore(journal_path, clock=clock)
    store.load()
    return store


class TestPersistence:

    def test_missing_file_starts_empty(self, journal_path):
        store = JournalStore(journal_path)

        assert store.load() is False
        assert store.is_loaded
        assert store.get_all() == {}
        assert store.journal.version == JOURNAL_VERSION

    def test_round_trip(self, store, journal_path, clock):
        store.upsert(make_entry("abc", block_id="blk1", local_completed=True))
        store.add_operation(SyncOperation("abc", SyncDirection.LOCAL_TO_REMOTE, clock(), {"path": "Note.md"}))
        store.update_stats(total_tasks=1, last_sync_duration=2.0)
        assert store.save()
        assert not store.is_dirty

        reloaded = JournalStore(journal_path)
        assert reloaded.load() is True

        entry = reloaded.get_by_remote_id("abc")
        assert entry.block_id == "blk1"
        assert entry.local_completed is True
        assert entry.location == DocumentLocation("Note.md", 0)
        [op] = reloaded.get_pending_operations()
        assert op.direction == SyncDirection.LOCAL_TO_REMOTE
        assert op.payload == {"path": "Note.md"}
        assert reloaded.journal.stats.total_tasks == 1

    def test_corrupt_journal_recovered_from_backup(self, store, journal_path):
        store.upsert(make_entry("abc"))
        store.save()
        store.upsert(make_entry("def"))
        store.save()
        assert os.path.exists(journal_path + ".backup")

        with open(journal_path, "w", encoding="utf-8") as f:
            f.write("{ not json")

        recovered = JournalStore(journal_path)
        assert recovered.load() is True
        assert set(recovered.get_all()) == {"abc"}

        # The next save must not replace the good backup with the corrupt file
        assert recovered.save()
        with open(journal_path + ".backup", encoding="utf-8") as f:
            assert set(json.load(f)["tasks"]) == {"abc"}
        with open(journal_path, encoding="utf-8") as f:
            assert set(json.load(f)["tasks"]) == {"abc"}

    def test_corrupt_journal_without_backup_starts_empty(self, journal_path):
        os.makedirs(os.path.dirname(journal_path))
        with open(journal_path, "w", encoding="utf-8") as f:
            f.write("[1, 2")

        store = JournalStore(journal_path)

        assert store.load() is False
        assert store.get_all() == {}

    def test_old_version_is_upgraded(self, journal_path):
        os.makedirs(os.path.dirname(journal_path))
        with open(journal_path, "w", encoding="utf-8") as f:
            json.dump({
                "version": "0.9.0",
                "tasks": {
                    "abc": make_entry("abc").to_dict(),
                    "broken": {"location": {}},
                },
            }, f)

        store = JournalStore(journal_path)
        store.load()

        assert store.journal.version == JOURNAL_VERSION
        assert store.is_dirty
        assert set(store.get_all()) == {"abc"}
        assert store.get_pending_operations() == []

    def test_save_failure_is_reported_not_raised(self, temp_dir):
        blocker = os.path.join(temp_dir, "blocker")
        with open(blocker, "w", encoding="utf-8") as f:
            f.write("file, not directory")
        store = JournalStore(os.path.join(blocker, "journal.json"))
        store.load()
        store.upsert(make_entry("abc"))

        assert store.save() is False
        assert store.is_dirty

    def test_save_before_load_is_a_no_op(self, journal_path):
        assert JournalStore(journal_path).save() is False
        assert not os.path.exists(journal_path)

    def test_mutation_before_load_is_rejected(self, journal_path):
        store = JournalStore(journal_path)

        with pytest.raises(JournalError):
            store.upsert(make_entry("abc"))
        with pytest.raises(JournalError):
            store.add_operation(SyncOperation("abc", SyncDirection.LOCAL_TO_REMOTE, 0.0))

    def test_reset_journal_keeps_backup(self, store, journal_path, clock):
        store.upsert(make_entry("abc"))
        store.save()

        backup = store.reset_journal()

        assert backup == f"{journal_path}.reset-backup-{int(clock())}"
        assert os.path.exists(backup)
        assert store.get_all() == {}
        with open(journal_path, encoding="utf-8") as f:
            assert json.load(f)["tasks"] == {}


class TestEntries:

    def test_lookup_by_legacy_id(self, journal_path):
        ids = IdCanonicalizer(FakeTodoistService(legacy_ids={"123456": "6X7rM8997g3RQmvh"}))
        store = JournalStore(journal_path, id_canonicalizer=ids)
        store.load()
        store.upsert(make_entry("6X7rM8997g3RQmvh"))

        assert store.get_by_remote_id("123456").remote_id == "6X7rM8997g3RQmvh"
        assert store.get_by_remote_id("999") is None

    def test_mark_orphaned_keeps_entry(self, store, clock):
        store.upsert(make_entry("abc"))

        assert store.mark_orphaned("abc")
        assert store.is_orphaned("abc")
        assert store.get_by_remote_id("abc").orphaned_at == clock()
        assert "abc" in store.get_all()
        assert not store.mark_orphaned("missing")
        assert not store.is_orphaned("missing")

    def test_rename_task_moves_operations(self, store, clock):
        store.upsert(make_entry("123456"))
        store.add_operation(SyncOperation("123456", SyncDirection.REMOTE_TO_LOCAL, clock()))

        assert store.rename_task("123456", "canon")

        assert set(store.get_all()) == {"canon"}
        assert store.get_by_remote_id("canon").remote_id == "canon"
        assert store.get_pending_operations()[0].task_id == "canon"

    def test_rename_refuses_existing_target(self, store):
        store.upsert(make_entry("a"))
        store.upsert(make_entry("b"))

        assert not store.rename_task("a", "b")
        assert set(store.get_all()) == {"a", "b"}


class TestDeletedRegistry:

    def test_mark_as_deleted_drops_operations(self, store, clock):
        store.add_operation(SyncOperation("abc", SyncDirection.LOCAL_TO_REMOTE, clock()))
        store.add_operation(SyncOperation("def", SyncDirection.LOCAL_TO_REMOTE, clock()))

        store.mark_as_deleted("abc", reason="removed remotely")

        assert store.is_deleted("abc")
        assert not store.is_deleted("def")
        assert [op.task_id for op in store.get_pending_operations()] == ["def"]
        assert store.journal.deleted_tasks["abc"].reason == "removed remotely"

    def test_cleanup_old_deleted_tasks(self, store, clock):
        store.mark_as_deleted("old")
        clock.advance(60 * 86400)
        store.mark_as_deleted("recent")
        clock.advance(31 * 86400)

        assert store.cleanup_old_deleted_tasks(90) == 1
        assert not store.is_deleted("old")
        assert store.is_deleted("recent")


class TestOperations:

    def test_add_operation_coalesces_same_task_and_direction(self, store, clock):
        first = store.add_operation(
            SyncOperation("abc", SyncDirection.REMOTE_TO_LOCAL, clock(), {"line_number": 1})
        )
        second = store.add_operation(
            SyncOperation("abc", SyncDirection.REMOTE_TO_LOCAL, clock() + 5, {"line_number": 4})
        )
        other = store.add_operation(SyncOperation("abc", SyncDirection.LOCAL_TO_REMOTE, clock()))

        assert second is first
        assert first.payload == {"line_number": 4}
        assert len(store.get_pending_operations()) == 2
        assert other in store.get_pending_operations()

    def test_fail_then_complete(self, store, clock):
        op = store.add_operation(SyncOperation("abc", SyncDirection.LOCAL_TO_REMOTE, clock()))
        clock.advance(10)

        failed = store.fail_operation(op.id, "HTTP 503")

        assert failed.status == OperationStatus.FAILED
        assert failed.retry_count == 1
        assert failed.last_error == "HTTP 503"
        assert failed.last_attempt_at == clock()
        assert failed.created_at == clock() - 10

        assert store.complete_operation(op.id)
        assert store.get_pending_operations() == []
        assert not store.complete_operation(op.id)
        assert store.fail_operation(op.id, "gone") is None


class TestBookkeeping:

    def test_update_stats_keeps_running_average(self, store):
        store.update_stats(last_sync_duration=2.0)
        stats = store.update_stats(last_sync_duration=4.0, api_calls_last_sync=3)

        assert stats.total_sync_operations == 2
        assert stats.average_sync_duration == pytest.approx(3.0)
        assert stats.api_calls_last_sync == 3

    def test_update_stats_rejects_unknown_fields(self, store):
        with pytest.raises(AttributeError):
            store.update_stats(bogus=1)

    def test_summary(self, store, clock):
        store.upsert(make_entry("a", local_completed=True, remote_completed=True))
        store.upsert(make_entry("b", is_orphaned=True))
        op = store.add_operation(SyncOperation("c", SyncDirection.LOCAL_TO_REMOTE, clock()))
        store.add_operation(SyncOperation("d", SyncDirection.LOCAL_TO_REMOTE, clock()))
        store.fail_operation(op.id, "x")
        store.touch(last_sync_at=clock())

        summary = store.get_summary()

        assert summary["total_tasks"] == 2
        assert summary["completed_tasks"] == 1
        assert summary["orphaned_tasks"] == 1
        assert summary["pending_operations"] == 1
        assert summary["failed_operations"] == 1
        assert summary["last_sync_at"] == clock()
