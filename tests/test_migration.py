"""
Tests for journal migration (obs_todoist/sync/migration.py).
"""

from obs_todoist.core.models import DocumentLocation, SyncDirection, SyncOperation, TaskSyncEntry
from obs_todoist.sync.migration import JournalMigration


def test_legacy_ids_are_rekeyed(harness):
    harness.remote.legacy_ids["123456"] = "6X7rM8997g3RQmvh"
    harness.journal.upsert(TaskSyncEntry("123456", DocumentLocation("Note.md", 0)))
    harness.journal.upsert(TaskSyncEntry("999", DocumentLocation("Note.md", 4)))
    harness.journal.upsert(TaskSyncEntry("already", DocumentLocation("Note.md", 8)))
    harness.journal.add_operation(SyncOperation("123456", SyncDirection.LOCAL_TO_REMOTE, harness.clock()))

    report = JournalMigration(harness.journal, harness.ids, harness.documents).run()

    assert report.ids_migrated == 1
    assert report.ids_failed == 1
    assert set(harness.journal.get_all()) == {"6X7rM8997g3RQmvh", "999", "already"}
    assert harness.journal.get_pending_operations()[0].task_id == "6X7rM8997g3RQmvh"


def test_anchor_ids_are_backfilled(harness):
    harness.documents.files["Note.md"] = "---\nuuid: n1\n---\n- [ ] Task"
    harness.journal.upsert(TaskSyncEntry("abc", DocumentLocation("Note.md", 3)))
    harness.journal.upsert(TaskSyncEntry("def", DocumentLocation("Missing.md", 0)))

    report = JournalMigration(harness.journal, harness.ids, harness.documents).run()

    assert report.anchors_added == 1
    assert harness.journal.get_by_remote_id("abc").document_anchor_id == "n1"
    assert harness.journal.get_by_remote_id("def").document_anchor_id is None


def test_migration_is_idempotent(harness):
    harness.remote.legacy_ids["123456"] = "canon1"
    harness.documents.files["Note.md"] = "---\nuuid: n1\n---\n- [ ] Task"
    harness.journal.upsert(TaskSyncEntry("123456", DocumentLocation("Note.md", 3)))
    migration = JournalMigration(harness.journal, harness.ids, harness.documents)

    assert migration.run().changed
    before = {key: entry.to_dict() for key, entry in harness.journal.get_all().items()}
    second = migration.run()

    assert not second.changed
    assert {key: entry.to_dict() for key, entry in harness.journal.get_all().items()} == before
