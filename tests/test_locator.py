"""
Tests for path drift handling and task line location (obs_todoist/sync/locator.py).
"""

from obs_todoist.core.models import DocumentLocation, TaskSyncEntry


LINK = "\t- [🔗 View in Todoist](https://todoist.com/app/task/{})"
DAY = 86400


def note(task_id, text="Buy milk ^blk1", anchor=None):
    header = f"---\nuuid: {anchor}\n---\n" if anchor else ""
    return f"{header}- [ ] {text}\n" + LINK.format(task_id)


def track(harness, task_id, path, line=0, **kwargs):
    entry = TaskSyncEntry(remote_id=task_id, location=DocumentLocation(path, line), **kwargs)
    harness.journal.upsert(entry)
    return entry


class TestResolvePath:

    def test_anchor_id_wins(self, harness):
        harness.documents.files["Renamed.md"] = note("abc", anchor="n1")
        entry = track(harness, "abc", "Old.md", document_anchor_id="n1")

        assert harness.locator.resolve_path(entry) == "Renamed.md"

    def test_known_path(self, harness):
        harness.documents.files["Note.md"] = note("abc")
        entry = track(harness, "abc", "Note.md")

        assert harness.locator.resolve_path(entry) == "Note.md"

    def test_fuzzy_match_must_contain_the_link(self, harness):
        harness.documents.files["Archive/Note.md"] = note("other")
        harness.documents.files["Projects/Note.md"] = note("abc")
        entry = track(harness, "abc", "Note.md")

        assert harness.locator.resolve_path(entry) == "Projects/Note.md"

    def test_unresolvable(self, harness):
        harness.documents.files["Elsewhere.md"] = note("other")
        entry = track(harness, "abc", "Note.md")

        assert harness.locator.resolve_path(entry) is None


class TestValidatePaths:

    def test_read_only_changes_nothing(self, harness):
        harness.documents.files["Projects/Note.md"] = note("abc")
        track(harness, "abc", "Note.md")
        track(harness, "gone", "Gone.md")

        report = harness.locator.validate_paths(read_only=True)

        assert report.relocated == [("abc", "Note.md", "Projects/Note.md")]
        assert report.unresolved == ["gone"]
        assert harness.journal.get_by_remote_id("abc").path == "Note.md"
        assert harness.journal.get_by_remote_id("gone").path_unresolved_since is None
        assert harness.journal.journal.last_path_validation is None

    def test_relocation_updates_entry(self, harness):
        harness.documents.files["Projects/Note.md"] = note("abc", anchor="n1")
        track(harness, "abc", "Note.md", line=3)

        report = harness.locator.validate_paths()

        entry = harness.journal.get_by_remote_id("abc")
        assert report.relocated == [("abc", "Note.md", "Projects/Note.md")]
        assert entry.location == DocumentLocation("Projects/Note.md", 3)
        assert entry.document_anchor_id == "n1"
        assert harness.journal.journal.last_path_validation == harness.clock()

    def test_orphaned_only_after_grace_period(self, harness):
        track(harness, "abc", "Note.md")

        harness.locator.validate_paths()
        entry = harness.journal.get_by_remote_id("abc")
        assert entry.path_unresolved_since == harness.clock()
        assert not entry.is_orphaned

        harness.clock.advance(7 * DAY - 1)
        harness.locator.validate_paths()
        assert not harness.journal.is_orphaned("abc")

        harness.clock.advance(1)
        report = harness.locator.validate_paths()
        assert report.orphaned == ["abc"]
        assert harness.journal.is_orphaned("abc")
        # Orphaning never removes the entry
        assert "abc" in harness.journal.get_all()

    def test_reappearing_file_clears_unresolved_clock(self, harness):
        track(harness, "abc", "Note.md")
        harness.locator.validate_paths()
        harness.clock.advance(3 * DAY)

        harness.documents.files["Note.md"] = note("abc")
        harness.locator.validate_paths()
        harness.clock.advance(5 * DAY)
        harness.locator.validate_paths()

        entry = harness.journal.get_by_remote_id("abc")
        assert entry.path_unresolved_since is None
        assert not entry.is_orphaned

    def test_orphaned_entries_are_not_rechecked(self, harness):
        track(harness, "abc", "Note.md", is_orphaned=True)

        report = harness.locator.validate_paths()

        assert report.checked == 0


class TestLocateTaskLine:

    def test_by_block_id(self, harness):
        lines = ["# Title", "- [ ] Moved ^blk1", "- [ ] Other"]
        entry = TaskSyncEntry("abc", DocumentLocation("Note.md", 2), block_id="blk1")

        assert harness.locator.locate_task_line(lines, entry) == 1

    def test_by_link(self, harness):
        lines = ["- [ ] First", LINK.format("zzz"), "", "- [ ] Mine", LINK.format("abc")]
        entry = TaskSyncEntry("abc", DocumentLocation("Note.md", 0))

        assert harness.locator.locate_task_line(lines, entry) == 3

    def test_by_stored_line_number(self, harness):
        lines = ["# Title", "- [ ] Mine"]
        entry = TaskSyncEntry("abc", DocumentLocation("Note.md", 1))

        assert harness.locator.locate_task_line(lines, entry) == 1

    def test_stored_line_linked_elsewhere_is_rejected(self, harness):
        lines = ["- [ ] Someone else", LINK.format("zzz")]
        entry = TaskSyncEntry("abc", DocumentLocation("Note.md", 0))

        assert harness.locator.locate_task_line(lines, entry) is None

    def test_not_found(self, harness):
        entry = TaskSyncEntry("abc", DocumentLocation("Note.md", 5))

        assert harness.locator.locate_task_line(["just text"], entry) is None
