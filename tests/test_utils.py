"""
Tests for utility modules (obs_todoist/utils/{io,date,text}.py).
"""

import json
import tempfile
from datetime import timezone
from pathlib import Path

from obs_todoist.utils.date import epoch_to_iso, parse_iso_timestamp, strftime_regex
from obs_todoist.utils.io import atomic_write, copy_file, safe_read_json, safe_write_json
from obs_todoist.utils.text import calculate_similarity, content_hash, fuzzy_filename_matches


class TestIOUtils:
    """Test suite for obs_todoist/utils/io.py."""

    def test_safe_read_json_nonexistent_file(self):
        result = safe_read_json("/nonexistent/file.json", default={"empty": True})

        assert result == {"empty": True}

    def test_safe_read_json_invalid_json(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            test_file = Path(tmpdir) / "invalid.json"
            test_file.write_text("not valid json {{{")

            assert safe_read_json(str(test_file), default={}) == {}

    def test_safe_write_json_creates_directories(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            test_file = Path(tmpdir) / "nested" / "output.json"

            assert safe_write_json(str(test_file), {"b": 1, "a": [1, 2]})
            assert json.loads(test_file.read_text()) == {"a": [1, 2], "b": 1}
            assert safe_read_json(str(test_file)) == {"a": [1, 2], "b": 1}

    def test_safe_write_json_unserializable(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            test_file = Path(tmpdir) / "bad.json"

            assert not safe_write_json(str(test_file), {"x": object()})
            assert not test_file.exists()

    def test_atomic_write_leaves_no_temp_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "note.md"

            assert atomic_write(str(target), "- [ ] one")
            assert atomic_write(str(target), "- [x] one")

            assert target.read_text(encoding="utf-8") == "- [x] one"
            assert not list(Path(tmpdir).glob(".tmp_*"))

    def test_copy_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "a.json"
            source.write_text("{}")

            assert copy_file(str(source), str(Path(tmpdir) / "b.json"))
            assert (Path(tmpdir) / "b.json").read_text() == "{}"
            assert not copy_file(str(Path(tmpdir) / "missing"), str(Path(tmpdir) / "c.json"))


class TestDateUtils:

    def test_parse_iso_timestamp(self):
        parsed = parse_iso_timestamp("2024-03-01T10:15:00.000000Z")

        assert parsed.tzinfo is not None
        assert parsed.utcoffset().total_seconds() == 0
        assert (parsed.hour, parsed.minute) == (10, 15)

    def test_fractional_seconds_of_any_length(self):
        seven = parse_iso_timestamp("2024-03-01T10:15:00.1234567Z")
        one = parse_iso_timestamp("2024-03-01T10:15:00.5Z")

        assert seven.microsecond == 123456
        assert one.microsecond == 500000
        assert parse_iso_timestamp("2024-03-01T10:15:00.123+02:00").utcoffset().total_seconds() == 7200

    def test_naive_timestamps_are_utc(self):
        assert parse_iso_timestamp("2024-03-01T10:15:00").tzinfo == timezone.utc

    def test_unparseable(self):
        assert parse_iso_timestamp(None) is None
        assert parse_iso_timestamp("") is None
        assert parse_iso_timestamp("yesterday") is None

    def test_epoch_to_iso(self):
        assert epoch_to_iso(0) == "1970-01-01T00:00:00+00:00"
        assert epoch_to_iso(None) is None

    def test_strftime_regex(self):
        pattern = strftime_regex("✅ %Y-%m-%d")

        assert pattern.search("- [x] Done ✅ 2024-03-01 ^blk")
        assert not pattern.search("- [x] Done 2024-03-01")
        assert not pattern.search("- [x] Done ✅ soon")


class TestTextUtils:

    def test_content_hash_ignores_surrounding_whitespace(self):
        assert content_hash("- [ ] Task ") == content_hash("- [ ] Task")
        assert content_hash("- [ ] Task") != content_hash("- [x] Task")
        assert content_hash(None) == content_hash("")

    def test_similarity(self):
        assert calculate_similarity("weekly review notes", "weekly review") == 0.8
        assert calculate_similarity("", "anything") == 0.0

    def test_fuzzy_filename_ranking(self):
        candidates = [
            "Archive/weekly review.md",
            "Projects/Weekly Review.md",
            "Other/Weekly Review Notes.md",
            "Unrelated.md",
            "Inbox/Weekly Review.md",
        ]

        assert fuzzy_filename_matches("Weekly Review.md", candidates) == [
            "Inbox/Weekly Review.md",
            "Projects/Weekly Review.md",
            "Archive/weekly review.md",
            "Other/Weekly Review Notes.md",
        ]

    def test_fuzzy_skips_identical_path(self):
        assert fuzzy_filename_matches("Note.md", ["Note.md"]) == []
