"""Re-locating tracked tasks after files move or lines shift."""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Set, Tuple

from ..core.exceptions import DocumentStoreError
from ..core.interfaces import DocumentStore
from ..core.models import BridgeConfig, DocumentLocation, TaskSyncEntry
from ..obsidian.parser import (
    extract_block_id,
    extract_remote_id,
    find_linked_remote_id,
    is_task_line,
    scan_linked_tasks,
)
from ..todoist.ids import IdCanonicalizer
from ..utils.text import fuzzy_filename_matches
from .journal import JournalStore


@dataclass
class PathValidationReport:
    read_only: bool = False
    checked: int = 0
    relocated: List[Tuple[str, str, str]] = field(default_factory=list)
    unresolved: List[str] = field(default_factory=list)
    orphaned: List[str] = field(default_factory=list)


class TaskLocator:
    """Finds the current document and line of tracked tasks.

    Documents are resolved by anchor id first, then by the last known
    path, then by a fuzzy filename match that must still contain the
    task's link. Entries that stay unresolvable past the grace period
    are marked orphaned; they are never removed.
    """

    def __init__(self, journal: JournalStore, documents: DocumentStore, config: BridgeConfig,
                 logger: Optional[logging.Logger] = None,
                 id_canonicalizer: Optional[IdCanonicalizer] = None,
                 clock: Callable[[], float] = time.time):
        self.journal = journal
        self.documents = documents
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self.ids = id_canonicalizer
        self._clock = clock

    def _same_task(self, found_id: str, remote_id: str) -> bool:
        if found_id == remote_id:
            return True
        return self.ids is not None and self.ids.canonicalize(found_id) == remote_id

    def _contains_link(self, path: str, remote_id: str) -> bool:
        try:
            lines = self.documents.read_file(path)
        except DocumentStoreError:
            return False
        for line in lines:
            found = extract_remote_id(line)
            if found and self._same_task(found, remote_id):
                return True
        return False

    def resolve_path(self, entry: TaskSyncEntry, files: Optional[Iterable[str]] = None) -> Optional[str]:
        """Return the document currently holding the entry's task, if it can be found."""
        if entry.document_anchor_id:
            path = self.documents.resolve_by_anchor_id(entry.document_anchor_id)
            if path:
                return path

        known: Set[str] = set(files) if files is not None else set(self.documents.list_files())
        if entry.path in known:
            return entry.path

        for candidate in fuzzy_filename_matches(entry.path, known):
            if self._contains_link(candidate, entry.remote_id):
                self.logger.debug(f"Fuzzy match for {entry.path}: {candidate}")
                return candidate

        return None

    def validate_paths(self, read_only: bool = False) -> PathValidationReport:
        """
        Check every tracked entry's document.

        In read-only mode findings are only logged; otherwise paths are
        updated, the unresolved clock is started or cleared, and entries
        unresolved beyond the grace period are marked orphaned.
        """
        report = PathValidationReport(read_only=read_only)
        now = self._clock()
        grace = self.config.orphan_grace_period_seconds
        files = self.documents.list_files()

        for entry in self.journal.get_all().values():
            if entry.is_orphaned:
                continue
            report.checked += 1

            path = self.resolve_path(entry, files)
            if path is not None:
                if path != entry.path:
                    report.relocated.append((entry.remote_id, entry.path, path))
                    if read_only:
                        self.logger.info(f"[read-only] Task {entry.remote_id} moved: {entry.path} -> {path}")
                    else:
                        self.logger.info(f"Task {entry.remote_id} moved: {entry.path} -> {path}")
                        entry.location = DocumentLocation(path, entry.location.line_number)
                        if not entry.document_anchor_id:
                            entry.document_anchor_id = self.documents.get_anchor_id(path)
                if not read_only and entry.path_unresolved_since is not None:
                    entry.path_unresolved_since = None
                if not read_only:
                    self.journal.upsert(entry)
                continue

            report.unresolved.append(entry.remote_id)
            if read_only:
                self.logger.warning(f"[read-only] Cannot resolve {entry.path} for task {entry.remote_id}")
                continue

            if entry.path_unresolved_since is None:
                entry.path_unresolved_since = now
                self.journal.upsert(entry)

            if now - entry.path_unresolved_since >= grace:
                self.journal.mark_orphaned(entry.remote_id)
                report.orphaned.append(entry.remote_id)
            else:
                self.logger.warning(f"Cannot resolve {entry.path} for task {entry.remote_id}")

        if not read_only:
            self.journal.touch(last_path_validation=now)

        self.logger.debug(
            f"Path validation ({'read-only' if read_only else 'apply'}): {report.checked} checked, "
            f"{len(report.relocated)} moved, {len(report.unresolved)} unresolved, "
            f"{len(report.orphaned)} orphaned"
        )
        return report

    def locate_task_line(self, lines: List[str], entry: TaskSyncEntry) -> Optional[int]:
        """
        Find the entry's task line: by block id, then by its link, then by
        the stored line number if that line is still a task.
        """
        if entry.block_id:
            for index, line in enumerate(lines):
                if is_task_line(line) and extract_block_id(line) == entry.block_id:
                    return index

        for item in scan_linked_tasks(lines):
            if self._same_task(item['remote_id'], entry.remote_id):
                return item['line_number']

        index = entry.location.line_number
        if 0 <= index < len(lines) and is_task_line(lines[index]):
            # A line linked to a different task is not ours
            if find_linked_remote_id(lines, index) is None:
                return index
        return None
