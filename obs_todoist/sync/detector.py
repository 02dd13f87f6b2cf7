"""Discovery of completion drift between vault task lines and Todoist."""

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Union

from ..core.exceptions import DocumentStoreError, RemoteNotFoundError, RemoteServiceError
from ..core.interfaces import DocumentStore, RemoteTaskService
from ..core.models import (
    BridgeConfig,
    CompletionState,
    DocumentLocation,
    RemoteTask,
    SyncDirection,
    SyncOperation,
    SyncScope,
    TaskStatus,
    TaskSyncEntry,
    TieBreak,
    classify_completion,
)
from ..obsidian.parser import scan_linked_tasks
from ..todoist.ids import IdCanonicalizer
from ..utils.date import parse_iso_timestamp
from ..utils.text import content_hash
from .journal import JournalStore


class _NotFound:
    """Marker for remote ids that returned 404 during this scan."""


NOT_FOUND = _NotFound()


def needs_remote_check(state: CompletionState, track_both_completed: bool = False) -> bool:
    """
    Decide whether a task in this category is worth an API call.

    Mismatches and open tasks are always checked, agreed completions only
    when tracking is enabled, deleted tasks never.
    """
    if state == CompletionState.DELETED:
        return False
    if state == CompletionState.BOTH_COMPLETED:
        return track_both_completed
    return True


@dataclass
class DiscoveredTask:
    """A linked task line found in a document."""

    remote_id: str
    path: str
    line_number: int
    completed: bool
    block_id: Optional[str]
    content_hash: str
    raw_line: str
    original_id: str = ""

    def __post_init__(self) -> None:
        if not self.original_id:
            self.original_id = self.remote_id


@dataclass
class ChangeSet:
    """Result of one detection pass."""

    new_tasks: List[TaskSyncEntry] = field(default_factory=list)
    modified_tasks: List[TaskSyncEntry] = field(default_factory=list)
    # Entries whose only change is a fresh check timestamp
    checked_tasks: List[TaskSyncEntry] = field(default_factory=list)
    operations: List[SyncOperation] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    api_calls: int = 0
    tasks_processed: int = 0


class ChangeDetector:
    """Scans linked task lines and compares them against the journal and Todoist.

    Only task lines carrying a Todoist link are tracked, so the cost of a
    scan grows with the number of linked tasks rather than the size of
    the vault. Remote state is fetched per id because the bulk listing
    leaves out completed tasks.
    """

    def __init__(self, journal: JournalStore, id_canonicalizer: IdCanonicalizer,
                 documents: DocumentStore, remote: RemoteTaskService,
                 config: BridgeConfig, logger: Optional[logging.Logger] = None,
                 clock: Callable[[], float] = time.time):
        self.journal = journal
        self.ids = id_canonicalizer
        self.documents = documents
        self.remote = remote
        self.config = config
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self.active_file: Optional[str] = None

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------
    def documents_in_scope(self, file_path: Optional[str] = None) -> List[str]:
        if file_path:
            return [file_path]
        if self.config.sync_scope == SyncScope.FILE:
            if not self.active_file:
                self.logger.debug("File scope selected but no active file set")
                return []
            return [self.active_file]
        return self.documents.list_files()

    def scan_document(self, path: str) -> List[DiscoveredTask]:
        """Return the linked task lines of one document."""
        lines = self.documents.read_file(path)
        found = []
        for item in scan_linked_tasks(lines):
            found.append(DiscoveredTask(
                remote_id=item['remote_id'],
                path=path,
                line_number=item['line_number'],
                completed=item['status'] == TaskStatus.DONE,
                block_id=item['block_id'],
                content_hash=content_hash(item['raw_line']),
                raw_line=item['raw_line'],
            ))
        return found

    def discover(self, file_path: Optional[str] = None,
                 errors: Optional[List[str]] = None) -> Dict[str, DiscoveredTask]:
        """
        Scan documents in scope and key linked tasks by canonical id.

        When the same remote id is linked twice the first occurrence wins.
        """
        discovered: List[DiscoveredTask] = []
        for path in self.documents_in_scope(file_path):
            try:
                discovered.extend(self.scan_document(path))
            except DocumentStoreError as exc:
                self.logger.warning(f"Skipping {path}: {exc}")
                if errors is not None:
                    errors.append(f"{path}: {exc}")

        canonical_ids = self.ids.canonicalize_batch(task.remote_id for task in discovered)

        unique: Dict[str, DiscoveredTask] = {}
        for task in discovered:
            canonical = canonical_ids[task.remote_id]
            if canonical in unique:
                first = unique[canonical]
                self.logger.warning(
                    f"Task {canonical} is linked more than once "
                    f"({first.path}:{first.line_number + 1} and {task.path}:{task.line_number + 1}); "
                    f"using the first"
                )
                continue
            task.remote_id = canonical
            unique[canonical] = task
        return unique

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------
    def _fetch(self, task: DiscoveredTask, cache: Dict[str, Union[RemoteTask, _NotFound]],
               changes: ChangeSet) -> Union[RemoteTask, _NotFound, None]:
        if task.remote_id in cache:
            return cache[task.remote_id]

        changes.api_calls += 1
        try:
            result: Union[RemoteTask, _NotFound] = self.remote.get_task(task.remote_id)
        except RemoteNotFoundError:
            self.logger.debug(f"Task {task.remote_id} not found on Todoist")
            result = NOT_FOUND
        except RemoteServiceError as exc:
            self.logger.warning(f"Could not fetch task {task.remote_id}: {exc}")
            changes.errors.append(f"{task.remote_id}: {exc}")
            return None

        cache[task.remote_id] = result
        cache[task.original_id] = result
        return result

    def _apply_tie_break(self, entry: TaskSyncEntry, remote_task: RemoteTask, now: float) -> None:
        """Both sides completed within one cycle; pick whose completion is recorded."""
        remote_time = parse_iso_timestamp(remote_task.completed_at)
        if self.config.simultaneous_completion == TieBreak.PREFER_REMOTE and remote_time:
            entry.completed_at = remote_time.timestamp()
            entry.completion_source = "remote"
        else:
            entry.completed_at = now
            entry.completion_source = "local"
        self.logger.debug(
            f"Task {entry.remote_id} completed on both sides; recording {entry.completion_source} completion"
        )

    def operation_for(self, entry: TaskSyncEntry, remote_task: RemoteTask,
                       now: float) -> Optional[SyncOperation]:
        if entry.local_completed == entry.remote_completed:
            return None

        payload = {"path": entry.path, "line_number": entry.location.line_number}
        if entry.local_completed:
            direction = SyncDirection.LOCAL_TO_REMOTE
        else:
            direction = SyncDirection.REMOTE_TO_LOCAL
            payload["remote_completed_at"] = remote_task.completed_at
            if remote_task.description:
                payload["remote_description"] = remote_task.description
        return SyncOperation(task_id=entry.remote_id, direction=direction, created_at=now, payload=payload)

    def detect_changes(self, file_path: Optional[str] = None) -> ChangeSet:
        """
        Compare linked task lines against the journal and remote state.

        Returns a ChangeSet whose new_tasks must be upserted before its
        operations are executed. The journal itself is not modified.
        """
        changes = ChangeSet()
        discovered = self.discover(file_path, changes.errors)
        now = self._clock()
        cache: Dict[str, Union[RemoteTask, _NotFound]] = {}
        anchors: Dict[str, Optional[str]] = {}

        for remote_id, task in discovered.items():
            changes.tasks_processed += 1

            if self.journal.is_deleted(remote_id):
                changes.skipped.append(remote_id)
                continue

            existing = self.journal.get_by_remote_id(remote_id)
            if existing is not None and existing.is_orphaned:
                self.logger.debug(f"Skipping orphaned task {remote_id}")
                changes.skipped.append(remote_id)
                continue

            if existing is not None:
                state = classify_completion(task.completed, existing.remote_completed)
                if not needs_remote_check(state, self.config.track_both_completed):
                    refreshed = self._refresh_local(existing, task, now)
                    if refreshed is not None:
                        changes.modified_tasks.append(refreshed)
                    changes.skipped.append(remote_id)
                    continue

            remote_task = self._fetch(task, cache, changes)
            if remote_task is None:
                continue
            if isinstance(remote_task, _NotFound):
                changes.not_found.append(remote_id)
                if existing is not None:
                    checked = replace(existing, last_remote_check_at=now)
                    changes.checked_tasks.append(checked)
                continue

            if existing is None:
                if task.path not in anchors:
                    anchors[task.path] = self.documents.get_anchor_id(task.path)
                entry = TaskSyncEntry(
                    remote_id=remote_id,
                    location=DocumentLocation(task.path, task.line_number),
                    document_anchor_id=anchors[task.path],
                    block_id=task.block_id,
                    local_completed=task.completed,
                    remote_completed=remote_task.completed,
                    local_content_hash=task.content_hash,
                    last_local_check_at=now,
                    last_remote_check_at=now,
                    discovered_at=now,
                )
                if task.completed and remote_task.completed:
                    self._apply_tie_break(entry, remote_task, now)
                changes.new_tasks.append(entry)
            else:
                entry = replace(
                    existing,
                    location=DocumentLocation(task.path, task.line_number),
                    block_id=task.block_id or existing.block_id,
                    local_completed=task.completed,
                    remote_completed=remote_task.completed,
                    local_content_hash=task.content_hash,
                    last_local_check_at=now,
                    last_remote_check_at=now,
                )
                if existing.completion_state() == CompletionState.BOTH_OPEN \
                        and entry.local_completed and entry.remote_completed:
                    self._apply_tie_break(entry, remote_task, now)
                if self._differs(existing, entry):
                    changes.modified_tasks.append(entry)
                else:
                    changes.checked_tasks.append(entry)

            operation = self.operation_for(entry, remote_task, now)
            if operation is not None:
                changes.operations.append(operation)

        self.logger.debug(
            f"Detected {len(changes.new_tasks)} new tasks, {len(changes.modified_tasks)} modified, "
            f"{len(changes.operations)} operations ({changes.api_calls} API calls)"
        )
        return changes

    @staticmethod
    def _differs(before: TaskSyncEntry, after: TaskSyncEntry) -> bool:
        return (
            before.local_completed != after.local_completed
            or before.remote_completed != after.remote_completed
            or before.location != after.location
            or before.block_id != after.block_id
            or before.local_content_hash != after.local_content_hash
        )

    def _refresh_local(self, existing: TaskSyncEntry, task: DiscoveredTask,
                       now: float) -> Optional[TaskSyncEntry]:
        """Return an updated copy if the task's local position or text changed."""
        moved = (
            existing.path != task.path
            or existing.location.line_number != task.line_number
            or existing.local_content_hash != task.content_hash
            or existing.local_completed != task.completed
        )
        if not moved:
            return None
        return replace(
            existing,
            location=DocumentLocation(task.path, task.line_number),
            block_id=task.block_id or existing.block_id,
            local_completed=task.completed,
            local_content_hash=task.content_hash,
            last_local_check_at=now,
        )

    # ------------------------------------------------------------------
    # Journal completeness
    # ------------------------------------------------------------------
    def validate_journal_completeness(self) -> Dict[str, object]:
        """Report linked tasks in the vault that the journal does not track."""
        discovered = self.discover()
        missing = [
            remote_id for remote_id in discovered
            if self.journal.get_by_remote_id(remote_id) is None and not self.journal.is_deleted(remote_id)
        ]
        return {
            "linked_tasks": len(discovered),
            "tracked_tasks": len(discovered) - len(missing),
            "missing": missing,
        }

    def heal_journal(self) -> int:
        """Add untracked linked tasks to the journal; returns how many were added."""
        changes = self.detect_changes()
        for entry in changes.new_tasks:
            self.journal.upsert(entry)
        if changes.new_tasks:
            self.logger.info(f"Added {len(changes.new_tasks)} untracked tasks to the journal")
        return len(changes.new_tasks)
