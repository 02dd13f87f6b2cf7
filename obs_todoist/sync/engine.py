"""Main sync engine orchestrating completion sync between the vault and Todoist."""

import logging
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Set

from ..core.exceptions import (
    DocumentStoreError,
    ObsTodoistError,
    RemoteNotFoundError,
    RemoteServiceError,
    SyncError,
    TaskLineNotFoundError,
)
from ..core.interfaces import DocumentStore, RemoteTaskService
from ..core.models import (
    BridgeConfig,
    DescriptionSyncMode,
    DocumentLocation,
    OperationStatus,
    SyncDirection,
    SyncOperation,
    SyncPhase,
    SyncProgress,
    SyncResult,
    TaskStatus,
    TaskSyncEntry,
    TimestampSource,
    classify_completion,
)
from ..obsidian.parser import (
    add_completion_timestamp,
    get_task_status,
    insert_description,
    mark_task_completed,
)
from ..todoist.ids import IdCanonicalizer
from ..utils.date import parse_iso_timestamp
from ..utils.text import content_hash
from .detector import ChangeDetector, ChangeSet, needs_remote_check
from .journal import JournalStore
from .locator import TaskLocator
from .migration import JournalMigration


# Retry delays indexed by retry count, capped at the last value
BACKOFF_LADDER = (60, 5 * 60, 15 * 60, 60 * 60, 6 * 60 * 60, 24 * 60 * 60)


def backoff_delay(retry_count: int) -> float:
    index = min(max(retry_count, 0), len(BACKOFF_LADDER) - 1)
    return float(BACKOFF_LADDER[index])


def is_retry_due(operation: SyncOperation, now: float) -> bool:
    """A failed operation is retried once its age reaches the ladder delay."""
    return now - operation.created_at >= backoff_delay(operation.retry_count)


class SyncEngine:
    """Poll-based engine that converges task completion on both sides.

    A single logical worker runs cycles from a periodic timer and from
    on-demand triggers. Cycles never overlap: timer ticks that land
    during a cycle are dropped, manual triggers are coalesced into one
    re-run after the in-flight cycle, and targeted syncs wait their turn.
    """

    def __init__(
        self,
        config: BridgeConfig,
        journal: JournalStore,
        detector: ChangeDetector,
        documents: DocumentStore,
        remote: RemoteTaskService,
        id_canonicalizer: IdCanonicalizer,
        locator: Optional[TaskLocator] = None,
        migration: Optional[JournalMigration] = None,
        logger: Optional[logging.Logger] = None,
        clock: Callable[[], float] = time.time,
        progress_callback: Optional[Callable[[SyncProgress], None]] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.config = config
        self.journal = journal
        self.detector = detector
        self.documents = documents
        self.remote = remote
        self.ids = id_canonicalizer
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock
        self.locator = locator or TaskLocator(
            journal, documents, config, logger=self.logger, id_canonicalizer=id_canonicalizer, clock=clock
        )
        self.migration = migration or JournalMigration(
            journal, id_canonicalizer, documents, logger=self.logger
        )
        self.progress_callback = progress_callback
        self.notify = notify

        # Scheduling state
        self.running = False
        self._stop_event = threading.Event()
        self._timer_thread: Optional[threading.Thread] = None
        self._deferred_timer: Optional[threading.Timer] = None

        # One cycle at a time; _state_lock guards the coalescing flag
        self._cycle_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._rerun_requested = False

        self._path_locks: Dict[str, threading.Lock] = {}
        self._path_locks_guard = threading.Lock()

        self._progress: Optional[SyncProgress] = None
        self._last_notification_at: Optional[float] = None
        self.last_result: Optional[SyncResult] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_syncing(self) -> bool:
        return self._cycle_lock.locked()

    def start(self) -> None:
        """
        Fast path: load the journal and arm the timer. Migration, read-only
        path validation and the first sync run later on the deferred tick.
        """
        if self.running:
            self.logger.debug("Sync engine already running")
            return

        if not self.journal.is_loaded:
            self.journal.load()

        self._stop_event.clear()
        self.running = True

        self._timer_thread = threading.Thread(
            target=self._timer_loop, name="obs-todoist-sync", daemon=True
        )
        self._timer_thread.start()

        self._deferred_timer = threading.Timer(self.config.startup_delay_seconds, self._deferred_init)
        self._deferred_timer.daemon = True
        self._deferred_timer.start()

        self.logger.info(
            f"Sync engine started (every {self.config.sync_interval_seconds:.0f}s, "
            f"first sync in {self.config.startup_delay_seconds:.1f}s)"
        )

    def stop(self) -> None:
        """Stop scheduling new cycles and flush the journal; in-flight calls finish on their own."""
        self._stop_event.set()
        if self._deferred_timer is not None:
            self._deferred_timer.cancel()
            self._deferred_timer = None
        self._timer_thread = None

        was_running = self.running
        self.running = False
        if self.journal.is_loaded:
            self.journal.save()
        if was_running:
            self.logger.info("Sync engine stopped")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until stop() is called; returns True if it was."""
        return self._stop_event.wait(timeout)

    def _timer_loop(self) -> None:
        while not self._stop_event.wait(self.config.sync_interval_seconds):
            self._run_scheduled(self.perform_sync)

    def _deferred_init(self) -> None:
        if self._stop_event.is_set():
            return
        self._run_scheduled(self.initialize)

    def _run_scheduled(self, func: Callable[[], object]) -> None:
        # The next tick starts from scratch, so a failed cycle is only logged
        try:
            func()
        except ObsTodoistError as exc:
            self.logger.error(f"Scheduled sync failed: {exc}")
        except Exception as exc:
            # Any other error would end the timer thread for good
            self.logger.exception(f"Scheduled sync failed unexpectedly: {exc}")

    def initialize(self) -> Optional[SyncResult]:
        """Deferred startup work: journal migration, read-only path check, first sync."""
        if not self.journal.is_loaded:
            self.journal.load()

        with self._cycle_lock:
            self.migration.run()
            self.locator.validate_paths(read_only=True)
            if self.journal.is_dirty:
                self.journal.save()

        return self.perform_sync()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def perform_sync(self) -> SyncResult:
        """Run one full cycle; skipped if the journal is not loaded or a cycle is in flight."""
        if not self.journal.is_loaded:
            self.logger.debug("Journal not loaded yet, skipping sync cycle")
            return SyncResult(skipped=True)

        result = self._run_exclusive(coalesce=False)
        if result is None:
            self.logger.debug("Sync already in progress, skipping timer tick")
            return SyncResult(skipped=True)
        return result

    def trigger_manual_sync(self) -> SyncResult:
        """Run a cycle now, or queue one re-run behind the cycle in flight."""
        if not self.journal.is_loaded:
            self.journal.load()

        result = self._run_exclusive(coalesce=True)
        if result is None:
            self.logger.info("Sync in progress; manual sync queued")
            return SyncResult(skipped=True)
        return result

    def _run_exclusive(self, coalesce: bool) -> Optional[SyncResult]:
        with self._state_lock:
            if not self._cycle_lock.acquire(blocking=False):
                if coalesce:
                    self._rerun_requested = True
                return None

        try:
            result = self._run_cycle()
            while True:
                with self._state_lock:
                    if not self._rerun_requested:
                        self._cycle_lock.release()
                        return result
                    self._rerun_requested = False
                self.logger.debug("Running queued manual sync")
                result = self._run_cycle()
        except BaseException:
            if self._cycle_lock.locked():
                self._cycle_lock.release()
            raise

    def sync_single_task(self, task_id: str) -> SyncResult:
        """Bring one tracked task into agreement, outside the regular cycle."""
        with self._cycle_lock:
            result = SyncResult()
            started = self._clock()
            canonical = self.ids.canonicalize(task_id)
            entry = self.journal.get_by_remote_id(canonical)
            if entry is None:
                result.errors.append(f"Task {task_id} is not tracked")
                return result
            if entry.is_orphaned or self.journal.is_deleted(entry.remote_id):
                self.logger.debug(f"Skipping deleted task {entry.remote_id}")
                result.skipped = True
                return result

            try:
                lines = self.documents.read_file(entry.path)
            except DocumentStoreError as exc:
                result.errors.append(f"{entry.remote_id}: {exc}")
                return result

            index = self.locator.locate_task_line(lines, entry)
            if index is None:
                result.errors.append(f"{entry.remote_id}: task line not found in {entry.path}")
                return result
            local_completed = get_task_status(lines[index]) == TaskStatus.DONE

            state = classify_completion(local_completed, entry.remote_completed)
            if not needs_remote_check(state, self.config.track_both_completed):
                self.logger.debug(f"Task {entry.remote_id} is {state.value}; nothing to check")
                result.skipped = True
                return result

            result.api_calls += 1
            try:
                remote_task = self.remote.get_task(entry.remote_id)
            except RemoteNotFoundError:
                self.logger.info(f"Task {entry.remote_id} no longer exists on Todoist")
                return result
            except RemoteServiceError as exc:
                result.errors.append(f"{entry.remote_id}: {exc}")
                return result

            now = self._clock()
            entry.location = DocumentLocation(entry.path, index)
            entry.local_completed = local_completed
            entry.remote_completed = remote_task.completed
            entry.local_content_hash = content_hash(lines[index])
            entry.last_local_check_at = now
            entry.last_remote_check_at = now
            self.journal.upsert(entry)

            operation = self.detector.operation_for(entry, remote_task, now)
            if operation is not None:
                queued = self.journal.add_operation(operation)
                self._execute_batch([queued], result)

            result.duration = self._clock() - started
            self.journal.save()
            return result

    def sync_tasked_document(self, path: str) -> SyncResult:
        """Sync only the linked tasks of one document (e.g. after it was saved)."""
        with self._cycle_lock:
            result = SyncResult()
            started = self._clock()
            try:
                changes = self.detector.detect_changes(file_path=path)
            except ObsTodoistError as exc:
                result.errors.append(str(exc))
                return result

            self._apply_changes(changes, result)
            operations = [
                op for op in self.journal.get_pending_operations()
                if op.status == OperationStatus.PENDING and self._operation_path(op) == path
            ]
            self._execute_batch(operations, result)
            result.duration = self._clock() - started
            self.journal.save()
            return result

    def reset_sync_journal(self) -> Optional[str]:
        """Start over with an empty journal; returns the backup path."""
        with self._cycle_lock:
            backup = self.journal.reset_journal()
            self.ids.clear_cache()
            return backup

    def get_sync_progress(self) -> Optional[SyncProgress]:
        return self._progress

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------
    def _set_phase(self, phase: SyncPhase) -> None:
        if self._progress is None:
            return
        self._progress.phase = phase
        self.logger.debug(f"Sync phase: {phase.value}")
        self._report_progress()

    def _report_progress(self) -> None:
        if self.progress_callback and self.config.show_sync_progress and self._progress:
            self.progress_callback(self._progress)

    def _run_cycle(self) -> SyncResult:
        if not self.journal.is_loaded:
            raise SyncError("Sync journal is not loaded")

        started = self._clock()
        result = SyncResult()
        self._progress = SyncProgress(started_at=started)
        tasks_processed = 0
        attempted: Set[str] = set()

        try:
            self._set_phase(SyncPhase.DISCOVERY)
            last_validation = self.journal.journal.last_path_validation
            if last_validation is None or \
                    started - last_validation >= self.config.path_validation_interval_seconds:
                self.locator.validate_paths(read_only=False)

            self._set_phase(SyncPhase.CHANGE_DETECTION)
            changes = self.detector.detect_changes()
            tasks_processed = changes.tasks_processed
            self._apply_changes(changes, result)
            self.journal.touch(last_vault_scan=self._clock())

            self._set_phase(SyncPhase.OPERATIONS)
            pending = [
                op for op in self.journal.get_pending_operations()
                if op.status == OperationStatus.PENDING
            ]
            attempted.update(op.id for op in pending)
            self._execute_batch(pending, result)

            self._set_phase(SyncPhase.RETRY_FAILED)
            now = self._clock()
            due = [
                op for op in self.journal.get_pending_operations()
                if op.status == OperationStatus.FAILED and op.id not in attempted and is_retry_due(op, now)
            ]
            result.retried = len(due)
            self._execute_batch(due, result)
        except ObsTodoistError as exc:
            self.logger.error(f"Sync cycle aborted: {exc}")
            result.errors.append(str(exc))
        finally:
            self._finish_cycle(result, started, tasks_processed)

        return result

    def _finish_cycle(self, result: SyncResult, started: float, tasks_processed: int) -> None:
        self._set_phase(SyncPhase.COMPLETE)
        finished = self._clock()
        result.duration = finished - started

        self.journal.update_stats(
            total_tasks=len(self.journal.get_all()),
            new_tasks_found=result.new_tasks,
            operations_completed=result.operations_completed,
            operations_failed=result.operations_failed,
            tasks_processed_last_sync=tasks_processed,
            api_calls_last_sync=result.api_calls,
            last_sync_duration=result.duration,
        )
        self.journal.touch(last_sync_at=finished)
        self.journal.cleanup_old_deleted_tasks(self.config.deleted_task_retention_days)
        self.ids.cleanup_expired_cache()
        self.journal.save()

        self.last_result = result
        self._announce(result, finished)

    def _announce(self, result: SyncResult, now: float) -> None:
        """Rate-limited cycle summary."""
        summary = result.summary()
        quiet = (
            self._last_notification_at is not None
            and now - self._last_notification_at < self.config.notification_interval_seconds
        )
        if quiet and not result.errors:
            self.logger.debug(summary)
            return

        self._last_notification_at = now
        if result.errors:
            self.logger.warning(summary)
        else:
            self.logger.info(summary)
        if self.notify:
            self.notify(summary)

    def _apply_changes(self, changes: ChangeSet, result: SyncResult) -> None:
        for entry in changes.new_tasks:
            self.journal.upsert(entry)
        for entry in changes.modified_tasks + changes.checked_tasks:
            self.journal.upsert(entry)
        for operation in changes.operations:
            self.journal.add_operation(operation)

        result.new_tasks += len(changes.new_tasks)
        result.api_calls += changes.api_calls
        result.errors.extend(changes.errors)
        if changes.new_tasks:
            self.logger.info(f"Tracking {len(changes.new_tasks)} new linked tasks")

    def _operation_path(self, operation: SyncOperation) -> Optional[str]:
        entry = self.journal.get_by_remote_id(operation.task_id)
        return entry.path if entry else operation.payload.get("path")

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def _execute_batch(self, operations: Iterable[SyncOperation], result: SyncResult) -> None:
        operations = list(operations)
        if self._progress is not None:
            self._progress.total += len(operations)

        for operation in operations:
            result.operations_total += 1
            outcome = self.execute_operation(operation, result)
            if outcome is True:
                result.operations_completed += 1
            elif outcome is False:
                result.operations_failed += 1
                if self._progress is not None:
                    self._progress.errors += 1
            if self._progress is not None:
                self._progress.processed += 1
                self._report_progress()

    def execute_operation(self, operation: SyncOperation, result: Optional[SyncResult] = None) -> Optional[bool]:
        """
        Apply one operation.

        Returns:
            True on success, False on a recorded failure (the operation
            stays queued for retry), None when the operation was dropped
            without an API call or because the task no longer exists.
        """
        result = result if result is not None else SyncResult()
        entry = self.journal.get_by_remote_id(operation.task_id)
        if entry is None:
            self.logger.warning(f"Dropping operation for untracked task {operation.task_id}")
            self.journal.complete_operation(operation.id)
            return None
        if entry.is_orphaned or self.journal.is_deleted(entry.remote_id):
            self.logger.debug(f"Dropping operation for deleted task {entry.remote_id}")
            self.journal.complete_operation(operation.id)
            return None

        try:
            if operation.direction == SyncDirection.LOCAL_TO_REMOTE:
                self._push_completion(entry, result)
            else:
                self._pull_completion(entry, operation)
        except RemoteNotFoundError:
            self.logger.info(f"Task {entry.remote_id} no longer exists on Todoist; dropping operation")
            self.journal.complete_operation(operation.id)
            return None
        except (RemoteServiceError, DocumentStoreError) as exc:
            failed = self.journal.fail_operation(operation.id, str(exc))
            retries = failed.retry_count if failed else operation.retry_count
            self.logger.warning(
                f"{operation.direction.value} for {entry.remote_id} failed (retry {retries}): {exc}"
            )
            result.errors.append(f"{entry.remote_id}: {exc}")
            return False

        now = self._clock()
        entry.local_completed = True
        entry.remote_completed = True
        entry.last_synced_at = now
        if entry.completed_at is None:
            entry.completed_at = now
        self.journal.upsert(entry)
        self.journal.complete_operation(operation.id)
        self.logger.debug(f"{operation.direction.value} applied for {entry.remote_id}")
        return True

    def _push_completion(self, entry: TaskSyncEntry, result: SyncResult) -> None:
        result.api_calls += 1
        self.remote.close_task(entry.remote_id)
        if entry.completion_source is None:
            entry.completion_source = "local"

    def _path_lock(self, path: str) -> threading.Lock:
        with self._path_locks_guard:
            return self._path_locks.setdefault(path, threading.Lock())

    def _completion_moment(self, remote_completed_at: Optional[str]) -> datetime:
        if self.config.completion_timestamp_source == TimestampSource.REMOTE_COMPLETION:
            remote_time = parse_iso_timestamp(remote_completed_at)
            if remote_time is not None:
                return remote_time
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    def _pull_completion(self, entry: TaskSyncEntry, operation: SyncOperation) -> None:
        """Rewrite the local task line as completed (read-modify-write under the path lock)."""
        with self._path_lock(entry.path):
            lines = self.documents.read_file(entry.path)
            index = self.locator.locate_task_line(lines, entry)
            if index is None:
                raise TaskLineNotFoundError(f"Task line for {entry.remote_id} not found in {entry.path}")

            original: List[str] = list(lines)
            status = get_task_status(lines[index])
            if status == TaskStatus.TODO:
                line = mark_task_completed(lines[index])
                if self.config.enable_completion_timestamp:
                    moment = self._completion_moment(operation.payload.get("remote_completed_at"))
                    line = add_completion_timestamp(line, moment, self.config.completion_timestamp_format)
                lines[index] = line
            elif status != TaskStatus.DONE:
                raise TaskLineNotFoundError(f"Line {index + 1} of {entry.path} is not an open task")

            description = operation.payload.get("remote_description")
            if description and self.config.description_sync_mode != DescriptionSyncMode.DISABLED:
                lines = insert_description(lines, index, description, self.config.description_sync_mode)

            if lines != original:
                self.documents.write_file(entry.path, lines)

        entry.location = DocumentLocation(entry.path, index)
        entry.local_content_hash = content_hash(lines[index])
        if entry.completion_source is None:
            entry.completion_source = "remote"
            remote_time = parse_iso_timestamp(operation.payload.get("remote_completed_at"))
            if remote_time is not None:
                entry.completed_at = remote_time.timestamp()
