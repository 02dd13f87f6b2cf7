"""Persistence and queries for the sync journal."""

import json
import logging
import os
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import JournalError
from ..core.models import (
    JOURNAL_VERSION,
    DeletedTaskInfo,
    OperationStatus,
    SyncJournal,
    SyncOperation,
    SyncStats,
    TaskSyncEntry,
)
from ..todoist.ids import IdCanonicalizer
from ..utils.io import copy_file, read_json, safe_write_json


BACKUP_SUFFIX = ".backup"


class JournalStore:
    """Loads, saves and queries the SyncJournal.

    Loading never raises: a missing journal starts empty, a corrupt one
    is recovered from its backup when possible and otherwise replaced by
    an empty journal, so lost state is rebuilt by re-discovery. Saving
    never raises either; failures are logged and the journal stays dirty
    so the next cycle retries the write.
    """

    def __init__(self, journal_path: str, logger: Optional[logging.Logger] = None,
                 id_canonicalizer: Optional[IdCanonicalizer] = None,
                 clock: Callable[[], float] = time.time):
        self.journal_path = os.path.abspath(os.path.expanduser(journal_path))
        self.logger = logger or logging.getLogger(__name__)
        self.id_canonicalizer = id_canonicalizer
        self._clock = clock
        self._journal = SyncJournal()
        self._loaded = False
        self._dirty = False
        self._primary_corrupt = False
        self._lock = threading.RLock()

    @property
    def backup_path(self) -> str:
        return self.journal_path + BACKUP_SUFFIX

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def journal(self) -> SyncJournal:
        return self._journal

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------
    def _read(self, path: str) -> Optional[SyncJournal]:
        try:
            data = read_json(path)
        except FileNotFoundError:
            return None
        except (json.JSONDecodeError, OSError, TimeoutError) as exc:
            self.logger.warning(f"Journal file {path} is unreadable: {exc}")
            return None

        if not isinstance(data, dict):
            self.logger.warning(f"Journal file {path} does not hold a JSON object")
            return None
        return self._validate_and_migrate(data)

    def _validate_and_migrate(self, data: Dict[str, Any]) -> SyncJournal:
        journal = SyncJournal.from_dict(data)
        if journal.version != JOURNAL_VERSION:
            self.logger.info(f"Migrating journal from version {journal.version} to {JOURNAL_VERSION}")
            journal.version = JOURNAL_VERSION
            self._dirty = True
        return journal

    def load(self) -> bool:
        """
        Load the journal from disk.

        Returns:
            True if stored state was found, False if starting empty
        """
        with self._lock:
            found = True
            journal = self._read(self.journal_path)
            if journal is None and os.path.exists(self.journal_path):
                self._primary_corrupt = True
                self.logger.warning("Journal is corrupt, trying backup")
                journal = self._read(self.backup_path)
                if journal is not None:
                    self.logger.warning(f"Recovered journal from {self.backup_path}")
                    self._dirty = True

            if journal is None:
                if os.path.exists(self.journal_path):
                    self.logger.warning("No usable journal or backup, starting with an empty journal")
                else:
                    self.logger.info(f"No journal at {self.journal_path}, starting fresh")
                journal = SyncJournal()
                found = False

            self._journal = journal
            self._loaded = True
            self.logger.debug(
                f"Journal loaded: {len(journal.tasks)} tasks, "
                f"{len(journal.pending_operations)} pending operations"
            )
            return found

    def save(self) -> bool:
        """
        Write the journal atomically, keeping the previous file as a backup.

        Returns:
            True if the journal was written
        """
        with self._lock:
            if not self._loaded:
                self.logger.debug("Journal not loaded, nothing to save")
                return False

            # A corrupt primary must not overwrite the backup it was recovered from
            if not self._primary_corrupt:
                copy_file(self.journal_path, self.backup_path)
            if not safe_write_json(self.journal_path, self._journal.to_dict()):
                self.logger.error(f"Failed to save journal to {self.journal_path}; will retry next cycle")
                self._dirty = True
                return False

            self._dirty = False
            self._primary_corrupt = False
            return True

    def reset_journal(self) -> Optional[str]:
        """
        Replace the journal with an empty one after backing up the current file.

        Returns:
            Path of the reset backup, or None if there was nothing to back up
        """
        with self._lock:
            backup = None
            if os.path.exists(self.journal_path):
                backup = f"{self.journal_path}.reset-backup-{int(self._clock())}"
                if not copy_file(self.journal_path, backup):
                    backup = None
            self._journal = SyncJournal()
            self._loaded = True
            self._dirty = True
            self.logger.info("Sync journal reset")
            self.save()
            return backup

    # ------------------------------------------------------------------
    # Task entries
    # ------------------------------------------------------------------
    def _canonical(self, remote_id: str) -> str:
        if self.id_canonicalizer is None:
            return remote_id
        return self.id_canonicalizer.canonicalize(remote_id)

    def get_all(self) -> Dict[str, TaskSyncEntry]:
        with self._lock:
            return dict(self._journal.tasks)

    def get_by_remote_id(self, remote_id: str) -> Optional[TaskSyncEntry]:
        with self._lock:
            entry = self._journal.tasks.get(remote_id)
            if entry is not None:
                return entry
        canonical = self._canonical(remote_id)
        if canonical == remote_id:
            return None
        with self._lock:
            return self._journal.tasks.get(canonical)

    def _require_loaded(self) -> None:
        # load() would silently replace anything written before it
        if not self._loaded:
            raise JournalError(f"Journal {self.journal_path} must be loaded before it is modified")

    def upsert(self, entry: TaskSyncEntry) -> None:
        with self._lock:
            self._require_loaded()
            self._journal.tasks[entry.remote_id] = entry
            self._dirty = True

    def mark_orphaned(self, remote_id: str) -> bool:
        """Soft-delete an entry; it stays in the journal."""
        with self._lock:
            entry = self.get_by_remote_id(remote_id)
            if entry is None:
                return False
            if not entry.is_orphaned:
                entry.is_orphaned = True
                entry.orphaned_at = self._clock()
                self._dirty = True
                self.logger.info(f"Marked task {entry.remote_id} as orphaned ({entry.path})")
            return True

    def is_orphaned(self, remote_id: str) -> bool:
        entry = self.get_by_remote_id(remote_id)
        return bool(entry and entry.is_orphaned)

    def rename_task(self, old_id: str, new_id: str) -> bool:
        """Re-key an entry and every operation that references it."""
        with self._lock:
            entry = self._journal.tasks.get(old_id)
            if entry is None or old_id == new_id:
                return False
            if new_id in self._journal.tasks:
                self.logger.warning(f"Cannot rename {old_id} to {new_id}: target already tracked")
                return False

            del self._journal.tasks[old_id]
            entry.remote_id = new_id
            self._journal.tasks[new_id] = entry
            for op in self._journal.pending_operations:
                if op.task_id == old_id:
                    op.task_id = new_id
            if old_id in self._journal.deleted_tasks:
                info = self._journal.deleted_tasks.pop(old_id)
                info.remote_id = new_id
                self._journal.deleted_tasks[new_id] = info
            self._dirty = True
            return True

    # ------------------------------------------------------------------
    # Deleted-task registry
    # ------------------------------------------------------------------
    def mark_as_deleted(self, remote_id: str, reason: str = "deleted") -> None:
        with self._lock:
            canonical = self._canonical(remote_id)
            self._journal.deleted_tasks[canonical] = DeletedTaskInfo(
                remote_id=canonical, deleted_at=self._clock(), reason=reason
            )
            self._journal.pending_operations = [
                op for op in self._journal.pending_operations if op.task_id != canonical
            ]
            self._dirty = True

    def is_deleted(self, remote_id: str) -> bool:
        with self._lock:
            if remote_id in self._journal.deleted_tasks:
                return True
        canonical = self._canonical(remote_id)
        with self._lock:
            return canonical in self._journal.deleted_tasks

    def cleanup_old_deleted_tasks(self, max_age_days: float = 90) -> int:
        cutoff = self._clock() - max_age_days * 86400
        with self._lock:
            stale = [key for key, info in self._journal.deleted_tasks.items() if info.deleted_at < cutoff]
            for key in stale:
                del self._journal.deleted_tasks[key]
            if stale:
                self._dirty = True
                self.logger.debug(f"Purged {len(stale)} old deleted-task records")
            return len(stale)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def get_pending_operations(self) -> List[SyncOperation]:
        with self._lock:
            return list(self._journal.pending_operations)

    def get_operation(self, operation_id: str) -> Optional[SyncOperation]:
        with self._lock:
            for op in self._journal.pending_operations:
                if op.id == operation_id:
                    return op
            return None

    def add_operation(self, operation: SyncOperation) -> SyncOperation:
        """
        Queue an operation, coalescing with an existing one for the same
        task and direction.

        Returns:
            The queued operation (the existing one when coalesced)
        """
        with self._lock:
            self._require_loaded()
            for existing in self._journal.pending_operations:
                if existing.key == operation.key:
                    if operation.payload:
                        existing.payload.update(operation.payload)
                    self.logger.debug(
                        f"Coalesced {operation.direction.value} operation for {operation.task_id}"
                    )
                    return existing
            self._journal.pending_operations.append(operation)
            self._dirty = True
            return operation

    def complete_operation(self, operation_id: str) -> bool:
        with self._lock:
            before = len(self._journal.pending_operations)
            self._journal.pending_operations = [
                op for op in self._journal.pending_operations if op.id != operation_id
            ]
            removed = len(self._journal.pending_operations) != before
            if removed:
                self._dirty = True
            return removed

    def fail_operation(self, operation_id: str, error: str) -> Optional[SyncOperation]:
        """Record a failure; the operation stays queued for a backoff retry."""
        with self._lock:
            op = self.get_operation(operation_id)
            if op is None:
                return None
            op.status = OperationStatus.FAILED
            op.retry_count += 1
            op.last_error = error
            op.last_attempt_at = self._clock()
            self._dirty = True
            return op

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------
    def update_stats(self, **partial: Any) -> SyncStats:
        """
        Overwrite stats fields; a new last_sync_duration also updates the
        running average and the cycle counter.
        """
        with self._lock:
            stats = self._journal.stats
            for key, value in partial.items():
                if not hasattr(stats, key):
                    raise AttributeError(f"Unknown stats field: {key}")
                setattr(stats, key, value)

            if "last_sync_duration" in partial:
                runs = stats.total_sync_operations
                stats.average_sync_duration = (
                    (stats.average_sync_duration * runs + stats.last_sync_duration) / (runs + 1)
                )
                stats.total_sync_operations = runs + 1

            self._dirty = True
            return stats

    def touch(self, **timestamps: Optional[float]) -> None:
        """Set journal-level timestamps (last_sync_at, last_vault_scan, last_path_validation)."""
        with self._lock:
            for key, value in timestamps.items():
                if key not in ("last_sync_at", "last_vault_scan", "last_path_validation"):
                    raise AttributeError(f"Unknown journal timestamp: {key}")
                setattr(self._journal, key, value)
            self._dirty = True

    def get_summary(self) -> Dict[str, Any]:
        with self._lock:
            entries = list(self._journal.tasks.values())
            ops = self._journal.pending_operations
            return {
                "journal_path": self.journal_path,
                "total_tasks": len(entries),
                "orphaned_tasks": sum(1 for e in entries if e.is_orphaned),
                "completed_tasks": sum(1 for e in entries if e.local_completed and e.remote_completed),
                "deleted_tasks": len(self._journal.deleted_tasks),
                "pending_operations": sum(1 for op in ops if op.status == OperationStatus.PENDING),
                "failed_operations": sum(1 for op in ops if op.status == OperationStatus.FAILED),
                "last_sync_at": self._journal.last_sync_at,
                "stats": self._journal.stats.to_dict(),
            }
