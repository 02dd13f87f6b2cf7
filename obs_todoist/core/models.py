"""
Domain models for obs-todoist.

This module contains the journal records, remote task snapshot, sync
progress types and configuration shared by every component. Timestamps
are stored as float epoch seconds so that backoff and grace-period
arithmetic stays trivial and JSON round-trips are lossless.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4
import json
import logging
import os

from .paths import get_path_manager


logger = logging.getLogger(__name__)

JOURNAL_VERSION = "1.0.0"

# Minimum timer period; anything lower is treated as "continuous".
MIN_SYNC_INTERVAL_SECONDS = 1.0


def _normalize_path(path: str) -> str:
    """Expand user and convert to absolute path."""
    return os.path.abspath(os.path.expanduser(path))


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class TaskStatus(Enum):
    """Checkbox state of a markdown task line."""

    TODO = "todo"
    DONE = "done"
    OTHER = "other"


class SyncDirection(Enum):
    """Which side an operation writes to."""

    LOCAL_TO_REMOTE = "local_to_remote"
    REMOTE_TO_LOCAL = "remote_to_local"


class OperationStatus(Enum):
    PENDING = "pending"
    FAILED = "failed"


class CompletionState(Enum):
    """Priority categories used to decide whether a task is worth an API call."""

    BOTH_OPEN = "both-open"
    LOCAL_COMPLETED_REMOTE_OPEN = "local-completed-remote-open"
    LOCAL_OPEN_REMOTE_COMPLETED = "local-open-remote-completed"
    BOTH_COMPLETED = "both-completed"
    DELETED = "deleted"

    @property
    def is_mismatch(self) -> bool:
        return self in (
            CompletionState.LOCAL_COMPLETED_REMOTE_OPEN,
            CompletionState.LOCAL_OPEN_REMOTE_COMPLETED,
        )


class IdFormat(Enum):
    """Remote identifier namespaces."""

    LEGACY = "legacy"        # purely numeric
    CANONICAL = "canonical"  # contains at least one non-digit


class SyncPhase(Enum):
    DISCOVERY = "discovery"
    CHANGE_DETECTION = "change_detection"
    OPERATIONS = "operations"
    RETRY_FAILED = "retry_failed"
    COMPLETE = "complete"


class TimestampSource(Enum):
    """Where the completion timestamp written to a local line comes from."""

    REMOTE_COMPLETION = "todoist-completion"
    SYNC_TIME = "sync-time"


class DescriptionSyncMode(Enum):
    DISABLED = "disabled"
    SYNC_TEXT = "sync-text"
    SYNC_TEXT_EXCEPT_METADATA = "sync-text-except-metadata"


class TieBreak(Enum):
    """Which side's completion wins when both complete within one cycle."""

    PREFER_REMOTE = "prefer-remote"
    PREFER_LOCAL = "prefer-local"


class SyncScope(Enum):
    VAULT = "vault"
    FILE = "file"


@dataclass
class DocumentLocation:
    """Current known position of a task line in the document store."""

    path: str
    line_number: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "line_number": self.line_number}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DocumentLocation:
        return cls(
            path=data.get("path", ""),
            line_number=int(data.get("line_number", 0) or 0),
        )


@dataclass
class TaskSyncEntry:
    """One tracked link between a local task line and a remote task."""

    remote_id: str
    location: DocumentLocation
    document_anchor_id: Optional[str] = None
    block_id: Optional[str] = None
    local_completed: bool = False
    remote_completed: bool = False
    local_content_hash: str = ""
    last_synced_at: Optional[float] = None
    last_local_check_at: Optional[float] = None
    last_remote_check_at: Optional[float] = None
    is_orphaned: bool = False
    orphaned_at: Optional[float] = None
    path_unresolved_since: Optional[float] = None
    completed_at: Optional[float] = None
    completion_source: Optional[str] = None
    discovered_at: Optional[float] = None

    @property
    def path(self) -> str:
        return self.location.path

    def completion_state(self) -> CompletionState:
        """Classify the entry from its last known completion flags."""
        return classify_completion(self.local_completed, self.remote_completed, self.is_orphaned)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remote_id": self.remote_id,
            "location": self.location.to_dict(),
            "document_anchor_id": self.document_anchor_id,
            "block_id": self.block_id,
            "local_completed": self.local_completed,
            "remote_completed": self.remote_completed,
            "local_content_hash": self.local_content_hash,
            "last_synced_at": self.last_synced_at,
            "last_local_check_at": self.last_local_check_at,
            "last_remote_check_at": self.last_remote_check_at,
            "is_orphaned": self.is_orphaned,
            "orphaned_at": self.orphaned_at,
            "path_unresolved_since": self.path_unresolved_since,
            "completed_at": self.completed_at,
            "completion_source": self.completion_source,
            "discovered_at": self.discovered_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TaskSyncEntry:
        return cls(
            remote_id=str(data["remote_id"]),
            location=DocumentLocation.from_dict(data.get("location", {})),
            document_anchor_id=data.get("document_anchor_id"),
            block_id=data.get("block_id"),
            local_completed=bool(data.get("local_completed", False)),
            remote_completed=bool(data.get("remote_completed", False)),
            local_content_hash=data.get("local_content_hash", ""),
            last_synced_at=_optional_float(data.get("last_synced_at")),
            last_local_check_at=_optional_float(data.get("last_local_check_at")),
            last_remote_check_at=_optional_float(data.get("last_remote_check_at")),
            is_orphaned=bool(data.get("is_orphaned", False)),
            orphaned_at=_optional_float(data.get("orphaned_at")),
            path_unresolved_since=_optional_float(data.get("path_unresolved_since")),
            completed_at=_optional_float(data.get("completed_at")),
            completion_source=data.get("completion_source"),
            discovered_at=_optional_float(data.get("discovered_at")),
        )


def classify_completion(local_completed: bool, remote_completed: bool,
                        deleted: bool = False) -> CompletionState:
    """Map a pair of completion flags to its priority category."""
    if deleted:
        return CompletionState.DELETED
    if local_completed and remote_completed:
        return CompletionState.BOTH_COMPLETED
    if local_completed:
        return CompletionState.LOCAL_COMPLETED_REMOTE_OPEN
    if remote_completed:
        return CompletionState.LOCAL_OPEN_REMOTE_COMPLETED
    return CompletionState.BOTH_OPEN


@dataclass
class SyncOperation:
    """A pending directional completion update."""

    task_id: str
    direction: SyncDirection
    created_at: float
    payload: Dict[str, Any] = field(default_factory=dict)
    status: OperationStatus = OperationStatus.PENDING
    retry_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[float] = None
    id: str = field(default_factory=lambda: uuid4().hex)

    @property
    def key(self) -> tuple:
        """Coalescing key; at most one operation per key is meaningful."""
        return (self.task_id, self.direction)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "direction": self.direction.value,
            "payload": dict(self.payload),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "created_at": self.created_at,
            "last_error": self.last_error,
            "last_attempt_at": self.last_attempt_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncOperation:
        return cls(
            id=data.get("id") or uuid4().hex,
            task_id=str(data["task_id"]),
            direction=SyncDirection(data["direction"]),
            payload=dict(data.get("payload") or {}),
            status=OperationStatus(data.get("status", OperationStatus.PENDING.value)),
            retry_count=int(data.get("retry_count", 0)),
            created_at=float(data.get("created_at", 0.0)),
            last_error=data.get("last_error"),
            last_attempt_at=_optional_float(data.get("last_attempt_at")),
        )


@dataclass
class IdCacheEntry:
    legacy_id: str
    canonical_id: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class DeletedTaskInfo:
    """Record of a task known to be gone on one side."""

    remote_id: str
    deleted_at: float
    reason: str = "deleted"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remote_id": self.remote_id,
            "deleted_at": self.deleted_at,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> DeletedTaskInfo:
        return cls(
            remote_id=str(data["remote_id"]),
            deleted_at=float(data.get("deleted_at", 0.0)),
            reason=data.get("reason", "deleted"),
        )


@dataclass
class SyncStats:
    """Process-wide counters persisted alongside the journal."""

    total_tasks: int = 0
    new_tasks_found: int = 0
    operations_completed: int = 0
    operations_failed: int = 0
    last_sync_duration: float = 0.0
    total_sync_operations: int = 0
    average_sync_duration: float = 0.0
    tasks_processed_last_sync: int = 0
    api_calls_last_sync: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tasks": self.total_tasks,
            "new_tasks_found": self.new_tasks_found,
            "operations_completed": self.operations_completed,
            "operations_failed": self.operations_failed,
            "last_sync_duration": self.last_sync_duration,
            "total_sync_operations": self.total_sync_operations,
            "average_sync_duration": self.average_sync_duration,
            "tasks_processed_last_sync": self.tasks_processed_last_sync,
            "api_calls_last_sync": self.api_calls_last_sync,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncStats:
        stats = cls()
        for key, value in (data or {}).items():
            if hasattr(stats, key) and value is not None:
                setattr(stats, key, type(getattr(stats, key))(value))
        return stats


@dataclass
class SyncJournal:
    """Durable record of all tracked task links and pending operations."""

    version: str = JOURNAL_VERSION
    last_sync_at: Optional[float] = None
    last_vault_scan: Optional[float] = None
    last_path_validation: Optional[float] = None
    tasks: Dict[str, TaskSyncEntry] = field(default_factory=dict)
    deleted_tasks: Dict[str, DeletedTaskInfo] = field(default_factory=dict)
    pending_operations: List[SyncOperation] = field(default_factory=list)
    stats: SyncStats = field(default_factory=SyncStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "last_sync_at": self.last_sync_at,
            "last_vault_scan": self.last_vault_scan,
            "last_path_validation": self.last_path_validation,
            "tasks": {key: entry.to_dict() for key, entry in self.tasks.items()},
            "deleted_tasks": {key: info.to_dict() for key, info in self.deleted_tasks.items()},
            "pending_operations": [op.to_dict() for op in self.pending_operations],
            "stats": self.stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SyncJournal:
        """Build a journal from stored data, skipping records that fail to parse."""
        tasks: Dict[str, TaskSyncEntry] = {}
        for key, raw in (data.get("tasks") or {}).items():
            try:
                entry = TaskSyncEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping unreadable journal entry %s: %s", key, exc)
                continue
            tasks[entry.remote_id] = entry

        deleted: Dict[str, DeletedTaskInfo] = {}
        for key, raw in (data.get("deleted_tasks") or {}).items():
            try:
                info = DeletedTaskInfo.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping unreadable deleted-task record %s: %s", key, exc)
                continue
            deleted[info.remote_id] = info

        operations: List[SyncOperation] = []
        for raw in data.get("pending_operations") or []:
            try:
                operations.append(SyncOperation.from_dict(raw))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping unreadable operation: %s", exc)

        return cls(
            version=data.get("version", JOURNAL_VERSION),
            last_sync_at=_optional_float(data.get("last_sync_at")),
            last_vault_scan=_optional_float(data.get("last_vault_scan")),
            last_path_validation=_optional_float(data.get("last_path_validation")),
            tasks=tasks,
            deleted_tasks=deleted,
            pending_operations=operations,
            stats=SyncStats.from_dict(data.get("stats") or {}),
        )


@dataclass
class RemoteTask:
    """Snapshot of a remote task as returned by the remote service."""

    id: str
    content: str = ""
    description: str = ""
    completed: bool = False
    completed_at: Optional[str] = None
    url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> RemoteTask:
        return cls(
            id=str(data.get("id", "")),
            content=data.get("content") or "",
            description=data.get("description") or "",
            completed=bool(data.get("is_completed", data.get("checked", False))),
            completed_at=data.get("completed_at"),
            url=data.get("url"),
        )


@dataclass
class SyncProgress:
    """Progress of the cycle currently in flight."""

    phase: SyncPhase = SyncPhase.DISCOVERY
    processed: int = 0
    total: int = 0
    errors: int = 0
    started_at: Optional[float] = None


@dataclass
class SyncResult:
    """Outcome of one sync cycle or targeted sync."""

    skipped: bool = False
    new_tasks: int = 0
    operations_total: int = 0
    operations_completed: int = 0
    operations_failed: int = 0
    retried: int = 0
    api_calls: int = 0
    duration: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.skipped and not self.errors

    def summary(self) -> str:
        return (
            f"Sync completed in {self.duration:.1f}s • "
            f"{self.operations_completed}/{self.operations_total} operations • "
            f"{len(self.errors)} errors"
        )


@dataclass
class BridgeConfig:
    """Configuration for the Obsidian/Todoist completion bridge."""

    vault_path: Optional[str] = None
    api_token: str = ""
    anchor_field: str = "uuid"
    sync_interval_minutes: float = 5
    startup_delay_seconds: float = 2.0
    sync_scope: SyncScope = SyncScope.VAULT
    track_both_completed: bool = False
    enable_completion_timestamp: bool = True
    completion_timestamp_source: TimestampSource = TimestampSource.REMOTE_COMPLETION
    completion_timestamp_format: str = "✅ %Y-%m-%d"
    description_sync_mode: DescriptionSyncMode = DescriptionSyncMode.DISABLED
    simultaneous_completion: TieBreak = TieBreak.PREFER_REMOTE
    orphan_grace_period_days: float = 7
    path_validation_interval_minutes: float = 60
    deleted_task_retention_days: float = 90
    id_cache_ttl_hours: float = 24
    request_timeout: float = 30
    max_retries: int = 3
    show_sync_progress: bool = False
    notification_interval_seconds: float = 60
    journal_path: Optional[str] = None

    def __post_init__(self) -> None:
        if self.journal_path is None:
            self.journal_path = str(get_path_manager().journal_path)
        else:
            self.journal_path = _normalize_path(self.journal_path)

        if self.vault_path:
            self.vault_path = _normalize_path(self.vault_path)

        # Accept raw strings from JSON or callers
        self.sync_scope = SyncScope(self.sync_scope)
        self.completion_timestamp_source = TimestampSource(self.completion_timestamp_source)
        self.description_sync_mode = DescriptionSyncMode(self.description_sync_mode)
        self.simultaneous_completion = TieBreak(self.simultaneous_completion)

    # ------------------------------------------------------------------
    # Convenience helpers
    # ------------------------------------------------------------------
    @property
    def sync_interval_seconds(self) -> float:
        return max(float(self.sync_interval_minutes) * 60.0, MIN_SYNC_INTERVAL_SECONDS)

    @property
    def orphan_grace_period_seconds(self) -> float:
        return float(self.orphan_grace_period_days) * 86400.0

    @property
    def path_validation_interval_seconds(self) -> float:
        return float(self.path_validation_interval_minutes) * 60.0

    @property
    def id_cache_ttl_seconds(self) -> float:
        return float(self.id_cache_ttl_hours) * 3600.0

    @property
    def effective_api_token(self) -> str:
        """Token from the config file, else from TODOIST_API_TOKEN."""
        return self.api_token or os.environ.get("TODOIST_API_TOKEN", "")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vault_path": self.vault_path,
            "api_token": self.api_token,
            "anchor_field": self.anchor_field,
            "sync": {
                "interval_minutes": self.sync_interval_minutes,
                "startup_delay_seconds": self.startup_delay_seconds,
                "scope": self.sync_scope.value,
                "track_both_completed": self.track_both_completed,
                "simultaneous_completion": self.simultaneous_completion.value,
                "orphan_grace_period_days": self.orphan_grace_period_days,
                "path_validation_interval_minutes": self.path_validation_interval_minutes,
                "deleted_task_retention_days": self.deleted_task_retention_days,
                "show_progress": self.show_sync_progress,
                "notification_interval_seconds": self.notification_interval_seconds,
            },
            "completion": {
                "enable_timestamp": self.enable_completion_timestamp,
                "timestamp_source": self.completion_timestamp_source.value,
                "timestamp_format": self.completion_timestamp_format,
                "description_sync_mode": self.description_sync_mode.value,
            },
            "api": {
                "id_cache_ttl_hours": self.id_cache_ttl_hours,
                "request_timeout": self.request_timeout,
                "max_retries": self.max_retries,
            },
            "paths": {
                "journal": self.journal_path,
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> BridgeConfig:
        sync_settings = data.get("sync", {})
        completion = data.get("completion", {})
        api = data.get("api", {})
        paths = data.get("paths", {})
        defaults = cls.__dataclass_fields__

        def pick(section: Dict[str, Any], key: str, attr: str) -> Any:
            if key in section:
                return section[key]
            return defaults[attr].default

        return cls(
            vault_path=data.get("vault_path"),
            api_token=data.get("api_token", ""),
            anchor_field=data.get("anchor_field", "uuid"),
            sync_interval_minutes=pick(sync_settings, "interval_minutes", "sync_interval_minutes"),
            startup_delay_seconds=pick(sync_settings, "startup_delay_seconds", "startup_delay_seconds"),
            sync_scope=pick(sync_settings, "scope", "sync_scope"),
            track_both_completed=pick(sync_settings, "track_both_completed", "track_both_completed"),
            simultaneous_completion=pick(sync_settings, "simultaneous_completion", "simultaneous_completion"),
            orphan_grace_period_days=pick(sync_settings, "orphan_grace_period_days", "orphan_grace_period_days"),
            path_validation_interval_minutes=pick(
                sync_settings, "path_validation_interval_minutes", "path_validation_interval_minutes"
            ),
            deleted_task_retention_days=pick(
                sync_settings, "deleted_task_retention_days", "deleted_task_retention_days"
            ),
            show_sync_progress=pick(sync_settings, "show_progress", "show_sync_progress"),
            notification_interval_seconds=pick(
                sync_settings, "notification_interval_seconds", "notification_interval_seconds"
            ),
            enable_completion_timestamp=pick(completion, "enable_timestamp", "enable_completion_timestamp"),
            completion_timestamp_source=pick(completion, "timestamp_source", "completion_timestamp_source"),
            completion_timestamp_format=pick(completion, "timestamp_format", "completion_timestamp_format"),
            description_sync_mode=pick(completion, "description_sync_mode", "description_sync_mode"),
            id_cache_ttl_hours=pick(api, "id_cache_ttl_hours", "id_cache_ttl_hours"),
            request_timeout=pick(api, "request_timeout", "request_timeout"),
            max_retries=pick(api, "max_retries", "max_retries"),
            journal_path=paths.get("journal"),
        )

    @classmethod
    def load_from_file(cls, config_path: str) -> BridgeConfig:
        config_path = _normalize_path(config_path)
        if not os.path.exists(config_path):
            return cls()

        try:
            with open(config_path, "r", encoding="utf-8") as handle:
                data = json.load(handle)
        except json.JSONDecodeError:
            logger.warning("Config file %s is not valid JSON; using defaults", config_path)
            return cls()

        try:
            return cls.from_dict(data)
        except ValueError as exc:
            logger.warning("Config file %s has invalid values (%s); using defaults", config_path, exc)
            return cls()

    def save_to_file(self, config_path: str) -> None:
        config_path = _normalize_path(config_path)
        os.makedirs(os.path.dirname(config_path), exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as handle:
            json.dump(self.to_dict(), handle, indent=2, ensure_ascii=False)
