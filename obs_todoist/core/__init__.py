"""
Core module for obs-todoist - contains domain models, configuration, interfaces and exceptions.
"""

from .models import (
    BridgeConfig,
    CompletionState,
    DocumentLocation,
    IdFormat,
    OperationStatus,
    RemoteTask,
    SyncDirection,
    SyncJournal,
    SyncOperation,
    SyncPhase,
    SyncResult,
    SyncStats,
    TaskStatus,
    TaskSyncEntry,
)

from .exceptions import (
    ObsTodoistError,
    ConfigurationError,
    VaultNotFoundError,
    RemoteServiceError,
    RemoteNotFoundError,
    DocumentStoreError,
    JournalError,
    SyncError,
)

from .interfaces import DocumentStore, RemoteTaskService

__all__ = [
    # Models
    'BridgeConfig',
    'CompletionState',
    'DocumentLocation',
    'IdFormat',
    'OperationStatus',
    'RemoteTask',
    'SyncDirection',
    'SyncJournal',
    'SyncOperation',
    'SyncPhase',
    'SyncResult',
    'SyncStats',
    'TaskStatus',
    'TaskSyncEntry',
    # Interfaces
    'DocumentStore',
    'RemoteTaskService',
    # Exceptions
    'ObsTodoistError',
    'ConfigurationError',
    'VaultNotFoundError',
    'RemoteServiceError',
    'RemoteNotFoundError',
    'DocumentStoreError',
    'JournalError',
    'SyncError',
]
