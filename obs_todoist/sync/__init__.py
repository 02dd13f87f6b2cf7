"""Sync module for completion synchronization between the vault and Todoist."""

from .engine import SyncEngine, backoff_delay, is_retry_due
from .detector import ChangeDetector, ChangeSet
from .journal import JournalStore
from .locator import TaskLocator, PathValidationReport
from .migration import JournalMigration, MigrationReport

__all__ = [
    'SyncEngine', 'backoff_delay', 'is_retry_due',
    'ChangeDetector', 'ChangeSet',
    'JournalStore',
    'TaskLocator', 'PathValidationReport',
    'JournalMigration', 'MigrationReport',
]
