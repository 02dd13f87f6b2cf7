"""
Command implementations for obs-todoist.
"""

from .configure import ConfigureCommand
from .sync import SyncCommand
from .watch import WatchCommand
from .journal import StatusCommand, ValidateCommand, ResetJournalCommand

__all__ = [
    'ConfigureCommand',
    'SyncCommand',
    'WatchCommand',
    'StatusCommand',
    'ValidateCommand',
    'ResetJournalCommand',
]
