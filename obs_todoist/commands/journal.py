"""Journal inspection and maintenance commands."""

import logging
from datetime import datetime
from typing import Optional

from ..core.exceptions import ObsTodoistError
from ..core.models import BridgeConfig
from .context import build_context, open_journal


def _format_time(epoch: Optional[float]) -> str:
    if epoch is None:
        return "never"
    return datetime.fromtimestamp(epoch).strftime("%Y-%m-%d %H:%M:%S")


class StatusCommand:
    """Show the journal summary and sync statistics."""

    def __init__(self, config: BridgeConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def run(self) -> bool:
        journal = open_journal(self.config)
        summary = journal.get_summary()
        stats = summary["stats"]

        print("obs-todoist Status")
        print("=" * 40)
        print(f"Vault:              {self.config.vault_path or '(not configured)'}")
        print(f"Journal:            {summary['journal_path']}")
        print(f"Last sync:          {_format_time(summary['last_sync_at'])}")
        print(f"Tracked tasks:      {summary['total_tasks']}")
        print(f"  completed:        {summary['completed_tasks']}")
        print(f"  orphaned:         {summary['orphaned_tasks']}")
        print(f"Deleted records:    {summary['deleted_tasks']}")
        print(f"Pending operations: {summary['pending_operations']}")
        print(f"Failed operations:  {summary['failed_operations']}")
        print("\nStatistics")
        print(f"  Sync cycles:      {stats['total_sync_operations']}")
        print(f"  Average duration: {stats['average_sync_duration']:.2f}s")
        print(f"  Last duration:    {stats['last_sync_duration']:.2f}s")
        print(f"  Last API calls:   {stats['api_calls_last_sync']}")

        if self.verbose:
            for op in journal.get_pending_operations():
                error = f" - {op.last_error}" if op.last_error else ""
                print(f"  • {op.direction.value} {op.task_id} [{op.status.value}, "
                      f"retries {op.retry_count}]{error}")
        return True


class ValidateCommand:
    """Read-only path validation plus a journal completeness check."""

    def __init__(self, config: BridgeConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def run(self, heal: bool = False) -> bool:
        try:
            context = build_context(self.config)
        except ObsTodoistError as exc:
            print(f"❌ {exc}")
            return False

        report = context.locator.validate_paths(read_only=True)
        print("Path validation (read-only)")
        print(f"   Checked:    {report.checked}")
        print(f"   Moved:      {len(report.relocated)}")
        for remote_id, old, new in report.relocated:
            print(f"     • {remote_id}: {old} → {new}")
        print(f"   Unresolved: {len(report.unresolved)}")
        for remote_id in report.unresolved:
            print(f"     • {remote_id}")

        completeness = context.detector.validate_journal_completeness()
        print("\nJournal completeness")
        print(f"   Linked tasks in vault: {completeness['linked_tasks']}")
        print(f"   Tracked:               {completeness['tracked_tasks']}")
        missing = completeness["missing"]
        if missing:
            print(f"   Missing:               {len(missing)}")
            if heal:
                added = context.detector.heal_journal()
                context.journal.save()
                print(f"   ✅ Added {added} tasks to the journal")
            else:
                print("   💡 Re-run with --heal to add them")

        return not report.unresolved and (heal or not missing)


class ResetJournalCommand:
    """Back up and empty the sync journal."""

    def __init__(self, config: BridgeConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def run(self, confirmed: bool = False) -> bool:
        if not confirmed:
            print("⚠️  This discards all sync state. Re-run with --yes to confirm.")
            return False

        journal = open_journal(self.config)
        backup = journal.reset_journal()
        if backup:
            print(f"✅ Journal reset. Previous journal saved to {backup}")
        else:
            print("✅ Journal reset.")
        return True
