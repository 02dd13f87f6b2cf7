"""Sync command - run one completion sync cycle."""

import logging
from typing import Optional

from ..core.exceptions import ObsTodoistError
from ..core.models import BridgeConfig, SyncResult
from .context import build_context


class SyncCommand:
    """Command for synchronizing task completion between Obsidian and Todoist."""

    def __init__(self, config: BridgeConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)
        if verbose:
            self.logger.setLevel(logging.DEBUG)

    def run(self, file_path: Optional[str] = None, task_id: Optional[str] = None) -> bool:
        """Run a full cycle, or a targeted sync of one document or one task."""
        try:
            context = build_context(self.config)
        except ObsTodoistError as exc:
            print(f"❌ {exc}")
            return False

        engine = context.engine
        if task_id:
            print(f"🔄 Syncing task {task_id}...")
            result = engine.sync_single_task(task_id)
        elif file_path:
            print(f"🔄 Syncing {file_path}...")
            result = engine.sync_tasked_document(file_path)
        else:
            print(f"🔄 Syncing vault: {self.config.vault_path}")
            engine.migration.run()
            result = engine.trigger_manual_sync()

        self._show_result(result)
        return result.success or (result.skipped and not result.errors)

    def _show_result(self, result: SyncResult) -> None:
        if result.skipped and not result.errors:
            print("ℹ️  Nothing to do")
            return

        print(f"\n{result.summary()}")
        if result.new_tasks:
            print(f"   • {result.new_tasks} new linked tasks tracked")
        if result.retried:
            print(f"   • {result.retried} failed operations retried")
        print(f"   • {result.api_calls} API calls")

        if result.errors:
            print("\n⚠️  Errors:")
            for error in result.errors[:10]:
                print(f"   • {error}")
            if len(result.errors) > 10:
                print(f"   ... and {len(result.errors) - 10} more")
