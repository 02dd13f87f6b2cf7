"""Watch command - keep the sync engine running on its timer."""

import logging

from ..core.exceptions import ObsTodoistError
from ..core.models import BridgeConfig, SyncProgress
from .context import build_context


class WatchCommand:
    """Runs the periodic sync loop until interrupted."""

    def __init__(self, config: BridgeConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose
        self.logger = logging.getLogger(__name__)

    def _show_progress(self, progress: SyncProgress) -> None:
        print(f"   {progress.phase.value}: {progress.processed}/{progress.total} ({progress.errors} errors)")

    def run(self) -> bool:
        try:
            context = build_context(self.config)
        except ObsTodoistError as exc:
            print(f"❌ {exc}")
            return False

        engine = context.engine
        engine.progress_callback = self._show_progress
        engine.notify = print

        print(f"👀 Watching {self.config.vault_path} (every {self.config.sync_interval_minutes} min)")
        print("   Press Ctrl-C to stop.")
        engine.start()
        try:
            while not engine.wait(1.0):
                pass
        except KeyboardInterrupt:
            print("\nStopping...")
        finally:
            engine.stop()
        return True
