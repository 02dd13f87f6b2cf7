"""
Configure command for vault, token and interval settings.
"""

import os
from typing import Optional

from ..core.models import BridgeConfig
from ..obsidian.vault import is_vault


class ConfigureCommand:
    """Interactive (or flag-driven) configuration."""

    def __init__(self, config: BridgeConfig, verbose: bool = False):
        self.config = config
        self.verbose = verbose

    def run(self, vault_path: Optional[str] = None, api_token: Optional[str] = None,
            interval_minutes: Optional[float] = None) -> bool:
        """
        Update the configuration in place.

        Values not passed as arguments are prompted for; pressing enter
        keeps the current value. Returns False if the result is unusable.
        """
        print("obs-todoist Configuration")
        print("=" * 40)

        if vault_path is None:
            vault_path = self._prompt("Obsidian vault path", self.config.vault_path or "")
        if api_token is None:
            masked = "****" + self.config.api_token[-4:] if self.config.api_token else ""
            entered = self._prompt("Todoist API token", masked)
            api_token = self.config.api_token if entered == masked else entered
        if interval_minutes is None:
            entered = self._prompt("Sync interval (minutes)", str(self.config.sync_interval_minutes))
            try:
                interval_minutes = float(entered)
            except ValueError:
                print(f"❌ Invalid interval: {entered}")
                return False

        vault_path = os.path.abspath(os.path.expanduser(vault_path)) if vault_path else ""
        if not vault_path or not os.path.isdir(vault_path):
            print(f"❌ Vault directory does not exist: {vault_path or '(empty)'}")
            return False
        if not is_vault(vault_path):
            print("⚠️  No .obsidian folder found; using the directory anyway.")
        if interval_minutes < 0:
            print("❌ Sync interval cannot be negative")
            return False

        self.config.vault_path = vault_path
        self.config.api_token = api_token or ""
        self.config.sync_interval_minutes = interval_minutes

        if not self.config.effective_api_token:
            print("⚠️  No API token set; TODOIST_API_TOKEN must be provided at sync time.")

        print(f"\n✅ Vault:    {self.config.vault_path}")
        print(f"✅ Interval: {self.config.sync_interval_minutes} min")
        return True

    @staticmethod
    def _prompt(label: str, current: str) -> str:
        suffix = f" [{current}]" if current else ""
        value = input(f"{label}{suffix}: ").strip()
        return value or current
