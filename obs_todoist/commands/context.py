"""Wiring of the sync components shared by the CLI commands."""

import logging
import os
from dataclasses import dataclass
from typing import Optional

from ..core.exceptions import ConfigurationError
from ..core.models import BridgeConfig
from ..obsidian.vault import VaultDocumentStore
from ..sync.detector import ChangeDetector
from ..sync.engine import SyncEngine
from ..sync.journal import JournalStore
from ..sync.locator import TaskLocator
from ..sync.migration import JournalMigration
from ..todoist.client import TodoistClient
from ..todoist.ids import IdCanonicalizer


@dataclass
class SyncContext:
    config: BridgeConfig
    documents: VaultDocumentStore
    remote: TodoistClient
    ids: IdCanonicalizer
    journal: JournalStore
    detector: ChangeDetector
    locator: TaskLocator
    engine: SyncEngine


def open_journal(config: BridgeConfig, logger: Optional[logging.Logger] = None) -> JournalStore:
    """Load the journal without touching the vault or the network."""
    journal = JournalStore(config.journal_path, logger=logger)
    journal.load()
    return journal


def build_context(config: BridgeConfig, logger: Optional[logging.Logger] = None) -> SyncContext:
    """
    Build every component from the configuration.

    Raises:
        ConfigurationError: If the vault or the API token is missing
    """
    if not config.vault_path:
        raise ConfigurationError("No Obsidian vault configured. Run 'obs-todoist configure' first.")
    if not os.path.isdir(config.vault_path):
        raise ConfigurationError(f"Configured vault does not exist: {config.vault_path}")
    token = config.effective_api_token
    if not token:
        raise ConfigurationError(
            "No Todoist API token configured. Run 'obs-todoist configure' or set TODOIST_API_TOKEN."
        )

    documents = VaultDocumentStore(config.vault_path, anchor_field=config.anchor_field, logger=logger)
    remote = TodoistClient(
        token, logger=logger, timeout=config.request_timeout, max_retries=config.max_retries
    )
    ids = IdCanonicalizer(remote, logger=logger, ttl=config.id_cache_ttl_seconds)
    journal = JournalStore(config.journal_path, logger=logger, id_canonicalizer=ids)
    journal.load()

    detector = ChangeDetector(journal, ids, documents, remote, config, logger=logger)
    locator = TaskLocator(journal, documents, config, logger=logger, id_canonicalizer=ids)
    migration = JournalMigration(journal, ids, documents, logger=logger)
    engine = SyncEngine(
        config, journal, detector, documents, remote, ids,
        locator=locator, migration=migration, logger=logger,
    )
    return SyncContext(config, documents, remote, ids, journal, detector, locator, engine)
