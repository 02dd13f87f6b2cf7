#!/usr/bin/env python3
"""
Global pytest configuration and fixtures.

This module provides:
- Temporary directories and a mock Obsidian vault with linked tasks
- In-memory document store, remote service and clock fakes
- A fully wired sync engine over the fakes
"""

import logging
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass
from typing import Generator

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from obs_todoist.core.models import BridgeConfig
from obs_todoist.core.paths import reset_path_manager
from obs_todoist.sync.detector import ChangeDetector
from obs_todoist.sync.engine import SyncEngine
from obs_todoist.sync.journal import JournalStore
from obs_todoist.sync.locator import TaskLocator
from obs_todoist.sync.migration import JournalMigration
from obs_todoist.todoist.ids import IdCanonicalizer
from tests.fakes import FakeClock, FakeTodoistService, InMemoryDocumentStore


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from the real user configuration directory."""
    monkeypatch.setenv("OBS_TODOIST_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("TODOIST_API_TOKEN", raising=False)
    reset_path_manager()
    yield
    reset_path_manager()


@pytest.fixture
def temp_dir() -> Generator[str, None, None]:
    """Create a temporary directory for test isolation."""
    temp_path = tempfile.mkdtemp(prefix="obs_todoist_test_")
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def mock_obsidian_vault(temp_dir: str) -> str:
    """Create a mock Obsidian vault with linked and unlinked tasks."""
    vault_path = os.path.join(temp_dir, "test_vault")
    os.makedirs(os.path.join(vault_path, ".obsidian"))
    os.makedirs(os.path.join(vault_path, "Projects"))

    daily_note = os.path.join(vault_path, "2023-12-15.md")
    daily_content = """---
uuid: note-daily
---
# Daily Note 2023-12-15

## Tasks
- [ ] Buy groceries ^blk1
\t- [🔗 View in Todoist](https://todoist.com/app/task/abc123)
- [ ] Finish project report
- [x] Call dentist ✅ 2023-12-14
\t- [🔗 View in Todoist](https://todoist.com/app/task/def456)
"""
    with open(daily_note, 'w', encoding='utf-8') as f:
        f.write(daily_content)

    project_file = os.path.join(vault_path, "Projects", "Project Alpha.md")
    project_content = """# Project Alpha

- [ ] Design phase
\t- [🔗 View in Todoist](https://app.todoist.com/app/task/design-phase-6X7rM8997g3RQmvh)
- [/] Development phase
\t- [🔗 View in Todoist](https://todoist.com/app/task/ghi789)
"""
    with open(project_file, 'w', encoding='utf-8') as f:
        f.write(project_content)

    os.makedirs(os.path.join(vault_path, ".obsidian", "plugins"))
    with open(os.path.join(vault_path, ".obsidian", "ignored.md"), 'w', encoding='utf-8') as f:
        f.write("- [ ] hidden\n")

    return vault_path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def documents() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def remote() -> FakeTodoistService:
    return FakeTodoistService()


@pytest.fixture
def config(temp_dir: str) -> BridgeConfig:
    return BridgeConfig(
        vault_path=temp_dir,
        journal_path=os.path.join(temp_dir, "data", "sync_journal.json"),
        startup_delay_seconds=0.01,
        notification_interval_seconds=0,
    )


@dataclass
class Harness:
    config: BridgeConfig
    documents: InMemoryDocumentStore
    remote: FakeTodoistService
    clock: FakeClock
    ids: IdCanonicalizer
    journal: JournalStore
    detector: ChangeDetector
    locator: TaskLocator
    engine: SyncEngine


def build_harness(config: BridgeConfig, documents: InMemoryDocumentStore,
                  remote: FakeTodoistService, clock: FakeClock) -> Harness:
    logger = logging.getLogger("obs_todoist.tests")
    ids = IdCanonicalizer(remote, logger=logger, ttl=config.id_cache_ttl_seconds, clock=clock)
    journal = JournalStore(config.journal_path, logger=logger, id_canonicalizer=ids, clock=clock)
    journal.load()
    detector = ChangeDetector(journal, ids, documents, remote, config, logger=logger, clock=clock)
    locator = TaskLocator(journal, documents, config, logger=logger, id_canonicalizer=ids, clock=clock)
    migration = JournalMigration(journal, ids, documents, logger=logger)
    engine = SyncEngine(
        config, journal, detector, documents, remote, ids,
        locator=locator, migration=migration, logger=logger, clock=clock,
    )
    return Harness(config, documents, remote, clock, ids, journal, detector, locator, engine)


@pytest.fixture
def harness(config, documents, remote, clock) -> Harness:
    return build_harness(config, documents, remote, clock)
