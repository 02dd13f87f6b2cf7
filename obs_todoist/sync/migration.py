"""Upgrades applied to journal entries during deferred initialization."""

import logging
from dataclasses import dataclass
from typing import Optional

from ..core.interfaces import DocumentStore
from ..todoist.ids import IdCanonicalizer
from .journal import JournalStore


@dataclass
class MigrationReport:
    ids_migrated: int = 0
    ids_failed: int = 0
    anchors_added: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.ids_migrated or self.anchors_added)


class JournalMigration:
    """Re-keys legacy numeric ids and backfills document anchor ids.

    Running it again on an already migrated journal changes nothing.
    """

    def __init__(self, journal: JournalStore, id_canonicalizer: IdCanonicalizer,
                 documents: DocumentStore, logger: Optional[logging.Logger] = None):
        self.journal = journal
        self.ids = id_canonicalizer
        self.documents = documents
        self.logger = logger or logging.getLogger(__name__)

    def migrate_ids(self, report: MigrationReport) -> None:
        legacy = [key for key in self.journal.get_all() if self.ids.is_legacy_format(key)]
        if not legacy:
            return

        translated = self.ids.canonicalize_batch(legacy)
        for old_id in legacy:
            new_id = translated[old_id]
            if new_id == old_id:
                report.ids_failed += 1
                continue
            if self.journal.rename_task(old_id, new_id):
                report.ids_migrated += 1
                self.logger.debug(f"Migrated journal id {old_id} -> {new_id}")
            else:
                report.ids_failed += 1

    def backfill_anchors(self, report: MigrationReport) -> None:
        for entry in self.journal.get_all().values():
            if entry.document_anchor_id or entry.is_orphaned or not entry.path:
                continue
            anchor_id = self.documents.get_anchor_id(entry.path)
            if anchor_id:
                entry.document_anchor_id = anchor_id
                self.journal.upsert(entry)
                report.anchors_added += 1

    def run(self) -> MigrationReport:
        report = MigrationReport()
        self.migrate_ids(report)
        self.backfill_anchors(report)

        if report.changed or report.ids_failed:
            self.logger.info(
                f"Journal migration: {report.ids_migrated} ids migrated, "
                f"{report.ids_failed} left as is, {report.anchors_added} anchors added"
            )
        return report
