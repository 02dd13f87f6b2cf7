"""Translation between legacy numeric and canonical Todoist task ids."""

import logging
import re
import threading
import time
from typing import Callable, Dict, Iterable, Optional

from ..core.exceptions import RemoteServiceError
from ..core.interfaces import RemoteTaskService
from ..core.models import IdCacheEntry, IdFormat


LEGACY_ID_RE = re.compile(r'^\d+$')
DEFAULT_CACHE_TTL = 24 * 60 * 60  # seconds
FAILED_TRANSLATION_TTL = 5 * 60  # seconds


class IdCanonicalizer:
    """Makes legacy and canonical remote ids interchangeable.

    Canonical ids are returned untouched without any I/O. Legacy ids are
    translated through the remote service once and cached for the TTL.
    A failed translation degrades to the original id so that a single
    bad id never fails a whole sync cycle. The failure is remembered for
    failure_ttl seconds, so lookups in the meantime make no network calls.
    """

    def __init__(self, remote: RemoteTaskService, logger: Optional[logging.Logger] = None,
                 ttl: float = DEFAULT_CACHE_TTL, clock: Callable[[], float] = time.time,
                 failure_ttl: float = FAILED_TRANSLATION_TTL):
        self.remote = remote
        self.logger = logger or logging.getLogger(__name__)
        self.ttl = ttl
        self._clock = clock
        self.failure_ttl = failure_ttl
        self._cache: Dict[str, IdCacheEntry] = {}
        # legacy id -> time after which translation may be attempted again
        self._failures: Dict[str, float] = {}
        self._lock = threading.Lock()

    @staticmethod
    def is_legacy_format(task_id: str) -> bool:
        return bool(task_id) and LEGACY_ID_RE.match(task_id) is not None

    @staticmethod
    def is_canonical_format(task_id: str) -> bool:
        return bool(task_id) and LEGACY_ID_RE.match(task_id) is None

    def id_format(self, task_id: str) -> Optional[IdFormat]:
        if self.is_legacy_format(task_id):
            return IdFormat.LEGACY
        if self.is_canonical_format(task_id):
            return IdFormat.CANONICAL
        return None

    def _cached(self, legacy_id: str) -> Optional[str]:
        with self._lock:
            entry = self._cache.get(legacy_id)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._cache[legacy_id]
                return None
            return entry.canonical_id

    def _recently_failed(self, legacy_id: str) -> bool:
        with self._lock:
            retry_at = self._failures.get(legacy_id)
            if retry_at is None:
                return False
            if self._clock() >= retry_at:
                del self._failures[legacy_id]
                return False
            return True

    def _remember_failure(self, legacy_id: str) -> None:
        with self._lock:
            self._failures[legacy_id] = self._clock() + self.failure_ttl

    def canonicalize(self, task_id: str) -> str:
        """Return the canonical form of task_id, or task_id itself if untranslatable."""
        if not self.is_legacy_format(task_id):
            return task_id

        cached = self._cached(task_id)
        if cached is not None:
            return cached
        if self._recently_failed(task_id):
            return task_id

        try:
            canonical = self.remote.translate_id(task_id)
        except RemoteServiceError as exc:
            self.logger.warning(f"Could not translate legacy id {task_id}, using it as is: {exc}")
            self._remember_failure(task_id)
            return task_id

        if not canonical:
            self.logger.warning(f"Empty translation for legacy id {task_id}, using it as is")
            self._remember_failure(task_id)
            return task_id

        with self._lock:
            self._cache[task_id] = IdCacheEntry(
                legacy_id=task_id,
                canonical_id=canonical,
                expires_at=self._clock() + self.ttl,
            )
        self.logger.debug(f"Translated legacy id {task_id} -> {canonical}")
        return canonical

    def canonicalize_batch(self, task_ids: Iterable[str]) -> Dict[str, str]:
        """Canonicalize many ids; each distinct legacy id costs at most one lookup."""
        result: Dict[str, str] = {}
        for task_id in task_ids:
            if task_id not in result:
                result[task_id] = self.canonicalize(task_id)
        return result

    def to_legacy(self, canonical_id: str) -> str:
        """
        Reverse lookup from the cache only.

        Returns the canonical id unchanged when no cached translation exists.
        """
        if self.is_legacy_format(canonical_id):
            return canonical_id

        now = self._clock()
        with self._lock:
            for entry in self._cache.values():
                if entry.canonical_id == canonical_id and not entry.is_expired(now):
                    return entry.legacy_id

        self.logger.warning(f"No cached legacy id for {canonical_id}; returning it unchanged")
        return canonical_id

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
            self._failures.clear()

    def cleanup_expired_cache(self) -> int:
        """Drop expired entries and return how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._cache.items() if entry.is_expired(now)]
            for key in expired:
                del self._cache[key]
            for key in [key for key, retry_at in self._failures.items() if now >= retry_at]:
                del self._failures[key]
        if expired:
            self.logger.debug(f"Removed {len(expired)} expired id cache entries")
        return len(expired)

    def get_cache_stats(self) -> Dict[str, int]:
        now = self._clock()
        with self._lock:
            expired = sum(1 for entry in self._cache.values() if entry.is_expired(now))
            total = len(self._cache)
        return {"total": total, "active": total - expired, "expired": expired}
