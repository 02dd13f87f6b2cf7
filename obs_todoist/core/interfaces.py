"""
Abstract collaborator contracts used by the sync engine.

The engine only talks to the document store and the remote task service
through these interfaces, so it can run against the filesystem vault and
the Todoist HTTP API in production and against in-memory fakes in tests.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .models import RemoteTask


class DocumentStore(ABC):
    """Line-oriented access to the local documents that hold task lines."""

    @abstractmethod
    def read_file(self, path: str) -> List[str]:
        """Return the lines of a document (without line terminators).

        Raises DocumentNotFoundError when the path does not exist.
        """

    @abstractmethod
    def write_file(self, path: str, lines: List[str]) -> None:
        """Replace the content of a document."""

    @abstractmethod
    def list_files(self) -> List[str]:
        """Return every document path in scope, relative to the store root."""

    @abstractmethod
    def resolve_by_anchor_id(self, anchor_id: str) -> Optional[str]:
        """Return the path of the document carrying this anchor id, if any."""

    @abstractmethod
    def get_anchor_id(self, path: str) -> Optional[str]:
        """Return the anchor id stored in a document's metadata, if any."""

    def file_exists(self, path: str) -> bool:
        return path in set(self.list_files())


class RemoteTaskService(ABC):
    """The remote task service operations the engine needs."""

    @abstractmethod
    def get_task(self, task_id: str) -> RemoteTask:
        """Fetch one task, completed or not.

        Raises RemoteNotFoundError for unknown ids.
        """

    @abstractmethod
    def get_tasks_bulk(self) -> List[RemoteTask]:
        """Return all active (open) tasks."""

    @abstractmethod
    def close_task(self, task_id: str) -> None:
        """Mark a task as completed."""

    @abstractmethod
    def create_task(self, fields: Dict[str, Any]) -> RemoteTask:
        """Create a task and return it."""

    @abstractmethod
    def translate_id(self, legacy_id: str) -> str:
        """Translate a legacy numeric id to its canonical form.

        Raises IdTranslationError when the id cannot be translated.
        """
