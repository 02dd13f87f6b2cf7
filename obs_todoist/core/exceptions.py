"""
Exception classes for obs-todoist.
"""

from typing import Optional


class ObsTodoistError(Exception):
    """Base exception for all obs-todoist errors."""
    pass


class ConfigurationError(ObsTodoistError):
    """Raised when configuration is invalid or missing."""
    pass


class VaultNotFoundError(ObsTodoistError):
    """Raised when an Obsidian vault cannot be found."""
    pass


class RemoteServiceError(ObsTodoistError):
    """Raised when a call to the remote task service fails.

    These failures are treated as transient and retried by the engine.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteNotFoundError(RemoteServiceError):
    """Raised when the remote service does not know a task id."""
    pass


class RateLimitError(RemoteServiceError):
    """Raised when the remote service keeps rejecting calls with HTTP 429."""
    pass


class AuthorizationError(RemoteServiceError):
    """Raised when the API token is missing or rejected."""
    pass


class IdTranslationError(RemoteServiceError):
    """Raised when a legacy id cannot be translated to its canonical form."""
    pass


class DocumentStoreError(ObsTodoistError):
    """Base exception for document store failures."""
    pass


class DocumentNotFoundError(DocumentStoreError):
    """Raised when a document path does not exist in the store."""
    pass


class TaskLineNotFoundError(DocumentStoreError):
    """Raised when a tracked task line cannot be located in its document."""
    pass


class JournalError(ObsTodoistError):
    """Raised when the sync journal cannot be used."""
    pass


class SyncError(ObsTodoistError):
    """Raised when a sync cycle cannot run at all."""
    pass
