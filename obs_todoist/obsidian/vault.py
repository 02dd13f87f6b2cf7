"""
Obsidian vault access as a line-oriented document store.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import frontmatter
import yaml

from ..core.exceptions import DocumentNotFoundError, DocumentStoreError, VaultNotFoundError
from ..core.interfaces import DocumentStore
from ..utils.io import atomic_write


logger = logging.getLogger(__name__)

# Directories to skip
SKIP_DIRS = {'.obsidian', '.trash', '.git', 'node_modules'}


def is_vault(path: str) -> bool:
    """A vault is a directory holding a .obsidian directory."""
    return os.path.isdir(os.path.join(os.path.expanduser(path), '.obsidian'))


def read_frontmatter(lines: List[str]) -> Dict[str, Any]:
    """
    Read the metadata of a leading YAML frontmatter block.

    Returns an empty dict when there is no block or it does not hold a mapping.
    """
    try:
        post = frontmatter.loads("\n".join(lines))
    except (yaml.YAMLError, ValueError, TypeError) as exc:
        logger.debug(f"Ignoring unreadable frontmatter: {exc}")
        return {}
    return post.metadata if isinstance(post.metadata, dict) else {}


def read_anchor_id(lines: List[str], anchor_field: str) -> Optional[str]:
    """The document anchor id stored under anchor_field, as a string."""
    value = read_frontmatter(lines).get(anchor_field)
    if value is None or isinstance(value, (dict, list)):
        return None
    anchor_id = str(value).strip()
    return anchor_id or None


class VaultDocumentStore(DocumentStore):
    """Markdown files of one vault, addressed by vault-relative paths."""

    def __init__(self, vault_path: str, anchor_field: str = "uuid",
                 logger: Optional[logging.Logger] = None):
        vault_path = os.path.abspath(os.path.expanduser(vault_path))
        if not os.path.isdir(vault_path):
            raise VaultNotFoundError(f"Vault directory not found: {vault_path}")

        self.vault_path = vault_path
        self.anchor_field = anchor_field
        self.logger = logger or logging.getLogger(__name__)
        self._anchor_index: Dict[str, str] = {}

    def _full_path(self, path: str) -> str:
        full_path = os.path.normpath(os.path.join(self.vault_path, path))
        if os.path.commonpath([full_path, self.vault_path]) != self.vault_path:
            raise DocumentStoreError(f"Path escapes the vault: {path}")
        return full_path

    def read_file(self, path: str) -> List[str]:
        full_path = self._full_path(path)
        if not os.path.isfile(full_path):
            raise DocumentNotFoundError(f"Document not found: {path}")

        try:
            with open(full_path, "r", encoding="utf-8") as handle:
                content = handle.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise DocumentStoreError(f"Failed to read {path}: {exc}") from exc

        return content.split("\n")

    def write_file(self, path: str, lines: List[str]) -> None:
        full_path = self._full_path(path)
        # Notes live in the user's vault, so no .lock companion is left beside them
        if not atomic_write(full_path, "\n".join(lines), use_lock=False):
            raise DocumentStoreError(f"Failed to write {path}")
        self.logger.debug(f"Wrote {len(lines)} lines to {path}")

    def list_files(self) -> List[str]:
        """
        List all markdown files in the vault.

        Returns:
            Sorted vault-relative paths using forward slashes
        """
        markdown_files = []

        for root, dirs, files in os.walk(self.vault_path):
            # Remove skip directories from dirs to prevent walking into them
            dirs[:] = [d for d in dirs if d not in SKIP_DIRS]

            for filename in files:
                if filename.endswith('.md'):
                    rel_path = os.path.relpath(os.path.join(root, filename), self.vault_path)
                    markdown_files.append(rel_path.replace(os.sep, '/'))

        return sorted(markdown_files)

    def file_exists(self, path: str) -> bool:
        try:
            return os.path.isfile(self._full_path(path))
        except DocumentStoreError:
            return False

    def get_anchor_id(self, path: str) -> Optional[str]:
        try:
            lines = self.read_file(path)
        except DocumentStoreError:
            return None

        anchor_id = read_anchor_id(lines, self.anchor_field)
        if anchor_id:
            self._anchor_index[anchor_id] = path
        return anchor_id

    def resolve_by_anchor_id(self, anchor_id: str) -> Optional[str]:
        if not anchor_id:
            return None

        cached = self._anchor_index.get(anchor_id)
        if cached and self.get_anchor_id(cached) == anchor_id:
            return cached

        self.logger.debug(f"Rebuilding anchor index to resolve {anchor_id}")
        self._anchor_index.clear()
        for path in self.list_files():
            self.get_anchor_id(path)
        return self._anchor_index.get(anchor_id)
