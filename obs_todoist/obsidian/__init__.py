"""
Obsidian integration module for obs-todoist.
"""

from .vault import VaultDocumentStore, is_vault, read_anchor_id, read_frontmatter
from .parser import (
    add_completion_timestamp,
    extract_remote_id,
    find_linked_remote_id,
    format_task_link,
    get_task_status,
    insert_description,
    mark_task_completed,
    parse_task_line,
    scan_linked_tasks,
)

__all__ = [
    'VaultDocumentStore',
    'is_vault',
    'read_anchor_id',
    'read_frontmatter',
    'add_completion_timestamp',
    'extract_remote_id',
    'find_linked_remote_id',
    'format_task_link',
    'get_task_status',
    'insert_description',
    'mark_task_completed',
    'parse_task_line',
    'scan_linked_tasks',
]
