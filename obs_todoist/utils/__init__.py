"""
Utility functions for obs-todoist.
"""

from .io import safe_read_json, safe_write_json, atomic_write, read_json, copy_file
from .date import parse_iso_timestamp, epoch_to_iso, format_local_timestamp, strftime_regex
from .text import content_hash, normalize_text, calculate_similarity, fuzzy_filename_matches

__all__ = [
    # I/O utilities
    'safe_read_json',
    'safe_write_json',
    'atomic_write',
    'read_json',
    'copy_file',
    # Date utilities
    'parse_iso_timestamp',
    'epoch_to_iso',
    'format_local_timestamp',
    'strftime_regex',
    # Text utilities
    'content_hash',
    'normalize_text',
    'calculate_similarity',
    'fuzzy_filename_matches',
]
