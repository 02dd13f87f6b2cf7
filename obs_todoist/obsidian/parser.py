"""
Markdown task parsing utilities.

Line numbers handed out by this module are zero-based indexes into the
list of lines of a document.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from ..core.models import DescriptionSyncMode, TaskStatus
from ..utils.date import format_local_timestamp, strftime_regex


# Regular expressions for parsing tasks
TASK_RE = re.compile(r'^(\s*)([-*+])\s*\[(.)\]\s?(.*)$')
OPEN_TASK_RE = re.compile(r'^(\s*[-*+]\s*)\[\s*\](.*)$')
BLOCK_ID_RE = re.compile(r'\s\^([a-zA-Z0-9-]+)\s*$')
TRAILING_BLOCK_REF_RE = re.compile(r'(\s*\^[a-zA-Z0-9-]+)?(\s*)$')
# Both the app URL (optionally with a title slug) and the legacy showTask URL
TODOIST_LINK_RE = re.compile(
    r'https?://(?:app\.)?todoist\.com/(?:app/task/(?:[\w-]*-)?|showTask\?id=)([A-Za-z0-9]+)'
)

TODOIST_TASK_URL = "https://todoist.com/app/task/{task_id}"
TODOIST_LINK_TEXT = "🔗 View in Todoist"

TAB_WIDTH = 4

# Description lines that describe the link itself rather than the task
METADATA_PREFIXES = (
    "original task in obsidian",
    "reference in obsidian",
)


def parse_task_line(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse a markdown task line into components.

    Args:
        line: Raw markdown line

    Returns:
        Dictionary with parsed task data or None if not a task
    """
    match = TASK_RE.match(line)
    if not match:
        return None

    status_char = match.group(3)
    if status_char.lower() == 'x':
        status = TaskStatus.DONE
    elif status_char == ' ':
        status = TaskStatus.TODO
    else:
        status = TaskStatus.OTHER

    content = match.group(4)
    block_id = None
    block_match = BLOCK_ID_RE.search(content)
    if block_match:
        block_id = block_match.group(1)
        # Remove block ID from content
        content = content[:block_match.start()]

    return {
        'indent': match.group(1),
        'marker': match.group(2),
        'status': status,
        'content': content.strip(),
        'block_id': block_id,
        'raw_line': line,
    }


def is_task_line(line: str) -> bool:
    return TASK_RE.match(line) is not None


def get_task_status(line: str) -> Optional[TaskStatus]:
    """Return the checkbox state of a task line, or None for non-task lines."""
    parsed = parse_task_line(line)
    return parsed['status'] if parsed else None


def get_line_indentation(line: str) -> int:
    """Width of the leading whitespace, counting a tab as four columns."""
    width = 0
    for char in line:
        if char == '\t':
            width += TAB_WIDTH
        elif char == ' ':
            width += 1
        else:
            break
    return width


def extract_block_id(line: str) -> Optional[str]:
    match = BLOCK_ID_RE.search(line)
    return match.group(1) if match else None


def extract_remote_id(line: str) -> Optional[str]:
    """Return the remote task id referenced by a Todoist link on this line."""
    match = TODOIST_LINK_RE.search(line)
    return match.group(1) if match else None


def format_task_link(task_id: str) -> str:
    """Render the markdown link marker for a remote task."""
    return f"[{TODOIST_LINK_TEXT}]({TODOIST_TASK_URL.format(task_id=task_id)})"


def find_linked_remote_id(lines: List[str], task_index: int) -> Optional[Tuple[str, int]]:
    """
    Look for a remote link among the sub-items of the task at task_index.

    Sub-items are the following lines indented deeper than the task; the
    scan stops at the first non-blank line indented at or above the task,
    or at a nested task line (whose links belong to the nested task). A
    link on the very next line at the task's own indentation is accepted
    as long as that line is not itself a task.

    Returns:
        (remote_id, line_index) or None
    """
    task_indent = get_line_indentation(lines[task_index])

    for index in range(task_index + 1, len(lines)):
        line = lines[index]
        if not line.strip():
            continue

        indent = get_line_indentation(line)
        if indent <= task_indent:
            if index == task_index + 1 and indent == task_indent and not is_task_line(line):
                remote_id = extract_remote_id(line)
                if remote_id:
                    return remote_id, index
            break

        if is_task_line(line):
            break

        remote_id = extract_remote_id(line)
        if remote_id:
            return remote_id, index

    return None


def scan_linked_tasks(lines: List[str]) -> List[Dict[str, Any]]:
    """
    Collect every task line that carries a remote link in its sub-items.

    Unlinked tasks and tasks in states other than open/done are skipped.
    """
    found: List[Dict[str, Any]] = []
    for index, line in enumerate(lines):
        parsed = parse_task_line(line)
        if not parsed or parsed['status'] == TaskStatus.OTHER:
            continue

        link = find_linked_remote_id(lines, index)
        if not link:
            continue

        remote_id, link_index = link
        parsed.update({
            'line_number': index,
            'remote_id': remote_id,
            'link_line_number': link_index,
        })
        found.append(parsed)
    return found


def sub_item_end(lines: List[str], task_index: int) -> int:
    """Index just past the last sub-item of the task at task_index."""
    task_indent = get_line_indentation(lines[task_index])
    end = task_index + 1
    index = task_index + 1
    while index < len(lines):
        line = lines[index]
        if not line.strip():
            index += 1
            continue
        if get_line_indentation(line) <= task_indent:
            break
        index += 1
        end = index
    return end


def mark_task_completed(line: str) -> str:
    """Flip an open checkbox to [x]; other lines come back unchanged."""
    return OPEN_TASK_RE.sub(r'\1[x]\2', line, count=1)


def has_completion_timestamp(line: str, fmt: str) -> bool:
    return strftime_regex(fmt).search(line) is not None


def add_completion_timestamp(line: str, moment: datetime, fmt: str) -> str:
    """
    Append a completion timestamp, keeping a trailing ^block-id last.

    A line that already carries a timestamp in this format is returned as is.
    """
    if has_completion_timestamp(line, fmt):
        return line

    stamp = format_local_timestamp(moment, fmt)
    match = TRAILING_BLOCK_REF_RE.search(line)
    block_ref = match.group(1) or ""
    trailing = match.group(2) or ""
    main_content = line[:match.start()]
    return f"{main_content.rstrip()} {stamp}{block_ref}{trailing}"


def description_lines(description: str, mode: DescriptionSyncMode) -> List[str]:
    """Split a remote description into the lines that should be synced."""
    if mode == DescriptionSyncMode.DISABLED or not description:
        return []

    result = []
    for raw in description.splitlines():
        text = raw.strip()
        if not text:
            continue
        if mode == DescriptionSyncMode.SYNC_TEXT_EXCEPT_METADATA:
            lowered = text.lower()
            if lowered.startswith(METADATA_PREFIXES) or "obsidian://" in lowered:
                continue
        result.append(text)
    return result


def insert_description(lines: List[str], task_index: int, description: str,
                       mode: DescriptionSyncMode) -> List[str]:
    """
    Add remote description lines as sub-items after the task's existing ones.

    Lines already present among the sub-items are not repeated.

    Returns:
        New list of lines (the input is left untouched)
    """
    wanted = description_lines(description, mode)
    if not wanted:
        return list(lines)

    end = sub_item_end(lines, task_index)
    existing = set()
    for line in lines[task_index + 1:end]:
        text = line.strip()
        if text.startswith(('- ', '* ', '+ ')):
            text = text[2:].strip()
        existing.add(text)

    indent = TASK_RE.match(lines[task_index]).group(1) if is_task_line(lines[task_index]) else ""
    additions = [f"{indent}\t- {text}" for text in wanted if text not in existing]
    if not additions:
        return list(lines)

    return lines[:end] + additions + lines[end:]
