"""Completion sync between Obsidian task lines and Todoist."""

__version__ = "0.1.0"
