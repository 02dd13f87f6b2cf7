"""
Test suite for obs-todoist completion sync.

This package contains:
- Unit tests for parsing, id translation, journal and detection
- Engine tests driven by in-memory fakes
- CLI tests for the command dispatch
"""
