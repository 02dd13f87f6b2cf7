"""Todoist integration module for obs-todoist."""

from .client import TodoistClient
from .ids import IdCanonicalizer

__all__ = ['TodoistClient', 'IdCanonicalizer']
