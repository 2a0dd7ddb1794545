"""Persistence for fulfillment aggregates."""

from storage.repository import EntityKind, InMemoryRepository, Repository
from storage.sqlite_repository import SQLiteRepository

__all__ = [
    "EntityKind",
    "InMemoryRepository",
    "Repository",
    "SQLiteRepository",
]
