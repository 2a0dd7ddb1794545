"""Core storage - artifact storage abstraction."""

from core.storage.artifacts import (
    put_bytes,
    get_bytes,
    ArtifactStore,
)

__all__ = [
    "put_bytes",
    "get_bytes",
    "ArtifactStore",
]
