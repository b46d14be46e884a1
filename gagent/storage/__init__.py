"""Rooted artifact storage with path-traversal protection."""

from gagent.storage.artifacts import ArtifactStore
from gagent.storage.path_security import PathAuditLog, RootedPathValidator, StorageOperation, ViolationType

__all__ = ["ArtifactStore", "PathAuditLog", "RootedPathValidator", "StorageOperation", "ViolationType"]
