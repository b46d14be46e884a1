"""Rooted text artifact storage.

All paths are relative to ``root``; anything that would escape it raises
``PathTraversalError`` before the filesystem is touched. Blocking file I/O
runs in a worker thread.
"""

import asyncio
import logging
import shutil
from pathlib import Path

from gagent.storage.path_security import PathAuditLog, RootedPathValidator, StorageOperation

logger = logging.getLogger(__name__)


class ArtifactStore:
    """Write, read and delete text files beneath a fixed root."""

    def __init__(self, root: Path | str, audit: PathAuditLog | None = None):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.validator = RootedPathValidator(self.root, audit=audit)

    @property
    def audit(self) -> PathAuditLog:
        return self.validator.audit

    def resolve(self, path: str, operation: StorageOperation = StorageOperation.READ) -> Path:
        """Absolute location of ``path``; raises PathTraversalError on escape."""
        return self.validator.resolve(path, operation)

    async def write(self, path: str, content: str) -> Path:
        """Create or overwrite a file, creating parent directories."""
        target = self.validator.resolve(path, StorageOperation.WRITE)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

        await asyncio.to_thread(_write)
        logger.debug(f"Wrote {len(content)} chars to {path}")
        return target

    async def read(self, path: str) -> str:
        """Read a file; raises FileNotFoundError when missing."""
        target = self.validator.resolve(path, StorageOperation.READ)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    async def exists(self, path: str) -> bool:
        target = self.validator.resolve(path, StorageOperation.EXISTS)
        return await asyncio.to_thread(target.exists)

    async def delete(self, path: str) -> None:
        """Delete a file or directory tree; raises FileNotFoundError when missing."""
        target = self.validator.resolve(path, StorageOperation.DELETE)
        if target == self.validator.root:
            raise ValueError("Refusing to delete the artifact root")

        def _delete() -> None:
            if target.is_dir() and not target.is_symlink():
                shutil.rmtree(target)
            else:
                target.unlink()

        await asyncio.to_thread(_delete)
        logger.debug(f"Deleted {path}")

    async def mkdir(self, path: str) -> Path:
        target = self.validator.resolve(path, StorageOperation.MKDIR)
        await asyncio.to_thread(target.mkdir, parents=True, exist_ok=True)
        return target
