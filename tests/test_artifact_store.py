"""Tests for the rooted artifact store."""

import pytest

from gagent.errors import PathTraversalError
from gagent.storage.artifacts import ArtifactStore


class TestArtifactStore:
    """Tests for ArtifactStore file operations."""

    @pytest.mark.asyncio
    async def test_write_creates_parents(self, store):
        """Test write creates intermediate directories."""
        path = await store.write("task-1/game/index.html", "<html></html>")
        assert path.exists()
        assert await store.read("task-1/game/index.html") == "<html></html>"

    @pytest.mark.asyncio
    async def test_overwrite(self, store):
        """Test a second write replaces the content."""
        await store.write("a.txt", "one")
        await store.write("a.txt", "two")
        assert await store.read("a.txt") == "two"

    @pytest.mark.asyncio
    async def test_read_missing_raises(self, store):
        """Test reading a missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            await store.read("missing.txt")

    @pytest.mark.asyncio
    async def test_exists(self, store):
        await store.write("x/y.txt", "y")
        assert await store.exists("x/y.txt")
        assert not await store.exists("x/z.txt")

    @pytest.mark.asyncio
    async def test_delete_file_and_tree(self, store):
        """Test delete removes files and whole directories."""
        await store.write("t/a.txt", "a")
        await store.write("t/sub/b.txt", "b")

        await store.delete("t/a.txt")
        assert not await store.exists("t/a.txt")

        await store.delete("t")
        assert not await store.exists("t/sub/b.txt")

    @pytest.mark.asyncio
    async def test_delete_missing_raises(self, store):
        with pytest.raises(FileNotFoundError):
            await store.delete("nope.txt")

    @pytest.mark.asyncio
    async def test_mkdir(self, store):
        path = await store.mkdir("a/b/c")
        assert path.is_dir()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("op", ["write", "read", "delete", "exists"])
    async def test_traversal_rejected_without_side_effects(self, tmp_path, op):
        """Test escaping paths are rejected before the filesystem is touched."""
        store = ArtifactStore(tmp_path / "root")
        outside = tmp_path / "victim.txt"
        outside.write_text("keep")

        with pytest.raises(PathTraversalError):
            if op == "write":
                await store.write("../victim.txt", "overwritten")
            elif op == "read":
                await store.read("../victim.txt")
            elif op == "delete":
                await store.delete("../victim.txt")
            else:
                await store.exists("../victim.txt")

        assert outside.read_text() == "keep"
        assert len(store.audit.recent()) == 1

    @pytest.mark.asyncio
    async def test_absolute_path_rejected(self, store):
        with pytest.raises(PathTraversalError):
            await store.write("/tmp/evil.txt", "x")
