"""Security tests for rooted artifact paths.

Tests cover:
- Path traversal attacks (../, encoded sequences)
- Absolute paths
- Symlink escape attacks
- Null byte injection
- Unicode look-alike separators
- Audit logging
"""

import os

import pytest

from gagent.errors import PathTraversalError
from gagent.storage.path_security import (
    NULL_BYTE_PATTERNS,
    TRAVERSAL_PATTERNS,
    UNICODE_LOOKALIKES,
    PathAuditLog,
    RootedPathValidator,
    StorageOperation,
    ViolationType,
)


@pytest.fixture
def validator(tmp_path) -> RootedPathValidator:
    root = tmp_path / "root"
    root.mkdir()
    return RootedPathValidator(root)


class TestTraversalPatterns:
    """Test detection of path traversal patterns."""

    @pytest.mark.parametrize("malicious_path", [
        "../../../etc/passwd",
        "..\\..\\windows\\system32",
        "foo/../../etc/passwd",
        "..",
        "%2e%2e%2f",
        "%252e%252e%252f",
        ".%2e/secret",
    ])
    def test_traversal_patterns_detected(self, malicious_path):
        """Test that path traversal patterns are detected."""
        assert any(p.search(malicious_path) for p in TRAVERSAL_PATTERNS), malicious_path

    @pytest.mark.parametrize("safe_path", [
        "task-1/README.md",
        "task-1/game-abc/index.html",
        "notes/step.md",
        "file.v2.txt",
    ])
    def test_safe_paths_not_flagged(self, safe_path):
        """Test that safe paths are not flagged."""
        assert not any(p.search(safe_path) for p in TRAVERSAL_PATTERNS), safe_path

    def test_null_byte_patterns(self):
        """Test raw and encoded null bytes are detected."""
        assert any(p.search("file.txt\x00.jpg") for p in NULL_BYTE_PATTERNS)
        assert any(p.search("file%00.txt") for p in NULL_BYTE_PATTERNS)

    def test_lookalikes_defined(self):
        """Test fullwidth separators are in the look-alike table."""
        assert "．" in UNICODE_LOOKALIKES
        assert "／" in UNICODE_LOOKALIKES


class TestRootedPathValidator:
    """Test resolution beneath the root."""

    def test_resolves_relative_path(self, validator):
        """Test a plain relative path resolves under the root."""
        resolved = validator.resolve("task-1/README.md", StorageOperation.WRITE)
        assert resolved == validator.root / "task-1" / "README.md"
        assert validator.relative(resolved) == "task-1/README.md"

    def test_traversal_rejected(self, validator):
        """Test ../ is rejected with the traversal reason."""
        with pytest.raises(PathTraversalError) as exc_info:
            validator.resolve("../outside.txt", StorageOperation.WRITE)
        assert exc_info.value.details == ViolationType.PATH_TRAVERSAL.value
        assert exc_info.value.code == "PathTraversalRejected"

    def test_absolute_path_rejected(self, validator):
        """Test absolute paths are rejected."""
        with pytest.raises(PathTraversalError) as exc_info:
            validator.resolve("/etc/passwd", StorageOperation.READ)
        assert exc_info.value.details == ViolationType.ABSOLUTE_PATH.value

    def test_empty_path_rejected(self, validator):
        """Test blank paths are invalid."""
        result = validator.check("  ", StorageOperation.READ)
        assert result.violation_type == ViolationType.INVALID_PATH

    def test_null_byte_rejected(self, validator):
        """Test null bytes are rejected before anything else."""
        result = validator.check("a\x00/../b", StorageOperation.READ)
        assert result.violation_type == ViolationType.NULL_BYTE

    def test_unicode_lookalike_rejected(self, validator):
        """Test fullwidth dots are rejected."""
        result = validator.check("．．/secret", StorageOperation.READ)
        assert result.violation_type == ViolationType.UNICODE_ATTACK

    def test_root_itself_is_within_root(self, validator):
        """Test the root directory counts as inside."""
        assert validator.is_within_root(validator.root)

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlink_escape_rejected(self, validator, tmp_path):
        """Test a symlink pointing outside the root is rejected."""
        outside = tmp_path / "outside.txt"
        outside.write_text("secret")
        os.symlink(outside, validator.root / "link.txt")

        result = validator.check("link.txt", StorageOperation.READ)
        assert result.violation_type == ViolationType.SYMLINK_ESCAPE

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
    def test_symlink_inside_root_allowed(self, validator):
        """Test a symlink to another file under the root resolves."""
        target = validator.root / "real.txt"
        target.write_text("ok")
        os.symlink(target, validator.root / "alias.txt")

        assert validator.resolve("alias.txt", StorageOperation.READ) == target


class TestPathAuditLog:
    """Test violation recording."""

    def test_violations_recorded(self, validator):
        """Test each rejection lands in the audit log."""
        validator.check("../x", StorageOperation.DELETE)
        validator.check("/x", StorageOperation.READ)

        recent = validator.audit.recent()
        assert [v.violation_type for v in recent] == [ViolationType.PATH_TRAVERSAL, ViolationType.ABSOLUTE_PATH]
        assert recent[0].operation == StorageOperation.DELETE
        assert recent[0].to_dict()["type"] == "path_traversal"

    def test_filter_by_type(self, validator):
        """Test recent() filters by violation type."""
        validator.check("../x", StorageOperation.READ)
        validator.check("/x", StorageOperation.READ)
        assert len(validator.audit.recent(violation_type=ViolationType.ABSOLUTE_PATH)) == 1

    def test_bounded(self, tmp_path):
        """Test the log keeps only the newest violations."""
        audit = PathAuditLog(max_violations=3)
        validator = RootedPathValidator(tmp_path, audit=audit)
        for i in range(5):
            validator.check(f"../{i}", StorageOperation.READ)
        assert [v.original_path for v in audit.recent()] == ["../2", "../3", "../4"]

    def test_audit_logger_warns(self, validator, caplog):
        """Test rejections are written to the security audit logger."""
        with caplog.at_level("WARNING", logger="gagent.security.audit"):
            validator.check("../x", StorageOperation.WRITE)
        assert "PATH REJECTED" in caplog.text

    def test_clear(self, validator):
        validator.check("../x", StorageOperation.READ)
        validator.audit.clear()
        assert validator.audit.recent() == []
