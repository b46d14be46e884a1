"""Path validation for artifact storage.

Every artifact path is relative to a single root directory. A path is
rejected when it:
- contains traversal sequences (../, encoded dots)
- contains null bytes or look-alike unicode separators
- is absolute
- resolves, after following symlinks, to a location outside the root
"""

import logging
import os
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from gagent.errors import PathTraversalError

logger = logging.getLogger(__name__)

# Audit logger - separate from general logging
audit_logger = logging.getLogger("gagent.security.audit")


class ViolationType(str, Enum):
    """Reasons a path is rejected."""
    PATH_TRAVERSAL = "path_traversal"
    SYMLINK_ESCAPE = "symlink_escape"
    NULL_BYTE = "null_byte"
    UNICODE_ATTACK = "unicode_attack"
    ABSOLUTE_PATH = "absolute_path"
    OUTSIDE_ROOT = "outside_root"
    INVALID_PATH = "invalid_path"


class StorageOperation(str, Enum):
    """Artifact store operations that resolve paths."""
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXISTS = "exists"
    MKDIR = "mkdir"


@dataclass
class PathViolation:
    """A rejected path and why."""
    violation_type: ViolationType
    original_path: str
    resolved_path: str | None
    message: str
    operation: StorageOperation | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.violation_type.value,
            "original_path": self.original_path,
            "resolved_path": self.resolved_path,
            "message": self.message,
            "operation": self.operation.value if self.operation else None,
            "timestamp": self.timestamp.isoformat(),
        }


class PathAuditLog:
    """Keeps the most recent path violations for inspection."""

    def __init__(self, max_violations: int = 500):
        self._violations: list[PathViolation] = []
        self._max_violations = max_violations

    def record(self, violation: PathViolation) -> PathViolation:
        self._violations.append(violation)
        if len(self._violations) > self._max_violations:
            self._violations = self._violations[-self._max_violations:]

        op = violation.operation.value.upper() if violation.operation else "?"
        audit_logger.warning(
            f"PATH REJECTED [{violation.violation_type.value}] {op}: {violation.message} "
            f"path={violation.original_path!r} resolved={violation.resolved_path}"
        )
        return violation

    def recent(self, limit: int = 100, violation_type: ViolationType | None = None) -> list[PathViolation]:
        violations = self._violations
        if violation_type is not None:
            violations = [v for v in violations if v.violation_type == violation_type]
        return violations[-limit:]

    def clear(self) -> None:
        self._violations = []


# Dangerous patterns to detect
TRAVERSAL_PATTERNS = [
    re.compile(r'\.\.[\\/]'),  # ../  or ..\
    re.compile(r'[\\/]\.\.'),  # /../ or \..
    re.compile(r'^\.\.$'),
    re.compile(r'%2e%2e', re.IGNORECASE),  # URL encoded ..
    re.compile(r'%252e%252e', re.IGNORECASE),  # Double URL encoded
    re.compile(r'\.%2e', re.IGNORECASE),
    re.compile(r'%2e\.', re.IGNORECASE),
]

NULL_BYTE_PATTERNS = [
    re.compile(r'\x00'),
    re.compile(r'%00'),
]

# Characters that normalize to '.', '/' or '\'
UNICODE_LOOKALIKES = (
    '\u2024',  # ONE DOT LEADER
    '\u2025',  # TWO DOT LEADER
    '\u2026',  # HORIZONTAL ELLIPSIS
    '\uff0e',  # FULLWIDTH FULL STOP
    '\uff0f',  # FULLWIDTH SOLIDUS
    '\uff3c',  # FULLWIDTH REVERSE SOLIDUS
)


class RootedPathValidator:
    """Resolves relative paths beneath a fixed root, rejecting escapes."""

    def __init__(self, root: Path, audit: PathAuditLog | None = None, max_symlink_depth: int = 10):
        # realpath handles platforms where the temp dir itself is a symlink
        self.root = Path(os.path.realpath(root))
        self.audit = audit or PathAuditLog()
        self.max_symlink_depth = max_symlink_depth

    def resolve(self, path_str: str, operation: StorageOperation) -> Path:
        """Return the absolute path for ``path_str`` or raise PathTraversalError."""
        result = self.check(path_str, operation)
        if isinstance(result, PathViolation):
            raise PathTraversalError(path_str, result.violation_type.value)
        return result

    def check(self, path_str: str, operation: StorageOperation) -> Path | PathViolation:
        """Validate ``path_str``; returns the resolved path or the recorded violation."""
        for pattern in NULL_BYTE_PATTERNS:
            if pattern.search(path_str):
                return self._reject(ViolationType.NULL_BYTE, path_str, None, "Null byte in path", operation)

        if unicodedata.normalize("NFKC", path_str) != path_str:
            for char in UNICODE_LOOKALIKES:
                if char in path_str:
                    return self._reject(
                        ViolationType.UNICODE_ATTACK,
                        path_str,
                        None,
                        f"Suspicious unicode character U+{ord(char):04X}",
                        operation,
                    )

        for pattern in TRAVERSAL_PATTERNS:
            if pattern.search(path_str):
                return self._reject(
                    ViolationType.PATH_TRAVERSAL,
                    path_str,
                    None,
                    f"Traversal pattern {pattern.pattern}",
                    operation,
                )

        if not path_str.strip():
            return self._reject(ViolationType.INVALID_PATH, path_str, None, "Empty path", operation)

        if os.path.isabs(path_str) or path_str.startswith(("\\", "~")):
            return self._reject(ViolationType.ABSOLUTE_PATH, path_str, None, "Absolute path", operation)

        try:
            candidate = Path(os.path.abspath(self.root / path_str))
            resolved = self._follow_symlinks(candidate)
        except (OSError, ValueError) as e:
            return self._reject(ViolationType.INVALID_PATH, path_str, None, f"Invalid path: {e}", operation)

        if resolved is None:
            return self._reject(
                ViolationType.SYMLINK_ESCAPE,
                path_str,
                str(candidate),
                f"Symlink loop or depth over {self.max_symlink_depth}",
                operation,
            )

        if not self.is_within_root(resolved):
            kind = ViolationType.SYMLINK_ESCAPE if resolved != candidate else ViolationType.OUTSIDE_ROOT
            return self._reject(kind, path_str, str(resolved), f"Resolves outside {self.root}", operation)

        return resolved

    def is_within_root(self, resolved: Path) -> bool:
        resolved_str = os.path.realpath(resolved)
        root_str = str(self.root)
        return resolved_str == root_str or resolved_str.startswith(root_str + os.sep)

    def relative(self, resolved: Path) -> str:
        """Path relative to the root, with forward slashes."""
        return Path(os.path.realpath(resolved)).relative_to(self.root).as_posix()

    def _follow_symlinks(self, path: Path) -> Path | None:
        current = path
        visited: set[str] = set()
        for _ in range(self.max_symlink_depth):
            if not current.is_symlink():
                return current
            key = str(current)
            if key in visited:
                return None
            visited.add(key)
            target = os.readlink(current)
            if not os.path.isabs(target):
                target = os.path.join(os.path.dirname(current), target)
            current = Path(os.path.abspath(target))
        return None

    def _reject(
        self,
        violation_type: ViolationType,
        path_str: str,
        resolved: str | None,
        message: str,
        operation: StorageOperation,
    ) -> PathViolation:
        return self.audit.record(
            PathViolation(
                violation_type=violation_type,
                original_path=path_str,
                resolved_path=resolved,
                message=message,
                operation=operation,
            )
        )
