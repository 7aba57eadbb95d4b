"""Sandbox: Path confinement for a single workspace root with LLM-friendly errors.

This module provides the security boundary for filesystem access:
- RejectReason and Rejection describing why a path was refused
- Sandbox class resolving caller paths against one root directory
- LLM-friendly error classes

The Sandbox is a pure validation layer - it doesn't perform file I/O beyond
creating the root on demand and inspecting existing path components.
For file operations, use WorkspaceStore which wraps a Sandbox.
"""
from __future__ import annotations

import logging
import os
import re
import stat
from enum import Enum
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

AccessMode = Literal["read", "write", "list", "delete"]

_DRIVE_RE = re.compile(r"^[A-Za-z]:")
_UNC_PREFIXES = ("\\\\", "//")
# Not exposed by the stat module outside Windows.
_REPARSE_POINT = getattr(stat, "FILE_ATTRIBUTE_REPARSE_POINT", 0x400)


# ---------------------------------------------------------------------------
# Rejections
# ---------------------------------------------------------------------------


class RejectReason(str, Enum):
    """Why the sandbox refused a path. Values double as ToolResult kinds."""

    EMPTY_PATH = "empty_path"
    INVALID_PATH = "invalid_path"
    ABSOLUTE_PATH = "absolute_path"
    DRIVE_PATH = "drive_path"
    UNC_PATH = "unc_path"
    PATH_ESCAPES_WORKSPACE = "path_escapes_workspace"
    SYMLINK_NOT_ALLOWED = "symlink_not_allowed"


_REASON_TEXT: dict[RejectReason, str] = {
    RejectReason.EMPTY_PATH: "path is empty",
    RejectReason.INVALID_PATH: "path contains a NUL character",
    RejectReason.ABSOLUTE_PATH: "absolute paths are not allowed",
    RejectReason.DRIVE_PATH: "drive-letter paths are not allowed",
    RejectReason.UNC_PATH: "UNC network paths are not allowed",
    RejectReason.PATH_ESCAPES_WORKSPACE: "path escapes the workspace",
    RejectReason.SYMLINK_NOT_ALLOWED: "path goes through a symlink or junction",
}


class Rejection(BaseModel):
    """A refused path, returned by Sandbox.check() instead of a resolved Path."""

    model_config = ConfigDict(frozen=True)

    reason: RejectReason = Field(description="Which check refused the path")
    path: str = Field(description="The path exactly as the caller supplied it")

    @property
    def message(self) -> str:
        return (
            f"Cannot access '{self.path}': {_REASON_TEXT[self.reason]}.\n"
            "Use a path relative to the workspace root (e.g., 'notes/todo.txt')."
        )


# ---------------------------------------------------------------------------
# LLM-Friendly Errors
# ---------------------------------------------------------------------------


class SandboxError(Exception):
    """Base class for sandbox errors with LLM-friendly messages.

    All sandbox errors include guidance on what IS allowed,
    helping the LLM correct its behavior.
    """

    pass


class PathRejectedError(SandboxError):
    """Raised when a path fails one of the sandbox checks."""

    def __init__(self, rejection: Rejection):
        self.rejection = rejection
        self.reason = rejection.reason
        self.path = rejection.path
        self.message = rejection.message
        super().__init__(self.message)


class FileTooLargeError(SandboxError):
    """Raised when file exceeds the read budget."""

    def __init__(self, path: str, size: int, limit: int):
        self.path = path
        self.size = size
        self.limit = limit
        self.message = (
            f"Cannot read '{path}': file too large ({size:,} bytes).\n"
            f"Maximum allowed: {limit:,} bytes"
        )
        super().__init__(self.message)


class UnknownToolError(SandboxError):
    """Raised when a tool name is not one the workspace provides."""

    def __init__(self, name: str, available: list[str]):
        self.name = name
        self.available = available
        self.message = (
            f"Unknown tool: {name!r}.\n"
            f"Available tools: {', '.join(available)}"
        )
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Sandbox Implementation
# ---------------------------------------------------------------------------


def is_link_or_reparse_point(path: Union[str, Path]) -> bool:
    """Return True if path is a symlink or a Windows reparse point (junction).

    Raises FileNotFoundError if nothing exists at path, or NotADirectoryError
    if one of its parents is a regular file.
    """
    st = os.lstat(path)
    if stat.S_ISLNK(st.st_mode):
        return True
    return bool(getattr(st, "st_file_attributes", 0) & _REPARSE_POINT)


class Sandbox:
    """Security boundary confining paths to one workspace root.

    The Sandbox is responsible for:
    - Rejecting empty, NUL-bearing, absolute, drive-letter and UNC spellings
    - Lexical containment of the resolved path inside the root
    - Refusing any existing symlink or reparse point between root and target
    - Creating the root directory on first use

    Paths are checked lexically before the filesystem is touched. Resolved
    paths are never cached: callers resolve again for every operation.

    Example:
        sandbox = Sandbox("./data/workspace")

        result = sandbox.check("notes/todo.txt", "write")
        if isinstance(result, Rejection):
            print(result.message)

        resolved = sandbox.resolve("notes/todo.txt", "read")  # raises PathRejectedError
    """

    def __init__(self, root: Union[str, Path]):
        """Initialize the sandbox.

        Args:
            root: Workspace root directory. Relative roots are taken from the
                current working directory. The root is created lazily.
        """
        # abspath normalizes without following links, so a linked root stays visible.
        self._root = Path(os.path.abspath(root))

    @property
    def root(self) -> Path:
        """Absolute workspace root."""
        return self._root

    # ---------------------------------------------------------------------------
    # Path Resolution
    # ---------------------------------------------------------------------------

    def check(self, path: str, mode: AccessMode) -> Union[Path, Rejection]:
        """Validate a caller path without raising.

        Args:
            path: Path relative to the workspace root
            mode: Operation about to be performed. ``write`` checks the parent
                directory for links; every other mode checks the target itself.

        Returns:
            The resolved absolute Path, or a Rejection naming the first failed check
        """
        if not path or not path.strip():
            return self._reject(RejectReason.EMPTY_PATH, path, mode)
        if "\x00" in path:
            return self._reject(RejectReason.INVALID_PATH, path, mode)
        if os.path.isabs(path):
            return self._reject(RejectReason.ABSOLUTE_PATH, path, mode)
        if _DRIVE_RE.match(path):
            return self._reject(RejectReason.DRIVE_PATH, path, mode)
        if path.startswith(_UNC_PREFIXES):
            return self._reject(RejectReason.UNC_PATH, path, mode)

        root = self._root
        resolved = Path(os.path.normpath(os.path.join(root, path)))
        if not self._is_within_root(resolved):
            return self._reject(RejectReason.PATH_ESCAPES_WORKSPACE, path, mode)

        if not os.path.lexists(root):
            root.mkdir(parents=True, exist_ok=True)
        if is_link_or_reparse_point(root):
            return self._reject(RejectReason.SYMLINK_NOT_ALLOWED, path, mode)

        target = resolved.parent if mode == "write" and resolved != root else resolved
        current = root
        for part in target.relative_to(root).parts:
            current = current / part
            try:
                if is_link_or_reparse_point(current):
                    return self._reject(RejectReason.SYMLINK_NOT_ALLOWED, path, mode)
            except (FileNotFoundError, NotADirectoryError):
                # Missing or under a regular file, so nothing further down can be a link.
                break

        return resolved

    def resolve(self, path: str, mode: AccessMode) -> Path:
        """Resolve path within the workspace root.

        Args:
            path: Path relative to the workspace root
            mode: One of read, write, list, delete

        Returns:
            Resolved absolute Path

        Raises:
            PathRejectedError: If any sandbox check fails
        """
        result = self.check(path, mode)
        if isinstance(result, Rejection):
            raise PathRejectedError(result)
        return result

    def is_allowed(self, path: str, mode: AccessMode) -> bool:
        """Check whether path would be accepted for mode."""
        return not isinstance(self.check(path, mode), Rejection)

    def _is_within_root(self, resolved: Path) -> bool:
        rel = os.path.relpath(resolved, self._root)
        if os.path.isabs(rel):
            return False
        return rel != os.pardir and not rel.startswith(os.pardir + os.sep)

    def _reject(self, reason: RejectReason, path: str, mode: AccessMode) -> Rejection:
        logger.warning("Rejected %s path %r: %s", mode, path, reason.value)
        return Rejection(reason=reason, path=path)
