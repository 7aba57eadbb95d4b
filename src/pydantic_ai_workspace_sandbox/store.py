"""WorkspaceStore: file I/O inside the sandbox root.

Every operation resolves its path through the Sandbox with the matching
access mode before touching storage. Blocking filesystem calls run in a
worker thread so the coroutines can be awaited from an agent's event loop.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Optional, Union

from .config import DEFAULT_MAX_READ_BYTES
from .sandbox import FileTooLargeError, Sandbox

logger = logging.getLogger(__name__)


class WorkspaceStore:
    """Read, write, list and delete files under a Sandbox root.

    Errors are raised, not returned: PathRejectedError for sandbox
    violations, FileTooLargeError for reads over budget, and the usual
    OSError subclasses (FileNotFoundError, IsADirectoryError, ...) from
    the filesystem. WorkspaceToolset turns them into ToolResult values.
    """

    def __init__(self, sandbox: Sandbox, max_read_bytes: int = DEFAULT_MAX_READ_BYTES):
        self._sandbox = sandbox
        self._max_read_bytes = max_read_bytes

    @classmethod
    def create_default(
        cls, root: Union[str, Path], max_read_bytes: int = DEFAULT_MAX_READ_BYTES
    ) -> "WorkspaceStore":
        """Create a store with its own Sandbox on root."""
        return cls(Sandbox(root), max_read_bytes=max_read_bytes)

    @property
    def sandbox(self) -> Sandbox:
        return self._sandbox

    @property
    def max_read_bytes(self) -> int:
        return self._max_read_bytes

    # ---------------------------------------------------------------------------
    # File Operations
    # ---------------------------------------------------------------------------

    async def read_text(self, path: str, max_bytes: Optional[int] = None) -> str:
        """Read a UTF-8 text file.

        Args:
            path: Path relative to the workspace root
            max_bytes: Size budget in bytes (defaults to the store's max_read_bytes)

        Returns:
            File content; invalid UTF-8 sequences are replaced

        Raises:
            PathRejectedError: If the sandbox refuses the path
            FileTooLargeError: If the file is larger than max_bytes
            FileNotFoundError: If the file doesn't exist
            IsADirectoryError: If the path is a directory
            ValueError: If max_bytes is negative
        """
        limit = self._max_read_bytes if max_bytes is None else max_bytes
        if limit < 0:
            raise ValueError(f"max_bytes must be >= 0, got {limit}")
        return await asyncio.to_thread(self._read_text, path, limit)

    async def write_text(self, path: str, content: str) -> None:
        """Write a UTF-8 text file, creating parent directories.

        The content goes to a temporary sibling first and is then renamed over
        the target, so readers see either the old or the new file.

        Raises:
            PathRejectedError: If the sandbox refuses the path
            IsADirectoryError: If the path is the workspace root or a directory
        """
        await asyncio.to_thread(self._write_text, path, content)

    async def list_dir(self, path: str = ".") -> list[str]:
        """List a directory.

        Returns:
            Entry names in filesystem order; directories carry a trailing '/'

        Raises:
            PathRejectedError: If the sandbox refuses the path
            FileNotFoundError: If the directory doesn't exist
            NotADirectoryError: If the path is a file
        """
        return await asyncio.to_thread(self._list_dir, path or ".")

    async def remove(self, path: str) -> None:
        """Delete a file or a directory tree. Missing paths are not an error.

        Raises:
            PathRejectedError: If the sandbox refuses the path
            PermissionError: If the path is the workspace root itself
        """
        await asyncio.to_thread(self._remove, path)

    # ---------------------------------------------------------------------------
    # Blocking implementations (run in a worker thread)
    # ---------------------------------------------------------------------------

    def _read_text(self, path: str, limit: int) -> str:
        resolved = self._sandbox.resolve(path, "read")
        data = resolved.read_bytes()
        if len(data) > limit:
            raise FileTooLargeError(path, len(data), limit)
        logger.debug("Read %d bytes from %s", len(data), path)
        return data.decode("utf-8", errors="replace")

    def _write_text(self, path: str, content: str) -> None:
        resolved = self._sandbox.resolve(path, "write")
        if resolved == self._sandbox.root:
            raise IsADirectoryError(f"Cannot write to '{path}': it is the workspace root")
        resolved.parent.mkdir(parents=True, exist_ok=True)
        # Parents may have been created just now; validate the full chain again.
        resolved = self._sandbox.resolve(path, "write")

        fd, tmp_name = tempfile.mkstemp(
            dir=resolved.parent, prefix=f".{resolved.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            # os.replace swaps a link at the target instead of writing through it.
            os.replace(tmp_name, resolved)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
        logger.debug("Wrote %d characters to %s", len(content), path)

    def _list_dir(self, path: str) -> list[str]:
        resolved = self._sandbox.resolve(path, "list")
        with os.scandir(resolved) as entries:
            return [
                f"{entry.name}/" if entry.is_dir(follow_symlinks=False) else entry.name
                for entry in entries
            ]

    def _remove(self, path: str) -> None:
        resolved = self._sandbox.resolve(path, "delete")
        if resolved == self._sandbox.root:
            raise PermissionError(f"Cannot delete '{path}': it is the workspace root")
        if os.path.isdir(resolved) and not os.path.islink(resolved):
            shutil.rmtree(resolved)
        else:
            try:
                os.unlink(resolved)
            except (FileNotFoundError, NotADirectoryError):
                return
        logger.debug("Removed %s", path)
