"""WorkspaceToolset: File tools for PydanticAI agents with uniform results.

This module provides the WorkspaceToolset, a PydanticAI AbstractToolset that
exposes read_file, list_files, write_file and delete_file on a WorkspaceStore.

Every call returns a ToolResult instead of raising. Sandbox violations, size
limits, missing files, I/O failures and bad arguments all come back as
``ToolResult(ok=False, kind=..., error=...)`` so the model can read the
message and correct itself, and callers can tell a sandbox refusal (never
retry) from an I/O failure (may retry).

For approval and audit integration, see approval_toolset.py which provides
ApprovableWorkspaceToolset.

Example:
    from pydantic_ai_workspace_sandbox import WorkspaceToolset

    toolset = WorkspaceToolset.create_default("./data/workspace")
    agent = Agent(..., toolsets=[toolset])
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from pydantic_ai.toolsets import AbstractToolset, ToolsetTool
from pydantic_ai.tools import RunContext, ToolDefinition

from .config import DEFAULT_MAX_READ_BYTES, WorkspaceConfig
from .sandbox import (
    FileTooLargeError,
    PathRejectedError,
    Sandbox,
    SandboxError,
    UnknownToolError,
)
from .store import WorkspaceStore

logger = logging.getLogger(__name__)


READ_FILE = "read_file"
LIST_FILES = "list_files"
WRITE_FILE = "write_file"
DELETE_FILE = "delete_file"

MUTATING_TOOLS = frozenset({WRITE_FILE, DELETE_FILE})
"""Tools that change the workspace and go through approval."""


# ---------------------------------------------------------------------------
# Tool Result
# ---------------------------------------------------------------------------


ErrorKind = Literal[
    "empty_path",
    "invalid_path",
    "absolute_path",
    "drive_path",
    "unc_path",
    "path_escapes_workspace",
    "symlink_not_allowed",
    "file_too_large",
    "not_found",
    "io_error",
    "unknown_tool",
    "invalid_args",
]


class ToolResult(BaseModel):
    """Uniform outcome of a workspace tool call."""

    ok: bool = Field(description="True if the call succeeded")
    data: Any = Field(default=None, description="Tool output when ok")
    error: Optional[str] = Field(default=None, description="Error message when not ok")
    kind: Optional[ErrorKind] = Field(default=None, description="Error category when not ok")

    @property
    def retryable(self) -> bool:
        """Only transient I/O failures are worth retrying with the same input."""
        return self.kind == "io_error"

    @classmethod
    def success(cls, data: Any = None) -> "ToolResult":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str) -> "ToolResult":
        return cls(ok=False, kind=kind, error=error)

    @classmethod
    def from_exception(cls, exc: Exception, path: Optional[str] = None) -> "ToolResult":
        """Classify an exception raised by the sandbox or the store.

        OS errors are reported against path, the caller's relative path, so
        the host location of the workspace never reaches the model.
        """
        if isinstance(exc, PathRejectedError):
            return cls.failure(exc.reason.value, exc.message)
        if isinstance(exc, FileTooLargeError):
            return cls.failure("file_too_large", exc.message)
        if isinstance(exc, UnknownToolError):
            return cls.failure("unknown_tool", exc.message)
        if isinstance(exc, FileNotFoundError):
            return cls.failure("not_found", _os_error_message(exc, path))
        if isinstance(exc, OSError):
            return cls.failure("io_error", _os_error_message(exc, path))
        return cls.failure("invalid_args", str(exc))


def _os_error_message(exc: OSError, path: Optional[str]) -> str:
    if exc.strerror is None or path is None:
        return str(exc)
    return f"Cannot access '{path}': {exc.strerror}"


class PendingApproval(BaseModel):
    """Returned as ToolResult.data when a mutation waits for approval."""

    pending_id: str = Field(description="Id to approve or reject")
    message: str = Field(default="Approval required")


# ---------------------------------------------------------------------------
# Tool Argument Models
# ---------------------------------------------------------------------------


class ReadFileArgs(BaseModel):
    """Arguments for read_file tool."""

    path: str = Field(description="Path relative to the workspace root (e.g., 'notes/todo.txt')")
    max_bytes: Optional[int] = Field(
        default=None,
        ge=0,
        description="Maximum file size in bytes to read (default: workspace limit)",
    )


class ListFilesArgs(BaseModel):
    """Arguments for list_files tool."""

    path: str = Field(
        default=".",
        description="Directory relative to the workspace root. Default: '.'",
    )


class WriteFileArgs(BaseModel):
    """Arguments for write_file tool."""

    path: str = Field(description="Path relative to the workspace root (e.g., 'notes/todo.txt')")
    content: str = Field(description="Content to write to the file")


class DeleteFileArgs(BaseModel):
    """Arguments for delete_file tool."""

    path: str = Field(description="File or directory relative to the workspace root")


_ARG_MODELS: dict[str, type[BaseModel]] = {
    READ_FILE: ReadFileArgs,
    LIST_FILES: ListFilesArgs,
    WRITE_FILE: WriteFileArgs,
    DELETE_FILE: DeleteFileArgs,
}

_DESCRIPTIONS: dict[str, str] = {
    READ_FILE: (
        "Read a UTF-8 text file from the workspace. "
        "Paths are relative to the workspace root (e.g., 'notes/todo.txt')."
    ),
    LIST_FILES: (
        "List a workspace directory. Directories end with '/'. "
        "Use '.' for the workspace root."
    ),
    WRITE_FILE: (
        "Write a text file to the workspace. "
        "Parent directories are created automatically. "
        "The write may need approval before it happens."
    ),
    DELETE_FILE: (
        "Delete a file or directory (recursively) from the workspace. "
        "The delete may need approval before it happens."
    ),
}


# ---------------------------------------------------------------------------
# WorkspaceToolset Implementation
# ---------------------------------------------------------------------------


class WorkspaceToolset(AbstractToolset[Any]):
    """Workspace file toolset for PydanticAI agents.

    Provides read_file, list_files, write_file and delete_file. Every tool
    executes immediately against the WorkspaceStore; the approval step for
    write_file and delete_file lives in ApprovableWorkspaceToolset.

    Example:
        # Simple usage with default sandbox
        toolset = WorkspaceToolset.create_default("./data/workspace")

        # Explicit store
        store = WorkspaceStore(Sandbox("./data/workspace"), max_read_bytes=50_000)
        toolset = WorkspaceToolset(store)
    """

    def __init__(
        self,
        store: WorkspaceStore,
        id: Optional[str] = None,
        max_retries: int = 1,
    ):
        """Initialize the workspace toolset.

        Args:
            store: WorkspaceStore performing the file I/O
            id: Optional toolset ID for durable execution
            max_retries: Maximum number of retries for tool calls (default: 1)
        """
        self._store = store
        self._toolset_id = id
        self._max_retries = max_retries

    @classmethod
    def create_default(
        cls,
        root: Union[str, Path],
        max_read_bytes: int = DEFAULT_MAX_READ_BYTES,
        id: Optional[str] = None,
    ) -> "WorkspaceToolset":
        """Create a toolset over a fresh Sandbox on root."""
        return cls(WorkspaceStore.create_default(root, max_read_bytes), id=id)

    @classmethod
    def from_config(cls, config: WorkspaceConfig, id: Optional[str] = None) -> "WorkspaceToolset":
        return cls.create_default(config.root, config.max_read_bytes, id=id)

    @property
    def store(self) -> WorkspaceStore:
        return self._store

    @property
    def sandbox(self) -> Sandbox:
        """Access the underlying sandbox for path checks."""
        return self._store.sandbox

    # ---------------------------------------------------------------------------
    # Tool Operations
    # ---------------------------------------------------------------------------

    async def read(self, path: str, max_bytes: Optional[int] = None) -> ToolResult:
        try:
            return ToolResult.success(await self._store.read_text(path, max_bytes))
        except (SandboxError, OSError, ValueError) as exc:
            return ToolResult.from_exception(exc, path)

    async def list_dir(self, path: str = ".") -> ToolResult:
        try:
            return ToolResult.success(await self._store.list_dir(path or "."))
        except (SandboxError, OSError, ValueError) as exc:
            return ToolResult.from_exception(exc, path or ".")

    async def write(self, path: str, content: str) -> ToolResult:
        try:
            await self._store.write_text(path, content)
        except (SandboxError, OSError, ValueError) as exc:
            return ToolResult.from_exception(exc, path)
        return ToolResult.success("written")

    async def delete(self, path: str) -> ToolResult:
        try:
            await self._store.remove(path)
        except (SandboxError, OSError, ValueError) as exc:
            return ToolResult.from_exception(exc, path)
        return ToolResult.success("deleted")

    async def execute(self, name: str, tool_args: Union[BaseModel, dict[str, Any], None]) -> ToolResult:
        """Validate arguments and run a tool by name.

        Args:
            name: Tool name
            tool_args: Either a validated model instance or a plain dict
        """
        try:
            args = self.parse_args(name, tool_args)
        except UnknownToolError as exc:
            return ToolResult.from_exception(exc)
        except ValidationError as exc:
            return ToolResult.failure("invalid_args", f"Invalid arguments for {name}: {exc}")
        return await self._run(name, args)

    async def _run(self, name: str, args: BaseModel) -> ToolResult:
        if isinstance(args, ReadFileArgs):
            return await self.read(args.path, max_bytes=args.max_bytes)
        if isinstance(args, ListFilesArgs):
            return await self.list_dir(args.path)
        if isinstance(args, WriteFileArgs):
            return await self.write(args.path, args.content)
        if isinstance(args, DeleteFileArgs):
            return await self.delete(args.path)
        return ToolResult.from_exception(UnknownToolError(name, list(_ARG_MODELS)))

    @staticmethod
    def parse_args(name: str, tool_args: Union[BaseModel, dict[str, Any], None]) -> BaseModel:
        """Coerce raw arguments into the tool's argument model.

        Raises:
            UnknownToolError: If name is not a workspace tool
            ValidationError: If the arguments don't fit the model
        """
        model = _ARG_MODELS.get(name)
        if model is None:
            raise UnknownToolError(name, list(_ARG_MODELS))
        if isinstance(tool_args, model):
            return tool_args
        if isinstance(tool_args, BaseModel):
            tool_args = tool_args.model_dump()
        return model.model_validate(tool_args or {})

    # ---------------------------------------------------------------------------
    # AbstractToolset Implementation
    # ---------------------------------------------------------------------------

    @property
    def id(self) -> str | None:
        """Unique identifier for this toolset."""
        return self._toolset_id

    async def get_tools(self, ctx: RunContext[Any]) -> dict[str, ToolsetTool[Any]]:
        """Return the tools provided by this toolset."""
        tools = {}
        for name, model in _ARG_MODELS.items():
            tools[name] = ToolsetTool(
                toolset=self,
                tool_def=ToolDefinition(
                    name=name,
                    description=_DESCRIPTIONS[name],
                    parameters_json_schema=model.model_json_schema(),
                ),
                max_retries=self._max_retries,
                args_validator=TypeAdapter(model).validator,
            )
        return tools

    async def call_tool(
        self,
        name: str,
        tool_args: Any,
        ctx: RunContext[Any],
        tool: ToolsetTool[Any],
    ) -> Any:
        """Call a tool with the given arguments.

        Args:
            name: Tool name
            tool_args: Either a validated model instance or a dict (when called via ApprovalToolset)
            ctx: PydanticAI run context
            tool: ToolsetTool instance

        Returns:
            ToolResult; failures are reported in the result, not raised
        """
        return await self.execute(name, tool_args)
