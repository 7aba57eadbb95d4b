"""Workspace sandbox toolset for PydanticAI agents with approval and audit.

This package lets an agent work on files under one workspace root with:
- Sandbox: Confines paths to the root; refuses absolute, drive, UNC,
  traversal and symlink/junction paths
- WorkspaceStore: File I/O (read, write, list, delete) behind the sandbox
- WorkspaceToolset: The four file tools, returning ToolResult instead of raising
- ApprovalLedger: Pending write/delete requests, each resolvable once
- AuditLog: Append-only JSON-lines trail of every tool step
- ApprovableWorkspaceToolset: The above composed into a two-phase pipeline

Architecture:
    Sandbox handles path policy.
    WorkspaceStore handles file I/O.
    WorkspaceToolset converts every failure into a ToolResult.
    ApprovableWorkspaceToolset parks mutations in an ApprovalLedger and
    records each step in an AuditLog.

Usage (simple):
    from pydantic_ai_workspace_sandbox import WorkspaceToolset

    toolset = WorkspaceToolset.create_default("./data/workspace")
    agent = Agent(..., toolsets=[toolset])

Usage (with approval):
    from pydantic_ai_workspace_sandbox import (
        ApprovableWorkspaceToolset, ApprovalLedger, AuditLog, WorkspaceConfig, WorkspaceStore
    )

    config = WorkspaceConfig.from_env()
    ledger = ApprovalLedger()
    async with AuditLog(config.audit_path, config.audit_queue_size) as audit:
        store = WorkspaceStore.create_default(config.root, config.max_read_bytes)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
        agent = Agent(..., toolsets=[toolset])
        ...
        for pending in toolset.pending():
            await toolset.approve(pending.id)
"""

from .config import (
    # Configuration
    WorkspaceConfig,
    DEFAULT_MAX_READ_BYTES,
)

from .sandbox import (
    # Sandbox
    Sandbox,
    AccessMode,
    RejectReason,
    Rejection,
    # Errors
    SandboxError,
    PathRejectedError,
    FileTooLargeError,
    UnknownToolError,
)

from .store import (
    # File I/O
    WorkspaceStore,
)

from .toolset import (
    # Toolset
    WorkspaceToolset,
    ToolResult,
    PendingApproval,
    ErrorKind,
)

from .approval import (
    # Approval ledger
    ApprovalLedger,
    PendingTool,
)

from .audit import (
    # Audit trail
    AuditLog,
    AuditEntry,
)

from .approval_toolset import (
    # Approvable toolset
    ApprovableWorkspaceToolset,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "WorkspaceConfig",
    "DEFAULT_MAX_READ_BYTES",
    # Sandbox (security boundary)
    "Sandbox",
    "AccessMode",
    "RejectReason",
    "Rejection",
    # Store (file I/O)
    "WorkspaceStore",
    # Toolset (uniform results)
    "WorkspaceToolset",
    "ToolResult",
    "PendingApproval",
    "ErrorKind",
    # Approval
    "ApprovalLedger",
    "PendingTool",
    "ApprovableWorkspaceToolset",
    # Audit
    "AuditLog",
    "AuditEntry",
    # Errors
    "SandboxError",
    "PathRejectedError",
    "FileTooLargeError",
    "UnknownToolError",
]
