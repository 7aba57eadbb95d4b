"""ApprovableWorkspaceToolset: workspace tools behind approval and audit.

This module provides ApprovableWorkspaceToolset, which extends WorkspaceToolset
with the two-phase mutation pipeline:

- read_file and list_files run immediately.
- write_file and delete_file are checked against the sandbox, parked in an
  ApprovalLedger, and only executed when approve() is called with the id.
- every step is written to an AuditLog.

Without a ledger, the toolset speaks the approval protocol of
pydantic-ai-blocking-approval instead: needs_approval() asks ApprovalToolset
to confirm each write/delete through its callback before call_tool() runs.

Example (deferred approval):
    ledger = ApprovalLedger()
    async with AuditLog("./data/audit.jsonl") as audit:
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
        result = await toolset.execute("write_file", {"path": "a.txt", "content": "hi"})
        pending_id = result.data.pending_id
        outcome = await toolset.approve(pending_id)

Example (blocking approval):
    from pydantic_ai_blocking_approval import ApprovalToolset

    toolset = ApprovableWorkspaceToolset(store)
    approved = ApprovalToolset(inner=toolset, approval_callback=my_callback)
    agent = Agent(..., toolsets=[approved])
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import BaseModel, ValidationError
from pydantic_ai.tools import RunContext
from pydantic_ai_blocking_approval import ApprovalResult

from .approval import ApprovalLedger, PendingTool
from .audit import AuditLog
from .sandbox import Rejection, UnknownToolError
from .store import WorkspaceStore
from .toolset import (
    DELETE_FILE,
    LIST_FILES,
    MUTATING_TOOLS,
    READ_FILE,
    WRITE_FILE,
    PendingApproval,
    ToolResult,
    WorkspaceToolset,
)

logger = logging.getLogger(__name__)

_TOOL_MODES = {
    READ_FILE: "read",
    LIST_FILES: "list",
    WRITE_FILE: "write",
    DELETE_FILE: "delete",
}


def display_args(args: Any) -> dict[str, Any]:
    """Copy of tool arguments suitable for the audit trail.

    File content is replaced by its length.
    """
    if isinstance(args, BaseModel):
        args = args.model_dump()
    shown = dict(args or {})
    if "content" in shown:
        content = shown.pop("content")
        shown["content_chars"] = len(content) if isinstance(content, str) else None
    return shown


class ApprovableWorkspaceToolset(WorkspaceToolset):
    """WorkspaceToolset with approval gating and an audit trail.

    The ledger does not execute anything: approve() takes the consumed
    PendingTool and runs it through the parent toolset, so the sandbox checks
    the path again at execution time.
    """

    def __init__(
        self,
        store: WorkspaceStore,
        ledger: Optional[ApprovalLedger] = None,
        audit: Optional[AuditLog] = None,
        id: Optional[str] = None,
        max_retries: int = 1,
    ):
        """Initialize the toolset.

        Args:
            store: WorkspaceStore performing the file I/O
            ledger: Where write/delete requests wait for approval. None means
                mutations run directly (gate them with ApprovalToolset).
            audit: Audit sink for every step; None disables auditing
            id: Optional toolset ID for durable execution
            max_retries: Maximum number of retries for tool calls (default: 1)
        """
        super().__init__(store, id=id, max_retries=max_retries)
        self._ledger = ledger
        self._audit = audit

    @property
    def ledger(self) -> Optional[ApprovalLedger]:
        return self._ledger

    @property
    def audit(self) -> Optional[AuditLog]:
        return self._audit

    # ---------------------------------------------------------------------------
    # Execution
    # ---------------------------------------------------------------------------

    async def _run(self, name: str, args: BaseModel) -> ToolResult:
        if name in MUTATING_TOOLS and self._ledger is not None:
            return self._defer(name, args)
        result = await super()._run(name, args)
        self._record(name, args, result)
        return result

    def _defer(self, name: str, args: BaseModel) -> ToolResult:
        assert self._ledger is not None
        path = getattr(args, "path", "")
        checked = self.sandbox.check(path, _TOOL_MODES[name])
        if isinstance(checked, Rejection):
            result = ToolResult.failure(checked.reason.value, checked.message)
            self._record(name, args, result)
            return result

        pending_id = self._ledger.submit(name, args.model_dump())
        if self._audit is not None:
            self._audit.record(name, display_args(args), "pending", detail=pending_id)
        return ToolResult.success(PendingApproval(pending_id=pending_id))

    async def approve(self, pending_id: str) -> Optional[ToolResult]:
        """Approve a pending mutation and execute it.

        Returns:
            The mutation's ToolResult, or None if the id is unknown or already resolved
        """
        if self._ledger is None:
            return None
        pending = self._ledger.approve(pending_id)
        if pending is None:
            return None

        try:
            args = self.parse_args(pending.tool, pending.args)
        except (UnknownToolError, ValidationError) as exc:
            result = ToolResult.from_exception(exc)
        else:
            result = await super()._run(pending.tool, args)
        self._record(pending.tool, pending.args, result, pending_id=pending_id)
        return result

    async def reject(self, pending_id: str) -> bool:
        """Reject a pending mutation. Returns whether it was pending."""
        if self._ledger is None:
            return False
        pending = self._ledger.get(pending_id)
        if not self._ledger.reject(pending_id):
            return False
        if self._audit is not None and pending is not None:
            self._audit.record(
                pending.tool,
                display_args(pending.args),
                "error",
                detail=f"{pending_id}: rejected",
            )
        return True

    def pending(self) -> list[PendingTool]:
        """Mutations currently waiting for a decision."""
        return self._ledger.list() if self._ledger is not None else []

    def _record(
        self,
        name: str,
        args: Any,
        result: ToolResult,
        pending_id: Optional[str] = None,
    ) -> None:
        if self._audit is None:
            return
        if result.ok:
            self._audit.record(name, display_args(args), "ok", detail=pending_id)
        else:
            detail = f"{pending_id}: {result.error}" if pending_id else result.error
            self._audit.record(name, display_args(args), "error", detail=detail)

    # ---------------------------------------------------------------------------
    # Blocking Approval Protocol
    # ---------------------------------------------------------------------------

    def needs_approval(
        self, name: str, tool_args: dict[str, Any], ctx: RunContext[Any]
    ) -> ApprovalResult:
        """Check if the tool call requires approval.

        Called by ApprovalToolset to decide if approval is needed.

        Returns:
            ApprovalResult with status: blocked, pre_approved, or needs_approval
        """
        mode = _TOOL_MODES.get(name)
        if mode is None:
            # Unknown tool - require approval
            return ApprovalResult.needs_approval()

        path = tool_args.get("path", "")
        if name == LIST_FILES:
            path = path or "."
        checked = self.sandbox.check(path, mode)
        if isinstance(checked, Rejection):
            return ApprovalResult.blocked(checked.message)

        if name in MUTATING_TOOLS and self._ledger is None:
            return ApprovalResult.needs_approval()
        # Reads are free; ledger-backed mutations are gated by approve().
        return ApprovalResult.pre_approved()

    def get_approval_description(
        self, name: str, tool_args: dict[str, Any], ctx: RunContext[Any]
    ) -> str:
        """Return human-readable description for approval prompt."""
        path = tool_args.get("path", "")

        if name == WRITE_FILE:
            content = tool_args.get("content", "")
            return f"Write {len(content)} chars to {path}"
        elif name == DELETE_FILE:
            return f"Delete {path}"
        elif name == READ_FILE:
            return f"Read from {path}"
        elif name == LIST_FILES:
            return f"List files in {path or '.'}"

        return f"{name}({path})"
