"""Integration tests: approval pipeline, audit trail, and PydanticAI agents."""
import asyncio
from unittest.mock import MagicMock

import pytest
from pydantic_ai import Agent
from pydantic_ai.models.test import TestModel
from pydantic_ai.tools import RunContext

from pydantic_ai_blocking_approval import (
    ApprovalDecision,
    ApprovalRequest,
    ApprovalToolset,
)

from pydantic_ai_workspace_sandbox import (
    ApprovableWorkspaceToolset,
    ApprovalLedger,
    AuditLog,
    PendingApproval,
    ToolResult,
    WorkspaceStore,
    WorkspaceToolset,
)


def _make(tmp_path, ledger=True):
    store = WorkspaceStore.create_default(tmp_path / "ws")
    audit_path = tmp_path / "audit.jsonl"
    return store, (ApprovalLedger() if ledger else None), audit_path


class TestDeferredApproval:
    """write_file and delete_file wait in the ledger until approved."""

    def test_write_is_deferred_until_approved(self, tmp_path):
        store, ledger, audit_path = _make(tmp_path)

        async def run():
            async with AuditLog(audit_path) as audit:
                toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
                requested = await toolset.execute(
                    "write_file", {"path": "notes/a.txt", "content": "hello"}
                )
                assert not (tmp_path / "ws" / "notes" / "a.txt").exists()
                assert [p.id for p in toolset.pending()] == [requested.data.pending_id]
                outcome = await toolset.approve(requested.data.pending_id)
                return requested, outcome

        requested, outcome = asyncio.run(run())

        assert requested.ok
        assert isinstance(requested.data, PendingApproval)
        assert requested.data.message == "Approval required"
        assert outcome.ok
        assert (tmp_path / "ws" / "notes" / "a.txt").read_text() == "hello"
        assert ledger.list() == []

        entries = AuditLog.read_entries(audit_path)
        assert [(e.tool, e.result) for e in entries] == [
            ("write_file", "pending"),
            ("write_file", "ok"),
        ]
        assert entries[0].detail == requested.data.pending_id
        assert entries[0].args == {"path": "notes/a.txt", "content_chars": 5}

    def test_delete_is_deferred_and_rejectable(self, tmp_path):
        store, ledger, audit_path = _make(tmp_path)
        (tmp_path / "ws").mkdir()
        (tmp_path / "ws" / "keep.txt").write_text("keep")

        async def run():
            async with AuditLog(audit_path) as audit:
                toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
                requested = await toolset.execute("delete_file", {"path": "keep.txt"})
                rejected = await toolset.reject(requested.data.pending_id)
                again = await toolset.reject(requested.data.pending_id)
                late_approve = await toolset.approve(requested.data.pending_id)
                return rejected, again, late_approve

        rejected, again, late_approve = asyncio.run(run())

        assert rejected is True
        assert again is False
        assert late_approve is None
        assert (tmp_path / "ws" / "keep.txt").read_text() == "keep"
        entries = AuditLog.read_entries(audit_path)
        assert [e.result for e in entries] == ["pending", "error"]
        assert entries[1].detail.endswith("rejected")

    def test_approve_twice_executes_once(self, tmp_path):
        store, ledger, _ = _make(tmp_path)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger)
        resolutions = []
        ledger.on_resolve(lambda id, approved: resolutions.append((id, approved)))

        async def run():
            requested = await toolset.execute("write_file", {"path": "a.txt", "content": "x"})
            pending_id = requested.data.pending_id
            first, second = await asyncio.gather(
                toolset.approve(pending_id), toolset.approve(pending_id)
            )
            return pending_id, first, second

        pending_id, first, second = asyncio.run(run())

        assert [r is None for r in (first, second)].count(True) == 1
        assert resolutions == [(pending_id, True)]

    def test_reads_run_immediately_and_are_audited(self, tmp_path):
        store, ledger, audit_path = _make(tmp_path)
        (tmp_path / "ws").mkdir()
        (tmp_path / "ws" / "a.txt").write_text("content")

        async def run():
            async with AuditLog(audit_path) as audit:
                toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
                read = await toolset.execute("read_file", {"path": "a.txt"})
                listed = await toolset.execute("list_files", {"path": "."})
                missing = await toolset.execute("read_file", {"path": "missing.txt"})
                return read, listed, missing

        read, listed, missing = asyncio.run(run())

        assert read.data == "content"
        assert listed.data == ["a.txt"]
        assert missing.kind == "not_found"
        assert len(ledger) == 0
        entries = AuditLog.read_entries(audit_path)
        assert [(e.tool, e.result) for e in entries] == [
            ("read_file", "ok"),
            ("list_files", "ok"),
            ("read_file", "error"),
        ]

    def test_rejected_path_never_reaches_ledger(self, tmp_path):
        store, ledger, audit_path = _make(tmp_path)

        async def run():
            async with AuditLog(audit_path) as audit:
                toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
                return await toolset.execute(
                    "write_file", {"path": "../escape.txt", "content": "x"}
                )

        result = asyncio.run(run())

        assert result.ok is False
        assert result.kind == "path_escapes_workspace"
        assert len(ledger) == 0
        assert not (tmp_path / "escape.txt").exists()
        assert [e.result for e in AuditLog.read_entries(audit_path)] == ["error"]

    def test_delete_below_regular_file_is_parked(self, tmp_path):
        store, ledger, _ = _make(tmp_path)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger)
        asyncio.run(store.write_text("a.txt", "keep"))

        requested = asyncio.run(toolset.execute("delete_file", {"path": "a.txt/child"}))
        assert requested.ok
        assert len(ledger) == 1

        outcome = asyncio.run(toolset.approve(requested.data.pending_id))
        assert outcome == ToolResult(ok=True, data="deleted")
        assert (tmp_path / "ws" / "a.txt").read_text() == "keep"

    def test_nul_byte_path_is_rejected_before_ledger(self, tmp_path):
        store, ledger, audit_path = _make(tmp_path)

        async def run():
            async with AuditLog(audit_path) as audit:
                toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
                return await toolset.execute("delete_file", {"path": "a\x00b"})

        result = asyncio.run(run())

        assert result.ok is False
        assert result.kind == "invalid_path"
        assert len(ledger) == 0
        assert [e.result for e in AuditLog.read_entries(audit_path)] == ["error"]

    def test_failed_mutation_is_audited_after_pending(self, tmp_path):
        """The sandbox checks again at execution time."""
        store, ledger, audit_path = _make(tmp_path)
        (tmp_path / "ws").mkdir()
        (tmp_path / "outside").mkdir()

        async def run():
            async with AuditLog(audit_path) as audit:
                toolset = ApprovableWorkspaceToolset(store, ledger=ledger, audit=audit)
                requested = await toolset.execute(
                    "write_file", {"path": "dir/a.txt", "content": "x"}
                )
                try:
                    (tmp_path / "ws" / "dir").symlink_to(
                        tmp_path / "outside", target_is_directory=True
                    )
                except (OSError, NotImplementedError):
                    pytest.skip("symlinks not supported")
                return await toolset.approve(requested.data.pending_id)

        outcome = asyncio.run(run())

        assert outcome.ok is False
        assert outcome.kind == "symlink_not_allowed"
        assert not (tmp_path / "outside" / "a.txt").exists()
        entries = AuditLog.read_entries(audit_path)
        assert [e.result for e in entries] == ["pending", "error"]

    def test_approve_unknown_tool_in_ledger(self, tmp_path):
        store, ledger, _ = _make(tmp_path)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger)
        pending_id = ledger.submit("format_disk", {"path": "."})

        outcome = asyncio.run(toolset.approve(pending_id))
        assert outcome.kind == "unknown_tool"

    def test_without_ledger_approve_and_reject_are_noops(self, tmp_path):
        store, _, _ = _make(tmp_path, ledger=False)
        toolset = ApprovableWorkspaceToolset(store)

        assert asyncio.run(toolset.approve("x")) is None
        assert asyncio.run(toolset.reject("x")) is False
        assert toolset.pending() == []


class TestAgentIntegration:
    """Toolsets register with a PydanticAI Agent."""

    def test_toolset_registers_with_agent(self, tmp_path):
        toolset = WorkspaceToolset.create_default(tmp_path / "ws")

        agent = Agent(model=TestModel(), toolsets=[toolset])
        assert agent is not None

    def test_agent_can_call_list_files(self, tmp_path):
        toolset = WorkspaceToolset.create_default(tmp_path / "ws")
        agent = Agent(model=TestModel(), toolsets=[toolset])

        result = asyncio.run(
            agent.run("List all files", model=TestModel(call_tools=["list_files"]))
        )
        assert result is not None

    def test_agent_write_goes_to_ledger(self, tmp_path):
        store, ledger, _ = _make(tmp_path)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger)
        agent = Agent(model=TestModel(), toolsets=[toolset])

        asyncio.run(agent.run("Write a file", model=TestModel(call_tools=["write_file"])))

        # TestModel invents the arguments; whatever it wrote is still pending or was refused.
        assert all(p.tool == "write_file" for p in ledger.list())
        assert not any(p.is_file() for p in (tmp_path / "ws").rglob("*"))


class TestBlockingApproval:
    """Without a ledger, ApprovalToolset gates mutations through a callback."""

    def test_write_denied(self, tmp_path):
        requests: list[ApprovalRequest] = []

        def deny_callback(request: ApprovalRequest) -> ApprovalDecision:
            requests.append(request)
            return ApprovalDecision(approved=False, note="User denied write")

        store, _, _ = _make(tmp_path, ledger=False)
        approved = ApprovalToolset(
            inner=ApprovableWorkspaceToolset(store), approval_callback=deny_callback
        )

        with pytest.raises(PermissionError) as exc_info:
            asyncio.run(
                approved.call_tool(
                    "write_file",
                    {"path": "a.txt", "content": "test content"},
                    MagicMock(spec=RunContext),
                    MagicMock(),
                )
            )

        assert len(requests) == 1
        assert requests[0].tool_name == "write_file"
        assert "User denied write" in str(exc_info.value)
        assert not (tmp_path / "ws" / "a.txt").exists()

    def test_write_approved(self, tmp_path):
        requests: list[ApprovalRequest] = []

        def approve_callback(request: ApprovalRequest) -> ApprovalDecision:
            requests.append(request)
            return ApprovalDecision(approved=True)

        store, _, _ = _make(tmp_path, ledger=False)
        approved = ApprovalToolset(
            inner=ApprovableWorkspaceToolset(store), approval_callback=approve_callback
        )

        result = asyncio.run(
            approved.call_tool(
                "write_file",
                {"path": "a.txt", "content": "test content"},
                MagicMock(spec=RunContext),
                MagicMock(),
            )
        )

        assert len(requests) == 1
        assert requests[0].description == "Write 12 chars to a.txt"
        assert requests[0].tool_args["path"] == "a.txt"
        assert result.ok
        assert (tmp_path / "ws" / "a.txt").read_text() == "test content"

    def test_read_never_needs_approval(self, tmp_path):
        callback_called = False

        def should_not_be_called(request: ApprovalRequest) -> ApprovalDecision:
            nonlocal callback_called
            callback_called = True
            return ApprovalDecision(approved=True)

        store, _, _ = _make(tmp_path, ledger=False)
        (tmp_path / "ws").mkdir()
        (tmp_path / "ws" / "file.txt").write_text("content")
        approved = ApprovalToolset(
            inner=ApprovableWorkspaceToolset(store), approval_callback=should_not_be_called
        )

        result = asyncio.run(
            approved.call_tool(
                "read_file", {"path": "file.txt"}, MagicMock(spec=RunContext), MagicMock()
            )
        )

        assert not callback_called
        assert result.data == "content"


class TestNeedsApproval:
    """needs_approval() decisions, checked directly."""

    def _status(self, toolset, name, args):
        return toolset.needs_approval(name, args, MagicMock(spec=RunContext))

    def test_blocked_for_sandbox_violation(self, tmp_path):
        store, _, _ = _make(tmp_path, ledger=False)
        toolset = ApprovableWorkspaceToolset(store)

        result = self._status(toolset, "write_file", {"path": "../x", "content": ""})
        assert result.is_blocked
        assert "escapes the workspace" in result.block_reason

    def test_blocked_for_nul_byte(self, tmp_path):
        store, ledger, _ = _make(tmp_path)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger)

        result = self._status(toolset, "delete_file", {"path": "a\x00b"})
        assert result.is_blocked
        assert "NUL character" in result.block_reason

    def test_mutation_needs_approval_without_ledger(self, tmp_path):
        store, _, _ = _make(tmp_path, ledger=False)
        toolset = ApprovableWorkspaceToolset(store)

        assert self._status(toolset, "write_file", {"path": "a.txt"}).is_needs_approval
        assert self._status(toolset, "delete_file", {"path": "a.txt"}).is_needs_approval
        assert self._status(toolset, "read_file", {"path": "a.txt"}).is_pre_approved

    def test_mutation_pre_approved_with_ledger(self, tmp_path):
        store, ledger, _ = _make(tmp_path)
        toolset = ApprovableWorkspaceToolset(store, ledger=ledger)

        assert self._status(toolset, "write_file", {"path": "a.txt"}).is_pre_approved

    def test_descriptions(self, tmp_path):
        store, _, _ = _make(tmp_path, ledger=False)
        toolset = ApprovableWorkspaceToolset(store)
        ctx = MagicMock(spec=RunContext)

        assert (
            toolset.get_approval_description("write_file", {"path": "a.txt", "content": "abc"}, ctx)
            == "Write 3 chars to a.txt"
        )
        assert toolset.get_approval_description("delete_file", {"path": "a.txt"}, ctx) == "Delete a.txt"
