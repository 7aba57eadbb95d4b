"""ApprovalLedger: pending mutation requests awaiting a decision.

The ledger is policy-agnostic. It stores what was requested, hands out an id,
and lets an approval authority (a human operator, a policy engine, an HTTP
handler) resolve each id exactly once. It never executes anything itself:
the caller runs the mutation after approve() returns the record.

Usage:
    ledger = ApprovalLedger()
    ledger.on_resolve(lambda id, approved: print(id, approved))

    pending_id = ledger.submit("write_file", {"path": "a.txt", "content": "hi"})
    for item in ledger.list():
        ...
    record = ledger.approve(pending_id)   # PendingTool, or None if already resolved
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

ResolveObserver = Callable[[str, bool], None]
"""Callback receiving (pending_id, approved) after each resolution."""


class PendingTool(BaseModel):
    """A tool call waiting for approval."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Unique pending id")
    tool: str = Field(description="Tool name, e.g. 'write_file'")
    args: dict[str, Any] = Field(default_factory=dict, description="Tool arguments")
    created_at: datetime = Field(description="When the request was submitted (UTC)")


class ApprovalLedger:
    """In-memory map of pending tool calls, each resolvable once.

    Resolution removes the entry before observers run, so a second approve()
    or reject() for the same id finds nothing and returns None / False.
    """

    def __init__(self) -> None:
        self._pending: dict[str, PendingTool] = {}
        self._observers: list[ResolveObserver] = []

    def submit(self, tool: str, args: Optional[dict[str, Any]] = None) -> str:
        """Store a new pending request and return its id."""
        pending_id = str(uuid.uuid4())
        self._pending[pending_id] = PendingTool(
            id=pending_id,
            tool=tool,
            args=dict(args or {}),
            created_at=datetime.now(timezone.utc),
        )
        logger.info("Pending approval %s for %s", pending_id, tool)
        return pending_id

    def get(self, pending_id: str) -> Optional[PendingTool]:
        return self._pending.get(pending_id)

    def list(self) -> list[PendingTool]:
        """Snapshot of pending requests in submission order."""
        return list(self._pending.values())

    def approve(self, pending_id: str) -> Optional[PendingTool]:
        """Consume a pending request as approved.

        Returns:
            The removed PendingTool, or None if the id is unknown or already resolved
        """
        pending = self._pending.pop(pending_id, None)
        if pending is None:
            return None
        logger.info("Approved %s (%s)", pending_id, pending.tool)
        self._notify(pending_id, True)
        return pending

    def reject(self, pending_id: str) -> bool:
        """Discard a pending request. Returns whether it was pending."""
        pending = self._pending.pop(pending_id, None)
        if pending is None:
            return False
        logger.info("Rejected %s (%s)", pending_id, pending.tool)
        self._notify(pending_id, False)
        return True

    def on_resolve(self, observer: ResolveObserver) -> None:
        """Register observer for every future approve/reject."""
        self._observers.append(observer)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, pending_id: object) -> bool:
        return pending_id in self._pending

    def _notify(self, pending_id: str, approved: bool) -> None:
        for observer in list(self._observers):
            try:
                observer(pending_id, approved)
            except Exception:
                logger.exception("Approval observer failed for %s", pending_id)
