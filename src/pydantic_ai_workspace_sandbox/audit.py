"""AuditLog: append-only trail of tool invocations.

Each record() call produces one AuditEntry. Entries are queued and appended as
JSON lines by a background task, so a slow or failing audit file never blocks
the operation being recorded. Audit failures are logged and swallowed: the
mutation they describe is never rolled back because of them.

Usage:
    async with AuditLog("./data/audit.jsonl") as audit:
        audit.record("write_file", {"path": "a.txt"}, "pending", detail=pending_id)

    entries = AuditLog.read_entries("./data/audit.jsonl")
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import DEFAULT_AUDIT_QUEUE_SIZE

logger = logging.getLogger(__name__)

AuditResult = Literal["ok", "error", "pending"]


class AuditEntry(BaseModel):
    """One immutable audit record."""

    model_config = ConfigDict(frozen=True)

    at: datetime = Field(description="When the entry was recorded (UTC)")
    tool: str = Field(description="Tool name")
    args: dict[str, Any] = Field(default_factory=dict, description="Arguments, for display only")
    result: AuditResult = Field(description="Outcome of this step")
    detail: Optional[str] = Field(default=None, description="Pending id or error message")


class AuditLog:
    """Best-effort JSON-lines audit sink fed through a bounded queue.

    Call start() (or use ``async with``) inside a running event loop to begin
    draining. Entries recorded before start() wait in the queue.
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        max_queue: int = DEFAULT_AUDIT_QUEUE_SIZE,
    ):
        """Initialize the audit log.

        Args:
            path: JSON-lines file to append to. None keeps entries only in memory
                for the lifetime of the queue (useful in tests).
            max_queue: Entries buffered before new ones are dropped
        """
        self._path = Path(path) if path is not None else None
        self._queue: asyncio.Queue[AuditEntry] = asyncio.Queue(maxsize=max_queue)
        self._task: Optional[asyncio.Task[None]] = None
        self._dropped = 0

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def dropped(self) -> int:
        """Number of entries lost to a full queue or a failing sink."""
        return self._dropped

    def record(
        self,
        tool: str,
        args: Optional[dict[str, Any]],
        result: AuditResult,
        detail: Optional[str] = None,
    ) -> Optional[AuditEntry]:
        """Append an entry. Never raises.

        Returns:
            The queued AuditEntry, or None if it could not be queued
        """
        try:
            entry = AuditEntry(
                at=datetime.now(timezone.utc),
                tool=tool,
                args=dict(args or {}),
                result=result,
                detail=detail,
            )
            self._queue.put_nowait(entry)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning("Audit queue full, dropped entry for %s (%s)", tool, result)
            return None
        except (TypeError, ValueError) as exc:
            self._dropped += 1
            logger.warning("Invalid audit entry for %s: %s", tool, exc)
            return None
        return entry

    async def start(self) -> None:
        """Start the background task that drains the queue."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._drain(), name="audit-log-drain")

    async def flush(self) -> None:
        """Wait until every queued entry has been written (or given up on)."""
        if self._task is None:
            await self.start()
        await self._queue.join()

    async def aclose(self) -> None:
        """Flush pending entries and stop the drain task."""
        if self._task is None:
            return
        await self._queue.join()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def __aenter__(self) -> "AuditLog":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def _drain(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                if self._path is not None:
                    await asyncio.to_thread(self._append, entry)
            except (OSError, ValueError) as exc:
                self._dropped += 1
                logger.warning("Failed to write audit entry for %s: %s", entry.tool, exc)
            except Exception:
                self._dropped += 1
                logger.exception("Unexpected error writing audit entry for %s", entry.tool)
            finally:
                self._queue.task_done()

    def _append(self, entry: AuditEntry) -> None:
        assert self._path is not None
        line = entry.model_dump_json() + "\n"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(line)

    @staticmethod
    def read_entries(path: Union[str, Path]) -> list[AuditEntry]:
        """Parse an audit trail file. A missing file yields an empty list."""
        audit_path = Path(path)
        if not audit_path.exists():
            return []
        with audit_path.open(encoding="utf-8") as f:
            return [AuditEntry.model_validate_json(line) for line in f if line.strip()]
