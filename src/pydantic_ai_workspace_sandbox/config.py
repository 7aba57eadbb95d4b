"""Configuration for the workspace sandbox.

WorkspaceConfig describes the single sandbox root, the default read budget
and where the audit trail is persisted. It can be built directly or loaded
from environment variables with WorkspaceConfig.from_env().
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field


DEFAULT_MAX_READ_BYTES = 1_000_000
"""Default maximum number of bytes read_file will return."""

DEFAULT_AUDIT_QUEUE_SIZE = 1024
"""Default number of audit entries buffered before new ones are dropped."""


class WorkspaceConfig(BaseModel):
    """Configuration for a single-root workspace sandbox."""

    root: Path = Field(description="Workspace root directory; every tool path is relative to it")
    max_read_bytes: int = Field(
        default=DEFAULT_MAX_READ_BYTES,
        gt=0,
        description="Default maximum file size in bytes for read_file",
    )
    audit_path: Optional[Path] = Field(
        default=None,
        description="JSON-lines file receiving audit entries. None disables the file sink.",
    )
    audit_queue_size: int = Field(
        default=DEFAULT_AUDIT_QUEUE_SIZE,
        gt=0,
        description="Maximum number of audit entries waiting to be written",
    )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "WorkspaceConfig":
        """Build a config from environment variables.

        DATA_DIR (default ``./data``) holds ``workspace/`` and ``audit.jsonl``.
        WORKSPACE_ROOT overrides the workspace directory. MAX_READ_BYTES and
        AUDIT_QUEUE_SIZE must be positive integers when set.
        """
        env = os.environ if environ is None else environ
        data_dir = Path(env.get("DATA_DIR") or "./data").absolute()
        root = env.get("WORKSPACE_ROOT")
        return cls(
            root=Path(root).absolute() if root else data_dir / "workspace",
            max_read_bytes=_env_int(env, "MAX_READ_BYTES", DEFAULT_MAX_READ_BYTES),
            audit_path=data_dir / "audit.jsonl",
            audit_queue_size=_env_int(env, "AUDIT_QUEUE_SIZE", DEFAULT_AUDIT_QUEUE_SIZE),
        )


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be a positive integer, got {value}")
    return value
