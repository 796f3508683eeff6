"""
Backup models — the undo log of a generation run.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

BackupType = Literal["file", "directory", "configuration"]
BackupStatus = Literal["pending", "completed", "failed"]


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class BackupRecord(BaseModel):
    """One backup on disk.

    ``checksum`` is the sha256 of the original plaintext content and is what
    verification compares against. ``stored_checksum`` covers the bytes
    actually written to ``backup_path`` (after delta / gzip / encryption)
    and detects tampering before any decoding is attempted.

    Delta backups (incremental / differential) carry ``base_id`` (the full
    backup that roots the chain) and ``parent_id`` (the record the delta is
    computed against).
    """

    id: str
    timestamp: str = Field(default_factory=_now_iso)
    backup_type: BackupType = "file"
    strategy: Literal["full", "incremental", "differential"] = "full"
    target: str
    backup_path: str
    checksum: str = ""
    stored_checksum: str = ""
    original_size: int = 0
    backup_size: int = 0
    mode: int | None = None
    compressed: bool = False
    encrypted: bool = False
    base_id: str | None = None
    parent_id: str | None = None
    status: BackupStatus = "pending"

    @property
    def is_delta(self) -> bool:
        return self.strategy != "full"


class RollbackResult(BaseModel):
    """Outcome of undoing a generation run."""

    success: bool = True
    rolled_back: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    duration_ms: int = 0
