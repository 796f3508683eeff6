"""
Conflict models — what happens when a destination already exists.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict

Severity = Literal["low", "medium", "high"]
ConflictType = Literal["overwrite", "directory_exists"]
ResolutionStrategy = Literal["overwrite", "backup_rename", "merge", "skip"]


class FileMetadata(BaseModel):
    """Snapshot of one side of a conflict.

    For the incoming side ``modified`` is None and ``permissions`` is the
    requested mode (if any); nothing exists on disk yet.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    size: int = 0
    modified: float | None = None       # epoch seconds
    permissions: int | None = None      # st_mode & 0o7777
    is_directory: bool = False
    checksum: str | None = None         # sha256 hex of content


class Conflict(BaseModel):
    """An existing filesystem entry at the intended destination."""

    model_config = ConfigDict(frozen=True)

    conflict_type: ConflictType
    source: FileMetadata
    destination: FileMetadata
    severity: Severity
    identical: bool = False             # informational only, never suppresses the conflict

    @property
    def path(self) -> str:
        return self.destination.path


class ResolutionDecision(BaseModel):
    """The chosen terminal action for a conflict."""

    model_config = ConfigDict(frozen=True)

    strategy: ResolutionStrategy
    user_confirmed: bool = False
    backup_path: str | None = None
    new_path: str | None = None
    reason: str = ""
