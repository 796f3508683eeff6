"""
Option models — explicit, typed knobs for a generation run.

All option objects are frozen: a run never mutates its options.
"""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ConflictStrategy = Literal["ask", "overwrite", "skip", "backup", "merge", "auto", "intelligent"]
BackupStrategy = Literal["full", "incremental", "differential"]

MAX_WORKERS_CAP = 8
MIN_PASSPHRASE_LEN = 4


def default_max_workers() -> int:
    """Pool size derived from the CPU count, capped."""
    return max(1, min(os.cpu_count() or 1, MAX_WORKERS_CAP))


def check_passphrase(value: str | None) -> str | None:
    """Reject passphrases too short to encrypt with. Empty means no encryption."""
    if value and len(value) < MIN_PASSPHRASE_LEN:
        raise ValueError(f"passphrase must be at least {MIN_PASSPHRASE_LEN} characters")
    return value


class BackupOptions(BaseModel):
    """How backups are stored.

    Attributes:
        strategy:       full | incremental | differential.
        compress:       gzip the stored payload.
        passphrase:     Encrypt the stored payload when set.
        kdf_iterations: PBKDF2 iteration count for the encryption key.
    """

    model_config = ConfigDict(frozen=True, hide_input_in_errors=True)

    strategy: BackupStrategy = "full"
    compress: bool = False
    passphrase: str | None = Field(default=None, repr=False)
    kdf_iterations: int = Field(default=480_000, ge=1)

    @field_validator("passphrase")
    @classmethod
    def _check_passphrase(cls, value: str | None) -> str | None:
        return check_passphrase(value)

    @property
    def encrypt(self) -> bool:
        return bool(self.passphrase)


class FileOptions(BaseModel):
    """Per-write options for a single file."""

    model_config = ConfigDict(frozen=True)

    permissions: int | None = None   # numeric mode; None keeps existing / default
    overwrite: bool = False


class GenerationOptions(BaseModel):
    """Options for one generation run.

    Attributes:
        output_dir:        Target directory; every path must stay inside it.
        overwrite:         Allow replacing existing files (backed up when
                           ``create_backups`` is set).
        dry_run:           Plan everything, write nothing.
        force:             Resolve every conflict by overwriting.
        conflict_strategy: ask | overwrite | skip | backup | merge, or
                           ``auto`` (severity based) / ``intelligent``.
        create_backups:    Back up every existing file before modifying it.
        validate_paths:    Reject unsafe path characters and reserved names.
        max_workers:       Worker pool size; None derives it from the CPU count.
        backup:            Backup storage options.
    """

    model_config = ConfigDict(frozen=True)

    output_dir: str
    overwrite: bool = False
    dry_run: bool = False
    force: bool = False
    conflict_strategy: ConflictStrategy = "auto"
    create_backups: bool = True
    validate_paths: bool = True
    max_workers: int | None = Field(default=None, ge=1)
    backup: BackupOptions = Field(default_factory=BackupOptions)

    @property
    def workers(self) -> int:
        return self.max_workers or default_max_workers()
