"""
Result models — what a generation, preview, or directory run reports.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from safescaffold.core.models.backup import BackupRecord
from safescaffold.core.models.conflict import Conflict

FileAction = Literal["created", "overwritten", "backed_up", "merged", "skipped"]


class RenderResult(BaseModel):
    """Output of one template render."""

    content: str
    render_time_ms: float = 0.0
    cache_hit: bool = False


class GeneratedFile(BaseModel):
    """A file the pipeline wrote (or, in dry-run, would write)."""

    path: str                           # absolute, native separators
    relative_path: str                  # forward slashes, relative to output_dir
    content: str = ""
    overwritten: bool = False
    backup_path: str | None = None
    size: int = 0
    checksum: str = ""
    permissions: int | None = None
    action: FileAction = "created"


class GenerationError(BaseModel):
    """A per-file failure, reported instead of raised."""

    path: str
    error_type: str
    message: str


class GenerationSummary(BaseModel):
    total_files: int = 0
    created_files: int = 0
    updated_files: int = 0
    skipped_files: int = 0
    failed_files: int = 0
    total_directories: int = 0
    created_directories: int = 0
    skipped_directories: int = 0


class DirectoryResult(BaseModel):
    path: str
    created: bool = False
    existing: bool = False


class GenerationResult(BaseModel):
    """Aggregate outcome of one ``generate_files`` invocation.

    ``files`` holds only the files that were written (or merged), in input
    order. Skipped files are counted in ``summary`` and explained in
    ``warnings``; failures appear in ``errors``.
    """

    success: bool = True
    dry_run: bool = False
    files: list[GeneratedFile] = Field(default_factory=list)
    directories: list[DirectoryResult] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    errors: list[GenerationError] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    backups: list[BackupRecord] = Field(default_factory=list)
    summary: GenerationSummary = Field(default_factory=GenerationSummary)
    duration_ms: int = 0


class PreviewFile(BaseModel):
    path: str
    relative_path: str
    content: str = ""
    would_create: bool = False
    would_overwrite: bool = False
    action: str = "create"              # create | overwrite | backup_rename | merge | skip


class PreviewResult(BaseModel):
    """Everything ``generate_files`` would do, with nothing done."""

    files: list[PreviewFile] = Field(default_factory=list)
    directories: list[str] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[GenerationError] = Field(default_factory=list)
