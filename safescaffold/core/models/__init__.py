"""
Domain models — Pydantic types for the generation engine.

All models are re-exported here for convenient access:

    from safescaffold.core.models import TemplateDefinition, GenerationOptions, GenerationResult
"""

from safescaffold.core.models.backup import BackupRecord, RollbackResult
from safescaffold.core.models.conflict import Conflict, FileMetadata, ResolutionDecision
from safescaffold.core.models.options import (
    BackupOptions,
    FileOptions,
    GenerationOptions,
)
from safescaffold.core.models.result import (
    DirectoryResult,
    GeneratedFile,
    GenerationError,
    GenerationResult,
    GenerationSummary,
    PreviewFile,
    PreviewResult,
    RenderResult,
)
from safescaffold.core.models.template import TemplateDefinition, TemplateFileDefinition

__all__ = [
    # backup.py
    "BackupRecord",
    "RollbackResult",
    # conflict.py
    "Conflict",
    "FileMetadata",
    "ResolutionDecision",
    # options.py
    "BackupOptions",
    "FileOptions",
    "GenerationOptions",
    # result.py
    "DirectoryResult",
    "GeneratedFile",
    "GenerationError",
    "GenerationResult",
    "GenerationSummary",
    "PreviewFile",
    "PreviewResult",
    "RenderResult",
    # template.py
    "TemplateDefinition",
    "TemplateFileDefinition",
]
