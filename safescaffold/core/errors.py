"""
Error taxonomy for the generation engine.

Two propagation classes:

    - Per-file errors (ValidationError, ConflictError, BackupIntegrityError,
      RenderError) are caught at the pipeline boundary and reported in
      ``GenerationResult.errors``. The run continues with the next file.
    - Pre-flight errors (DiskSpaceError, InsufficientPermissionError, and
      ValidationError raised while planning) abort the whole run before any
      mutation has happened.
"""

from __future__ import annotations

from typing import Any


class ScaffoldError(Exception):
    """Base class for every error raised by the engine.

    Args:
        message: Human-readable description.
        path: The file or pattern the error is about, if any.
        **context: Extra key/value pairs kept for JSON reporting.
    """

    error_type = "error"

    def __init__(self, message: str, *, path: str | None = None, **context: Any) -> None:
        self.message = message
        self.path = path
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type,
            "message": self.message,
            "path": self.path,
            **self.context,
        }


class ValidationError(ScaffoldError):
    """Structurally bad input. Always reported, never retried."""

    error_type = "validation"


class PathValidationError(ValidationError):
    """A path pattern is unsafe or escapes the output directory."""

    error_type = "path"


class TemplateNotFoundError(ValidationError):
    """No template with the requested id exists in the registry."""

    error_type = "template_not_found"


class ConflictError(ScaffoldError):
    """A conflict needs a decision under the ``ask`` strategy, but none is available.

    Recoverable by re-invoking with a decision callback or another strategy.
    """

    error_type = "conflict"


class BackupIntegrityError(ScaffoldError):
    """A backup could not be verified (checksum mismatch, bad key, tampering).

    Fatal for the file being processed; the original is left untouched.
    """

    error_type = "backup_integrity"


class DiskSpaceError(ScaffoldError):
    """Not enough free space on the target volume. Fatal for the whole run."""

    error_type = "disk_space"


class InsufficientPermissionError(ScaffoldError, PermissionError):
    """The output directory cannot be read or written. Fatal for the whole run."""

    error_type = "permission"


class RenderError(ScaffoldError):
    """A template could not be rendered. The file is skipped."""

    error_type = "render"


class TemplateSyntaxError(RenderError):
    """Malformed template syntax: unterminated or mismatched block markers."""

    error_type = "syntax"

    def __init__(self, message: str, *, position: int | None = None, **context: Any) -> None:
        self.position = position
        super().__init__(message, position=position, **context)
