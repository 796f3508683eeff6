"""
Template models — what a caller asks us to materialize.

A TemplateDefinition is an ordered list of file patterns. Both the path
and the content of each file are template patterns rendered against the
variable bag at generation time.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TemplateFileDefinition(BaseModel):
    """One file to materialize.

    Attributes:
        path:        Path pattern, relative to the output directory.
        content:     Content pattern.
        condition:   Optional dotted-path expression; the file is skipped
                     when it evaluates falsy.
        overwrite:   Per-file permission to replace an existing file.
        permissions: Optional octal mode string (e.g. ``"755"``).
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: str = ""
    condition: str | None = None
    overwrite: bool = False
    permissions: str | None = None

    @field_validator("permissions")
    @classmethod
    def _check_permissions(cls, value: str | None) -> str | None:
        if value is None:
            return value
        try:
            mode = int(value, 8)
        except ValueError as e:
            raise ValueError(f"permissions must be an octal string, got {value!r}") from e
        if not 0 <= mode <= 0o7777:
            raise ValueError(f"permissions out of range: {value!r}")
        return value

    @property
    def mode(self) -> int | None:
        """Numeric file mode, or None when not set."""
        return int(self.permissions, 8) if self.permissions else None


class TemplateDefinition(BaseModel):
    """A named, ordered set of file patterns, as served by the registry."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    version: str = "1.0"
    files: list[TemplateFileDefinition] = Field(default_factory=list)
    directories: list[str] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)  # defaults, overridden by caller
