"""
Path resolver — turns a rendered path pattern into a safe absolute path.

Everything here is lexical: resolution never touches the filesystem, so
a traversal attempt is rejected before anything exists to be harmed.
Internally all paths use forward slashes; platform separators appear
only when ``to_native`` hands a path to the OS.

``ensure_real_path`` is the one filesystem-aware check. The pipeline
runs it immediately before writing to catch symlinks that point out of
the output directory.
"""

from __future__ import annotations

import logging
import os
import posixpath
from typing import Any

from safescaffold.core.errors import PathValidationError
from safescaffold.core.services.template_renderer import TemplateRenderer

logger = logging.getLogger(__name__)

MAX_PATH_LENGTH = 4096
MAX_SEGMENT_LENGTH = 255

INVALID_CHARS = frozenset('<>:"|?*')
RESERVED_NAMES = frozenset(
    {"CON", "PRN", "AUX", "NUL"}
    | {f"COM{i}" for i in range(1, 10)}
    | {f"LPT{i}" for i in range(1, 10)}
)


def to_posix(path: str) -> str:
    return path.replace("\\", "/")


def to_native(path: str) -> str:
    """Materialize platform separators for I/O."""
    return path.replace("/", os.sep)


def is_reserved_name(segment: str) -> bool:
    """True for CON, nul.txt, Com1.log, ... (reserved with or without extension)."""
    stem = segment.split(".", 1)[0].rstrip(" ")
    return stem.upper() in RESERVED_NAMES


def root_path(output_dir: str) -> str:
    """Absolute, normalized, forward-slash form of ``output_dir`` (no I/O)."""
    return to_posix(os.path.abspath(output_dir))


def is_descendant(root: str, candidate: str) -> bool:
    """Strict descendant test on normalized forward-slash paths."""
    prefix = root if root.endswith("/") else root + "/"
    return candidate != root and candidate.startswith(prefix)


class PathResolver:
    """Validates and resolves path patterns under an output directory.

    Args:
        renderer: Renders path patterns. A cache-less renderer is created
                  when None.
        validate_paths: Enforce character, reserved-name and trailing
                        dot/space rules. Traversal, null bytes, empty
                        paths, length limits and unresolved placeholders
                        are always enforced.
    """

    def __init__(self, renderer: TemplateRenderer | None = None, validate_paths: bool = True) -> None:
        self.renderer = renderer or TemplateRenderer(use_cache=False)
        self.validate_paths = validate_paths

    # ── Validation ──────────────────────────────────────────────────

    def validate(self, path: str) -> None:
        """Check a rendered relative path. Raises PathValidationError."""
        if not path or not path.strip():
            raise PathValidationError("Path is empty", path=path)
        if "{{" in path or "{%" in path:
            raise PathValidationError("Path contains unresolved template placeholders", path=path)
        if "\0" in path:
            raise PathValidationError("Path contains a null byte", path=path)
        if len(path) > MAX_PATH_LENGTH:
            raise PathValidationError(
                f"Path is too long ({len(path)} > {MAX_PATH_LENGTH} characters)", path=path,
            )

        for segment in to_posix(path).split("/"):
            if len(segment) > MAX_SEGMENT_LENGTH:
                raise PathValidationError(
                    f"Path segment is too long ({len(segment)} > {MAX_SEGMENT_LENGTH})", path=path,
                )
            if not self.validate_paths or segment in ("", ".", ".."):
                continue
            if any(ord(c) < 32 for c in segment):
                raise PathValidationError("Path contains control characters", path=path)
            bad = sorted(set(segment) & INVALID_CHARS)
            if bad:
                raise PathValidationError(
                    f"Path contains invalid characters: {''.join(bad)}", path=path,
                )
            if segment[-1] in (".", " "):
                raise PathValidationError(
                    f"Path segment {segment!r} ends with a dot or space", path=path,
                )
            if is_reserved_name(segment):
                raise PathValidationError(
                    f"Path segment {segment!r} is a reserved name", path=path,
                )

    # ── Resolution ──────────────────────────────────────────────────

    def normalize(self, output_dir: str, path: str) -> str:
        """Validate and join a rendered path under ``output_dir``.

        Returns:
            Absolute, normalized path with forward slashes.
        """
        self.validate(path)
        root = root_path(output_dir)
        candidate = posixpath.normpath(posixpath.join(root, to_posix(path)))
        if not is_descendant(root, candidate):
            logger.warning("Rejected path outside output directory: %r", path)
            raise PathValidationError(
                f"Path resolves outside the output directory: {path}", path=path,
            )
        return candidate

    def resolve(self, output_dir: str, path_pattern: str, variables: dict[str, Any]) -> str:
        """Render ``path_pattern`` and resolve it under ``output_dir``.

        Raises:
            PathValidationError: Unsafe path, or it escapes ``output_dir``.
            TemplateSyntaxError: The pattern itself is malformed.
        """
        rendered = self.renderer.render_string(path_pattern, variables)
        return self.normalize(output_dir, rendered)

    def relative(self, output_dir: str, resolved: str) -> str:
        return posixpath.relpath(resolved, root_path(output_dir))

    # ── Filesystem check ────────────────────────────────────────────

    def ensure_real_path(self, output_dir: str, resolved: str) -> None:
        """Reject a destination whose real location escapes ``output_dir``.

        Follows symlinks in the destination and its parents.
        """
        real_root = os.path.realpath(output_dir)
        real = os.path.realpath(to_native(resolved))
        if real != real_root and os.path.commonpath([real_root, real]) == real_root:
            return
        raise PathValidationError(
            f"Path escapes the output directory through a symlink: {resolved}",
            path=resolved,
        )
