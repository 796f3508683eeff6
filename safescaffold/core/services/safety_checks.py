"""
Pre-flight safety checks — run once per invocation, before any write.

Both checks are fatal and never retried: a full disk or an unwritable
output directory will not fix itself between files.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from safescaffold.core.errors import DiskSpaceError, InsufficientPermissionError

logger = logging.getLogger(__name__)

SAFETY_MARGIN_BYTES = 10 * 1024 * 1024


def nearest_existing_dir(path: Path) -> Path:
    """Walk up from ``path`` to the first directory that exists."""
    current = path
    while not current.is_dir():
        if current.parent == current:
            break
        current = current.parent
    return current


def check_disk_space(output_dir: str | Path, required_bytes: int, margin: int = SAFETY_MARGIN_BYTES) -> int:
    """Ensure the target volume can hold ``required_bytes`` plus ``margin``.

    Returns:
        Free bytes on the volume.

    Raises:
        DiskSpaceError: Not enough free space.
    """
    probe = nearest_existing_dir(Path(output_dir).absolute())
    free = shutil.disk_usage(probe).free
    needed = required_bytes + margin
    if free < needed:
        raise DiskSpaceError(
            f"Insufficient disk space: {needed} bytes needed, {free} available",
            path=str(probe),
            required_bytes=needed,
            available_bytes=free,
        )
    logger.debug("Disk space ok at %s: need %d, free %d", probe, needed, free)
    return free


def check_permissions(output_dir: str | Path, dry_run: bool = False) -> None:
    """Ensure the output directory (or, if missing, its nearest ancestor) is writable.

    A real run writes and removes a probe file. A dry run uses access
    checks only and creates nothing.

    Raises:
        InsufficientPermissionError: The directory cannot be read or written.
    """
    target = nearest_existing_dir(Path(output_dir).absolute())

    if dry_run or not target.is_dir():
        if not os.access(target, os.R_OK | os.W_OK | os.X_OK):
            raise InsufficientPermissionError(
                f"No read/write access to {target}", path=str(target),
            )
        return

    try:
        fd, probe = tempfile.mkstemp(dir=target, prefix=".scaffold_probe_")
        os.close(fd)
        os.unlink(probe)
    except OSError as e:
        raise InsufficientPermissionError(
            f"Cannot write to {target}: {e.strerror or e}", path=str(target),
        ) from e
    if not os.access(target, os.R_OK):
        raise InsufficientPermissionError(f"Cannot read {target}", path=str(target))
    logger.debug("Permission probe ok at %s", target)


def run_preflight(output_dir: str | Path, required_bytes: int, dry_run: bool = False) -> None:
    """Disk space, then permissions. Raises on the first failure."""
    check_disk_space(output_dir, required_bytes)
    check_permissions(output_dir, dry_run=dry_run)
