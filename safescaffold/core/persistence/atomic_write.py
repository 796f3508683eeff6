"""
Atomic file writes.

Every file the engine produces (generated output, restored originals,
backup payloads) goes through ``atomic_write``: the bytes land in a temp
file in the destination directory, are flushed to disk, and the temp
file is renamed over the target. A crash mid-write leaves either the old
content or the new content, never a truncated file.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)

TEMP_PREFIX = ".scaffold_"
TEMP_SUFFIX = ".tmp"


def _current_umask() -> int:
    umask = os.umask(0)
    os.umask(umask)
    return umask


# Probed once at import: os.umask mutates process state.
_UMASK = _current_umask()


def atomic_write(path: Path, data: bytes | str, mode: int | None = None) -> int:
    """Write ``data`` to ``path`` atomically.

    Args:
        path: Target file. Parent directories are created.
        data: Bytes, or text (encoded as UTF-8).
        mode: Permission bits to apply before the rename. When None, an
              existing target keeps its mode and a new file gets the
              process default.

    Returns:
        Number of bytes written.
    """
    payload = data.encode("utf-8") if isinstance(data, str) else data

    path.parent.mkdir(parents=True, exist_ok=True)

    if mode is None and path.is_file():
        mode = path.stat().st_mode & 0o7777

    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX)
    tmp = Path(tmp_path)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        else:
            # mkstemp creates 0600
            os.chmod(tmp, 0o666 & ~_UMASK)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise

    logger.debug("Wrote %s (%d bytes)", path, len(payload))
    return len(payload)
