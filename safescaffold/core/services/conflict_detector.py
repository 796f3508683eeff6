"""
Conflict detector — does the intended destination already exist?

Existence alone makes a conflict, whether or not the content differs.
Content (size) only drives severity:

    low     both sides are empty
    high    either side exceeds 1 MiB, or the destination is a directory
    medium  everything else

Also home to ``classify_file``, the extension-based content categories
the intelligent resolution policy relies on.
"""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path

from safescaffold.core.models.conflict import Conflict, FileMetadata, Severity

logger = logging.getLogger(__name__)

LARGE_FILE_BYTES = 1024 * 1024
_CHUNK = 64 * 1024

# ── File categories ─────────────────────────────────────────────────

IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".ico", ".tiff"}
VIDEO_EXTS = {".mp4", ".webm", ".mov", ".avi", ".mkv"}
AUDIO_EXTS = {".mp3", ".wav", ".ogg", ".flac", ".aac", ".m4a"}
DOC_EXTS = {".pdf", ".docx", ".doc", ".odt", ".xlsx", ".xls", ".pptx", ".rtf", ".epub"}
DATA_EXTS = {
    ".csv", ".tsv", ".sql", ".sqlite", ".db", ".parquet", ".ndjson",
    ".jsonl", ".avro", ".feather",
}
ARCHIVE_EXTS = {".zip", ".tar", ".gz", ".tgz", ".7z", ".rar", ".bz2", ".xz"}
CODE_EXTS = {
    ".py", ".js", ".ts", ".jsx", ".tsx", ".java", ".c", ".cpp", ".h", ".hpp",
    ".cs", ".go", ".rs", ".rb", ".php", ".swift", ".kt", ".html", ".css", ".scss",
}
SCRIPT_EXTS = {".sh", ".bash", ".zsh", ".fish", ".bat", ".cmd", ".ps1"}
CONFIG_EXTS = {
    ".yaml", ".yml", ".json", ".toml", ".ini", ".cfg", ".conf",
    ".env", ".properties", ".xml",
}
TEXT_EXTS = {".txt", ".md", ".rst"}

_CONFIG_FILENAMES = {
    "Makefile", "Dockerfile", "Procfile", ".gitignore", ".gitattributes",
    ".editorconfig", ".dockerignore", "pyproject.toml", "setup.cfg",
    "package.json", "tsconfig.json", "Cargo.toml", "go.mod",
}

# Categories never silently overwritten by the intelligent policy
PROTECTED_CATEGORIES = frozenset({"text", "image", "video", "audio", "document", "data", "archive"})


def classify_file(path: str | Path) -> str:
    """Classify a file by name into a content category.

    Returns one of: 'image', 'video', 'audio', 'document', 'data',
    'archive', 'code', 'script', 'config', 'text', 'other'.
    """
    p = Path(path)
    if p.name in _CONFIG_FILENAMES:
        return "config"

    suffix = p.suffix.lower()
    for category, exts in (
        ("image", IMAGE_EXTS),
        ("video", VIDEO_EXTS),
        ("audio", AUDIO_EXTS),
        ("document", DOC_EXTS),
        ("data", DATA_EXTS),
        ("archive", ARCHIVE_EXTS),
        ("code", CODE_EXTS),
        ("script", SCRIPT_EXTS),
        ("config", CONFIG_EXTS),
        ("text", TEXT_EXTS),
    ):
        if suffix in exts:
            return category
    return "other"


# ── Metadata ────────────────────────────────────────────────────────


def checksum_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def checksum_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK), b""):
            digest.update(chunk)
    return digest.hexdigest()


def file_metadata(path: str | Path, with_checksum: bool = True) -> FileMetadata:
    """Stat an existing path into FileMetadata."""
    p = Path(path)
    st = p.stat()
    is_dir = p.is_dir()
    return FileMetadata(
        path=str(p),
        size=0 if is_dir else st.st_size,
        modified=st.st_mtime,
        permissions=st.st_mode & 0o7777,
        is_directory=is_dir,
        checksum=checksum_file(p) if with_checksum and not is_dir else None,
    )


def assess_severity(source_size: int, destination_size: int) -> Severity:
    if source_size == 0 and destination_size == 0:
        return "low"
    if source_size > LARGE_FILE_BYTES or destination_size > LARGE_FILE_BYTES:
        return "high"
    return "medium"


# ── Detector ────────────────────────────────────────────────────────


class ConflictDetector:
    """Compares intended output against what is on disk."""

    def detect(
        self,
        source_content: str | bytes,
        destination_path: str | Path,
        permissions: int | None = None,
        source_path: str | Path | None = None,
    ) -> Conflict | None:
        """Return a Conflict if anything exists at ``destination_path``.

        ``source_path`` names where the incoming content came from, when
        that differs from the destination (a template file on disk).
        """
        dest = Path(destination_path)
        if not dest.exists():
            return None

        payload = source_content.encode("utf-8") if isinstance(source_content, str) else source_content
        source = FileMetadata(
            path=str(source_path if source_path is not None else dest),
            size=len(payload),
            permissions=permissions,
            checksum=checksum_bytes(payload),
        )

        if dest.is_dir():
            destination = file_metadata(dest)
            logger.debug("Directory exists at file destination %s", dest)
            return Conflict(
                conflict_type="directory_exists",
                source=source,
                destination=destination,
                severity="high",
            )

        destination = file_metadata(dest)
        conflict = Conflict(
            conflict_type="overwrite",
            source=source,
            destination=destination,
            severity=assess_severity(source.size, destination.size),
            identical=source.checksum == destination.checksum,
        )
        logger.debug(
            "Conflict at %s (severity=%s, identical=%s)",
            dest, conflict.severity, conflict.identical,
        )
        return conflict

    def detect_directory(self, path: str | Path) -> Conflict | None:
        """Report an existing directory as a ``directory_exists`` conflict."""
        p = Path(path)
        if not p.exists():
            return None
        destination = file_metadata(p)
        return Conflict(
            conflict_type="directory_exists",
            source=FileMetadata(path=str(p), is_directory=True),
            destination=destination,
            severity="high",
        )
