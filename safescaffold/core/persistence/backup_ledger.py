"""
Backup ledger — append-only record of every backup the engine made.

Each BackupRecord is written as one NDJSON line. A record is appended
again whenever its status changes (``pending`` → ``completed``/``failed``),
so the last line for an id wins when reading back.

The ledger is append-only: entries are never modified or deleted.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from safescaffold.core.models.backup import BackupRecord

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_DIR = ".scaffold"
DEFAULT_LEDGER_FILE = "backups.ndjson"


class BackupLedger:
    """Append-only NDJSON writer for backup records."""

    def __init__(self, path: Path | None = None, project_root: Path | None = None):
        if path is not None:
            self._path = path
        elif project_root is not None:
            self._path = project_root / DEFAULT_LEDGER_DIR / DEFAULT_LEDGER_FILE
        else:
            self._path = Path(DEFAULT_LEDGER_DIR) / DEFAULT_LEDGER_FILE
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def write(self, record: BackupRecord) -> None:
        """Append one record to the ledger."""
        line = json.dumps(record.model_dump(mode="json"), ensure_ascii=False) + "\n"

        with self._lock:
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as f:
                    f.write(line)
                logger.debug("Ledger entry written: %s (%s)", record.id, record.status)
            except OSError as e:
                logger.error("Failed to write backup ledger entry: %s", e)

    def read_all(self) -> list[BackupRecord]:
        """All entries, oldest first, including superseded status lines."""
        if not self._path.is_file():
            return []

        entries: list[BackupRecord] = []
        try:
            with self._path.open("r", encoding="utf-8") as f:
                for line_num, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(BackupRecord.model_validate(json.loads(line)))
                    except (json.JSONDecodeError, PydanticValidationError) as e:
                        logger.warning("Skipping corrupt ledger entry at line %d: %s", line_num, e)
        except OSError as e:
            logger.error("Failed to read backup ledger: %s", e)

        return entries

    def latest(self) -> list[BackupRecord]:
        """Current state of every record: last line per id, in first-seen order."""
        by_id: dict[str, BackupRecord] = {}
        for entry in self.read_all():
            by_id[entry.id] = entry
        return list(by_id.values())

    def find_by_path(self, backup_path: str) -> BackupRecord | None:
        for record in reversed(self.latest()):
            if record.backup_path == backup_path:
                return record
        return None

    def entry_count(self) -> int:
        """Count lines without parsing them."""
        if not self._path.is_file():
            return 0
        try:
            with self._path.open("r", encoding="utf-8") as f:
                return sum(1 for line in f if line.strip())
        except OSError:
            return 0
