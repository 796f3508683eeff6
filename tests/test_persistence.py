"""
Tests for the persistence layer — atomic writes and the backup ledger.
"""

import os
from pathlib import Path

import pytest

from safescaffold.core.models.backup import BackupRecord
from safescaffold.core.persistence import atomic_write as atomic_write_module
from safescaffold.core.persistence.atomic_write import TEMP_PREFIX, atomic_write
from safescaffold.core.persistence.backup_ledger import BackupLedger


def _record(record_id: str = "abc123", status: str = "completed", **kw) -> BackupRecord:
    return BackupRecord(
        id=record_id,
        target=kw.pop("target", "/tmp/a.txt"),
        backup_path=kw.pop("backup_path", f"/tmp/a.txt.backup.{record_id}"),
        status=status,
        **kw,
    )


# ═══════════════════════════════════════════════════════════════════
# Atomic write
# ═══════════════════════════════════════════════════════════════════


class TestAtomicWrite:
    """Tests for atomic_write()."""

    def test_writes_text_and_bytes(self, tmp_path: Path):
        assert atomic_write(tmp_path / "a.txt", "héllo") == len("héllo".encode("utf-8"))
        atomic_write(tmp_path / "b.bin", b"\x00\x01")
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "héllo"
        assert (tmp_path / "b.bin").read_bytes() == b"\x00\x01"

    def test_creates_parents(self, tmp_path: Path):
        atomic_write(tmp_path / "deep" / "er" / "f.txt", "x")
        assert (tmp_path / "deep" / "er" / "f.txt").read_text() == "x"

    def test_replaces_existing(self, tmp_path: Path):
        p = tmp_path / "f.txt"
        p.write_text("old")
        atomic_write(p, "new")
        assert p.read_text() == "new"

    def test_no_temp_files_left(self, tmp_path: Path):
        atomic_write(tmp_path / "f.txt", "x")
        assert [p.name for p in tmp_path.iterdir()] == ["f.txt"]

    @pytest.mark.skipif(os.name != "posix", reason="POSIX modes")
    def test_explicit_mode(self, tmp_path: Path):
        p = tmp_path / "run.sh"
        atomic_write(p, "#!/bin/sh\n", mode=0o755)
        assert p.stat().st_mode & 0o777 == 0o755

    @pytest.mark.skipif(os.name != "posix", reason="POSIX modes")
    def test_existing_mode_kept(self, tmp_path: Path):
        p = tmp_path / "f.txt"
        p.write_text("old")
        p.chmod(0o640)
        atomic_write(p, "new")
        assert p.stat().st_mode & 0o777 == 0o640

    @pytest.mark.skipif(os.name != "posix", reason="POSIX modes")
    def test_new_file_honours_umask(self, tmp_path: Path):
        p = tmp_path / "f.txt"
        atomic_write(p, "x")
        assert p.stat().st_mode & 0o777 == 0o666 & ~atomic_write_module._UMASK

    def test_failure_leaves_original(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        p = tmp_path / "f.txt"
        p.write_text("original")

        def boom(src, dst):
            raise OSError("disk on fire")

        monkeypatch.setattr(os, "replace", boom)
        with pytest.raises(OSError):
            atomic_write(p, "new")
        assert p.read_text() == "original"
        assert not [q for q in tmp_path.iterdir() if q.name.startswith(TEMP_PREFIX)]


# ═══════════════════════════════════════════════════════════════════
# Ledger
# ═══════════════════════════════════════════════════════════════════


class TestBackupLedger:
    """Tests for BackupLedger."""

    def test_default_location(self, tmp_path: Path):
        ledger = BackupLedger(project_root=tmp_path)
        assert ledger.path == tmp_path / ".scaffold" / "backups.ndjson"

    def test_empty(self, tmp_path: Path):
        ledger = BackupLedger(tmp_path / "l.ndjson")
        assert ledger.read_all() == []
        assert ledger.entry_count() == 0

    def test_write_and_read(self, tmp_path: Path):
        ledger = BackupLedger(tmp_path / "sub" / "l.ndjson")
        ledger.write(_record("a"))
        ledger.write(_record("b"))
        assert [r.id for r in ledger.read_all()] == ["a", "b"]
        assert ledger.entry_count() == 2

    def test_latest_status_wins(self, tmp_path: Path):
        ledger = BackupLedger(tmp_path / "l.ndjson")
        ledger.write(_record("a", status="pending"))
        ledger.write(_record("b"))
        ledger.write(_record("a", status="failed"))
        latest = ledger.latest()
        assert [(r.id, r.status) for r in latest] == [("a", "failed"), ("b", "completed")]

    def test_corrupt_lines_skipped(self, tmp_path: Path):
        path = tmp_path / "l.ndjson"
        ledger = BackupLedger(path)
        ledger.write(_record("a"))
        with path.open("a") as f:
            f.write("{not json\n")
            f.write('{"id": "missing-fields"}\n')
        ledger.write(_record("b"))
        assert [r.id for r in ledger.read_all()] == ["a", "b"]
        assert ledger.entry_count() == 4

    def test_find_by_path(self, tmp_path: Path):
        ledger = BackupLedger(tmp_path / "l.ndjson")
        ledger.write(_record("a", backup_path="/x/one"))
        ledger.write(_record("b", backup_path="/x/two"))
        assert ledger.find_by_path("/x/two").id == "b"
        assert ledger.find_by_path("/x/three") is None
