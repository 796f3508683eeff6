"""
Tests for the backup manager — strategies, encoding, verification, restore.
"""

import gzip
import os
from datetime import UTC, datetime
from pathlib import Path

import pytest

from safescaffold.core.errors import BackupIntegrityError
from safescaffold.core.models.options import BackupOptions
from safescaffold.core.persistence.backup_ledger import BackupLedger
from safescaffold.core.services import backup_manager as backup_manager_module
from safescaffold.core.services.backup_manager import (
    BackupManager,
    apply_delta,
    encode_delta,
)

FIXED = datetime(2026, 1, 2, 3, 4, 5, tzinfo=UTC)


def _fixed_clock():
    return FIXED


@pytest.fixture
def target(tmp_path: Path) -> Path:
    p = tmp_path / "app.cfg"
    p.write_text("line1\nline2\n")
    return p


class TestDeltas:
    """Tests for encode_delta / apply_delta."""

    def test_replays_edits(self):
        ref = b"a\nb\nc\nd\n"
        new = b"a\nB\nc\nd\ne"
        assert apply_delta(ref, encode_delta(ref, new)) == new

    def test_delta_smaller_than_content_for_small_edit(self):
        ref = b"".join(b"line %d\n" % i for i in range(500))
        new = ref.replace(b"line 250\n", b"changed\n")
        assert len(encode_delta(ref, new)) < len(new) // 4

    def test_malformed(self):
        with pytest.raises(ValueError):
            apply_delta(b"", b"not json")

    def test_wrong_reference(self):
        delta = encode_delta(b"a\nb\nc\n", b"a\nb\nc\nd\n")
        with pytest.raises(ValueError):
            apply_delta(b"", delta)


class TestCreateBackup:
    """Tests for full backups."""

    def test_full_backup(self, target: Path):
        manager = BackupManager(clock=_fixed_clock)
        record = manager.create_backup(target)
        assert record.status == "completed"
        assert record.strategy == "full"
        assert Path(record.backup_path).name == "app.cfg.backup.20260102-030405"
        assert Path(record.backup_path).read_bytes() == target.read_bytes()
        assert record.original_size == len(b"line1\nline2\n")
        assert manager.records == [record]

    def test_name_collision_gets_counter(self, target: Path):
        manager = BackupManager(clock=_fixed_clock)
        first = manager.create_backup(target)
        second = manager.create_backup(target)
        assert first.backup_path != second.backup_path
        assert second.backup_path.endswith(".backup.20260102-030405.1")

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            BackupManager().create_backup(tmp_path / "ghost")

    @pytest.mark.skipif(os.name != "posix", reason="POSIX modes")
    def test_mode_preserved(self, target: Path):
        target.chmod(0o640)
        record = BackupManager().create_backup(target)
        assert record.mode == 0o640
        assert Path(record.backup_path).stat().st_mode & 0o777 == 0o640

    def test_compressed(self, tmp_path: Path):
        readme = tmp_path / "README.md"
        readme.write_text("# demo\n\n" + "".join(
            f"- `demo {cmd}`: run the {cmd} step of the demo pipeline\n"
            for cmd in ("init", "build", "test", "lint", "package", "publish", "clean")
        ))
        record = BackupManager(BackupOptions(compress=True)).create_backup(readme)
        assert record.compressed
        assert record.backup_path.endswith(".gz")
        assert record.backup_size < record.original_size
        assert Path(record.backup_path).stat().st_size == record.backup_size
        assert gzip.decompress(Path(record.backup_path).read_bytes()) == readme.read_bytes()

    def test_compression_skipped_when_it_would_grow(self, target: Path):
        manager = BackupManager(BackupOptions(compress=True))
        record = manager.create_backup(target)
        assert record.compressed is False
        assert not record.backup_path.endswith(".gz")
        assert record.backup_size == record.original_size
        assert Path(record.backup_path).read_bytes() == target.read_bytes()
        assert manager.verify_backup(record)
        assert manager.get_backup_metadata(record.backup_path).compressed is False

    def test_failed_verification_cleans_up(self, target: Path, monkeypatch: pytest.MonkeyPatch):
        def corrupt_write(path, data, mode=None):
            Path(path).write_bytes(b"garbage")
            return 7

        monkeypatch.setattr(backup_manager_module, "atomic_write", corrupt_write)
        manager = BackupManager()
        with pytest.raises(BackupIntegrityError):
            manager.create_backup(target)
        assert [r.status for r in manager.records] == ["failed"]
        assert not Path(manager.records[0].backup_path).exists()
        assert target.read_text() == "line1\nline2\n"


class TestEncryptedBackup:
    """Tests for encrypted backups."""

    def test_round_trip(self, target: Path, fast_backup_options: BackupOptions):
        manager = BackupManager(fast_backup_options)
        record = manager.create_backup(target)
        stored = Path(record.backup_path).read_bytes()
        assert record.encrypted
        assert record.backup_path.endswith(".enc")
        assert b"line1" not in stored
        assert manager.restore_content(record) == target.read_bytes()

    @pytest.mark.skipif(os.name != "posix", reason="POSIX modes")
    def test_owner_only_mode(self, target: Path, fast_backup_options: BackupOptions):
        target.chmod(0o644)
        record = BackupManager(fast_backup_options).create_backup(target)
        assert Path(record.backup_path).stat().st_mode & 0o777 == 0o600

    def test_compress_then_encrypt(self, target: Path, fast_backup_options: BackupOptions):
        target.write_text("setting = value\n" * 50)
        options = fast_backup_options.model_copy(update={"compress": True})
        manager = BackupManager(options)
        record = manager.create_backup(target)
        assert record.backup_path.endswith(".gz.enc")
        assert manager.restore_content(record) == target.read_bytes()

    def test_wrong_key_fails_verification(self, target: Path, fast_backup_options: BackupOptions):
        record = BackupManager(fast_backup_options).create_backup(target)
        other = BackupManager(fast_backup_options.model_copy(update={"passphrase": "wrong key"}))
        assert other.verify_backup(record) is False
        with pytest.raises(BackupIntegrityError):
            other.restore_content(record)

    def test_no_key_fails(self, target: Path, fast_backup_options: BackupOptions):
        record = BackupManager(fast_backup_options).create_backup(target)
        with pytest.raises(BackupIntegrityError, match="no key"):
            BackupManager().restore_content(record)


class TestDeltaStrategies:
    """Tests for incremental and differential chains."""

    def test_incremental_without_full_falls_back(self, target: Path):
        record = BackupManager().create_backup(target, strategy="incremental")
        assert record.strategy == "full"
        assert record.parent_id is None

    def test_incremental_chain(self, target: Path):
        manager = BackupManager()
        full = manager.create_backup(target)
        target.write_text("line1\nline2\nline3\n")
        inc1 = manager.create_backup(target, strategy="incremental")
        target.write_text("line0\nline2\nline3\n")
        inc2 = manager.create_backup(target, strategy="incremental")

        assert inc1.parent_id == full.id and inc1.base_id == full.id
        assert inc2.parent_id == inc1.id and inc2.base_id == full.id
        assert inc2.backup_path.endswith(".delta")
        assert manager.restore_content(full) == b"line1\nline2\n"
        assert manager.restore_content(inc1) == b"line1\nline2\nline3\n"
        assert manager.restore_content(inc2) == b"line0\nline2\nline3\n"

    def test_differential_points_at_full(self, target: Path):
        manager = BackupManager()
        full = manager.create_backup(target)
        target.write_text("v2\n")
        manager.create_backup(target, strategy="differential")
        target.write_text("v3\n")
        diff2 = manager.create_backup(target, strategy="differential")
        assert diff2.parent_id == full.id
        assert manager.restore_content(diff2) == b"v3\n"

    def test_chain_survives_restart_through_ledger(self, target: Path, tmp_path: Path):
        ledger_path = tmp_path / "ledger.ndjson"
        first = BackupManager(ledger=BackupLedger(ledger_path))
        full = first.create_backup(target)

        target.write_text("line1\nchanged\n")
        second = BackupManager(ledger=BackupLedger(ledger_path))
        inc = second.create_backup(target, strategy="incremental")
        assert inc.parent_id == full.id
        assert second.restore_content(inc) == b"line1\nchanged\n"

    def test_missing_parent(self, target: Path):
        manager = BackupManager()
        manager.create_backup(target)
        target.write_text("x\n")
        inc = manager.create_backup(target, strategy="incremental")
        fresh = BackupManager()
        with pytest.raises(BackupIntegrityError, match="unknown parent"):
            fresh.restore_content(inc)


class TestVerifyAndRestore:
    """Tests for verification, rollback and cleanup."""

    def test_verify_by_path(self, target: Path):
        manager = BackupManager()
        record = manager.create_backup(target)
        assert manager.verify_backup(record.backup_path) is True
        assert manager.verify_backup("/nonexistent/backup") is False

    def test_tamper_detected(self, target: Path):
        manager = BackupManager()
        record = manager.create_backup(target)
        Path(record.backup_path).write_text("tampered")
        assert manager.verify_backup(record) is False
        with pytest.raises(BackupIntegrityError):
            manager.rollback_file(target, record.backup_path)

    def test_rollback_restores_and_is_idempotent(self, target: Path):
        manager = BackupManager()
        record = manager.create_backup(target)
        target.write_text("clobbered")
        assert manager.rollback_file(target, record.backup_path) is True
        assert target.read_text() == "line1\nline2\n"
        assert manager.rollback_file(target, record.backup_path) is True
        assert target.read_text() == "line1\nline2\n"
        assert Path(record.backup_path).exists()

    def test_rollback_recreates_deleted_file(self, target: Path):
        manager = BackupManager()
        record = manager.create_backup(target)
        target.unlink()
        assert manager.rollback_file(target, record.backup_path) is True
        assert target.read_text() == "line1\nline2\n"

    @pytest.mark.skipif(os.name != "posix", reason="POSIX modes")
    def test_rollback_restores_mode(self, target: Path):
        target.chmod(0o600)
        manager = BackupManager()
        record = manager.create_backup(target)
        target.chmod(0o644)
        manager.rollback_file(target, record.backup_path)
        assert target.stat().st_mode & 0o777 == 0o600

    def test_rollback_missing_backup(self, target: Path, tmp_path: Path):
        assert BackupManager().rollback_file(target, tmp_path / "gone") is False

    def test_rollback_unknown_plain_backup(self, target: Path, tmp_path: Path):
        stray = tmp_path / "app.cfg.backup.20200101-000000"
        stray.write_text("from elsewhere\n")
        assert BackupManager().rollback_file(target, stray) is True
        assert target.read_text() == "from elsewhere\n"

    def test_rollback_unknown_delta_refused(self, target: Path, tmp_path: Path):
        stray = tmp_path / "app.cfg.backup.20200101-000000.delta"
        stray.write_text("{}")
        with pytest.raises(BackupIntegrityError):
            BackupManager().rollback_file(target, stray)

    def test_rollback_to_step(self, target: Path):
        manager = BackupManager()
        versions = []
        for text in ("one\n", "two\n", "three\n"):
            target.write_text(text)
            versions.append(manager.create_backup(target))
        target.write_text("current\n")

        manager.rollback_to_step(target, versions, 1)
        assert target.read_text() == "two\n"
        manager.rollback_to_step(target, versions, -1)
        assert target.read_text() == "three\n"
        with pytest.raises(IndexError):
            manager.rollback_to_step(target, versions, 3)

    def test_list_backups(self, target: Path, tmp_path: Path):
        manager = BackupManager()
        a = manager.create_backup(target)
        other = tmp_path / "other.txt"
        other.write_text("o")
        manager.create_backup(other)
        assert manager.list_backups(target) == [a]

    def test_cleanup_cascades_to_deltas(self, target: Path):
        manager = BackupManager()
        full = manager.create_backup(target)
        target.write_text("more\n")
        inc = manager.create_backup(target, strategy="incremental")
        assert manager.cleanup([full]) == 2
        assert not Path(full.backup_path).exists()
        assert not Path(inc.backup_path).exists()
        assert manager.records == []


class TestDirectoryAndConfigBackups:
    """Tests for directory trees and configuration snapshots."""

    def test_directory_round_trip(self, tmp_path: Path):
        tree = tmp_path / "site"
        (tree / "sub").mkdir(parents=True)
        (tree / "index.html").write_text("<h1>hi</h1>")
        (tree / "sub" / "a.txt").write_text("a")

        manager = BackupManager()
        record = manager.create_directory_backup(tree)
        assert record.backup_type == "directory"
        assert manager.verify_backup(record)

        (tree / "index.html").write_text("broken")
        (tree / "new.txt").write_text("extra")
        assert manager.restore_directory(record) is True
        assert (tree / "index.html").read_text() == "<h1>hi</h1>"
        assert not (tree / "new.txt").exists()
        assert (tree / "sub" / "a.txt").read_text() == "a"
        assert Path(record.backup_path).is_dir()

    def test_directory_tamper(self, tmp_path: Path):
        tree = tmp_path / "site"
        tree.mkdir()
        (tree / "a").write_text("a")
        manager = BackupManager()
        record = manager.create_directory_backup(tree)
        (Path(record.backup_path) / "a").write_text("evil")
        assert manager.verify_backup(record) is False
        with pytest.raises(BackupIntegrityError):
            manager.restore_directory(record)

    def test_configuration_snapshot(self, tmp_path: Path):
        manager = BackupManager()
        record = manager.create_configuration_backup(
            tmp_path / "scaffold.yml", {"output_dir": "out", "workers": 4},
        )
        assert record.backup_type == "configuration"
        assert manager.load_configuration_backup(record) == {"output_dir": "out", "workers": 4}
