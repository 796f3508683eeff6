"""
Backup manager — verified, recoverable copies of files before they change.

Backups live beside the original as ``<name>.backup.<YYYYMMDD-HHMMSS>``
(UTC), with ``.N`` appended on collision. Names are reserved with an
exclusive create, so concurrent backups of the same file never share a
name. Encoded payloads add ``.delta``, ``.gz`` and ``.enc`` suffixes, in
that order.

Strategies:

    full          the entire content
    incremental   a delta against the latest backup in the chain rooted
                  at the most recent full backup
    differential  a delta against that full backup

Every record carries the sha256 of the original content. A backup is
``completed`` only after it has been read back, decoded, and matched
against that checksum; otherwise it is ``failed`` and
BackupIntegrityError is raised with the original untouched.

The in-memory log is append-only under a lock and is mirrored to an
optional NDJSON ledger.
"""

from __future__ import annotations

import base64
import difflib
import gzip
import hashlib
import json
import logging
import os
import shutil
import threading
import uuid
import zlib
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from safescaffold.core.errors import BackupIntegrityError
from safescaffold.core.models.backup import BackupRecord
from safescaffold.core.models.options import BackupOptions
from safescaffold.core.persistence.atomic_write import atomic_write
from safescaffold.core.persistence.backup_ledger import BackupLedger
from safescaffold.core.services import backup_crypto

logger = logging.getLogger(__name__)

BACKUP_MARKER = ".backup."
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

DELTA_SUFFIX = ".delta"
GZIP_SUFFIX = ".gz"
ENC_SUFFIX = ".enc"

ENCRYPTED_MODE = 0o600


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


# ═══════════════════════════════════════════════════════════════════
# Deltas
# ═══════════════════════════════════════════════════════════════════


def encode_delta(reference: bytes, target: bytes) -> bytes:
    """Line-level difflib opcodes turning ``reference`` into ``target``.

    Serialized as JSON: ``copy`` ops reference line ranges of the
    reference; ``insert`` ops carry base64 bytes.
    """
    ref_lines = reference.splitlines(keepends=True)
    new_lines = target.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(None, ref_lines, new_lines, autojunk=False)

    ops: list[list[Any]] = []
    for tag, i1, i2, j1, j2 in matcher.get_opcodes():
        if tag == "equal":
            ops.append(["copy", i1, i2])
        elif tag in ("replace", "insert"):
            ops.append(["insert", base64.b64encode(b"".join(new_lines[j1:j2])).decode("ascii")])
        # "delete": nothing to emit

    return json.dumps({"version": 1, "ops": ops}, separators=(",", ":")).encode("utf-8")


def apply_delta(reference: bytes, delta: bytes) -> bytes:
    """Replay a delta produced by ``encode_delta``.

    Raises:
        ValueError: Malformed delta, or it does not fit the reference.
    """
    try:
        doc = json.loads(delta.decode("utf-8"))
        ops = doc["ops"]
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
        raise ValueError(f"Malformed delta: {e}") from e

    ref_lines = reference.splitlines(keepends=True)
    out: list[bytes] = []
    for op in ops:
        if op[0] == "copy":
            i1, i2 = op[1], op[2]
            if i2 > len(ref_lines) or i1 > i2:
                raise ValueError("Delta does not match its reference content")
            out.extend(ref_lines[i1:i2])
        elif op[0] == "insert":
            out.append(base64.b64decode(op[1]))
        else:
            raise ValueError(f"Unknown delta op: {op[0]!r}")
    return b"".join(out)


# ═══════════════════════════════════════════════════════════════════
# Manager
# ═══════════════════════════════════════════════════════════════════


class BackupManager:
    """Creates, verifies and restores backups; keeps the undo log.

    Args:
        options: Storage options (strategy, compression, encryption).
        ledger: Optional NDJSON ledger mirroring the in-memory log.
        clock: Returns the current UTC datetime (injectable for tests).
    """

    def __init__(
        self,
        options: BackupOptions | None = None,
        ledger: BackupLedger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.options = options or BackupOptions()
        self.ledger = ledger
        self._clock = clock or (lambda: datetime.now(UTC))
        self._records: list[BackupRecord] = []
        self._lock = threading.Lock()
        self._target_locks: dict[str, threading.Lock] = {}

    # ── Log ─────────────────────────────────────────────────────────

    @property
    def records(self) -> list[BackupRecord]:
        """Snapshot of the log, oldest first."""
        with self._lock:
            return list(self._records)

    def _append(self, record: BackupRecord) -> None:
        with self._lock:
            self._records.append(record)
        if self.ledger is not None:
            self.ledger.write(record)

    def adopt(self, records: Iterable[BackupRecord]) -> None:
        """Add records made elsewhere (e.g. read from a run manifest) to the log."""
        with self._lock:
            known = {r.id for r in self._records}
            self._records.extend(r for r in records if r.id not in known)

    def forget(self, records: Iterable[BackupRecord]) -> None:
        """Drop records from the in-memory log. Files stay on disk."""
        ids = {r.id for r in records}
        with self._lock:
            self._records = [r for r in self._records if r.id not in ids]

    def _known(self) -> list[BackupRecord]:
        """In-memory records, plus ledger records not held in memory."""
        records = self.records
        if self.ledger is not None:
            seen = {r.id for r in records}
            records = [r for r in self.ledger.latest() if r.id not in seen] + records
        return records

    def _by_id(self, record_id: str) -> BackupRecord | None:
        for record in reversed(self._known()):
            if record.id == record_id:
                return record
        return None

    def _target_lock(self, target: Path) -> threading.Lock:
        key = str(target)
        with self._lock:
            if key not in self._target_locks:
                self._target_locks[key] = threading.Lock()
            return self._target_locks[key]

    # ── Naming ──────────────────────────────────────────────────────

    def _stamp(self) -> str:
        return self._clock().strftime(TIMESTAMP_FORMAT)

    def _reserve_file(self, target: Path, suffixes: str) -> Path:
        """Atomically claim ``<name>.backup.<stamp>[.N]<suffixes>``."""
        base = f"{target.name}{BACKUP_MARKER}{self._stamp()}"
        n = 0
        while True:
            name = base if n == 0 else f"{base}.{n}"
            candidate = target.with_name(name + suffixes)
            try:
                fd = os.open(candidate, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o600)
            except FileExistsError:
                n += 1
                continue
            os.close(fd)
            return candidate

    def _reserve_dir(self, target: Path) -> Path:
        base = f"{target.name}{BACKUP_MARKER}{self._stamp()}"
        n = 0
        while True:
            name = base if n == 0 else f"{base}.{n}"
            candidate = target.with_name(name)
            try:
                candidate.mkdir()
            except FileExistsError:
                n += 1
                continue
            return candidate

    # ── Encoding ────────────────────────────────────────────────────

    def _encode(self, payload: bytes, compress: bool, encrypt: bool) -> tuple[bytes, bool]:
        """Payload → stored bytes, and whether gzip was kept.

        Compression is dropped when it does not make the payload smaller.
        """
        if compress:
            packed = gzip.compress(payload, mtime=0)
            if len(packed) < len(payload):
                payload = packed
            else:
                logger.debug("gzip would not shrink %d bytes; storing uncompressed", len(payload))
                compress = False
        if encrypt:
            payload = backup_crypto.encrypt_bytes(
                payload, self.options.passphrase or "", self.options.kdf_iterations,
            )
        return payload, compress

    def _decode(self, record: BackupRecord, stored: bytes) -> bytes:
        """Stored bytes → the record's payload (plain content or delta)."""
        if record.stored_checksum and _sha256(stored) != record.stored_checksum:
            raise BackupIntegrityError(
                "Backup file has been modified since it was written",
                path=record.backup_path,
            )
        data = stored
        if record.encrypted:
            if not self.options.passphrase:
                raise BackupIntegrityError("Backup is encrypted and no key is configured", path=record.backup_path)
            try:
                data = backup_crypto.decrypt_bytes(data, self.options.passphrase)
            except ValueError as e:
                raise BackupIntegrityError(str(e), path=record.backup_path) from e
        if record.compressed:
            try:
                data = gzip.decompress(data)
            except (OSError, EOFError, zlib.error) as e:
                raise BackupIntegrityError(f"Corrupt compressed backup: {e}", path=record.backup_path) from e
        return data

    def _reconstruct(self, record: BackupRecord, _depth: int = 0) -> bytes:
        """Full content as of ``record``: replay the full backup, then deltas."""
        if _depth > 1000:
            raise BackupIntegrityError("Backup chain is too deep or cyclic", path=record.backup_path)
        try:
            stored = Path(record.backup_path).read_bytes()
        except FileNotFoundError as e:
            raise BackupIntegrityError("Backup file is missing", path=record.backup_path) from e

        payload = self._decode(record, stored)
        if not record.is_delta:
            return payload

        parent = self._by_id(record.parent_id or "")
        if parent is None:
            raise BackupIntegrityError(
                f"Delta backup references unknown parent {record.parent_id}",
                path=record.backup_path,
            )
        reference = self._reconstruct(parent, _depth + 1)
        try:
            return apply_delta(reference, payload)
        except ValueError as e:
            raise BackupIntegrityError(str(e), path=record.backup_path) from e

    def restore_content(self, record: BackupRecord) -> bytes:
        """Decode a backup and verify it against the original checksum.

        Raises:
            BackupIntegrityError: Missing, tampered, undecodable, or wrong key.
        """
        content = self._reconstruct(record)
        if record.checksum and _sha256(content) != record.checksum:
            raise BackupIntegrityError("Backup checksum mismatch", path=record.backup_path)
        return content

    # ── Chains ──────────────────────────────────────────────────────

    def list_backups(self, path: str | Path) -> list[BackupRecord]:
        """Completed file backups of ``path``, oldest first."""
        target = str(Path(path))
        return [
            r for r in self._known()
            if r.target == target and r.backup_type == "file" and r.status == "completed"
        ]

    def _latest_full(self, target: Path) -> BackupRecord | None:
        fulls = [r for r in self.list_backups(target) if not r.is_delta]
        return fulls[-1] if fulls else None

    def _chain_tip(self, target: Path, full: BackupRecord) -> BackupRecord:
        chain = [r for r in self.list_backups(target) if r.id == full.id or r.base_id == full.id]
        return chain[-1]

    # ── Create ──────────────────────────────────────────────────────

    def create_backup(self, path: str | Path, strategy: str | None = None) -> BackupRecord:
        """Back up a file and verify the copy.

        Raises:
            FileNotFoundError: ``path`` is not an existing file.
            BackupIntegrityError: The written backup did not verify.
        """
        target = Path(path)
        if not target.is_file():
            raise FileNotFoundError(f"Cannot back up missing file: {target}")

        strategy = strategy or self.options.strategy
        compress = self.options.compress
        encrypt = self.options.encrypt

        with self._target_lock(target):
            original = target.read_bytes()
            checksum = _sha256(original)
            mode = target.stat().st_mode & 0o7777

            base: BackupRecord | None = None
            parent: BackupRecord | None = None
            if strategy != "full":
                base = self._latest_full(target)
                if base is None:
                    logger.info("No full backup of %s yet; %s falls back to full", target, strategy)
                    strategy = "full"
                else:
                    parent = base if strategy == "differential" else self._chain_tip(target, base)

            if parent is not None:
                payload = encode_delta(self.restore_content(parent), original)
            else:
                payload = original

            stored, compress = self._encode(payload, compress, encrypt)
            suffixes = (
                (DELTA_SUFFIX if parent is not None else "")
                + (GZIP_SUFFIX if compress else "")
                + (ENC_SUFFIX if encrypt else "")
            )
            backup_path = self._reserve_file(target, suffixes)

            record = BackupRecord(
                id=uuid.uuid4().hex[:12],
                timestamp=self._clock().isoformat(),
                backup_type="file",
                strategy=strategy,
                target=str(target),
                backup_path=str(backup_path),
                checksum=checksum,
                stored_checksum=_sha256(stored),
                original_size=len(original),
                backup_size=len(stored),
                mode=mode,
                compressed=compress,
                encrypted=encrypt,
                base_id=base.id if parent is not None else None,
                parent_id=parent.id if parent is not None else None,
                status="pending",
            )

            try:
                atomic_write(backup_path, stored, mode=ENCRYPTED_MODE if encrypt else mode)
                self.restore_content(record)
            except (BackupIntegrityError, OSError) as e:
                failed = record.model_copy(update={"status": "failed"})
                self._append(failed)
                backup_path.unlink(missing_ok=True)
                logger.error("Backup of %s failed verification: %s", target, e)
                if isinstance(e, BackupIntegrityError):
                    raise
                raise BackupIntegrityError(f"Could not write backup: {e}", path=str(backup_path)) from e

            record = record.model_copy(update={"status": "completed"})
            self._append(record)

        logger.info(
            "Backed up %s → %s (%s, %d → %d bytes)",
            target, backup_path.name, strategy, record.original_size, record.backup_size,
        )
        return record

    # ── Verify ──────────────────────────────────────────────────────

    def verify_backup(self, backup: BackupRecord | str | Path) -> bool:
        """True when the backup decodes and matches its original checksum."""
        record = backup if isinstance(backup, BackupRecord) else self.get_backup_metadata(backup)
        if record is None:
            return False
        try:
            if record.backup_type == "directory":
                return _tree_digest(Path(record.backup_path)) == record.checksum
            self.restore_content(record)
        except (BackupIntegrityError, OSError) as e:
            logger.warning("Backup %s failed verification: %s", record.backup_path, e)
            return False
        return True

    def get_backup_metadata(self, backup_path: str | Path) -> BackupRecord | None:
        """The record for a backup file, or None when unknown."""
        wanted = str(Path(backup_path))
        for record in reversed(self._known()):
            if record.backup_path == wanted:
                return record
        return None

    # ── Restore ─────────────────────────────────────────────────────

    def _record_for(self, path: Path, backup_path: Path) -> BackupRecord:
        record = self.get_backup_metadata(backup_path)
        if record is not None:
            return record

        # Unknown to the log: infer encoding from the suffixes
        name = backup_path.name
        encrypted = name.endswith(ENC_SUFFIX)
        if encrypted:
            name = name[: -len(ENC_SUFFIX)]
        compressed = name.endswith(GZIP_SUFFIX)
        if compressed:
            name = name[: -len(GZIP_SUFFIX)]
        if name.endswith(DELTA_SUFFIX):
            raise BackupIntegrityError(
                "Delta backup cannot be restored without its backup log",
                path=str(backup_path),
            )
        return BackupRecord(
            id="adhoc",
            target=str(path),
            backup_path=str(backup_path),
            compressed=compressed,
            encrypted=encrypted,
            status="completed",
        )

    def rollback_file(self, path: str | Path, backup_path: str | Path) -> bool:
        """Restore ``path`` from a backup: bytes and permissions.

        Idempotent. The backup itself is never deleted.

        Returns:
            False when the backup file does not exist, else True.

        Raises:
            BackupIntegrityError: The backup does not verify.
        """
        target = Path(path)
        source = Path(backup_path)
        if not source.is_file():
            logger.warning("Backup %s not found; cannot restore %s", source, target)
            return False

        record = self._record_for(target, source)
        content = self.restore_content(record)
        mode = record.mode if record.mode is not None else source.stat().st_mode & 0o7777

        if target.is_file() and target.read_bytes() == content:
            os.chmod(target, mode)
            logger.debug("%s already matches %s", target, source.name)
            return True

        atomic_write(target, content, mode=mode)
        logger.info("Restored %s from %s", target, source.name)
        return True

    def rollback_to_step(self, path: str | Path, backups: list[BackupRecord], index: int) -> bool:
        """Restore ``path`` to the state captured by ``backups[index]``."""
        if not -len(backups) <= index < len(backups):
            raise IndexError(f"No backup step {index} (have {len(backups)})")
        return self.rollback_file(path, backups[index].backup_path)

    # ── Cleanup ─────────────────────────────────────────────────────

    def cleanup(self, records: Iterable[BackupRecord]) -> int:
        """Delete backups and drop them from the log.

        Deltas built on a deleted backup are deleted with it.

        Returns:
            Number of backups removed.
        """
        doomed = {r.id for r in records}
        known = self._known()
        changed = True
        while changed:
            changed = False
            for r in known:
                if r.id not in doomed and (r.parent_id in doomed or r.base_id in doomed):
                    doomed.add(r.id)
                    changed = True

        removed = [r for r in known if r.id in doomed]
        for r in removed:
            p = Path(r.backup_path)
            if p.is_dir():
                shutil.rmtree(p)
            else:
                p.unlink(missing_ok=True)
        self.forget(removed)
        logger.info("Cleaned up %d backup(s)", len(removed))
        return len(removed)

    # ── Directories ─────────────────────────────────────────────────

    def create_directory_backup(self, path: str | Path) -> BackupRecord:
        """Copy a whole directory tree to a sibling backup directory."""
        target = Path(path)
        if not target.is_dir():
            raise FileNotFoundError(f"Cannot back up missing directory: {target}")

        digest = _tree_digest(target)
        backup_dir = self._reserve_dir(target)
        shutil.copytree(target, backup_dir, dirs_exist_ok=True, symlinks=True)
        shutil.copymode(target, backup_dir)

        record = BackupRecord(
            id=uuid.uuid4().hex[:12],
            timestamp=self._clock().isoformat(),
            backup_type="directory",
            target=str(target),
            backup_path=str(backup_dir),
            checksum=digest,
            original_size=_tree_size(target),
            backup_size=_tree_size(backup_dir),
            mode=target.stat().st_mode & 0o7777,
            status="pending",
        )
        if _tree_digest(backup_dir) != digest:
            self._append(record.model_copy(update={"status": "failed"}))
            shutil.rmtree(backup_dir, ignore_errors=True)
            raise BackupIntegrityError("Directory backup did not verify", path=str(backup_dir))

        record = record.model_copy(update={"status": "completed"})
        self._append(record)
        logger.info("Backed up directory %s → %s", target, backup_dir.name)
        return record

    def restore_directory(self, record: BackupRecord) -> bool:
        """Replace a directory with its backup. The backup is kept."""
        source = Path(record.backup_path)
        target = Path(record.target)
        if not source.is_dir():
            logger.warning("Directory backup %s not found", source)
            return False
        if _tree_digest(source) != record.checksum:
            raise BackupIntegrityError("Directory backup checksum mismatch", path=str(source))

        staging = target.with_name(f".scaffold_restore_{uuid.uuid4().hex[:8]}")
        shutil.copytree(source, staging, symlinks=True)
        retired: Path | None = None
        if target.exists():
            retired = target.with_name(f".scaffold_old_{uuid.uuid4().hex[:8]}")
            target.rename(retired)
        staging.rename(target)
        if retired is not None:
            shutil.rmtree(retired)
        logger.info("Restored directory %s from %s", target, source.name)
        return True

    # ── Configuration snapshots ─────────────────────────────────────

    def create_configuration_backup(self, path: str | Path, config: Mapping[str, Any]) -> BackupRecord:
        """Snapshot a configuration mapping as JSON beside ``path``."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        content = (json.dumps(dict(config), indent=2, sort_keys=True, default=str) + "\n").encode("utf-8")
        backup_path = self._reserve_file(target, "")
        atomic_write(backup_path, content)

        record = BackupRecord(
            id=uuid.uuid4().hex[:12],
            timestamp=self._clock().isoformat(),
            backup_type="configuration",
            target=str(target),
            backup_path=str(backup_path),
            checksum=_sha256(content),
            stored_checksum=_sha256(content),
            original_size=len(content),
            backup_size=len(content),
            status="completed",
        )
        self._append(record)
        return record

    def load_configuration_backup(self, record: BackupRecord) -> dict[str, Any]:
        return json.loads(self.restore_content(record).decode("utf-8"))


# ── Tree helpers ────────────────────────────────────────────────────


def _tree_files(root: Path) -> list[Path]:
    return sorted(p for p in root.rglob("*") if p.is_file() and not p.is_symlink())


def _tree_digest(root: Path) -> str:
    """sha256 over (relative path, content digest) of every regular file."""
    digest = hashlib.sha256()
    for p in _tree_files(root):
        rel = p.relative_to(root).as_posix()
        digest.update(rel.encode("utf-8") + b"\0")
        digest.update(_sha256(p.read_bytes()).encode("ascii") + b"\n")
    return digest.hexdigest()


def _tree_size(root: Path) -> int:
    return sum(p.stat().st_size for p in _tree_files(root))
