"""
Conflict resolver — maps a conflict and a strategy to a terminal action.

Terminal actions:

    overwrite      replace the destination (backed up first when
                   ``create_backups`` is set)
    backup_rename  back up the destination, then replace it
    merge          existing + incoming content between conflict markers
    skip           leave the destination alone

``decide`` picks the action; ``apply`` carries it out.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

from safescaffold.core.errors import ConflictError
from safescaffold.core.models.backup import BackupRecord
from safescaffold.core.models.conflict import Conflict, ResolutionDecision
from safescaffold.core.persistence.atomic_write import atomic_write
from safescaffold.core.services.backup_manager import BackupManager
from safescaffold.core.services.conflict_detector import PROTECTED_CATEGORIES, classify_file

logger = logging.getLogger(__name__)

MERGE_EXISTING = "<<<<<<< existing"
MERGE_SEPARATOR = "======="
MERGE_INCOMING = ">>>>>>> incoming"

# Caller-supplied decision for the "ask" strategy
DecisionCallback = Callable[[Conflict, str], ResolutionDecision | str]

_AUTO_POLICY = {
    "high": "skip",
    "medium": "backup_rename",
    "low": "overwrite",
}

_EXPLICIT = {
    "overwrite": "overwrite",
    "backup": "backup_rename",
    "merge": "merge",
    "skip": "skip",
}


def merge_content(existing: str, incoming: str) -> str:
    """Concatenate both sides between conflict markers. No semantic merge."""
    def _line(text: str) -> str:
        return text if text.endswith("\n") or not text else text + "\n"

    return (
        f"{MERGE_EXISTING}\n"
        f"{_line(existing)}"
        f"{MERGE_SEPARATOR}\n"
        f"{_line(incoming)}"
        f"{MERGE_INCOMING}\n"
    )


def _format_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KiB"
    return f"{size / (1024 * 1024):.1f} MiB"


@dataclass
class Resolution:
    """What ``apply`` did."""

    decision: ResolutionDecision
    written: bool = False
    content: str | None = None
    backup: BackupRecord | None = None


class ConflictResolver:
    """Chooses and executes conflict resolutions.

    Args:
        backup_manager: Used for every backup the resolver makes.
        create_backups: Back up before any modification, not only for
                        ``backup_rename``.
    """

    def __init__(self, backup_manager: BackupManager, create_backups: bool = True) -> None:
        self.backup_manager = backup_manager
        self.create_backups = create_backups

    # ── Describe ────────────────────────────────────────────────────

    def describe(self, conflict: Conflict) -> str:
        """Human-readable summary for interactive prompts."""
        dest = conflict.destination
        lines = [f"Conflict at {dest.path} (severity: {conflict.severity})"]
        if conflict.conflict_type == "directory_exists":
            lines.append("  A directory exists where a file would be written.")
            return "\n".join(lines)

        modified = (
            datetime.fromtimestamp(dest.modified, UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
            if dest.modified is not None else "unknown"
        )
        lines.append(f"  existing: {_format_size(dest.size)}, modified {modified}")
        lines.append(f"  incoming: {_format_size(conflict.source.size)}")
        if conflict.identical:
            lines.append("  contents are identical")
        return "\n".join(lines)

    # ── Decide ──────────────────────────────────────────────────────

    def auto_strategy(self, conflict: Conflict) -> str:
        return _AUTO_POLICY[conflict.severity]

    def intelligent_strategy(self, conflict: Conflict) -> str:
        """Auto policy, but never silently overwrite recognizable content."""
        strategy = self.auto_strategy(conflict)
        if strategy == "skip":
            return strategy
        src_ext = Path(conflict.source.path).suffix.lower()
        dest_ext = Path(conflict.destination.path).suffix.lower()
        if src_ext != dest_ext:
            return "backup_rename"
        if (
            classify_file(conflict.source.path) in PROTECTED_CATEGORIES
            or classify_file(conflict.destination.path) in PROTECTED_CATEGORIES
        ):
            return "backup_rename"
        return strategy

    def decide(
        self,
        conflict: Conflict,
        strategy: str,
        callback: DecisionCallback | None = None,
    ) -> ResolutionDecision:
        """Choose an action for ``conflict`` under ``strategy``.

        Raises:
            ConflictError: ``ask`` without a callback.
        """
        if conflict.conflict_type == "directory_exists":
            return ResolutionDecision(
                strategy="skip",
                reason="A directory exists at the destination",
            )

        if strategy == "ask":
            if callback is None:
                raise ConflictError(
                    f"Conflict at {conflict.path} needs a decision",
                    path=conflict.path,
                    severity=conflict.severity,
                )
            answer = callback(conflict, self.describe(conflict))
            if isinstance(answer, str):
                chosen = _EXPLICIT.get(answer, answer)
                answer = ResolutionDecision(strategy=chosen, reason="Chosen interactively")
            return answer.model_copy(update={"user_confirmed": True})

        if strategy == "auto":
            chosen = self.auto_strategy(conflict)
            return ResolutionDecision(
                strategy=chosen, reason=f"Automatic policy for {conflict.severity} severity",
            )
        if strategy == "intelligent":
            chosen = self.intelligent_strategy(conflict)
            return ResolutionDecision(
                strategy=chosen, reason=f"Content-aware policy for {conflict.severity} severity",
            )
        if strategy in _EXPLICIT:
            return ResolutionDecision(strategy=_EXPLICIT[strategy], reason=f"Strategy '{strategy}'")

        raise ValueError(f"Unknown conflict strategy: {strategy!r}")

    # ── Apply ───────────────────────────────────────────────────────

    def apply(
        self,
        conflict: Conflict,
        decision: ResolutionDecision,
        content: str,
        mode: int | None = None,
    ) -> Resolution:
        """Execute ``decision`` against the destination.

        Backs up first when the action is ``backup_rename`` or backups are
        on. A failed backup raises BackupIntegrityError before the
        destination is touched.

        Raises:
            ConflictError: Merge requested but the existing file is binary.
            BackupIntegrityError: The backup did not verify.
        """
        dest = Path(conflict.destination.path)

        if decision.strategy == "skip":
            logger.info("Skipping %s: %s", dest, decision.reason)
            return Resolution(decision=decision)

        final = content
        if decision.strategy == "merge":
            try:
                existing = dest.read_text(encoding="utf-8")
            except UnicodeDecodeError as e:
                raise ConflictError(
                    f"Cannot merge binary file {dest}", path=str(dest),
                ) from e
            final = merge_content(existing, content)

        backup: BackupRecord | None = None
        if decision.strategy == "backup_rename" or self.create_backups:
            backup = self.backup_manager.create_backup(dest)
            decision = decision.model_copy(update={"backup_path": backup.backup_path})

        atomic_write(dest, final, mode=mode)
        logger.info("Resolved %s with %s", dest, decision.strategy)
        return Resolution(decision=decision, written=True, content=final, backup=backup)
