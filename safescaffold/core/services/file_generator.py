"""
File generation pipeline — templates in, files on disk, nothing lost.

A run has three phases:

    1. Plan        evaluate conditions, render path and content, resolve the
                   destination. Failures here are per-file.
    2. Pre-flight  reject duplicate destinations, then check disk space and
                   permissions. Failures here abort the run before any write.
    3. Execute     per file, in parallel: detect a conflict, resolve it
                   (backing up as needed), write atomically.

Per-file errors never abort the run; they are collected into
``GenerationResult.errors``. Undoing a run is a separate, explicit call
to ``rollback_generation``.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from safescaffold.core.errors import InsufficientPermissionError, ScaffoldError, ValidationError
from safescaffold.core.models.backup import BackupRecord, RollbackResult
from safescaffold.core.models.conflict import Conflict
from safescaffold.core.models.options import GenerationOptions
from safescaffold.core.models.result import (
    DirectoryResult,
    GeneratedFile,
    GenerationError,
    GenerationResult,
    GenerationSummary,
    PreviewFile,
    PreviewResult,
)
from safescaffold.core.models.template import TemplateDefinition, TemplateFileDefinition
from safescaffold.core.persistence.atomic_write import atomic_write
from safescaffold.core.services.backup_manager import BackupManager
from safescaffold.core.services.conflict_detector import ConflictDetector, checksum_bytes, checksum_file
from safescaffold.core.services.conflict_resolver import ConflictResolver, DecisionCallback
from safescaffold.core.services.parallel_processor import ParallelProcessor
from safescaffold.core.services.path_resolver import PathResolver, to_native
from safescaffold.core.services.safety_checks import run_preflight
from safescaffold.core.services.template_renderer import TemplateRenderer

logger = logging.getLogger(__name__)

_ACTION_FOR = {
    "overwrite": "overwritten",
    "backup_rename": "backed_up",
    "merge": "merged",
}


def effective_strategy(file_overwrite: bool, options: GenerationOptions) -> str:
    """Strategy for one file: force > overwrite flags > conflict_strategy."""
    if options.force:
        return "overwrite"
    if file_overwrite or options.overwrite:
        return "backup" if options.create_backups else "overwrite"
    return options.conflict_strategy


def _error_for(path: str, exc: Exception) -> GenerationError:
    if isinstance(exc, ScaffoldError):
        return GenerationError(path=path, error_type=exc.error_type, message=exc.message)
    return GenerationError(path=path, error_type="io", message=str(exc))


def _serialize(callback: DecisionCallback) -> DecisionCallback:
    """One interactive decision at a time across worker threads."""
    lock = threading.Lock()

    def decide(conflict: Conflict, description: str):
        with lock:
            return callback(conflict, description)

    return decide


# ── Internal records ────────────────────────────────────────────────


@dataclass
class _Planned:
    index: int
    definition: TemplateFileDefinition
    resolved: str          # absolute, forward slashes
    relative: str
    content: str

    @property
    def native(self) -> str:
        return to_native(self.resolved)


@dataclass
class _Outcome:
    index: int
    status: Literal["written", "skipped", "failed"]
    file: GeneratedFile | None = None
    conflict: Conflict | None = None
    backup: BackupRecord | None = None
    warning: str | None = None
    error: GenerationError | None = None


@dataclass
class _Plan:
    planned: list[_Planned] = field(default_factory=list)
    outcomes: list[_Outcome] = field(default_factory=list)   # decided during planning


# ═══════════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════════


class FileGenerationPipeline:
    """Orchestrates rendering, conflict handling, backups and writes.

    Args:
        renderer: Shared renderer (and its cache).
        backup_manager: Undo log for runs. Created from the first run's
                        ``options.backup`` when None.
        processor: Worker pool. Sized from ``options.max_workers`` per run.
    """

    def __init__(
        self,
        renderer: TemplateRenderer | None = None,
        backup_manager: BackupManager | None = None,
        processor: ParallelProcessor | None = None,
    ) -> None:
        self.renderer = renderer or TemplateRenderer()
        self.backup_manager = backup_manager
        self.processor = processor or ParallelProcessor()
        self.detector = ConflictDetector()
        self.path_resolver = PathResolver(self.renderer)

    def _manager(self, options: GenerationOptions) -> BackupManager:
        if self.backup_manager is None:
            self.backup_manager = BackupManager(options.backup)
        return self.backup_manager

    # ── Plan ────────────────────────────────────────────────────────

    def _plan(
        self,
        files: Sequence[TemplateFileDefinition],
        variables: dict[str, Any],
        options: GenerationOptions,
    ) -> _Plan:
        plan = _Plan()
        resolver = PathResolver(self.renderer, validate_paths=options.validate_paths)

        for index, definition in enumerate(files):
            try:
                if definition.condition and not self.renderer.evaluate_condition(
                    definition.condition, variables,
                ):
                    msg = f"Skipped {definition.path}: condition '{definition.condition}' is false"
                    logger.info(msg)
                    plan.outcomes.append(_Outcome(index=index, status="skipped", warning=msg))
                    continue

                resolved = resolver.resolve(options.output_dir, definition.path, variables)
                content = self.renderer.render_string(definition.content, variables)
            except ScaffoldError as e:
                logger.warning("Cannot plan %s: %s", definition.path, e.message)
                plan.outcomes.append(
                    _Outcome(index=index, status="failed", error=_error_for(definition.path, e)),
                )
                continue

            plan.planned.append(_Planned(
                index=index,
                definition=definition,
                resolved=resolved,
                relative=resolver.relative(options.output_dir, resolved),
                content=content,
            ))

        dupes = [p for p, n in Counter(p.resolved for p in plan.planned).items() if n > 1]
        if dupes:
            raise ValidationError(
                f"Multiple files resolve to the same destination: {', '.join(sorted(dupes))}",
                paths=sorted(dupes),
            )
        return plan

    def _estimate_bytes(self, plan: _Plan, options: GenerationOptions) -> int:
        total = 0
        for p in plan.planned:
            total += len(p.content.encode("utf-8"))
            dest = Path(p.native)
            if options.create_backups and dest.is_file():
                total += dest.stat().st_size
        return total

    # ── Execute ─────────────────────────────────────────────────────

    def _execute_one(
        self,
        planned: _Planned,
        options: GenerationOptions,
        resolver: ConflictResolver,
        decide: DecisionCallback | None,
    ) -> _Outcome:
        mode = planned.definition.mode
        conflict: Conflict | None = None
        try:
            self.path_resolver.ensure_real_path(options.output_dir, planned.resolved)
            conflict = self.detector.detect(planned.content, planned.native, mode)

            if conflict is None:
                size = atomic_write(Path(planned.native), planned.content, mode=mode)
                return _Outcome(
                    index=planned.index,
                    status="written",
                    file=self._generated(planned, planned.content, size, "created"),
                )

            strategy = effective_strategy(planned.definition.overwrite, options)
            decision = resolver.decide(conflict, strategy, decide)
            resolution = resolver.apply(conflict, decision, planned.content, mode)
        except (ScaffoldError, OSError) as e:
            logger.warning("Failed to generate %s: %s", planned.relative, e)
            return _Outcome(
                index=planned.index,
                status="failed",
                conflict=conflict,
                error=_error_for(planned.relative, e),
            )

        if not resolution.written:
            msg = f"Skipped {planned.relative}: {resolution.decision.reason}"
            logger.warning(msg)
            return _Outcome(index=planned.index, status="skipped", conflict=conflict, warning=msg)

        content = resolution.content or ""
        generated = self._generated(
            planned,
            content,
            len(content.encode("utf-8")),
            _ACTION_FOR[resolution.decision.strategy],
            backup_path=resolution.decision.backup_path,
        )
        return _Outcome(
            index=planned.index,
            status="written",
            file=generated,
            conflict=conflict,
            backup=resolution.backup,
        )

    def _generated(
        self,
        planned: _Planned,
        content: str,
        size: int,
        action: str,
        backup_path: str | None = None,
    ) -> GeneratedFile:
        return GeneratedFile(
            path=planned.native,
            relative_path=planned.relative,
            content=content,
            overwritten=action != "created",
            backup_path=backup_path,
            size=size,
            checksum=checksum_bytes(content.encode("utf-8")),
            permissions=planned.definition.mode,
            action=action,
        )

    # ═══════════════════════════════════════════════════════════════
    # Public operations
    # ═══════════════════════════════════════════════════════════════

    def generate_files(
        self,
        files: Sequence[TemplateFileDefinition],
        variables: dict[str, Any],
        options: GenerationOptions,
        *,
        cancel_event: threading.Event | None = None,
        decide: DecisionCallback | None = None,
    ) -> GenerationResult:
        """Materialize ``files`` under ``options.output_dir``.

        Raises:
            ValidationError: Two files resolve to the same destination.
            DiskSpaceError: Not enough room on the target volume.
            InsufficientPermissionError: The output directory is not writable.
        """
        start = time.monotonic()

        if options.dry_run:
            preview, condition_skips = self._preview(files, variables, options, decide, preflight_raises=True)
            result = self._result_from_preview(preview, len(files), condition_skips)
            result.duration_ms = int((time.monotonic() - start) * 1000)
            return result

        plan = self._plan(files, variables, options)
        run_preflight(options.output_dir, self._estimate_bytes(plan, options))

        result = self._execute(plan, len(files), options, cancel_event, decide)
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result

    def _execute(
        self,
        plan: _Plan,
        total: int,
        options: GenerationOptions,
        cancel_event: threading.Event | None,
        decide: DecisionCallback | None,
    ) -> GenerationResult:
        manager = self._manager(options)
        resolver = ConflictResolver(manager, create_backups=options.create_backups)
        serialized = _serialize(decide) if decide is not None else None

        logger.info(
            "Generating %d file(s) into %s (strategy=%s, workers=%d)",
            len(plan.planned), options.output_dir, options.conflict_strategy, options.workers,
        )

        self.processor.configure(options.workers)
        report = self.processor.process(
            plan.planned,
            lambda p: self._execute_one(p, options, resolver, serialized),
            cancel_event=cancel_event,
        )

        outcomes = list(plan.outcomes)
        for planned, processed in zip(plan.planned, report.results):
            if processed.cancelled:
                msg = f"Skipped {planned.relative}: cancelled before start"
                logger.warning(msg)
                outcomes.append(_Outcome(index=planned.index, status="skipped", warning=msg))
            elif processed.error is not None:
                outcomes.append(_Outcome(
                    index=planned.index,
                    status="failed",
                    error=_error_for(planned.relative, processed.error),
                ))
            else:
                outcomes.append(processed.result)

        result = self._assemble(outcomes, total)
        logger.info(
            "Generation finished: %d created, %d updated, %d skipped, %d failed",
            result.summary.created_files, result.summary.updated_files,
            result.summary.skipped_files, result.summary.failed_files,
        )
        return result

    def _assemble(self, outcomes: list[_Outcome], total: int) -> GenerationResult:
        result = GenerationResult(summary=GenerationSummary(total_files=total))
        for outcome in sorted(outcomes, key=lambda o: o.index):
            if outcome.conflict is not None:
                result.conflicts.append(outcome.conflict)
            if outcome.warning:
                result.warnings.append(outcome.warning)
            if outcome.backup is not None:
                result.backups.append(outcome.backup)

            if outcome.status == "failed" and outcome.error is not None:
                result.errors.append(outcome.error)
                result.summary.failed_files += 1
            elif outcome.status == "skipped":
                result.summary.skipped_files += 1
            elif outcome.file is not None:
                result.files.append(outcome.file)
                if outcome.file.action == "created":
                    result.summary.created_files += 1
                else:
                    result.summary.updated_files += 1

        result.success = not result.errors
        return result

    # ── Preview ─────────────────────────────────────────────────────

    def preview_generation(
        self,
        files: Sequence[TemplateFileDefinition],
        variables: dict[str, Any],
        options: GenerationOptions,
        *,
        decide: DecisionCallback | None = None,
    ) -> PreviewResult:
        """Everything ``generate_files`` would do, with zero side effects.

        Pre-flight failures are reported in ``errors`` rather than raised.

        Raises:
            ValidationError: Two files resolve to the same destination.
        """
        preview, _ = self._preview(files, variables, options, decide, preflight_raises=False)
        return preview

    def _preview(
        self,
        files: Sequence[TemplateFileDefinition],
        variables: dict[str, Any],
        options: GenerationOptions,
        decide: DecisionCallback | None,
        preflight_raises: bool,
    ) -> tuple[PreviewResult, int]:
        plan = self._plan(files, variables, options)
        preview = PreviewResult()

        try:
            run_preflight(options.output_dir, self._estimate_bytes(plan, options), dry_run=True)
        except ScaffoldError as e:
            if preflight_raises:
                raise
            preview.errors.append(_error_for(options.output_dir, e))

        resolver = ConflictResolver(self._manager(options), create_backups=options.create_backups)
        condition_skips = 0

        for outcome in sorted(plan.outcomes, key=lambda o: o.index):
            if outcome.warning:
                preview.warnings.append(outcome.warning)
            if outcome.status == "skipped":
                condition_skips += 1
            if outcome.error is not None:
                preview.errors.append(outcome.error)

        for planned in plan.planned:
            try:
                self.path_resolver.ensure_real_path(options.output_dir, planned.resolved)
                conflict = self.detector.detect(planned.content, planned.native, planned.definition.mode)
            except (ScaffoldError, OSError) as e:
                preview.errors.append(_error_for(planned.relative, e))
                continue

            if conflict is None:
                preview.files.append(PreviewFile(
                    path=planned.native,
                    relative_path=planned.relative,
                    content=planned.content,
                    would_create=True,
                    action="create",
                ))
                continue

            preview.conflicts.append(conflict)
            strategy = effective_strategy(planned.definition.overwrite, options)
            if strategy == "ask" and decide is None:
                action = "ask"
            else:
                try:
                    action = resolver.decide(conflict, strategy, decide).strategy
                except ScaffoldError as e:
                    preview.errors.append(_error_for(planned.relative, e))
                    continue

            if action == "skip":
                preview.warnings.append(f"Would skip {planned.relative}: destination exists")
            preview.files.append(PreviewFile(
                path=planned.native,
                relative_path=planned.relative,
                content=planned.content,
                would_overwrite=action not in ("skip", "ask"),
                action=action,
            ))

        return preview, condition_skips

    def _result_from_preview(self, preview: PreviewResult, total: int, condition_skips: int) -> GenerationResult:
        result = GenerationResult(
            dry_run=True,
            conflicts=list(preview.conflicts),
            errors=list(preview.errors),
            warnings=list(preview.warnings),
            summary=GenerationSummary(total_files=total, skipped_files=condition_skips),
        )
        for pf in preview.files:
            if pf.action in ("skip", "ask"):
                result.summary.skipped_files += 1
                continue
            action = "created" if pf.would_create else _ACTION_FOR.get(pf.action, "overwritten")
            result.files.append(GeneratedFile(
                path=pf.path,
                relative_path=pf.relative_path,
                content=pf.content,
                overwritten=pf.would_overwrite,
                size=len(pf.content.encode("utf-8")),
                checksum=checksum_bytes(pf.content.encode("utf-8")),
                action=action,
            ))
            if pf.would_create:
                result.summary.created_files += 1
            else:
                result.summary.updated_files += 1
        result.summary.failed_files = len(preview.errors)
        result.success = not result.errors
        return result

    # ── Rollback ────────────────────────────────────────────────────

    def rollback_generation(
        self,
        generated_files: Sequence[GeneratedFile],
        options: GenerationOptions,
    ) -> RollbackResult:
        """Undo a run, newest file first.

        Overwritten files are restored from their backups; created files
        are deleted unless they changed since generation. Backups stay on
        disk; their records leave the log once the rollback succeeds.
        """
        start = time.monotonic()
        manager = self._manager(options)
        result = RollbackResult()
        restored_backups: set[str] = set()

        for generated in reversed(list(generated_files)):
            target = Path(generated.path)
            try:
                if generated.overwritten:
                    if not generated.backup_path:
                        raise ScaffoldError(
                            "File was overwritten without a backup; cannot restore",
                            path=generated.path,
                        )
                    if not options.dry_run and not manager.rollback_file(target, generated.backup_path):
                        raise ScaffoldError("Backup file is missing", path=generated.backup_path)
                    restored_backups.add(generated.backup_path)
                elif target.is_file():
                    if generated.checksum and checksum_file(target) != generated.checksum:
                        raise ScaffoldError(
                            "File changed since generation; not deleting", path=generated.path,
                        )
                    if not options.dry_run:
                        target.unlink()
                result.rolled_back.append(generated.path)
            except (ScaffoldError, OSError) as e:
                message = e.message if isinstance(e, ScaffoldError) else str(e)
                logger.warning("Rollback of %s failed: %s", generated.path, message)
                result.failed.append(generated.path)
                result.errors.append(f"{generated.path}: {message}")

        result.success = not result.failed
        if result.success and not options.dry_run:
            manager.forget(r for r in manager.records if r.backup_path in restored_backups)
        result.duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Rolled back %d file(s), %d failed", len(result.rolled_back), len(result.failed))
        return result

    # ── Directories ─────────────────────────────────────────────────

    def _resolve_directories(
        self,
        paths: Sequence[str],
        options: GenerationOptions,
        variables: dict[str, Any],
    ) -> list[str]:
        resolver = PathResolver(self.renderer, validate_paths=options.validate_paths)
        resolved = [resolver.resolve(options.output_dir, p, variables) for p in paths]

        for path in resolved:
            resolver.ensure_real_path(options.output_dir, path)
            native = Path(to_native(path))
            if native.exists() and not native.is_dir():
                raise ValidationError(f"A file exists where a directory is wanted: {path}", path=path)
        return resolved

    def _make_directories(self, resolved: Sequence[str], options: GenerationOptions) -> list[DirectoryResult]:
        results: list[DirectoryResult] = []
        for path in resolved:
            native = Path(to_native(path))
            existing = native.is_dir()
            if not existing and not options.dry_run:
                try:
                    native.mkdir(parents=True, exist_ok=True)
                except PermissionError as e:
                    raise InsufficientPermissionError(
                        f"Cannot create directory {native}: {e.strerror or e}", path=str(native),
                    ) from e
                logger.debug("Created directory %s", native)
            results.append(DirectoryResult(path=str(native), created=not existing, existing=existing))
        return results

    def generate_directories(
        self,
        paths: Sequence[str],
        options: GenerationOptions,
        variables: dict[str, Any] | None = None,
    ) -> list[DirectoryResult]:
        """Create directories under ``output_dir``.

        Every path is validated, and the pre-flight checks run, before any
        directory is created. In a dry run ``created`` reports what would
        be created.

        Raises:
            PathValidationError: A path is unsafe or escapes ``output_dir``.
            ValidationError: A file exists where a directory is wanted.
            DiskSpaceError: Not enough room on the target volume.
            InsufficientPermissionError: The output directory is not writable.
        """
        resolved = self._resolve_directories(paths, options, variables or {})
        run_preflight(options.output_dir, 0, dry_run=options.dry_run)
        return self._make_directories(resolved, options)

    def generate_template(
        self,
        template: TemplateDefinition,
        variables: dict[str, Any],
        options: GenerationOptions,
        *,
        cancel_event: threading.Event | None = None,
        decide: DecisionCallback | None = None,
    ) -> GenerationResult:
        """Directories, then files, of a registry template.

        Directories and files are all validated, and the pre-flight checks
        run once, before anything is created. Caller variables override
        the template's defaults.
        """
        start = time.monotonic()
        merged = {**template.variables, **variables}
        resolved_dirs = self._resolve_directories(template.directories, options, merged)

        if options.dry_run:
            result = self.generate_files(
                template.files, merged, options, cancel_event=cancel_event, decide=decide,
            )
            directories = self._make_directories(resolved_dirs, options)
        else:
            plan = self._plan(template.files, merged, options)
            run_preflight(options.output_dir, self._estimate_bytes(plan, options))
            directories = self._make_directories(resolved_dirs, options)
            result = self._execute(plan, len(template.files), options, cancel_event, decide)

        result.directories = directories
        result.summary.total_directories = len(directories)
        result.summary.created_directories = sum(1 for d in directories if d.created)
        result.summary.skipped_directories = sum(1 for d in directories if d.existing)
        result.duration_ms = int((time.monotonic() - start) * 1000)
        return result
