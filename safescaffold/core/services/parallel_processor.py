"""
Parallel processor — fans independent tasks across a bounded thread pool.

Results come back in input order regardless of completion order. A
cancel event is checked as each task starts; a task that has started
always runs to completion.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from safescaffold.core.models.options import default_max_workers

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class ProcessingResult(Generic[R]):
    """Outcome of one task."""

    index: int
    success: bool = False
    result: R | None = None
    error: BaseException | None = None
    cancelled: bool = False
    duration_ms: float = 0.0


@dataclass
class ProcessingStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    cancelled: int = 0
    duration_ms: int = 0
    workers: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "duration_ms": self.duration_ms,
            "workers": self.workers,
        }


@dataclass
class ProcessingReport(Generic[R]):
    results: list[ProcessingResult[R]] = field(default_factory=list)
    stats: ProcessingStats = field(default_factory=ProcessingStats)


class ParallelProcessor:
    """Bounded worker pool.

    Args:
        max_workers: Pool size. Defaults to min(cpu_count, 8).
    """

    def __init__(self, max_workers: int | None = None) -> None:
        self.max_workers = max_workers or default_max_workers()

    def configure(self, max_workers: int) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.max_workers = max_workers

    def process(
        self,
        items: Sequence[T],
        fn: Callable[[T], R],
        cancel_event: threading.Event | None = None,
    ) -> ProcessingReport[R]:
        """Run ``fn`` over ``items``; results are in input order."""
        start = time.monotonic()
        results: list[ProcessingResult[R] | None] = [None] * len(items)

        def _run(index: int, item: T) -> ProcessingResult[R]:
            if cancel_event is not None and cancel_event.is_set():
                return ProcessingResult(index=index, cancelled=True)
            t0 = time.monotonic()
            try:
                value = fn(item)
            except Exception as e:
                logger.debug("Task %d raised %s", index, e, exc_info=True)
                return ProcessingResult(
                    index=index, error=e, duration_ms=(time.monotonic() - t0) * 1000,
                )
            return ProcessingResult(
                index=index, success=True, result=value,
                duration_ms=(time.monotonic() - t0) * 1000,
            )

        workers = max(1, min(self.max_workers, len(items) or 1))
        if items:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scaffold") as pool:
                futures = {pool.submit(_run, i, item): i for i, item in enumerate(items)}
                for future in as_completed(futures):
                    outcome = future.result()
                    results[outcome.index] = outcome

        ordered = [r for r in results if r is not None]
        stats = ProcessingStats(
            total=len(items),
            succeeded=sum(1 for r in ordered if r.success),
            failed=sum(1 for r in ordered if r.error is not None),
            cancelled=sum(1 for r in ordered if r.cancelled),
            duration_ms=int((time.monotonic() - start) * 1000),
            workers=workers,
        )
        logger.debug(
            "Processed %d task(s) on %d worker(s): %d ok, %d failed, %d cancelled",
            stats.total, workers, stats.succeeded, stats.failed, stats.cancelled,
        )
        return ProcessingReport(results=ordered, stats=stats)
