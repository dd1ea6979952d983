"""Batch Executor: windowed asyncio fan-out with pacing.

WHY
───
Registry authorities throttle bursts. A batch of fifty lookups must not
become fifty simultaneous requests, and one failing identifier must not
cancel the other forty-nine. Items run in fixed-size windows, each window
fully concurrent, with a pacing delay between windows. Every item settles
to exactly one ``Ok`` or ``Err``.

ARCHITECTURE
────────────
::

    BatchExecutor(concurrency=5, pacing_delay=0.5)
      └── .run(items, handler)
            ├── dedupe items (first occurrence wins the slot)
            ├── windows = [items[0:5], items[5:10], ...]
            ├── per window: asyncio.gather(handler(item) ...)  ─ settle all
            ├── sleep(pacing_delay) between windows, not after the last
            └── BatchReport ─ results {item: Ok | Err}, window sizes, counts

Example::

    batch = BatchExecutor(concurrency=5, pacing_delay=0.5)
    report = await batch.run(identifiers, orchestrator.lookup)
    print(report.succeeded, report.failed)  # 11 1
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Hashable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from tether.core.logging import get_logger
from tether.core.result import Err, Result, try_result_async

logger = get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class BatchReport(Generic[K, V]):
    """Aggregate result of running a batch.

    ``results`` preserves input order and has exactly one entry per
    distinct input item.
    """

    batch_id: str
    results: dict[K, Result[V]]
    windows: list[int]
    started_at: datetime
    completed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results.values() if r.is_ok())

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results.values() if r.is_err())

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def duration_seconds(self) -> float:
        return (self.completed_at - self.started_at).total_seconds()

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[K]:
        return iter(self.results)

    def __getitem__(self, key: K) -> Result[V]:
        return self.results[key]

    def to_dict(self) -> dict[str, Any]:
        """Serialise for logging / API responses."""
        return {
            "batch_id": self.batch_id,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "windows": self.windows,
            "duration_seconds": self.duration_seconds,
            "results": {str(key): result.to_dict() for key, result in self.results.items()},
        }


class BatchExecutor:
    """Windowed batch executor with settle-all semantics.

    Parameters
    ----------
    concurrency : int
        Window size: how many items run at once (default 5).
    pacing_delay : float
        Seconds to wait between windows (default 0.5).
    sleep : callable
        Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        concurrency: int = 5,
        pacing_delay: float = 0.5,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._concurrency = concurrency
        self._pacing_delay = pacing_delay
        self._sleep = sleep

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def pacing_delay(self) -> float:
        return self._pacing_delay

    # ── Execution ────────────────────────────────────────────────────

    async def run(
        self,
        items: Iterable[K],
        handler: Callable[[K], Awaitable[V]],
        concurrency: int | None = None,
    ) -> BatchReport[K, V]:
        """Run ``handler`` for every distinct item.

        Args:
            items: Input keys; duplicates are processed once.
            handler: Async callable ``(item) -> value``.
            concurrency: Per-call override of the window size.

        Returns:
            :class:`BatchReport` with one ``Ok``/``Err`` per distinct item.
        """
        size = concurrency or self._concurrency
        if size < 1:
            raise ValueError("concurrency must be >= 1")
        unique = list(dict.fromkeys(items))
        batch_id = str(uuid.uuid4())
        started_at = datetime.now(UTC)

        logger.info(
            "batch.start",
            batch_id=batch_id,
            items=len(unique),
            concurrency=size,
            pacing_delay=self._pacing_delay,
        )

        async def _run_one(item: K) -> Result[V]:
            outcome = await try_result_async(lambda: handler(item))
            if isinstance(outcome, Err):
                logger.warning(
                    "batch.item_failed",
                    batch_id=batch_id,
                    item=str(item),
                    error_type=type(outcome.error).__name__,
                    error=str(outcome.error),
                )
            return outcome

        results: dict[K, Result[V]] = {}
        windows: list[int] = []
        for start in range(0, len(unique), size):
            if start:
                await self._sleep(self._pacing_delay)
            window = unique[start : start + size]
            windows.append(len(window))
            outcomes = await asyncio.gather(*[_run_one(item) for item in window])
            results.update(zip(window, outcomes, strict=True))

        report = BatchReport(
            batch_id=batch_id,
            results=results,
            windows=windows,
            started_at=started_at,
        )

        logger.info(
            "batch.complete",
            batch_id=batch_id,
            succeeded=report.succeeded,
            failed=report.failed,
            windows=len(windows),
            duration_seconds=report.duration_seconds,
        )
        return report


__all__ = ["BatchExecutor", "BatchReport"]
