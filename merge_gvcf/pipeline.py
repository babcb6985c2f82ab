"""Parallel merging of batches with strictly ordered output.

Batches come out of :class:`~merge_gvcf.partition.BatchPartitioner` one at a
time and in genomic order. Each one is submitted to a ``concurrent.futures``
executor, and its future is handed to a single writer thread through a
bounded queue. The writer waits on the futures in submission order, so the
output order is the batch order whatever the order in which workers finish.

The bounded queue is the backpressure: when ``max_pending`` batches are
merged or being merged but not yet written, the submitter blocks instead of
reading more input. Any failure aborts the whole run, nothing is retried.
"""

from __future__ import annotations

import concurrent.futures
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Callable, Iterable, Optional, Sequence, Tuple

from .filtering import DEFAULT_REJECTED_FILTERS
from .logging_utils import (
    ConsistencyError,
    MergeConflictError,
    MergeVCFError,
    handle_critical_error,
    log_message,
)
from .merging import merge_batch
from .partition import DEFAULT_BATCH_SIZE, Batch, BatchPartitioner, StreamCursor

DEFAULT_JOBS = 16
# Adjust the batch size so that one round of batches (one per worker) takes
# between 5 and 30 minutes.
DEFAULT_BATCH_TIME_WINDOW: Tuple[float, float] = (300.0, 1800.0)
MAX_BATCH_SIZE = 1_000_000
PROGRESS_INTERVAL = 10

_DONE = object()


@dataclass
class MergeOptions:
    """Runtime knobs of a merge."""

    jobs: int = DEFAULT_JOBS
    batch_size: Optional[int] = None
    """Fixed batch size; ``None`` enables the adaptive strategy."""
    initial_batch_size: int = DEFAULT_BATCH_SIZE
    batch_time_window: Tuple[float, float] = DEFAULT_BATCH_TIME_WINDOW
    rejected_filters: Sequence[str] = field(default_factory=lambda: DEFAULT_REJECTED_FILTERS)
    use_threads: bool = False
    max_pending: Optional[int] = None

    @property
    def adaptive(self) -> bool:
        return self.batch_size is None


class AdaptiveBatchSizer:
    """Tune the batch size from the wall-clock time of each round of batches.

    Every ``interval`` batches the time elapsed since the previous round is
    compared to the ``(low, high)`` window: faster rounds scale the size up
    by ``1.2 * low / elapsed``, slower ones scale it down by
    ``high / (1.2 * elapsed)``. The first round is only a warm-up.
    """

    def __init__(
        self,
        batch_size: int,
        interval: int,
        window: Tuple[float, float] = DEFAULT_BATCH_TIME_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        low, high = window
        if low <= 0 or high < low:
            raise ValueError(f"invalid batch time window: {window}")
        self.batch_size = batch_size
        self.interval = max(1, interval)
        self.low = low
        self.high = high
        self._clock = clock
        self._last = clock()

    def observe(self, batch_index: int) -> int:
        """Record that batch *batch_index* was submitted; return the batch size to use next."""
        if batch_index % self.interval:
            return self.batch_size
        now = self._clock()
        elapsed = max(now - self._last, 1e-3)
        self._last = now
        if batch_index == self.interval:
            return self.batch_size

        if elapsed < self.low:
            self.batch_size = min(MAX_BATCH_SIZE, int(1.2 * self.batch_size * self.low / elapsed))
            log_message(f"Batch {batch_index}: adjusting batch size up to {self.batch_size}")
        elif elapsed > self.high:
            self.batch_size = max(1, int(self.batch_size * self.high / elapsed / 1.2))
            log_message(f"Batch {batch_index}: adjusting batch size down to {self.batch_size}")
        return self.batch_size


class _OrderedWriter(threading.Thread):
    """Write batch results in submission order."""

    def __init__(self, handoff: "queue.Queue", write: Callable[[str], None]) -> None:
        super().__init__(name="gvcf-merge-writer", daemon=True)
        self._handoff = handoff
        self._write = write
        self.error: Optional[Tuple[int, BaseException]] = None
        self.cancelled = False
        self.written = 0

    def run(self) -> None:
        while True:
            item = self._handoff.get()
            if item is _DONE:
                return
            index, future = item
            if self.error is not None or self.cancelled:
                future.cancel()
                continue
            try:
                self._write(future.result())
            except BaseException as exc:  # reported by MergePipeline.run
                self.error = (index, exc)
                continue
            self.written += 1
            if self.written % PROGRESS_INTERVAL == 0:
                log_message(f"Done writing results from batch {index}")


class MergePipeline:
    """Merge batches on a worker pool and write the results in batch order."""

    def __init__(
        self,
        jobs: int = DEFAULT_JOBS,
        *,
        max_pending: Optional[int] = None,
        use_threads: bool = False,
        executor_factory: Optional[Callable[..., concurrent.futures.Executor]] = None,
    ) -> None:
        if jobs < 1:
            raise ValueError(f"jobs must be a positive integer, got {jobs}")
        self.jobs = jobs
        self.max_pending = max_pending or 2 * jobs
        if executor_factory is None:
            executor_factory = (
                concurrent.futures.ThreadPoolExecutor
                if use_threads
                else concurrent.futures.ProcessPoolExecutor
            )
        self._executor_factory = executor_factory

    def run(
        self,
        batches: Iterable[Batch],
        merge: Callable[[Batch], str],
        write: Callable[[str], None],
        on_submit: Optional[Callable[[Batch], None]] = None,
    ) -> int:
        """Merge every batch with *merge* and pass the results to *write* in order.

        Returns the number of batches written.
        """
        handoff: "queue.Queue" = queue.Queue(maxsize=self.max_pending)
        writer = _OrderedWriter(handoff, write)
        writer.start()

        submitted = 0
        with self._executor_factory(max_workers=self.jobs) as executor:
            try:
                for batch in batches:
                    if writer.error is not None:
                        break
                    handoff.put((batch.index, executor.submit(merge, batch)))
                    submitted += 1
                    if on_submit is not None:
                        on_submit(batch)
            except BaseException:
                writer.cancelled = True
                raise
            finally:
                handoff.put(_DONE)
                writer.join()

        if writer.error is not None:
            index, exc = writer.error
            if isinstance(exc, MergeVCFError):
                log_message(f"Aborting merge, batch {index} failed: {exc}", level=logging.ERROR)
                raise exc
            handle_critical_error(
                f"Merging batch {index} failed: {exc}",
                exc_cls=MergeConflictError,
                exc_info=exc,
            )
        log_message(f"Wrote {writer.written} of {submitted} batches", level=logging.DEBUG)
        return writer.written


def merge_streams(
    cursors: Sequence[StreamCursor],
    roster: Sequence[int],
    write: Callable[[str], None],
    options: Optional[MergeOptions] = None,
) -> int:
    """Merge the body of every cursor and write the merged lines in order.

    Returns the number of batches merged.
    """
    options = options or MergeOptions()
    roster = tuple(roster)
    if len(roster) != len(cursors):
        handle_critical_error(
            f"Sample roster has {len(roster)} entries for {len(cursors)} input streams",
            exc_cls=ConsistencyError,
        )

    partitioner = BatchPartitioner(cursors, batch_size=options.batch_size or options.initial_batch_size)
    sizer = None
    if options.adaptive:
        sizer = AdaptiveBatchSizer(
            partitioner.batch_size,
            interval=options.jobs,
            window=options.batch_time_window,
        )

    def _on_submit(batch: Batch) -> None:
        if sizer is not None:
            partitioner.batch_size = sizer.observe(batch.index)

    pipeline = MergePipeline(
        options.jobs,
        max_pending=options.max_pending,
        use_threads=options.use_threads,
    )
    log_message(
        f"Merging {len(cursors)} input(s) with {sum(roster)} sample(s) using {options.jobs} worker(s), "
        + (
            f"adaptive batch size starting at {partitioner.batch_size}"
            if sizer is not None
            else f"batch size {partitioner.batch_size}"
        )
    )
    return pipeline.run(
        partitioner.iter_batches(),
        partial(merge_batch, roster=roster),
        write,
        on_submit=_on_submit,
    )


__all__ = [
    "DEFAULT_JOBS",
    "DEFAULT_BATCH_TIME_WINDOW",
    "MAX_BATCH_SIZE",
    "AdaptiveBatchSizer",
    "MergeOptions",
    "MergePipeline",
    "merge_streams",
]
