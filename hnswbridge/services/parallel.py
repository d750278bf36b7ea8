"""Service: fan a row range out across worker threads.

Every call to :meth:`ParallelExecutor.run` spawns its own threads (no
pool is kept between batches).  Workers claim rows one at a time from a
shared cursor, so uneven per-row cost balances itself.  The first
exception raised by any worker stops the batch: the cursor is pushed past
the end, everyone is joined, and a single :class:`WorkerFailure` is
raised on the calling thread.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Callable

from hnswbridge.domain.errors import WorkerFailure

log = logging.getLogger(__name__)

WorkFn = Callable[[int, int], None]


class _FirstError:
    """Write-once cell: only the first recorded failure is kept."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.failure: WorkerFailure | None = None

    def record(self, row: int, slot: int, exc: BaseException) -> bool:
        with self._lock:
            if self.failure is not None:
                return False
            self.failure = WorkerFailure(row, slot, exc)
            return True


class _RowCursor:
    """Shared next-row counter guarded by a lock."""

    def __init__(self, start: int, end: int) -> None:
        self._lock = threading.Lock()
        self._next = start
        self._end = end

    def claim(self) -> int | None:
        with self._lock:
            if self._next >= self._end:
                return None
            row = self._next
            self._next += 1
            return row

    def exhaust(self) -> None:
        with self._lock:
            self._next = self._end


class ParallelExecutor:
    """Run ``work_fn(row, worker_slot)`` once for every row in a range.

    Parameters
    ----------
    small_batch_factor:
        Batches of at most ``num_threads * small_batch_factor`` rows run
        inline on the calling thread as worker slot 0.
    thread_name_prefix:
        Name prefix for spawned worker threads.
    """

    def __init__(
        self,
        small_batch_factor: int = 4,
        thread_name_prefix: str = "hnswbridge-worker",
    ) -> None:
        if small_batch_factor < 0:
            raise ValueError("small_batch_factor must be >= 0")
        self.small_batch_factor = small_batch_factor
        self.thread_name_prefix = thread_name_prefix

    @staticmethod
    def resolve_threads(num_threads: int) -> int:
        """``0`` or negative means every hardware thread."""
        if num_threads <= 0:
            return os.cpu_count() or 1
        return num_threads

    def effective_workers(self, rows: int, num_threads: int) -> int:
        """Worker count :meth:`run` will use for *rows* rows."""
        threads = self.resolve_threads(num_threads)
        if threads == 1 or rows <= threads * self.small_batch_factor:
            return 1
        return threads

    def run(self, start: int, end: int, num_threads: int, work_fn: WorkFn) -> None:
        rows = end - start
        if rows <= 0:
            return

        workers = self.effective_workers(rows, num_threads)
        if workers == 1:
            self._run_inline(start, end, work_fn)
            return

        cursor = _RowCursor(start, end)
        first_error = _FirstError()

        def _worker(slot: int) -> None:
            while True:
                row = cursor.claim()
                if row is None:
                    return
                try:
                    work_fn(row, slot)
                except Exception as exc:
                    if first_error.record(row, slot, exc):
                        log.debug("Row %d failed on worker %d: %s", row, slot, exc)
                    cursor.exhaust()
                    return

        log.debug("Dispatching %d row(s) across %d worker(s)", rows, workers)
        threads = [
            threading.Thread(
                target=_worker,
                args=(slot,),
                name=f"{self.thread_name_prefix}-{slot}",
            )
            for slot in range(workers)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        failure = first_error.failure
        if failure is not None:
            raise failure from failure.cause

    @staticmethod
    def _run_inline(start: int, end: int, work_fn: WorkFn) -> None:
        for row in range(start, end):
            try:
                work_fn(row, 0)
            except Exception as exc:
                raise WorkerFailure(row, 0, exc) from exc
