"""Tests for the row fan-out executor."""

import os
import threading

import pytest

from hnswbridge.domain.errors import WorkerFailure
from hnswbridge.services.parallel import ParallelExecutor


class TestEffectiveWorkers:
    def test_single_thread_is_inline(self):
        assert ParallelExecutor().effective_workers(10_000, 1) == 1

    def test_small_batch_is_inline(self):
        ex = ParallelExecutor(small_batch_factor=4)
        assert ex.effective_workers(32, 8) == 1
        assert ex.effective_workers(33, 8) == 8

    def test_zero_means_all_hardware_threads(self):
        ex = ParallelExecutor(small_batch_factor=0)
        assert ex.effective_workers(10_000, 0) == (os.cpu_count() or 1)
        assert ex.effective_workers(10_000, -5) == (os.cpu_count() or 1)

    def test_negative_factor_rejected(self):
        with pytest.raises(ValueError):
            ParallelExecutor(small_batch_factor=-1)


class TestRun:
    def test_every_row_exactly_once(self):
        seen = []
        lock = threading.Lock()

        def work(row, slot):
            with lock:
                seen.append(row)

        ParallelExecutor().run(0, 1000, 8, work)
        assert sorted(seen) == list(range(1000))

    def test_sub_range(self):
        seen = []
        lock = threading.Lock()

        def work(row, slot):
            with lock:
                seen.append(row)

        ParallelExecutor().run(10, 500, 4, work)
        assert sorted(seen) == list(range(10, 500))

    def test_empty_range_does_nothing(self):
        calls = []
        ParallelExecutor().run(5, 5, 4, lambda row, slot: calls.append(row))
        assert calls == []

    def test_inline_runs_on_calling_thread_with_slot_zero(self):
        caller = threading.get_ident()
        observed = []

        def work(row, slot):
            observed.append((threading.get_ident(), slot))

        ParallelExecutor().run(0, 10, 1, work)
        assert observed == [(caller, 0)] * 10

    def test_worker_slots_within_range(self):
        slots = set()
        lock = threading.Lock()

        def work(row, slot):
            with lock:
                slots.add(slot)

        ParallelExecutor(small_batch_factor=0).run(0, 200, 4, work)
        assert slots <= {0, 1, 2, 3}

    def test_inline_failure_stops_at_failing_row(self):
        seen = []

        def work(row, slot):
            if row == 3:
                raise RuntimeError("boom")
            seen.append(row)

        with pytest.raises(WorkerFailure) as info:
            ParallelExecutor().run(0, 10, 1, work)
        assert seen == [0, 1, 2]
        assert info.value.row == 3
        assert info.value.worker_slot == 0

    def test_first_error_wins(self):
        def work(row, slot):
            raise ValueError(f"row {row}")

        with pytest.raises(WorkerFailure) as info:
            ParallelExecutor(small_batch_factor=0).run(0, 100, 4, work)

        failure = info.value
        assert isinstance(failure.cause, ValueError)
        assert failure.__cause__ is failure.cause
        assert str(failure.cause) == f"row {failure.row}"

    def test_failure_stops_remaining_rows(self):
        started = []
        lock = threading.Lock()

        def work(row, slot):
            with lock:
                started.append(row)
            if row == 0:
                raise RuntimeError("stop")

        with pytest.raises(WorkerFailure):
            ParallelExecutor(small_batch_factor=0).run(0, 1_000_000, 2, work)
        # Rows already claimed finish; the rest are never dispatched.
        assert len(started) < 1_000_000
