"""Service: flat-buffer batch marshalling.

Turns a caller's flat ``rows * dim`` float buffer into per-row views,
fans the rows out through a :class:`ParallelExecutor`, and for searches
fills a pre-sized row-major :class:`ResultBuffer`.  Cosine handles get
each row normalised into a worker-local scratch slot first, so the
caller's buffer is never written to.
"""

from __future__ import annotations

import logging
from numbers import Integral
from typing import TYPE_CHECKING, Sequence

import numpy as np

from hnswbridge.domain.errors import (
    AllocationFailure,
    BatchShapeError,
    InsufficientCandidatesError,
)
from hnswbridge.domain.models import ResultBuffer
from hnswbridge.services.parallel import ParallelExecutor

if TYPE_CHECKING:
    from hnswbridge.services.index_handle import IndexHandle

log = logging.getLogger(__name__)

# Added to the norm so an all-zero row stays all-zero instead of NaN.
NORM_EPSILON = 1e-30


def normalize_into(vec: np.ndarray, out: np.ndarray) -> np.ndarray:
    """Write ``vec / (||vec|| + eps)`` into *out* and return it."""
    norm = np.sqrt(np.dot(vec, vec))
    np.divide(vec, norm + NORM_EPSILON, out=out)
    return out


def _check_rows(rows: int) -> int:
    if isinstance(rows, bool) or not isinstance(rows, Integral) or rows < 0:
        raise BatchShapeError(f"rows must be a non-negative integer, got {rows!r}")
    return int(rows)


def as_row_matrix(flat_vectors: Sequence[float] | np.ndarray, rows: int, dim: int) -> np.ndarray:
    """View a flat buffer as a ``(rows, dim)`` float32 matrix."""
    rows = _check_rows(rows)
    data = np.asarray(flat_vectors, dtype=np.float32).reshape(-1)
    if data.size != rows * dim:
        raise BatchShapeError(
            f"flat buffer holds {data.size} floats; {rows} row(s) of dim {dim} "
            f"need {rows * dim}"
        )
    return data.reshape(rows, dim)


def as_labels(labels: Sequence[int] | np.ndarray, rows: int) -> np.ndarray:
    """Validate one unsigned 64-bit label per row."""
    ids = np.asarray(labels).reshape(-1)
    if ids.size != rows:
        raise BatchShapeError(f"got {ids.size} label(s) for {rows} row(s)")
    if ids.size == 0:
        return ids.astype(np.uint64)
    if ids.dtype.kind not in "iu":
        raise BatchShapeError(f"labels must be integers, got dtype {ids.dtype}")
    if ids.dtype.kind == "i" and (ids < 0).any():
        raise BatchShapeError("labels must be non-negative")
    return ids.astype(np.uint64)


class BatchMarshaller:
    """Batch insert and search over one :class:`IndexHandle`."""

    def __init__(self, handle: "IndexHandle", executor: ParallelExecutor | None = None) -> None:
        self._handle = handle
        self._executor = executor or ParallelExecutor()

    def _scratch(self, rows: int, num_threads: int) -> np.ndarray | None:
        if not self._handle.normalize:
            return None
        workers = self._executor.effective_workers(rows, num_threads)
        return np.empty((workers, self._handle.dim), dtype=np.float32)

    # ── insert ──

    def add_points(
        self,
        flat_vectors: Sequence[float] | np.ndarray,
        rows: int,
        labels: Sequence[int] | np.ndarray,
        num_threads: int = 0,
        replace_deleted: bool = False,
    ) -> None:
        engine = self._handle.engine
        data = as_row_matrix(flat_vectors, rows, self._handle.dim)
        ids = as_labels(labels, data.shape[0])
        rows = data.shape[0]
        if rows == 0:
            return

        scratch = self._scratch(rows, num_threads)

        def _insert(row: int, slot: int) -> None:
            vec = data[row]
            if scratch is not None:
                vec = normalize_into(vec, scratch[slot])
            engine.insert(vec, int(ids[row]), replace_deleted)

        log.debug("Inserting %d row(s) (replace_deleted=%s)", rows, replace_deleted)
        self._executor.run(0, rows, num_threads, _insert)

    # ── search ──

    def search_knn(
        self,
        flat_vectors: Sequence[float] | np.ndarray,
        rows: int,
        k: int,
        num_threads: int = 0,
    ) -> ResultBuffer:
        engine = self._handle.engine
        if isinstance(k, bool) or not isinstance(k, Integral) or k <= 0:
            raise BatchShapeError(f"k must be a positive integer, got {k!r}")
        k = int(k)
        data = as_row_matrix(flat_vectors, rows, self._handle.dim)
        rows = data.shape[0]
        if rows == 0:
            return ResultBuffer.empty(k)

        available = engine.current_count
        if k > available:
            raise InsufficientCandidatesError(k, available)

        try:
            out_labels = np.empty(rows * k, dtype=np.uint64)
            out_distances = np.empty(rows * k, dtype=np.float32)
        except MemoryError as exc:
            raise AllocationFailure(
                f"cannot allocate results for {rows} row(s) x k={k}"
            ) from exc

        scratch = self._scratch(rows, num_threads)

        def _search(row: int, slot: int) -> None:
            vec = data[row]
            if scratch is not None:
                vec = normalize_into(vec, scratch[slot])
            candidates = engine.search(vec, k)
            if len(candidates) < k:
                raise InsufficientCandidatesError(k, len(candidates))
            # Farthest-first in, so fill the row from its last slot backwards.
            base = row * k
            for i, (dist, label) in enumerate(candidates[-k:]):
                pos = base + k - 1 - i
                out_labels[pos] = label
                out_distances[pos] = dist

        log.debug("Searching %d row(s) for k=%d", rows, k)
        self._executor.run(0, rows, num_threads, _search)
        return ResultBuffer(labels=out_labels, distances=out_distances, rows=rows, k=k)
