"""Flat, handle-based surface for foreign callers.

Mirrors a C-style ABI: every function takes an :class:`IndexHandle` as
its first argument.  The two batch calls never raise; ``add_points``
returns a :class:`StatusCode` and ``search_knn`` returns ``None`` on
failure (the reason is logged).  Lifecycle and configuration calls raise
the package's exceptions, each carrying its ``status``.
"""

from __future__ import annotations

import logging
import os
from typing import Sequence

import numpy as np

from hnswbridge.domain.errors import HnswBridgeError, StatusCode
from hnswbridge.domain.models import ResultBuffer, SpaceType
from hnswbridge.ports.ann_engine import AnnEngineFactory
from hnswbridge.services.index_handle import IndexHandle
from hnswbridge.services.marshaller import BatchMarshaller
from hnswbridge.services.parallel import ParallelExecutor

log = logging.getLogger(__name__)

_default_executor = ParallelExecutor()


def status_of(exc: BaseException) -> StatusCode:
    """Map an exception onto the status code reported at the boundary."""
    if isinstance(exc, HnswBridgeError):
        return exc.status
    if isinstance(exc, MemoryError):
        return StatusCode.ALLOCATION_FAILURE
    if isinstance(exc, (TypeError, ValueError)):
        return StatusCode.INVALID_ARGUMENT
    return StatusCode.INTERNAL


# ── Lifecycle ───────────────────────────────────────────────────────────────


def new_index(
    space: SpaceType | str | int,
    dim: int,
    max_elements: int,
    M: int = 16,
    ef_construction: int = 200,
    seed: int = 100,
    allow_replace_deleted: bool = False,
    *,
    engine_factory: AnnEngineFactory | None = None,
) -> IndexHandle:
    return IndexHandle.create(
        space, dim, max_elements, M, ef_construction, seed, allow_replace_deleted,
        engine_factory=engine_factory,
    )


def load_index(
    path: str | os.PathLike,
    space: SpaceType | str | int,
    dim: int,
    max_elements: int = 0,
    allow_replace_deleted: bool = False,
    *,
    engine_factory: AnnEngineFactory | None = None,
) -> IndexHandle:
    return IndexHandle.load(
        path, space, dim, max_elements, allow_replace_deleted,
        engine_factory=engine_factory,
    )


def save_index(handle: IndexHandle, path: str | os.PathLike) -> None:
    handle.save(path)


def free_index(handle: IndexHandle) -> None:
    handle.free()


def free_result(result: ResultBuffer) -> None:
    result.release()


# ── Structural mutators ─────────────────────────────────────────────────────


def set_ef(handle: IndexHandle, ef: int) -> None:
    handle.set_ef(ef)


def resize_index(handle: IndexHandle, new_capacity: int) -> None:
    handle.resize(new_capacity)


def mark_deleted(handle: IndexHandle, label: int) -> None:
    handle.mark_deleted(label)


def unmark_deleted(handle: IndexHandle, label: int) -> None:
    handle.unmark_deleted(label)


# ── Batch calls ─────────────────────────────────────────────────────────────


def add_points(
    handle: IndexHandle,
    flat_vectors: Sequence[float] | np.ndarray,
    rows: int,
    labels: Sequence[int] | np.ndarray,
    num_threads: int = 0,
    replace_deleted: bool = False,
    *,
    executor: ParallelExecutor | None = None,
) -> int:
    """Insert *rows* vectors; returns ``StatusCode.OK`` (0) on success."""
    try:
        BatchMarshaller(handle, executor or _default_executor).add_points(
            flat_vectors, rows, labels, num_threads, replace_deleted
        )
    except Exception as exc:
        status = status_of(exc)
        log.warning("add_points failed (status %d): %s", status, exc)
        return status
    return StatusCode.OK


def search_knn(
    handle: IndexHandle,
    flat_vectors: Sequence[float] | np.ndarray,
    rows: int,
    k: int,
    num_threads: int = 0,
    *,
    executor: ParallelExecutor | None = None,
) -> ResultBuffer | None:
    """Run *rows* k-NN queries; returns ``None`` if any row fails."""
    try:
        return BatchMarshaller(handle, executor or _default_executor).search_knn(
            flat_vectors, rows, k, num_threads
        )
    except Exception as exc:
        log.warning("search_knn failed (status %d): %s", status_of(exc), exc)
        return None


# ── Getters ─────────────────────────────────────────────────────────────────


def get_max_elements(handle: IndexHandle) -> int:
    return handle.max_elements


def get_current_count(handle: IndexHandle) -> int:
    return handle.current_count


def get_allow_replace_deleted(handle: IndexHandle) -> bool:
    return handle.allow_replace_deleted


def get_data_by_label(
    handle: IndexHandle, label: int, out: np.ndarray | None = None
) -> np.ndarray:
    return handle.get_data_by_label(label, out)


def index_file_size(handle: IndexHandle) -> int:
    return handle.index_file_size()
