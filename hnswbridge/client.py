"""Pythonic wrapper around an :class:`IndexHandle`.

Takes 2-D NumPy arrays instead of flat buffers, raises instead of
returning status codes, and frees the handle on context exit.

Usage::

    with HnswIndex.new("cosine", dim=128, max_elements=10_000) as index:
        index.add_points(vectors, labels)
        hits = index.search_knn(queries, k=5)
"""

from __future__ import annotations

import logging
import os
from typing import Sequence

import numpy as np

from hnswbridge.domain.errors import BatchShapeError
from hnswbridge.domain.models import SearchHit, SpaceType
from hnswbridge.ports.ann_engine import AnnEngineFactory
from hnswbridge.services.index_handle import IndexHandle
from hnswbridge.services.marshaller import BatchMarshaller
from hnswbridge.services.parallel import ParallelExecutor

log = logging.getLogger(__name__)


class HnswIndex:
    """A k-NN index over fixed-dimension float32 vectors."""

    def __init__(self, handle: IndexHandle, executor: ParallelExecutor | None = None) -> None:
        self._handle = handle
        self._marshaller = BatchMarshaller(handle, executor or ParallelExecutor())

    @classmethod
    def new(
        cls,
        space: SpaceType | str | int,
        dim: int,
        max_elements: int,
        M: int = 16,
        ef_construction: int = 200,
        seed: int = 100,
        allow_replace_deleted: bool = False,
        *,
        engine_factory: AnnEngineFactory | None = None,
        executor: ParallelExecutor | None = None,
    ) -> "HnswIndex":
        handle = IndexHandle.create(
            space, dim, max_elements, M, ef_construction, seed, allow_replace_deleted,
            engine_factory=engine_factory,
        )
        return cls(handle, executor)

    @classmethod
    def load(
        cls,
        path: str | os.PathLike,
        space: SpaceType | str | int,
        dim: int,
        max_elements: int = 0,
        allow_replace_deleted: bool = False,
        *,
        engine_factory: AnnEngineFactory | None = None,
        executor: ParallelExecutor | None = None,
    ) -> "HnswIndex":
        handle = IndexHandle.load(
            path, space, dim, max_elements, allow_replace_deleted,
            engine_factory=engine_factory,
        )
        return cls(handle, executor)

    # ── helpers ──

    def _matrix(self, vectors: np.ndarray | Sequence[Sequence[float]]) -> np.ndarray:
        data = np.asarray(vectors, dtype=np.float32)
        if data.ndim == 1:
            data = data.reshape(1, -1)
        if data.ndim != 2:
            raise BatchShapeError(f"expected a 2-D array of vectors, got {data.ndim} dimension(s)")
        if data.shape[0] == 0:
            raise BatchShapeError("no vectors given")
        if data.shape[1] != self.dim:
            raise BatchShapeError(
                f"vectors have dimension {data.shape[1]}, index dimension is {self.dim}"
            )
        return np.ascontiguousarray(data)

    # ── batch operations ──

    def add_points(
        self,
        vectors: np.ndarray | Sequence[Sequence[float]],
        labels: Sequence[int] | np.ndarray,
        num_threads: int = 0,
        replace_deleted: bool = False,
    ) -> None:
        data = self._matrix(vectors)
        ids = np.asarray(labels).reshape(-1)
        if ids.size != data.shape[0]:
            raise BatchShapeError(
                f"{data.shape[0]} vector(s) but {ids.size} label(s)"
            )
        self._marshaller.add_points(
            data.reshape(-1), data.shape[0], ids, num_threads, replace_deleted
        )

    def search_knn(
        self,
        vectors: np.ndarray | Sequence[Sequence[float]],
        k: int,
        num_threads: int = 0,
    ) -> list[list[SearchHit]]:
        """Return the *k* nearest hits for each query row, nearest first."""
        data = self._matrix(vectors)
        if k > self.max_elements:
            raise BatchShapeError(
                f"k={k} exceeds the index capacity of {self.max_elements}"
            )
        result = self._marshaller.search_knn(data.reshape(-1), data.shape[0], k, num_threads)
        try:
            return result.to_rows()
        finally:
            result.release()

    # ── structural operations ──

    def mark_deleted(self, label: int) -> None:
        self._handle.mark_deleted(label)

    def unmark_deleted(self, label: int) -> None:
        self._handle.unmark_deleted(label)

    def resize(self, new_capacity: int) -> None:
        self._handle.resize(new_capacity)

    def set_ef(self, ef: int) -> None:
        self._handle.set_ef(ef)

    def save(self, path: str | os.PathLike) -> None:
        self._handle.save(path)

    def get_vector(self, label: int) -> np.ndarray:
        return self._handle.get_data_by_label(label)

    def index_file_size(self) -> int:
        return self._handle.index_file_size()

    # ── properties ──

    @property
    def handle(self) -> IndexHandle:
        return self._handle

    @property
    def dim(self) -> int:
        return self._handle.dim

    @property
    def space(self) -> SpaceType:
        return self._handle.space.selector

    @property
    def max_elements(self) -> int:
        return self._handle.max_elements

    @property
    def current_count(self) -> int:
        return self._handle.current_count

    @property
    def allow_replace_deleted(self) -> bool:
        return self._handle.allow_replace_deleted

    @property
    def ef(self) -> int:
        return self._handle.ef

    # ── lifecycle ──

    def free(self) -> None:
        self._handle.free()

    def __enter__(self) -> "HnswIndex":
        return self

    def __exit__(self, *exc_info) -> None:
        if not self._handle.released:
            self.free()

    def __len__(self) -> int:
        return self.current_count

    def __repr__(self) -> str:
        if self._handle.released:
            return "HnswIndex(<released>)"
        return (
            f"HnswIndex(space={self.space.value!r}, dim={self.dim}, "
            f"count={self.current_count}, max_elements={self.max_elements})"
        )
