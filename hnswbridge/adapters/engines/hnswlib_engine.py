"""ANN engine adapter: hnswlib (hierarchical navigable small world graphs).

Each call handles a single row with ``num_threads=1``; fan-out across
rows is done by the batch layer.  hnswlib reports every failure as a
``RuntimeError`` whose message is mapped onto the package's error types.
"""

from __future__ import annotations

import hnswlib
import numpy as np

from hnswbridge.domain.errors import (
    CapacityError,
    EngineError,
    HnswBridgeError,
    IndexIOError,
    InsufficientCandidatesError,
    InvalidConfigurationError,
    LabelNotFoundError,
)
from hnswbridge.ports.ann_engine import AnnEngineFactory, AnnEnginePort
from hnswbridge.services.space import DistanceSpace


def _translate(exc: RuntimeError) -> HnswBridgeError:
    msg = str(exc)
    if "exceeds the specified limit" in msg or "Cannot resize" in msg:
        return CapacityError(msg)
    if "Replacement of deleted elements is disabled" in msg:
        return InvalidConfigurationError(msg)
    return EngineError(msg)


class HnswlibEngine(AnnEnginePort):
    """Wraps one ``hnswlib.Index``; the index owns its space instance."""

    def __init__(
        self,
        index: hnswlib.Index,
        space: DistanceSpace,
        *,
        allow_replace_deleted: bool = False,
    ) -> None:
        self._index = index
        self._space = space
        self._allow_replace_deleted = allow_replace_deleted

    # ── write ──

    def insert(self, vector: np.ndarray, label: int, replace_deleted: bool = False) -> None:
        data = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        ids = np.array([label], dtype=np.uint64)
        try:
            self._index.add_items(data, ids, num_threads=1, replace_deleted=replace_deleted)
        except RuntimeError as exc:
            raise _translate(exc) from exc

    def mark_deleted(self, label: int) -> None:
        try:
            self._index.mark_deleted(int(label))
        except RuntimeError as exc:
            if "not found" in str(exc).lower():
                raise LabelNotFoundError(int(label)) from exc
            raise _translate(exc) from exc

    def unmark_deleted(self, label: int) -> None:
        try:
            self._index.unmark_deleted(int(label))
        except RuntimeError as exc:
            if "not found" in str(exc).lower():
                raise LabelNotFoundError(int(label)) from exc
            raise _translate(exc) from exc

    def resize(self, new_capacity: int) -> None:
        try:
            self._index.resize_index(new_capacity)
        except RuntimeError as exc:
            raise _translate(exc) from exc

    # ── read ──

    def search(self, vector: np.ndarray, k: int) -> list[tuple[float, int]]:
        data = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        try:
            labels, distances = self._index.knn_query(data, k=k, num_threads=1)
        except RuntimeError as exc:
            # hnswlib refuses to return a ragged row instead of a short one.
            if "2D array" in str(exc):
                raise InsufficientCandidatesError(k) from exc
            raise _translate(exc) from exc
        # knn_query drains its heap nearest-first; restore heap pop order.
        return [
            (float(d), int(lbl))
            for d, lbl in zip(distances[0][::-1], labels[0][::-1])
        ]

    def get_data(self, label: int) -> np.ndarray:
        try:
            items = self._index.get_items([int(label)])
        except RuntimeError as exc:
            raise LabelNotFoundError(int(label)) from exc
        return np.asarray(items, dtype=np.float32)[0]

    @property
    def current_count(self) -> int:
        return self._index.get_current_count()

    @property
    def max_elements(self) -> int:
        return self._index.get_max_elements()

    @property
    def ef(self) -> int:
        return self._index.ef

    @ef.setter
    def ef(self, value: int) -> None:
        self._index.set_ef(int(value))

    @property
    def allow_replace_deleted(self) -> bool:
        return self._allow_replace_deleted

    # ── persistence ──

    def save(self, path: str) -> None:
        try:
            self._index.save_index(path)
        except RuntimeError as exc:
            raise IndexIOError(f"Cannot save index to {path}: {exc}") from exc

    def index_file_size(self) -> int:
        return self._index.index_file_size()

    def close(self) -> None:
        self._index = None


class HnswlibEngineFactory(AnnEngineFactory):
    name = "hnswlib"

    def create(
        self,
        space: DistanceSpace,
        max_elements: int,
        *,
        M: int = 16,
        ef_construction: int = 200,
        seed: int = 100,
        allow_replace_deleted: bool = False,
    ) -> HnswlibEngine:
        index = hnswlib.Index(space=space.kernel, dim=space.dim)
        try:
            index.init_index(
                max_elements=max_elements,
                M=M,
                ef_construction=ef_construction,
                random_seed=seed,
                allow_replace_deleted=allow_replace_deleted,
            )
        except RuntimeError as exc:
            raise InvalidConfigurationError(str(exc)) from exc
        return HnswlibEngine(index, space, allow_replace_deleted=allow_replace_deleted)

    def load(
        self,
        space: DistanceSpace,
        path: str,
        *,
        max_elements: int = 0,
        allow_replace_deleted: bool = False,
    ) -> HnswlibEngine:
        index = hnswlib.Index(space=space.kernel, dim=space.dim)
        try:
            index.load_index(
                path,
                max_elements=max_elements,
                allow_replace_deleted=allow_replace_deleted,
            )
        except RuntimeError as exc:
            raise IndexIOError(f"Cannot load index from {path}: {exc}") from exc
        return HnswlibEngine(index, space, allow_replace_deleted=allow_replace_deleted)
