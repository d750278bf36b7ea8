"""ANN engine adapter: exact brute-force search on NumPy arrays.

Implements the same capability set as the HNSW adapter (soft deletion,
replace-deleted slot reuse, capacity limits, persistence) without a graph,
so rankings are exact and deterministic.  Suitable for tests and small
indexes.
"""

from __future__ import annotations

import io
import threading
import zipfile

import numpy as np

from hnswbridge.domain.errors import (
    CapacityError,
    EngineError,
    IndexIOError,
    InvalidConfigurationError,
    LabelNotFoundError,
)
from hnswbridge.ports.ann_engine import AnnEngineFactory, AnnEnginePort
from hnswbridge.services.space import DistanceSpace


class NumpyEngine(AnnEnginePort):
    """Slot-array engine: one row per inserted element, deleted rows masked."""

    def __init__(
        self,
        space: DistanceSpace,
        max_elements: int,
        *,
        allow_replace_deleted: bool = False,
        ef: int = 10,
    ) -> None:
        self._space = space
        self._dim = space.dim
        self._capacity = max_elements
        self._allow_replace_deleted = allow_replace_deleted
        self._ef = ef

        self._data = np.zeros((max_elements, self._dim), dtype=np.float32)
        self._labels = np.zeros(max_elements, dtype=np.uint64)
        self._deleted = np.zeros(max_elements, dtype=bool)
        self._slots: dict[int, int] = {}  # label → slot
        self._count = 0

        # Batch rows insert and search concurrently; slot allocation is serialised.
        self._lock = threading.Lock()

    # ── write ──

    def insert(self, vector: np.ndarray, label: int, replace_deleted: bool = False) -> None:
        vec = self._as_row(vector)
        label = int(label)
        with self._lock:
            if replace_deleted and not self._allow_replace_deleted:
                raise InvalidConfigurationError(
                    "Replacement of deleted elements is disabled for this index"
                )

            slot = self._slots.get(label)
            if slot is not None:
                # A deleted label is revived in its own slot, except on a
                # replace-enabled index where that needs replace_deleted=True.
                if self._deleted[slot] and self._allow_replace_deleted and not replace_deleted:
                    raise EngineError(
                        f"label {label} is deleted; pass replace_deleted=True to re-insert it"
                    )
                self._assign(slot, label, vec)
                return

            if replace_deleted:
                vacant = np.flatnonzero(self._deleted[: self._count])
                if vacant.size:
                    slot = int(vacant[0])
                    del self._slots[int(self._labels[slot])]
                    self._assign(slot, label, vec)
                    return

            if self._count >= self._capacity:
                raise CapacityError(
                    f"The number of elements exceeds the specified limit ({self._capacity})"
                )
            slot = self._count
            self._count += 1
            self._assign(slot, label, vec)

    def mark_deleted(self, label: int) -> None:
        with self._lock:
            slot = self._live_slot(label, allow_deleted=True)
            if self._deleted[slot]:
                raise EngineError(f"label {label} is already deleted")
            self._deleted[slot] = True

    def unmark_deleted(self, label: int) -> None:
        with self._lock:
            slot = self._live_slot(label, allow_deleted=True)
            if not self._deleted[slot]:
                raise EngineError(f"label {label} is not deleted")
            self._deleted[slot] = False

    def resize(self, new_capacity: int) -> None:
        with self._lock:
            if new_capacity < self._count:
                raise CapacityError(
                    f"Cannot resize to {new_capacity}: {self._count} elements stored"
                )
            data = np.zeros((new_capacity, self._dim), dtype=np.float32)
            labels = np.zeros(new_capacity, dtype=np.uint64)
            deleted = np.zeros(new_capacity, dtype=bool)
            n = self._count
            data[:n] = self._data[:n]
            labels[:n] = self._labels[:n]
            deleted[:n] = self._deleted[:n]
            self._data, self._labels, self._deleted = data, labels, deleted
            self._capacity = new_capacity

    # ── read ──

    def search(self, vector: np.ndarray, k: int) -> list[tuple[float, int]]:
        q = self._as_row(vector)
        with self._lock:
            live = np.flatnonzero(~self._deleted[: self._count])
            if live.size == 0:
                return []
            mat = self._data[live]
            labels = self._labels[live]

        if self._space.kernel == "l2":
            diff = mat - q
            dists = np.einsum("ij,ij->i", diff, diff)
        else:
            dists = 1.0 - mat @ q

        order = np.argsort(dists, kind="stable")[:k]
        return [(float(dists[i]), int(labels[i])) for i in order[::-1]]

    def get_data(self, label: int) -> np.ndarray:
        with self._lock:
            slot = self._live_slot(label)
            return self._data[slot].copy()

    @property
    def current_count(self) -> int:
        return self._count

    @property
    def max_elements(self) -> int:
        return self._capacity

    @property
    def ef(self) -> int:
        return self._ef

    @ef.setter
    def ef(self, value: int) -> None:
        self._ef = int(value)

    @property
    def allow_replace_deleted(self) -> bool:
        return self._allow_replace_deleted

    # ── persistence ──

    def save(self, path: str) -> None:
        with open(path, "wb") as f:
            self._write(f)

    def index_file_size(self) -> int:
        buf = io.BytesIO()
        self._write(buf)
        return buf.getbuffer().nbytes

    @classmethod
    def from_file(
        cls,
        space: DistanceSpace,
        path: str,
        *,
        max_elements: int = 0,
        allow_replace_deleted: bool = False,
    ) -> "NumpyEngine":
        try:
            with np.load(path, allow_pickle=False) as npz:
                dim, capacity, count, ef = (int(v) for v in npz["meta"])
                data = npz["data"]
                labels = npz["labels"]
                deleted = npz["deleted"]
        except (KeyError, ValueError, zipfile.BadZipFile) as exc:
            raise IndexIOError(f"{path} is not a saved numpy index: {exc}") from exc

        if dim != space.dim:
            raise InvalidConfigurationError(
                f"Index at {path} has dimension {dim}, expected {space.dim}"
            )
        if max_elements < count:
            max_elements = capacity

        engine = cls(space, max_elements, allow_replace_deleted=allow_replace_deleted, ef=ef)
        engine._data[:count] = data
        engine._labels[:count] = labels
        engine._deleted[:count] = deleted
        engine._slots = {int(lbl): slot for slot, lbl in enumerate(labels)}
        engine._count = count
        return engine

    # ── internals ──

    def _write(self, f) -> None:
        with self._lock:
            n = self._count
            np.savez(
                f,
                meta=np.array([self._dim, self._capacity, n, self._ef], dtype=np.int64),
                data=self._data[:n],
                labels=self._labels[:n],
                deleted=self._deleted[:n],
            )

    def _assign(self, slot: int, label: int, vec: np.ndarray) -> None:
        self._data[slot] = vec
        self._labels[slot] = label
        self._deleted[slot] = False
        self._slots[label] = slot

    def _live_slot(self, label: int, *, allow_deleted: bool = False) -> int:
        slot = self._slots.get(int(label))
        if slot is None or (self._deleted[slot] and not allow_deleted):
            raise LabelNotFoundError(int(label))
        return slot

    def _as_row(self, vector: np.ndarray) -> np.ndarray:
        vec = np.asarray(vector, dtype=np.float32).reshape(-1)
        if vec.shape[0] != self._dim:
            raise EngineError(f"expected a vector of dimension {self._dim}, got {vec.shape[0]}")
        return vec


class NumpyEngineFactory(AnnEngineFactory):
    name = "numpy"

    def create(
        self,
        space: DistanceSpace,
        max_elements: int,
        *,
        M: int = 16,
        ef_construction: int = 200,
        seed: int = 100,
        allow_replace_deleted: bool = False,
    ) -> NumpyEngine:
        # Graph parameters have no meaning for an exact scan.
        return NumpyEngine(space, max_elements, allow_replace_deleted=allow_replace_deleted)

    def load(
        self,
        space: DistanceSpace,
        path: str,
        *,
        max_elements: int = 0,
        allow_replace_deleted: bool = False,
    ) -> NumpyEngine:
        return NumpyEngine.from_file(
            space,
            path,
            max_elements=max_elements,
            allow_replace_deleted=allow_replace_deleted,
        )
