"""Port: approximate nearest-neighbour graph engine.

The batch layer never touches a concrete engine type.  Adapters wrap a
real library behind :class:`AnnEnginePort` and are built by an
:class:`AnnEngineFactory`, which receives the bound distance space.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from hnswbridge.services.space import DistanceSpace


class AnnEnginePort(ABC):
    """Single-vector capability set of an ANN index.

    ``insert`` and ``search`` may be called from several threads at once
    on the same instance.  Every other method requires exclusive access.
    """

    @abstractmethod
    def insert(self, vector: np.ndarray, label: int, replace_deleted: bool = False) -> None:
        """Store *vector* under *label* (updating it if the label is live)."""

    @abstractmethod
    def search(self, vector: np.ndarray, k: int) -> list[tuple[float, int]]:
        """Return up to *k* ``(distance, label)`` pairs, farthest first.

        The order is the pop order of a max-heap on distance; callers drain
        it back-to-front to obtain nearest-first rows.
        """

    @abstractmethod
    def mark_deleted(self, label: int) -> None: ...

    @abstractmethod
    def unmark_deleted(self, label: int) -> None: ...

    @abstractmethod
    def resize(self, new_capacity: int) -> None: ...

    @abstractmethod
    def save(self, path: str) -> None:
        """Serialise the engine state to *path*."""

    @abstractmethod
    def get_data(self, label: int) -> np.ndarray:
        """Return the stored vector of a live label."""

    @abstractmethod
    def index_file_size(self) -> int:
        """Size in bytes that :meth:`save` would write."""

    @property
    @abstractmethod
    def current_count(self) -> int:
        """Number of slots in use, deleted elements included."""

    @property
    @abstractmethod
    def max_elements(self) -> int: ...

    @property
    @abstractmethod
    def ef(self) -> int: ...

    @ef.setter
    @abstractmethod
    def ef(self, value: int) -> None: ...

    @property
    @abstractmethod
    def allow_replace_deleted(self) -> bool: ...

    def close(self) -> None:
        """Release native resources.  The default has nothing to release."""


class AnnEngineFactory(ABC):
    """Build fresh or persisted engines for a bound distance space."""

    name: str = ""

    @abstractmethod
    def create(
        self,
        space: "DistanceSpace",
        max_elements: int,
        *,
        M: int = 16,
        ef_construction: int = 200,
        seed: int = 100,
        allow_replace_deleted: bool = False,
    ) -> AnnEnginePort:
        """Allocate an empty engine of the given capacity."""

    @abstractmethod
    def load(
        self,
        space: "DistanceSpace",
        path: str,
        *,
        max_elements: int = 0,
        allow_replace_deleted: bool = False,
    ) -> AnnEnginePort:
        """Reconstruct an engine previously written by :meth:`AnnEnginePort.save`."""
