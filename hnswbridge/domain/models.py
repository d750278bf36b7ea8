"""Pure domain models for the batch layer: space selectors and search results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from hnswbridge.domain.errors import HandleReleasedError


# ── Selectors ───────────────────────────────────────────────────────────────


class SpaceType(str, Enum):
    """Distance space requested by the caller.

    The integer codes accepted at the boundary follow declaration order:
    ``0 = l2``, ``1 = ip``, ``2 = cosine``.
    """

    L2 = "l2"
    IP = "ip"
    COSINE = "cosine"

    @classmethod
    def from_code(cls, code: int) -> "SpaceType":
        return list(cls)[code]


# ── Search results ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class SearchHit:
    """One ranked neighbour of a query row."""

    label: int
    distance: float


@dataclass
class ResultBuffer:
    """Flat, row-major search output owned by the caller.

    ``labels`` and ``distances`` hold ``rows * k`` entries; row *i* occupies
    ``[i * k, i * k + k)`` sorted nearest-first.  Release it once with
    :func:`hnswbridge.boundary.free_result` (or :meth:`release`).
    """

    labels: np.ndarray | None
    distances: np.ndarray | None
    rows: int
    k: int
    released: bool = field(default=False, repr=False)

    @classmethod
    def empty(cls, k: int) -> "ResultBuffer":
        return cls(
            labels=np.empty(0, dtype=np.uint64),
            distances=np.empty(0, dtype=np.float32),
            rows=0,
            k=k,
        )

    def row(self, index: int) -> list[SearchHit]:
        """Return the hits of one query row, nearest first."""
        if self.released:
            raise HandleReleasedError("result buffer has already been released")
        if not 0 <= index < self.rows:
            raise IndexError(f"row {index} out of range for {self.rows} rows")
        start = index * self.k
        return [
            SearchHit(label=int(self.labels[i]), distance=float(self.distances[i]))
            for i in range(start, start + self.k)
        ]

    def to_rows(self) -> list[list[SearchHit]]:
        return [self.row(i) for i in range(self.rows)]

    def release(self) -> None:
        if self.released:
            raise HandleReleasedError("result buffer released twice")
        self.labels = None
        self.distances = None
        self.released = True
