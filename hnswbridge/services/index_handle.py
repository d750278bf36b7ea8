"""Service: index handle lifecycle.

An :class:`IndexHandle` jointly owns an engine and the distance space it
was built for.  Both are released together by :meth:`IndexHandle.free`,
engine first.  After that every call raises :class:`HandleReleasedError`.

Structural mutators (resize, set_ef, mark/unmark, save) are not
synchronised; callers must not run them concurrently with a batch.
"""

from __future__ import annotations

import logging
import os
from numbers import Integral
from pathlib import Path

import numpy as np

from hnswbridge.domain.errors import (
    BatchShapeError,
    CapacityError,
    HandleReleasedError,
    IndexIOError,
    InvalidConfigurationError,
    LabelNotFoundError,
)
from hnswbridge.domain.models import SpaceType
from hnswbridge.ports.ann_engine import AnnEngineFactory, AnnEnginePort
from hnswbridge.services.space import DistanceSpace, resolve_space

log = logging.getLogger(__name__)


def _positive(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral) or value <= 0:
        raise InvalidConfigurationError(f"{name} must be a positive integer, got {value!r}")
    return int(value)


def _non_negative(name: str, value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral) or value < 0:
        raise InvalidConfigurationError(f"{name} must be a non-negative integer, got {value!r}")
    return int(value)


def _default_factory() -> AnnEngineFactory:
    from hnswbridge.adapters.engines.hnswlib_engine import HnswlibEngineFactory

    return HnswlibEngineFactory()


class IndexHandle:
    """An ANN engine bound to its distance space."""

    def __init__(self, engine: AnnEnginePort, space: DistanceSpace) -> None:
        self._engine: AnnEnginePort | None = engine
        self._space: DistanceSpace | None = space

    # ── construction ──

    @classmethod
    def create(
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
    ) -> "IndexHandle":
        bound = resolve_space(space, dim)
        max_elements = _non_negative("max_elements", max_elements)
        M = _positive("M", M)
        ef_construction = _positive("ef_construction", ef_construction)
        factory = engine_factory or _default_factory()

        engine = factory.create(
            bound,
            max_elements,
            M=M,
            ef_construction=ef_construction,
            seed=int(seed),
            allow_replace_deleted=bool(allow_replace_deleted),
        )
        log.info(
            "Created %s index: space=%s dim=%d max_elements=%d M=%d ef_construction=%d",
            factory.name, bound.selector.value, bound.dim, max_elements, M, ef_construction,
        )
        return cls(engine, bound)

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
    ) -> "IndexHandle":
        """Reconstruct a saved index.

        The space selector is not stored in the file: loading with a
        different space than the one used at save time is not detected.
        """
        bound = resolve_space(space, dim)
        max_elements = _non_negative("max_elements", max_elements)
        p = Path(path)
        if not p.is_file():
            raise IndexIOError(f"Index file not found: {p}")
        factory = engine_factory or _default_factory()

        try:
            engine = factory.load(
                bound,
                str(p),
                max_elements=max_elements,
                allow_replace_deleted=bool(allow_replace_deleted),
            )
        except OSError as exc:
            if isinstance(exc, IndexIOError):
                raise
            raise IndexIOError(f"Cannot read index {p}: {exc}") from exc

        log.info(
            "Loaded %s index from %s: %d element(s), capacity %d",
            factory.name, p, engine.current_count, engine.max_elements,
        )
        return cls(engine, bound)

    # ── ownership ──

    @property
    def released(self) -> bool:
        return self._engine is None

    @property
    def engine(self) -> AnnEnginePort:
        if self._engine is None:
            raise HandleReleasedError("index handle has been released")
        return self._engine

    @property
    def space(self) -> DistanceSpace:
        if self._space is None:
            raise HandleReleasedError("index handle has been released")
        return self._space

    def free(self) -> None:
        """Release the engine, then the space it was built for."""
        engine = self.engine
        self._engine = None
        engine.close()
        self._space = None
        log.info("Released index handle")

    # ── getters ──

    @property
    def dim(self) -> int:
        return self.space.dim

    @property
    def normalize(self) -> bool:
        return self.space.normalize

    @property
    def max_elements(self) -> int:
        return self.engine.max_elements

    @property
    def current_count(self) -> int:
        return self.engine.current_count

    @property
    def allow_replace_deleted(self) -> bool:
        return self.engine.allow_replace_deleted

    @property
    def ef(self) -> int:
        return self.engine.ef

    def index_file_size(self) -> int:
        return self.engine.index_file_size()

    # ── mutators ──

    def set_ef(self, ef: int) -> None:
        self.engine.ef = _positive("ef", ef)

    def resize(self, new_capacity: int) -> None:
        engine = self.engine
        new_capacity = _non_negative("new_capacity", new_capacity)
        if new_capacity < engine.current_count:
            raise CapacityError(
                f"Cannot resize to {new_capacity}: index holds {engine.current_count} element(s)"
            )
        engine.resize(new_capacity)
        log.info("Resized index to capacity %d", new_capacity)

    def mark_deleted(self, label: int) -> None:
        self.engine.mark_deleted(int(label))

    def unmark_deleted(self, label: int) -> None:
        self.engine.unmark_deleted(int(label))

    def get_data_by_label(self, label: int, out: np.ndarray | None = None) -> np.ndarray:
        """Copy the stored vector of a live *label* into *out*.

        For cosine indexes the stored vector is the normalised one.
        """
        if isinstance(label, bool) or not isinstance(label, Integral) or label < 0:
            raise LabelNotFoundError(label)
        vec = self.engine.get_data(int(label))
        if out is None:
            out = np.empty(self.dim, dtype=np.float32)
        elif out.size != self.dim:
            raise BatchShapeError(f"output buffer holds {out.size} floats, need {self.dim}")
        out.flat[:] = vec
        return out

    # ── persistence ──

    def save(self, path: str | os.PathLike) -> None:
        engine = self.engine
        p = Path(path)
        parent = p.parent if str(p.parent) else Path(".")
        if not parent.is_dir() or not os.access(parent, os.W_OK):
            raise IndexIOError(f"Cannot write index to {p}: directory not writable")
        try:
            engine.save(str(p))
        except OSError as exc:
            if isinstance(exc, IndexIOError):
                raise
            raise IndexIOError(f"Cannot write index to {p}: {exc}") from exc
        log.info("Saved index (%d element(s)) to %s", engine.current_count, p)
