"""Shared test fixtures: engine factories, sample vectors and populated handles."""

from __future__ import annotations

import numpy as np
import pytest

from hnswbridge.adapters.engines.hnswlib_engine import HnswlibEngineFactory
from hnswbridge.adapters.engines.numpy_engine import NumpyEngineFactory
from hnswbridge.services.index_handle import IndexHandle
from hnswbridge.services.marshaller import BatchMarshaller
from hnswbridge.services.parallel import ParallelExecutor


DIM = 8


# ── Factories ──


@pytest.fixture
def numpy_factory():
    return NumpyEngineFactory()


@pytest.fixture
def hnswlib_factory():
    return HnswlibEngineFactory()


@pytest.fixture(params=["numpy", "hnswlib"])
def engine_factory(request):
    """Runs a test once per engine adapter."""
    if request.param == "numpy":
        return NumpyEngineFactory()
    return HnswlibEngineFactory()


@pytest.fixture
def executor():
    return ParallelExecutor()


# ── Sample data ──


@pytest.fixture
def sample_vectors():
    """100 random float32 vectors of dimension DIM."""
    rng = np.random.RandomState(42)
    return rng.randn(100, DIM).astype(np.float32)


@pytest.fixture
def sample_labels(sample_vectors):
    return np.arange(len(sample_vectors), dtype=np.uint64)


@pytest.fixture
def unit_basis():
    """The worked example: two orthogonal unit vectors in four dimensions."""
    return np.array(
        [[1.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0]],
        dtype=np.float32,
    )


# ── Handles ──


@pytest.fixture
def l2_handle(numpy_factory):
    handle = IndexHandle.create("l2", DIM, 200, engine_factory=numpy_factory)
    yield handle
    if not handle.released:
        handle.free()


@pytest.fixture
def populated_handle(engine_factory, sample_vectors, sample_labels, executor):
    """An L2 index holding every sample vector, labels 0..99."""
    handle = IndexHandle.create(
        "l2", DIM, 200, M=16, ef_construction=200, engine_factory=engine_factory,
    )
    handle.set_ef(100)
    BatchMarshaller(handle, executor).add_points(
        sample_vectors.reshape(-1), len(sample_vectors), sample_labels, num_threads=1
    )
    yield handle
    if not handle.released:
        handle.free()
