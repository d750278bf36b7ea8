"""Tests for the HnswIndex wrapper."""

import numpy as np
import pytest

from hnswbridge import HnswIndex, SearchHit
from hnswbridge.domain.errors import (
    BatchShapeError,
    HandleReleasedError,
    InsufficientCandidatesError,
)
from hnswbridge.domain.models import SpaceType

DIM = 8


@pytest.fixture
def index(engine_factory, sample_vectors):
    idx = HnswIndex.new("l2", DIM, 200, engine_factory=engine_factory)
    idx.set_ef(100)
    idx.add_points(sample_vectors, np.arange(len(sample_vectors)))
    yield idx
    if not idx.handle.released:
        idx.free()


class TestHnswIndex:
    def test_properties(self, index):
        assert index.dim == DIM
        assert index.space is SpaceType.L2
        assert index.max_elements == 200
        assert index.current_count == 100
        assert len(index) == 100
        assert index.ef == 100
        assert index.allow_replace_deleted is False

    def test_search_returns_hits(self, index, sample_vectors):
        rows = index.search_knn(sample_vectors[:3], k=2)
        assert len(rows) == 3
        assert all(len(row) == 2 for row in rows)
        assert all(isinstance(hit, SearchHit) for row in rows for hit in row)
        assert [row[0].label for row in rows] == [0, 1, 2]

    def test_single_vector_query(self, index, sample_vectors):
        rows = index.search_knn(sample_vectors[4], k=1)
        assert rows[0][0].label == 4

    def test_empty_input_rejected(self, index):
        with pytest.raises(BatchShapeError):
            index.add_points(np.empty((0, DIM), dtype=np.float32), [])

    def test_label_count_mismatch(self, index, sample_vectors):
        with pytest.raises(BatchShapeError):
            index.add_points(sample_vectors[:3], [1, 2])

    def test_dimension_mismatch(self, index):
        with pytest.raises(BatchShapeError):
            index.add_points(np.zeros((2, DIM + 1), dtype=np.float32), [1, 2])

    def test_k_above_capacity(self, index, sample_vectors):
        with pytest.raises(BatchShapeError):
            index.search_knn(sample_vectors[:1], k=201)

    def test_k_above_count(self, index, sample_vectors):
        with pytest.raises(InsufficientCandidatesError):
            index.search_knn(sample_vectors[:1], k=150)

    def test_get_vector(self, index, sample_vectors):
        np.testing.assert_allclose(index.get_vector(9), sample_vectors[9], rtol=1e-6)

    def test_mark_and_unmark(self, index, sample_vectors):
        index.mark_deleted(0)
        assert index.search_knn(sample_vectors[0], k=1)[0][0].label != 0
        index.unmark_deleted(0)
        assert index.search_knn(sample_vectors[0], k=1)[0][0].label == 0

    def test_save_and_load(self, index, engine_factory, sample_vectors, tmp_path):
        path = tmp_path / "client.bin"
        index.save(path)
        assert index.index_file_size() == path.stat().st_size

        with HnswIndex.load(path, "l2", DIM, engine_factory=engine_factory) as loaded:
            loaded.set_ef(100)
            assert loaded.current_count == 100
            assert loaded.search_knn(sample_vectors[10], k=1)[0][0].label == 10

    def test_resize(self, index):
        index.resize(500)
        assert index.max_elements == 500

    def test_context_manager_frees(self, engine_factory):
        with HnswIndex.new("cosine", 4, 10, engine_factory=engine_factory) as idx:
            pass
        assert idx.handle.released
        assert repr(idx) == "HnswIndex(<released>)"
        with pytest.raises(HandleReleasedError):
            idx.current_count

    def test_repr(self, index):
        assert repr(index) == "HnswIndex(space='l2', dim=8, count=100, max_elements=200)"
