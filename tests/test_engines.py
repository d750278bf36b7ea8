"""Tests for the ANN engine adapters behind AnnEnginePort."""

import numpy as np
import pytest

from hnswbridge.adapters.engines.hnswlib_engine import HnswlibEngineFactory, _translate
from hnswbridge.adapters.engines.numpy_engine import NumpyEngine, NumpyEngineFactory
from hnswbridge.domain.errors import (
    CapacityError,
    EngineError,
    IndexIOError,
    InsufficientCandidatesError,
    InvalidConfigurationError,
    LabelNotFoundError,
)
from hnswbridge.services.space import resolve_space


@pytest.fixture
def l2_space():
    return resolve_space("l2", 2)


class TestEnginePort:
    """Contract shared by every adapter."""

    def test_search_is_farthest_first(self, engine_factory, l2_space):
        engine = engine_factory.create(l2_space, 10)
        for label, vec in enumerate([[0, 0], [1, 0], [3, 0]]):
            engine.insert(np.array(vec, dtype=np.float32), label)

        hits = engine.search(np.array([0, 0], dtype=np.float32), 3)
        assert [label for _, label in hits] == [2, 1, 0]
        assert [d for d, _ in hits] == pytest.approx([9.0, 1.0, 0.0])

    def test_insert_existing_label_updates(self, engine_factory, l2_space):
        engine = engine_factory.create(l2_space, 10)
        engine.insert(np.array([0, 0], dtype=np.float32), 1)
        engine.insert(np.array([5, 5], dtype=np.float32), 1)
        assert engine.current_count == 1
        np.testing.assert_allclose(engine.get_data(1), [5, 5])

    def test_capacity_limit(self, engine_factory, l2_space):
        engine = engine_factory.create(l2_space, 1)
        engine.insert(np.array([0, 0], dtype=np.float32), 1)
        with pytest.raises(CapacityError):
            engine.insert(np.array([1, 1], dtype=np.float32), 2)

    def test_unmark_unknown_label(self, engine_factory, l2_space):
        engine = engine_factory.create(l2_space, 4)
        with pytest.raises(LabelNotFoundError):
            engine.unmark_deleted(3)

    def test_ef_roundtrip(self, engine_factory, l2_space):
        engine = engine_factory.create(l2_space, 4)
        engine.ef = 33
        assert engine.ef == 33

    def test_allow_replace_deleted_flag(self, engine_factory, l2_space):
        assert engine_factory.create(l2_space, 4, allow_replace_deleted=True).allow_replace_deleted
        assert not engine_factory.create(l2_space, 4).allow_replace_deleted


class TestNumpyEngine:
    def test_search_on_empty_engine(self, l2_space):
        engine = NumpyEngine(l2_space, 4)
        assert engine.search(np.zeros(2, dtype=np.float32), 3) == []

    def test_search_returns_at_most_live_count(self, l2_space):
        engine = NumpyEngine(l2_space, 4)
        engine.insert(np.zeros(2, dtype=np.float32), 1)
        engine.insert(np.ones(2, dtype=np.float32), 2)
        engine.mark_deleted(2)
        assert len(engine.search(np.zeros(2, dtype=np.float32), 5)) == 1

    def test_wrong_dimension(self, l2_space):
        engine = NumpyEngine(l2_space, 4)
        with pytest.raises(EngineError):
            engine.insert(np.zeros(3, dtype=np.float32), 1)

    def test_unmark_live_label(self, l2_space):
        engine = NumpyEngine(l2_space, 4)
        engine.insert(np.zeros(2, dtype=np.float32), 1)
        with pytest.raises(EngineError):
            engine.unmark_deleted(1)

    def test_resize_keeps_data(self, l2_space):
        engine = NumpyEngine(l2_space, 2)
        engine.insert(np.array([1, 2], dtype=np.float32), 7)
        engine.resize(10)
        assert engine.max_elements == 10
        np.testing.assert_allclose(engine.get_data(7), [1, 2])

    def test_load_rejects_foreign_file(self, l2_space, tmp_path):
        path = tmp_path / "garbage.bin"
        path.write_bytes(b"not an index at all")
        with pytest.raises(IndexIOError):
            NumpyEngineFactory().load(l2_space, str(path))

    def test_load_rejects_other_dimension(self, l2_space, tmp_path):
        path = tmp_path / "index.npz"
        engine = NumpyEngine(l2_space, 4)
        engine.insert(np.zeros(2, dtype=np.float32), 1)
        engine.save(str(path))
        with pytest.raises(InvalidConfigurationError):
            NumpyEngine.from_file(resolve_space("l2", 3), str(path))

    def test_saved_ef_restored(self, l2_space, tmp_path):
        path = tmp_path / "index.npz"
        engine = NumpyEngine(l2_space, 4)
        engine.ef = 77
        engine.save(str(path))
        assert NumpyEngine.from_file(l2_space, str(path)).ef == 77


class TestHnswlibEngine:
    def test_short_result_raises_insufficient_candidates(self, l2_space):
        engine = HnswlibEngineFactory().create(l2_space, 4)
        engine.insert(np.zeros(2, dtype=np.float32), 1)
        engine.insert(np.ones(2, dtype=np.float32), 2)
        engine.mark_deleted(2)
        with pytest.raises(InsufficientCandidatesError):
            engine.search(np.zeros(2, dtype=np.float32), 2)

    @pytest.mark.parametrize(
        "message, expected",
        [
            ("The number of elements exceeds the specified limit", CapacityError),
            ("Cannot resize, max element is less than the current number of elements",
             CapacityError),
            ("Replacement of deleted elements is disabled in constructor",
             InvalidConfigurationError),
            ("something unexpected", EngineError),
        ],
    )
    def test_runtime_error_translation(self, message, expected):
        assert type(_translate(RuntimeError(message))) is expected

    def test_engine_kernel_for_cosine(self):
        space = resolve_space("cosine", 3)
        engine = HnswlibEngineFactory().create(space, 4)
        engine.insert(np.array([1, 0, 0], dtype=np.float32), 1)
        hits = engine.search(np.array([1, 0, 0], dtype=np.float32), 1)
        assert hits[0][1] == 1
        assert hits[0][0] == pytest.approx(0.0, abs=1e-6)
