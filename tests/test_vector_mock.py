"""
Tests for the exact-scan numpy backend, which must honour the same contract
as the faiss backend with real (never random) distances.
"""

import numpy as np
import pytest

from pgv_faiss.core.errors import VectorIndexError
from pgv_faiss.core.schema import IndexFamily
from pgv_faiss.vector.factory import IndexFactory
from pgv_faiss.vector.index import IVectorIndex, NumpyBruteForceIndex
from pgv_faiss.vector.resources import ResourceManager
from pgv_faiss.vector.types import TrainingState, VectorBatch


def _factory():
    return IndexFactory(ResourceManager(device_count_fn=lambda: 0), backend="numpy")


def test_numpy_index_implements_interface():
    """NumpyBruteForceIndex implements IVectorIndex."""
    index = NumpyBruteForceIndex(IndexFamily.FLAT, 3)
    assert isinstance(index, IVectorIndex)
    assert index.backend == "numpy"


def test_add_and_search_exact_distances():
    """Distances are squared Euclidean, computed from the stored vectors."""
    index = NumpyBruteForceIndex(IndexFamily.FLAT, 2)
    index.add(VectorBatch.build([[0, 0], [3, 4]], [10, 20], 2))

    distances, labels = index.search(np.array([[0, 0]], dtype=np.float32), 2)
    assert labels[0].tolist() == [10, 20]
    np.testing.assert_allclose(distances[0], [0.0, 25.0])


def test_search_is_deterministic():
    """Repeated identical queries give identical results."""
    rng = np.random.default_rng(3)
    index = NumpyBruteForceIndex(IndexFamily.FLAT, 8)
    index.add(VectorBatch.build(rng.standard_normal((50, 8)), np.arange(50), 8))
    query = rng.standard_normal((1, 8)).astype(np.float32)

    first = index.search(query, 5)
    second = index.search(query, 5)
    np.testing.assert_array_equal(first[0], second[0])
    np.testing.assert_array_equal(first[1], second[1])


def test_search_pads_missing_slots():
    """Slots beyond ntotal hold the -1 sentinel."""
    index = NumpyBruteForceIndex(IndexFamily.FLAT, 2)
    index.add(VectorBatch.build([[1, 1]], [7], 2))
    _, labels = index.search(np.zeros((1, 2), dtype=np.float32), 3)
    assert labels[0].tolist() == [7, -1, -1]


def test_inverted_file_still_passes_training_gate():
    """The numpy backend starts untrained for the inverted-file family."""
    handle = _factory().create({"dimension": 4, "family": "IVFFlat"})
    assert handle.training_state is TrainingState.UNTRAINED

    handle.add(np.eye(4), [1, 2, 3, 4])
    assert handle.training_state is TrainingState.TRAINED
    assert handle.train_count == 1
    handle.destroy()


def test_payload_round_trip():
    """to_bytes/from_bytes restores vectors, ids and the trained flag."""
    index = NumpyBruteForceIndex(IndexFamily.INVERTED_FILE, 3)
    index.train(np.ones((1, 3), dtype=np.float32))
    index.add(VectorBatch.build([[1, 2, 3], [4, 5, 6]], [5, 6], 3))

    header = {"family": "IVFFlat", "dimension": 3}
    restored = NumpyBruteForceIndex.from_bytes(index.to_bytes(), header)
    assert restored.ntotal == 2
    assert restored.is_trained

    _, labels = restored.search(np.array([[4, 5, 6]], dtype=np.float32), 1)
    assert labels[0].tolist() == [6]


def test_payload_dimension_mismatch():
    """A payload whose vectors disagree with the header dimension is rejected."""
    index = NumpyBruteForceIndex(IndexFamily.FLAT, 3)
    index.add(VectorBatch.build([[1, 2, 3]], [1], 3))
    with pytest.raises(ValueError):
        NumpyBruteForceIndex.from_bytes(index.to_bytes(), {"family": "Flat", "dimension": 4})


def test_release_empties_index():
    """release drops all stored vectors."""
    index = NumpyBruteForceIndex(IndexFamily.GRAPH, 2)
    index.add(VectorBatch.build([[1, 2]], [1], 2))
    index.release()
    assert index.ntotal == 0


class TestVectorBatch:
    """Input validation for add batches."""

    def test_two_dimensional_input(self):
        batch = VectorBatch.build([[1, 2], [3, 4]], [1, 2], 2)
        assert len(batch) == 2
        assert batch.dimension == 2
        assert batch.vectors.dtype == np.float32
        assert batch.ids.dtype == np.int64

    def test_flattened_input_with_count(self):
        batch = VectorBatch.build([1, 2, 3, 4, 5, 6], [1, 2, 3], 2, count=2)
        assert len(batch) == 2
        np.testing.assert_array_equal(batch.vectors, [[1, 2], [3, 4]])

    def test_dimension_mismatch(self):
        with pytest.raises(VectorIndexError) as exc_info:
            VectorBatch.build([[1, 2, 3]], [1], 2)
        assert exc_info.value.status == -3

    def test_flattened_not_divisible(self):
        with pytest.raises(VectorIndexError) as exc_info:
            VectorBatch.build([1, 2, 3], [1], 2)
        assert exc_info.value.status == -3

    def test_id_count_mismatch(self):
        with pytest.raises(VectorIndexError) as exc_info:
            VectorBatch.build([[1, 2], [3, 4]], [1], 2)
        assert exc_info.value.status == -3

    def test_count_exceeds_data(self):
        with pytest.raises(VectorIndexError) as exc_info:
            VectorBatch.build([[1, 2]], [1], 2, count=3)
        assert exc_info.value.status == -3

    def test_head(self):
        batch = VectorBatch.build(np.arange(10).reshape(5, 2), np.arange(5), 2)
        assert batch.head(2).shape == (2, 2)
