import numpy as np
import pytest

from index_service.infrastructure.vector_search.brute_force_index import BruteForceVectorIndex
from index_service.infrastructure.vector_search.hnsw_index import HnswVectorIndex


def _unit_rows(n: int, dims: int, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    matrix = rng.normal(size=(n, dims)).astype(np.float32)
    return matrix / np.linalg.norm(matrix, axis=1, keepdims=True)


def test_brute_force_ranks_by_inner_product():
    matrix = np.array([[1, 0], [0, 1], [0.6, 0.8]], dtype=np.float32)
    index = BruteForceVectorIndex(matrix)

    matches = index.search([1, 0], 2)

    assert [m.index for m in matches] == [0, 2]
    assert matches[0].score == pytest.approx(1.0)
    assert matches[1].score == pytest.approx(0.6)


def test_brute_force_ties_keep_storage_order():
    index = BruteForceVectorIndex(np.ones((4, 3), dtype=np.float32))
    assert [m.index for m in index.search([1, 1, 1], 4)] == [0, 1, 2, 3]


def test_brute_force_filter_skips_rows():
    matrix = _unit_rows(20, 8)
    index = BruteForceVectorIndex(matrix)

    matches = index.search(matrix[4], 3, filter=lambda row: row % 2 == 1)

    assert len(matches) == 3
    assert all(m.index % 2 == 1 for m in matches)


def test_brute_force_rejects_wrong_dimensions():
    index = BruteForceVectorIndex(_unit_rows(5, 8))
    with pytest.raises(ValueError):
        index.search([0.1] * 7, 1)


def test_brute_force_edge_cases():
    index = BruteForceVectorIndex(_unit_rows(5, 8))
    assert index.search([0.0] * 8, 0) == []
    index.close()
    assert index.dims == 8
    assert index.search([0.0] * 8, 3) == []


def test_hnsw_finds_the_stored_vector():
    matrix = _unit_rows(60, 16)
    index = HnswVectorIndex.build(matrix, m=16, ef_construction=100, ef_search=64)

    for row in (0, 17, 59):
        assert index.search(matrix[row], 1)[0].index == row
    assert index.dims == 16
    index.close()


def test_hnsw_round_trips_through_bytes():
    matrix = _unit_rows(40, 12)
    built = HnswVectorIndex.build(matrix, m=8)
    restored = HnswVectorIndex.deserialize(built.serialize(), ef_search=64)

    expected = [m.index for m in built.search(matrix[3], 5)]
    assert [m.index for m in restored.search(matrix[3], 5)] == expected

    built.close()
    restored.close()
    assert restored.search(matrix[3], 5) == []


def test_hnsw_filter_widens_the_candidate_window():
    matrix = _unit_rows(50, 8)
    index = HnswVectorIndex.build(matrix, m=8)

    matches = index.search(matrix[0], 5, filter=lambda row: row >= 45)

    assert sorted(m.index for m in matches) == [45, 46, 47, 48, 49]
    index.close()
