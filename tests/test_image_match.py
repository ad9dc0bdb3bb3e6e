# tests/test_image_match.py
import numpy as np
import pytest

from vision.errors import EmbeddingDimensionError
from vision.image_match import dot, format_result, rank
from vision.vector_utils import normalize


def _random_entries(n, dim=16, seed=0):
    rng = np.random.default_rng(seed)
    return {i: normalize(rng.normal(size=dim)) for i in range(1, n + 1)}


def test_score_is_dot_product_and_symmetric():
    rng = np.random.default_rng(1)
    for _ in range(20):
        a, b = normalize(rng.normal(size=8)), normalize(rng.normal(size=8))
        assert dot(a, b) == dot(b, a)
        assert -1.0 - 1e-6 <= dot(a, b) <= 1.0 + 1e-6
        [(item_id, score)] = rank(a, {7: b}, k=1)
        assert item_id == 7
        assert score == pytest.approx(dot(a, b), abs=1e-6)


def test_results_bounded_sorted_and_known():
    entries = _random_entries(25)
    query = normalize(np.random.default_rng(2).normal(size=16))
    for k in (1, 6, 25, 100):
        results = rank(query, entries, k)
        assert len(results) == min(k, len(entries))
        scores = [s for _, s in results]
        assert all(a >= b for a, b in zip(scores, scores[1:]))
        assert all(item_id in entries for item_id, _ in results)


def test_ties_break_by_ascending_id():
    v = normalize([1.0, 0.0, 0.0])
    entries = {9: v, 3: v, 5: v, 1: normalize([0.0, 1.0, 0.0])}
    assert [i for i, _ in rank(v, entries, k=4)] == [3, 5, 9, 1]


def test_identical_vector_ranks_first():
    entries = _random_entries(10)
    query = entries[4]
    results = rank(query, entries, k=3)
    assert results[0][0] == 4
    assert results[0][1] == pytest.approx(1.0, abs=1e-5)


def test_empty_entries_give_empty_result():
    assert rank(normalize([1.0, 2.0]), {}, k=6) == []
    assert rank(normalize([1.0, 2.0]), {1: normalize([1.0, 0.0])}, k=0) == []


def test_query_dimension_mismatch_rejected():
    with pytest.raises(EmbeddingDimensionError):
        rank(normalize([1.0, 0.0, 0.0]), {1: normalize([1.0, 0.0])}, k=1)


def test_rank_does_not_mutate_entries():
    entries = _random_entries(5)
    before = {k: v.copy() for k, v in entries.items()}
    rank(entries[1], entries, k=5)
    assert entries.keys() == before.keys()
    for k in entries:
        np.testing.assert_array_equal(entries[k], before[k])


def test_format_result_adds_rounded_score():
    row = {"id": 3, "name": "Estate Urn"}
    out = format_result(row, 0.987654)
    assert out == {"id": 3, "name": "Estate Urn", "score": 0.9877}
    assert "score" not in row
