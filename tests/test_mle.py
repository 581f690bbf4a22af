"""Tests for the maximum-likelihood point estimator."""

from __future__ import annotations

import numpy as np
import pytest

from weight_mcmc.mle import build_count_matrix, estimate_item_weights, estimate_weights_from_counts


def test_count_matrix_single_input() -> None:
    matrix = build_count_matrix([{"items": [{"id": "a", "count": 10}, {"id": "b", "count": 20}],
                                  "inputItems": [{"id": "c"}]}])
    # inputs join the universe after the outputs
    assert matrix.item_ids == ["a", "b", "c"]
    assert np.allclose(matrix.counts[2], [10, 20, 0])
    assert np.allclose(matrix.counts[:2], 0)
    assert matrix.item_index == {"a": 0, "b": 1, "c": 2}


def test_count_matrix_unknown_input_spreads_counts() -> None:
    matrix = build_count_matrix([{"items": [{"id": "a", "count": 3}, {"id": "b", "count": 6}]}])
    assert np.allclose(matrix.counts, [[1.5, 3.0], [1.5, 3.0]])


def test_count_matrix_multiple_inputs_split_counts() -> None:
    matrix = build_count_matrix([{"items": [{"id": "a", "count": 10}],
                                  "inputItems": [{"id": "b"}, {"id": "c"}]}])
    assert np.allclose(matrix.counts[1], [5, 0, 0])
    assert np.allclose(matrix.counts[2], [5, 0, 0])
    assert np.allclose(matrix.counts[0], 0)


def test_count_matrix_rejects_empty() -> None:
    with pytest.raises(ValueError, match="Datasets array cannot be empty"):
        build_count_matrix([])


def test_symmetric_data_gives_uniform_weights() -> None:
    datasets = [
        {"items": [{"id": "b", "count": 50}, {"id": "c", "count": 50}], "inputItems": [{"id": "a"}]},
        {"items": [{"id": "a", "count": 50}, {"id": "c", "count": 50}], "inputItems": [{"id": "b"}]},
        {"items": [{"id": "a", "count": 50}, {"id": "b", "count": 50}], "inputItems": [{"id": "c"}]},
    ]
    weights = estimate_item_weights(datasets)
    assert set(weights) == {"a", "b", "c"}
    assert all(w == pytest.approx(1 / 3) for w in weights.values())


def test_weights_follow_observed_ratio() -> None:
    datasets = [{"items": [{"id": "a", "count": 60}, {"id": "b", "count": 30}], "inputItems": [{"id": "c"}]}]
    weights = estimate_item_weights(datasets)
    assert weights["a"] / weights["b"] == pytest.approx(2.0, rel=1e-3)
    assert sum(weights.values()) == pytest.approx(1.0)


def test_single_item_matrix() -> None:
    assert estimate_weights_from_counts(np.array([[4.0]])).tolist() == [1.0]


def test_early_stop_on_threshold() -> None:
    counts = np.array([[0, 60, 30], [0, 0, 0], [0, 0, 0]], dtype=float)
    weights = estimate_weights_from_counts(counts, convergence_threshold=1e6)
    # one step from uniform
    assert np.allclose(weights, 1 / 3, atol=0.01)
    assert weights.sum() == pytest.approx(1.0)


@pytest.mark.parametrize(
    "counts, options",
    [
        (np.zeros((2, 3)), {}),
        (np.zeros((0, 0)), {}),
        (np.zeros((2, 2)), {"learning_rate": 0}),
        (np.zeros((2, 2)), {"iterations": 0}),
        (np.zeros((2, 2)), {"iterations": 2.5}),
    ],
)
def test_invalid_inputs_rejected(counts, options) -> None:
    with pytest.raises(ValueError):
        estimate_weights_from_counts(counts, **options)
