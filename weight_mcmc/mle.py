from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np

from .model import Dataset, parse_datasets

GRAD_CLIP = 100.0
THETA_CLIP = 50.0


@dataclass
class CountMatrix:
    """counts[k, j]: observed k -> j transformations; rows are inputs."""
    counts: np.ndarray
    item_ids: list[str]

    @property
    def item_index(self) -> dict[str, int]:
        return {item_id: i for i, item_id in enumerate(self.item_ids)}


def _mle_universe(datasets: Sequence[Dataset]) -> list[str]:
    # outputs then inputs, dataset by dataset
    seen: dict[str, None] = {}
    for ds in datasets:
        for item in ds.items:
            seen.setdefault(item.id, None)
        for input_id in ds.input_items:
            seen.setdefault(input_id, None)
    return list(seen)


def build_count_matrix(datasets: Sequence[Any]) -> CountMatrix:
    """
    Aggregate datasets into an N x N input -> output matrix.

    A dataset without inputs spreads each output count C as C/N over every
    row; with several inputs each input row gets C / n_inputs.
    """
    datasets = parse_datasets(datasets)
    if not datasets:
        raise ValueError("Datasets array cannot be empty")

    item_ids = _mle_universe(datasets)
    index = {item_id: i for i, item_id in enumerate(item_ids)}
    n = len(item_ids)
    counts = np.zeros((n, n), dtype=float)

    for ds in datasets:
        row = np.zeros(n, dtype=float)
        for item in ds.items:
            row[index[item.id]] += item.count
        if not ds.input_items:
            if n > 0:
                counts += row / n
            continue
        share = row / len(ds.input_items)
        for input_id in ds.input_items:
            counts[index[input_id]] += share

    return CountMatrix(counts=counts, item_ids=item_ids)


def estimate_weights_from_counts(
    counts: np.ndarray | CountMatrix,
    learning_rate: float = 0.001,
    iterations: int = 6000,
    convergence_threshold: float | None = None,
) -> np.ndarray:
    """
    Softmax gradient ascent on the multinomial log-likelihood.

    Row k models outputs of input k with prob[m] = exp(θ_m) / Σ_{i≠k} exp(θ_i);
    the diagonal is ignored. Gradients are clipped to ±100 and θ to ±50.
    """
    if isinstance(counts, CountMatrix):
        counts = counts.counts
    counts = np.asarray(counts, dtype=float)
    if counts.ndim != 2 or counts.shape[0] == 0:
        raise ValueError("Invalid count matrix: counts array is empty")
    if counts.shape[0] != counts.shape[1]:
        raise ValueError("Count matrix must be square")
    if learning_rate <= 0:
        raise ValueError("Invalid learning rate: must be positive")
    if iterations <= 0 or int(iterations) != iterations:
        raise ValueError("Invalid iterations: must be positive")

    n = counts.shape[0]
    if n == 1:
        return np.ones(1)

    off_diag = counts.copy()
    np.fill_diagonal(off_diag, 0.0)
    n_k = off_diag.sum(axis=1)
    active = n_k > 0
    theta = np.zeros(n)

    for _ in range(int(iterations)):
        exp_theta = np.exp(theta)
        total = exp_theta.sum()
        if not np.isfinite(total) or total == 0:
            theta[:] = 0.0
            exp_theta = np.ones(n)
            total = float(n)

        # normalizer of row k leaves k out
        row_norm = total - exp_theta
        rows = active & np.isfinite(row_norm) & (row_norm > 0)

        expected = n_k[rows][:, None] * exp_theta[None, :] / row_norm[rows][:, None]
        residual = off_diag[rows] - expected
        residual[np.arange(rows.sum()), np.flatnonzero(rows)] = 0.0
        grad = residual.sum(axis=0)

        theta = np.clip(theta + learning_rate * np.clip(grad, -GRAD_CLIP, GRAD_CLIP),
                        -THETA_CLIP, THETA_CLIP)

        if convergence_threshold is not None and np.linalg.norm(grad) < convergence_threshold:
            break

    weights = np.exp(theta)
    return weights / weights.sum()


def estimate_item_weights(datasets: Sequence[Any], **options) -> dict[str, float]:
    """Item id -> maximum-likelihood weight; options go to estimate_weights_from_counts."""
    matrix = build_count_matrix(datasets)
    weights = estimate_weights_from_counts(matrix, **options)
    return {item_id: float(w) for item_id, w in zip(matrix.item_ids, weights)}
