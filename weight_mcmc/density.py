from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

# used when every sample is identical and both Silverman and range/10 vanish
MIN_BANDWIDTH = 1e-3


@dataclass(frozen=True)
class DensityPoint:
    x: float
    y: float


def silverman_bandwidth(samples: Sequence[float]) -> float:
    """0.9 * min(σ, IQR/1.34) * n^(-1/5), falling back to range/10 then MIN_BANDWIDTH."""
    arr = np.sort(np.asarray(samples, dtype=float))
    n = arr.size
    std = float(np.std(arr))
    iqr = float(arr[int(n * 0.75)] - arr[int(n * 0.25)])
    h = 0.9 * min(std, iqr / 1.34) * n ** -0.2
    if not math.isfinite(h) or h <= 0:
        h = float(arr[-1] - arr[0]) / 10.0
    if not math.isfinite(h) or h <= 0:
        h = MIN_BANDWIDTH
    return h


def kde_arrays(
    samples: Sequence[float],
    num_points: int = 100,
    bandwidth: float | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Gaussian KDE evaluated on ``num_points`` points; returns (x, density)."""
    arr = np.asarray(samples, dtype=float)
    if arr.size == 0 or num_points <= 0:
        return np.empty(0), np.empty(0)

    lo, hi = float(arr.min()), float(arr.max())
    span = hi - lo
    if bandwidth is None or bandwidth <= 0:
        bandwidth = silverman_bandwidth(arr)

    padding = 0.1 * span
    x_min = lo - padding
    step = (hi + padding - x_min) / num_points
    x = x_min + step * np.arange(num_points)

    z = (x[:, None] - arr[None, :]) / bandwidth
    y = np.exp(-0.5 * z * z).sum(axis=1) / (arr.size * bandwidth * math.sqrt(2.0 * math.pi))
    return x, y


def compute_kde(
    samples: Sequence[float],
    num_points: int = 100,
    bandwidth: float | None = None,
) -> list[DensityPoint]:
    x, y = kde_arrays(samples, num_points, bandwidth)
    return [DensityPoint(float(a), float(b)) for a, b in zip(x, y)]
