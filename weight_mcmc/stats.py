# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Posterior summary module (stats.py)

Median, mode approximation and credible interval per item, plus the
caller-side renormalization of point estimates.
"""

import warnings
from dataclasses import dataclass, replace
from typing import Dict, Mapping, Sequence

import numpy as np
import pandas as pd

from .config import MIN_SUMMARY_SAMPLES


@dataclass(frozen=True)
class CredibleInterval:
    lower: float
    upper: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass(frozen=True)
class PosteriorSummary:
    """Per-item summary; computed once per run"""
    median: float
    map_approx: float                # equals the median, no mode search
    credible_interval: CredibleInterval

    def to_dict(self) -> Dict[str, object]:
        return {
            'median': self.median,
            'map': self.map_approx,
            'credibleInterval': {
                'lower': self.credible_interval.lower,
                'upper': self.credible_interval.upper
            }
        }


def _as_array(samples: Sequence[float]) -> np.ndarray:
    arr = np.asarray(samples, dtype=float)
    if arr.size == 0:
        raise ValueError("Samples array cannot be empty")
    return arr


def compute_median(samples: Sequence[float]) -> float:
    """Sorted-array median; mean of the two middle values for even length"""
    return float(np.median(_as_array(samples)))


def compute_map_approx(samples: Sequence[float]) -> float:
    """
    Mode approximation

    Returns the median. A kernel-mode search is not performed.
    """
    return compute_median(samples)


def compute_credible_interval(samples: Sequence[float], level: float = 0.95) -> CredibleInterval:
    """
    Equal-tailed credible interval

    Uses linear-interpolation quantiles (R type 7) at (1-level)/2 and
    1-(1-level)/2.
    """
    arr = _as_array(samples)
    if level <= 0 or level >= 1:
        raise ValueError("Level must be between 0 and 1")
    tail = (1.0 - level) / 2.0
    lower, upper = np.quantile(arr, [tail, 1.0 - tail], method='linear')
    return CredibleInterval(float(lower), float(upper))


def summarize_samples(samples: Sequence[float], level: float = 0.95) -> PosteriorSummary:
    return PosteriorSummary(
        median=compute_median(samples),
        map_approx=compute_map_approx(samples),
        credible_interval=compute_credible_interval(samples, level)
    )


def compute_statistics(
    posterior_samples: Mapping[str, Sequence[float]],
    level: float = 0.95
) -> Dict[str, PosteriorSummary]:
    """
    Summaries for every item with at least one sample

    Args:
        posterior_samples: item id -> pooled samples
        level: credible-interval level

    Returns:
        item id -> PosteriorSummary
    """
    if not posterior_samples:
        raise ValueError("Posterior samples cannot be empty")

    statistics: Dict[str, PosteriorSummary] = {}
    for item_id, samples in posterior_samples.items():
        if samples is None or len(samples) == 0:
            continue
        if len(samples) < MIN_SUMMARY_SAMPLES:
            warnings.warn(
                f"Insufficient samples for {item_id}: {len(samples)} (minimum: {MIN_SUMMARY_SAMPLES})"
            )
        statistics[item_id] = summarize_samples(samples, level)
    return statistics


def renormalize_summary(statistics: Mapping[str, PosteriorSummary]) -> Dict[str, PosteriorSummary]:
    """
    Scale point estimates so the medians sum to 1

    Median, map and both interval bounds are divided by the sum of medians.
    Samples are not touched.
    """
    total = sum(s.median for s in statistics.values())
    if total <= 0 or total == 1.0:
        return dict(statistics)
    return {
        item_id: replace(
            s,
            median=s.median / total,
            map_approx=s.map_approx / total,
            credible_interval=CredibleInterval(
                s.credible_interval.lower / total,
                s.credible_interval.upper / total
            )
        )
        for item_id, s in statistics.items()
    }


def summary_table(statistics: Mapping[str, PosteriorSummary]) -> pd.DataFrame:
    """Items ranked by posterior median"""
    records = [
        {
            'item_id': item_id,
            'median': s.median,
            'map': s.map_approx,
            'ci_lower': s.credible_interval.lower,
            'ci_upper': s.credible_interval.upper,
            'ci_width': s.credible_interval.width
        }
        for item_id, s in statistics.items()
    ]
    df = pd.DataFrame(records, columns=['item_id', 'median', 'map', 'ci_lower', 'ci_upper', 'ci_width'])
    df = df.sort_values('median', ascending=False, kind='mergesort').reset_index(drop=True)
    df.insert(0, 'rank', np.arange(1, len(df) + 1))
    return df
