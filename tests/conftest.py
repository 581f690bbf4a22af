"""Shared fixtures for the weight_mcmc test suite."""

from __future__ import annotations

import os
from pathlib import Path
import sys

import pytest

os.environ.setdefault("MPLBACKEND", "Agg")

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from weight_mcmc.config import MCMCConfig


@pytest.fixture
def two_item_datasets() -> list[dict]:
    # esh is only ever an input, so the universe is {tul, xoph}
    return [
        {
            "items": [{"id": "tul", "count": 2030}, {"id": "xoph", "count": 2007}],
            "inputItems": [{"id": "esh"}],
        }
    ]


@pytest.fixture
def three_item_datasets() -> list[dict]:
    return [
        {"items": [{"id": "a", "count": 40}, {"id": "b", "count": 25}, {"id": "c", "count": 10}]},
        {"items": [{"id": "b", "count": 12}, {"id": "c", "count": 6}], "inputItems": [{"id": "a"}]},
        {"items": [{"id": "a", "count": 9}], "inputItems": [{"id": "c"}, {"id": "b"}]},
    ]


@pytest.fixture
def small_config() -> MCMCConfig:
    return MCMCConfig(n_samples=300, n_chains=2, burn_in=100, random_seed=7)
