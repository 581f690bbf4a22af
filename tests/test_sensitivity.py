"""Tests for the proposal-scale sweep."""

from __future__ import annotations

from weight_mcmc.config import MCMCConfig, PathConfig
from weight_mcmc.sensitivity import run_proposal_scale_sensitivity


def test_sweep_returns_one_row_per_scale(two_item_datasets) -> None:
    base = MCMCConfig(n_samples=500, burn_in=100, random_seed=3)
    df = run_proposal_scale_sensitivity(two_item_datasets, [0.05, 0.5], base, save=False)

    assert df["proposal_scale"].tolist() == [0.05, 0.5]
    assert {"acceptance_rate", "mean_ci_width", "converged", "converged_items", "n_items"} <= set(df.columns)
    # larger steps are rejected more often
    assert df.loc[0, "acceptance_rate"] > df.loc[1, "acceptance_rate"]
    assert (df["n_items"] == 2).all()


def test_sweep_writes_summary(two_item_datasets, tmp_path) -> None:
    base = MCMCConfig(n_samples=200, burn_in=50, random_seed=3)
    paths = PathConfig(workspace=tmp_path, output_dir="sweep")
    df = run_proposal_scale_sensitivity(two_item_datasets, [0.1], base, paths)

    assert len(df) == 1
    assert (tmp_path / "sweep" / "proposal_scale_sensitivity.csv").exists()
