"""Tests for convergence diagnostics and the exclusion check."""

from __future__ import annotations

import numpy as np
import pytest

from weight_mcmc.diagnostics import (
    check_exclusion,
    compute_autocorrelation,
    compute_convergence_diagnostics,
    compute_ess_geyer,
    compute_split_rhat,
    format_diagnostic_report,
    plot_posterior_density,
    plot_trace,
)
from weight_mcmc.stats import compute_statistics


def _ar1(n: int, phi: float, rng: np.random.Generator) -> np.ndarray:
    x = np.empty(n)
    x[0] = rng.normal()
    for t in range(1, n):
        x[t] = phi * x[t - 1] + rng.normal()
    return x


# ---------------------------------------------------------------------------
# Heuristic method


def test_heuristic_reports_sample_count() -> None:
    diag = compute_convergence_diagnostics({"a": np.zeros(1000), "b": np.zeros(1000)})
    assert diag.method == "heuristic"
    assert diag["a"].ess == 1000
    assert diag["a"].rhat == 1.0
    assert diag.converged
    assert diag.warnings == []


def test_heuristic_flags_short_runs() -> None:
    diag = compute_convergence_diagnostics({"a": np.zeros(300), "b": np.zeros(800)})
    assert not diag["a"].converged
    assert diag["b"].converged
    assert not diag.converged
    assert diag.warnings == ["Parameter 'a' has ESS = 300 (recommended: >400)"]


def test_heuristic_threshold_is_strict() -> None:
    diag = compute_convergence_diagnostics({"a": np.zeros(400)})
    assert not diag["a"].converged


def test_diagnostics_to_dict_has_overall() -> None:
    payload = compute_convergence_diagnostics({"a": np.zeros(500)}).to_dict()
    assert payload["a"] == {"rhat": 1.0, "ess": 500.0, "converged": True}
    assert payload["overall"] == {"converged": True, "warnings": []}


def test_unknown_method_rejected() -> None:
    with pytest.raises(ValueError):
        compute_convergence_diagnostics({"a": np.zeros(10)}, method="bogus")


# ---------------------------------------------------------------------------
# Full method


def test_autocorrelation_lag_zero_is_one() -> None:
    acf = compute_autocorrelation(np.random.default_rng(0).normal(size=400))
    assert acf[0] == pytest.approx(1.0)
    assert len(acf) == 200


def test_autocorrelation_matches_direct_sum() -> None:
    x = np.random.default_rng(8).normal(size=300)
    centered = x - x.mean()
    direct = [np.sum(centered[: 300 - k] * centered[k:]) / ((300 - k) * centered.var()) for k in range(20)]
    assert np.allclose(compute_autocorrelation(x, max_lag=20), direct)


def test_ess_of_constant_chain_is_its_length() -> None:
    assert compute_ess_geyer(np.full(50, 0.3)) == (50.0, 1.0)


def test_ess_reflects_autocorrelation() -> None:
    rng = np.random.default_rng(4)
    iid_ess, _ = compute_ess_geyer(rng.normal(size=5000))
    ar_ess, tau = compute_ess_geyer(_ar1(5000, 0.9, rng))
    assert iid_ess > 3000
    # theoretical value n (1 - phi) / (1 + phi) is about 263
    assert 130 < ar_ess < 530
    assert tau > 5


def test_split_rhat_detects_disagreeing_chains() -> None:
    rng = np.random.default_rng(5)
    agree = rng.normal(size=(2, 1000))
    disagree = np.vstack([rng.normal(0, 1, 1000), rng.normal(5, 1, 1000)])
    assert compute_split_rhat(agree) < 1.05
    assert compute_split_rhat(disagree) > 1.5
    assert np.isnan(compute_split_rhat(np.zeros((2, 3))))


def test_full_method_on_good_and_bad_chains() -> None:
    rng = np.random.default_rng(6)
    good = rng.normal(size=2000)
    bad = np.concatenate([rng.normal(0, 1, 1000), rng.normal(5, 1, 1000)])
    diag = compute_convergence_diagnostics({"good": good, "bad": bad}, method="full", n_chains=2)

    assert diag.method == "full"
    assert diag["good"].converged
    assert diag["good"].rhat < 1.1
    assert not diag["bad"].converged
    assert diag["bad"].rhat > 1.1
    assert not diag.converged
    assert any("R-hat" in w and "'bad'" in w for w in diag.warnings)


# ---------------------------------------------------------------------------
# Exclusion check and reporting


def test_check_exclusion_reports_inputs_with_mass() -> None:
    posterior = {"a": np.zeros(10), "b": np.full(10, 0.2)}
    messages = check_exclusion(posterior, ["a", "b", "b", "z"])
    assert len(messages) == 1
    assert "'b'" in messages[0]
    assert "0.200000" in messages[0]


def test_format_diagnostic_report() -> None:
    diag = compute_convergence_diagnostics({"a": np.zeros(300)})
    report = format_diagnostic_report(diag, acceptance_rate=0.31)
    assert "Overall converged: False" in report
    assert "0.310" in report
    assert "ESS = 300" in report


def test_plots_return_figures() -> None:
    plt = pytest.importorskip("matplotlib.pyplot")
    rng = np.random.default_rng(7)
    samples = rng.dirichlet(np.ones(3), size=300)
    posterior = {k: samples[:, i] for i, k in enumerate("abc")}

    fig = plot_trace(samples, list("abc"))
    assert len(fig.axes) == 3
    plt.close(fig)

    chains = rng.dirichlet(np.ones(3), size=(2, 150))
    fig = plot_trace(chains, list("abc"))
    assert len(fig.axes) == 3
    assert len(fig.axes[0].lines) == 3  # two chains and the median line
    plt.close(fig)

    fig = plot_posterior_density(posterior, compute_statistics(posterior))
    assert fig is not None
    plt.close(fig)
