"""End-to-end tests for the inference session and its drivers."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import numpy as np
import pytest

from weight_mcmc.config import MCMCConfig
from weight_mcmc.engine import (
    CancellationToken,
    InferenceSession,
    run_inference,
    run_inference_async,
)
from weight_mcmc.errors import EmptyUniverseError, InferenceCancelledError, InferenceFailedError
from weight_mcmc.sampler import SamplerPhase, WeightSampler


# ---------------------------------------------------------------------------
# Degenerate and invalid inputs


def test_single_item_universe_skips_sampling() -> None:
    config = MCMCConfig(n_samples=200, n_chains=2, burn_in=10)
    progress: list[float] = []
    result = run_inference([{"items": [{"id": "a", "count": 5}]}], config, on_progress=progress.append)

    samples = result.posterior_samples["a"]
    assert len(samples) == 400
    assert np.all(samples == 1.0)
    summary = result.summary_statistics["a"]
    assert summary.median == 1.0
    assert summary.map_approx == 1.0
    assert (summary.credible_interval.lower, summary.credible_interval.upper) == (1.0, 1.0)
    assert result.convergence_diagnostics.converged
    assert result.convergence_diagnostics["a"].converged
    assert result.sampling is None
    assert progress[-1] == 100.0


def test_empty_dataset_list_rejected() -> None:
    with pytest.raises(ValueError, match="Datasets array cannot be empty"):
        run_inference([])


def test_empty_universe_fails_before_sampling() -> None:
    session = InferenceSession([{"items": [], "inputItems": [{"id": "a"}]}])
    with pytest.raises(EmptyUniverseError):
        session.run()
    assert session.events == []


# ---------------------------------------------------------------------------
# Full runs


def test_two_item_scenario(two_item_datasets) -> None:
    result = run_inference(two_item_datasets, MCMCConfig(random_seed=42))

    assert result.item_ids == ["tul", "xoph"]
    assert result.model_assumptions.single_known_input == 1
    assert result.metadata.n_items == 2
    assert len(result.posterior_samples["tul"]) == 4000

    medians = {k: s.median for k, s in result.summary_statistics.items()}
    assert medians["tul"] == pytest.approx(0.5, abs=0.05)
    assert medians["xoph"] == pytest.approx(0.5, abs=0.05)

    scaled = result.renormalized_summary()
    assert scaled["tul"].median + scaled["xoph"].median == pytest.approx(1.0)
    assert result.convergence_diagnostics.converged


def test_samples_lie_on_simplex(three_item_datasets, small_config) -> None:
    result = run_inference(three_item_datasets, small_config)
    stacked = np.column_stack([result.posterior_samples[i] for i in result.item_ids])
    assert stacked.shape == (600, 3)
    assert np.allclose(stacked.sum(axis=1), 1.0)
    for item_id, s in result.summary_statistics.items():
        assert s.credible_interval.lower <= s.median <= s.credible_interval.upper
        assert s.map_approx == s.median
    assert 0.0 < result.metadata.acceptance_rate < 1.0


def test_progress_is_monotone_and_completes(three_item_datasets, small_config) -> None:
    progress: list[float] = []
    session = InferenceSession(three_item_datasets, small_config)
    session.run(on_progress=progress.append)

    assert progress == sorted(progress)
    assert all(0.0 <= p <= 100.0 for p in progress)
    assert 95.0 in progress
    assert progress[-1] == 100.0
    assert session.phase is SamplerPhase.DONE
    assert session.result is not None
    assert session.events[-1].phase is SamplerPhase.DONE


def test_second_run_starts_progress_from_scratch(three_item_datasets, small_config) -> None:
    session = InferenceSession(three_item_datasets, small_config)
    session.run()
    first_events = list(session.events)

    progress: list[float] = []
    session.run(on_progress=progress.append)

    assert progress[0] < 100.0
    assert progress == sorted(progress)
    assert progress[-1] == 100.0
    assert len(session.events) == len(first_events)
    assert session.events[0].percent == first_events[0].percent


def test_second_stream_starts_from_scratch(three_item_datasets, small_config) -> None:
    session = InferenceSession(three_item_datasets, small_config)

    async def consume() -> list[float]:
        return [event.percent async for event in session.stream()]

    first = asyncio.run(consume())
    second = asyncio.run(consume())
    assert second == first
    assert second[0] < 100.0
    assert session.phase is SamplerPhase.DONE


def test_seeded_runs_match(three_item_datasets, small_config) -> None:
    first = run_inference(three_item_datasets, small_config)
    second = run_inference(three_item_datasets, small_config)
    for item_id in first.item_ids:
        assert np.array_equal(first.posterior_samples[item_id], second.posterior_samples[item_id])


def test_parallel_chains_match_serial(three_item_datasets, small_config) -> None:
    serial = run_inference(three_item_datasets, small_config)
    progress: list[float] = []
    parallel = run_inference(three_item_datasets, replace(small_config, n_jobs=2), on_progress=progress.append)
    for item_id in serial.item_ids:
        assert np.array_equal(serial.posterior_samples[item_id], parallel.posterior_samples[item_id])
    assert progress == sorted(progress)
    assert progress[-1] == 100.0


def test_full_diagnostics_mode(three_item_datasets, small_config) -> None:
    result = run_inference(three_item_datasets, replace(small_config, diagnostics_method="full"))
    diag = result.convergence_diagnostics
    assert diag.method == "full"
    for item_id in result.item_ids:
        assert 0 < diag[item_id].ess <= 600
        assert np.isfinite(diag[item_id].rhat)


# ---------------------------------------------------------------------------
# Failures


def test_sampling_failure_is_wrapped(three_item_datasets, small_config, monkeypatch) -> None:
    def boom(self, weights):
        raise RuntimeError("boom")

    monkeypatch.setattr(WeightSampler, "log_posterior", boom)
    with pytest.raises(InferenceFailedError) as info:
        run_inference(three_item_datasets, small_config)
    assert str(info.value) == "Bayesian inference failed: boom"
    assert isinstance(info.value.__cause__, RuntimeError)
    assert info.value.cause is info.value.__cause__


def test_cancel_token_stops_sync_run(three_item_datasets, small_config) -> None:
    token = CancellationToken()

    def on_progress(percent: float) -> None:
        if percent > 20:
            token.cancel()

    with pytest.raises(InferenceCancelledError):
        run_inference(three_item_datasets, small_config, on_progress=on_progress, cancel_token=token)
    assert token.cancelled


def test_cancel_token_stops_parallel_run(three_item_datasets, small_config) -> None:
    token = CancellationToken()
    progress: list[float] = []

    def on_progress(percent: float) -> None:
        progress.append(percent)
        token.cancel()

    config = replace(small_config, n_chains=4, n_jobs=2)
    session = InferenceSession(three_item_datasets, config, cancel_token=token)
    with pytest.raises(InferenceCancelledError):
        session.run(on_progress=on_progress)
    assert session.result is None
    assert 100.0 not in progress


# ---------------------------------------------------------------------------
# Async drivers


def test_async_run_matches_sync(three_item_datasets, small_config) -> None:
    sync_result = run_inference(three_item_datasets, small_config)
    progress: list[float] = []
    async_result = asyncio.run(run_inference_async(three_item_datasets, small_config, on_progress=progress.append))

    assert np.array_equal(sync_result.posterior_samples["a"], async_result.posterior_samples["a"])
    assert progress[-1] == 100.0


def test_stream_yields_events_and_stores_result(three_item_datasets, small_config) -> None:
    session = InferenceSession(three_item_datasets, small_config)

    async def consume() -> list:
        return [event async for event in session.stream()]

    events = asyncio.run(consume())
    assert events[0].phase is SamplerPhase.INITIALIZING
    assert events[-1].phase is SamplerPhase.DONE
    assert {e.chain for e in events if e.chain is not None} == {0, 1}
    assert session.result is not None
    assert session.result.metadata.n_chains == 2


def test_stream_cancellation(three_item_datasets, small_config) -> None:
    token = CancellationToken()
    session = InferenceSession(three_item_datasets, small_config, cancel_token=token)

    async def consume() -> int:
        seen = 0
        async for _ in session.stream():
            seen += 1
            if seen == 3:
                token.cancel()
        return seen

    with pytest.raises(InferenceCancelledError):
        asyncio.run(consume())
    assert session.result is None
    assert len(session.events) == 3


# ---------------------------------------------------------------------------
# Serialization and export


def test_to_dict_is_wire_shaped(three_item_datasets, small_config) -> None:
    payload = run_inference(three_item_datasets, small_config).to_dict()
    assert set(payload) == {
        "posteriorSamples", "summaryStatistics", "convergenceDiagnostics", "modelAssumptions", "metadata"
    }
    assert set(payload["summaryStatistics"]["a"]) == {"median", "map", "credibleInterval"}
    assert payload["convergenceDiagnostics"]["overall"]["converged"] in (True, False)
    assert payload["metadata"]["numSamples"] == 300
    assert payload["metadata"]["burnIn"] == 100
    assert len(payload["posteriorSamples"]["b"]) == 600
    json.dumps(payload)


def test_long_dataframe_and_export(three_item_datasets, small_config, tmp_path) -> None:
    result = run_inference(three_item_datasets, small_config)
    df = result.to_long_dataframe()
    assert df["median"].is_monotonic_decreasing
    assert df["median"].sum() == pytest.approx(1.0)
    assert {"item_id", "ci_lower", "ci_upper", "rhat", "ess", "converged"} <= set(df.columns)

    written = result.export(tmp_path / "out")
    assert set(written) == {"summary", "result", "samples"}
    assert all(path.exists() for path in written.values())

    with np.load(written["samples"]) as npz:
        assert npz["samples"].shape == (600, 3)
        assert npz["item_ids"].tolist() == ["a", "b", "c"]
    with open(written["result"], encoding="utf-8") as f:
        assert "posteriorSamples" not in json.load(f)
