# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Inference engine module (engine.py)

Contains:
1. Inference session (datasets, config, model, progress, result)
2. Chain scheduling: serial with cooperative yields, or a process pool
3. Post-processing: summaries, diagnostics, metadata
4. Result export (CSV / JSON / npz)
"""

import asyncio
import json
import time
import warnings
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Generator, List, Optional, Sequence, Union

import numpy as np
import pandas as pd
from tqdm import tqdm

from .config import MCMCConfig, PathConfig
from .density import DensityPoint, compute_kde
from .diagnostics import ConvergenceDiagnostics, ItemDiagnostic, compute_convergence_diagnostics
from .errors import InferenceCancelledError, InferenceFailedError
from .model import Dataset, ModelAssumptions, WeightModel, build_model, parse_datasets
from .sampler import (
    ChainResult,
    ProgressEvent,
    SamplerPhase,
    SamplingResult,
    WeightSampler,
    spawn_chain_rngs,
)
from .stats import CredibleInterval, PosteriorSummary, compute_statistics, renormalize_summary

ProgressCallback = Callable[[float], None]


class CancellationToken:
    """Cooperative cancellation, checked at every yield point"""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise InferenceCancelledError("Inference cancelled")


@dataclass
class InferenceMetadata:
    n_items: int
    n_datasets: int
    n_samples: int
    n_chains: int
    burn_in: int
    acceptance_rate: Optional[float] = None
    inference_time: float = 0.0      # seconds

    def to_dict(self) -> Dict[str, Any]:
        return {
            'numItems': self.n_items,
            'numDatasets': self.n_datasets,
            'numSamples': self.n_samples,
            'numChains': self.n_chains,
            'burnIn': self.burn_in,
            'acceptanceRate': self.acceptance_rate,
            'inferenceTime': self.inference_time
        }


@dataclass
class InferenceResult:
    """Outcome of one inference run"""
    item_ids: List[str]
    posterior_samples: Dict[str, np.ndarray]
    summary_statistics: Dict[str, PosteriorSummary]
    convergence_diagnostics: ConvergenceDiagnostics
    model_assumptions: ModelAssumptions
    metadata: InferenceMetadata
    sampling: Optional[SamplingResult] = None

    def renormalized_summary(self) -> Dict[str, PosteriorSummary]:
        return renormalize_summary(self.summary_statistics)

    def density(self, item_id: str, num_points: int = 100) -> List[DensityPoint]:
        return compute_kde(self.posterior_samples[item_id], num_points)

    def to_dict(self, include_samples: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            'summaryStatistics': {k: v.to_dict() for k, v in self.summary_statistics.items()},
            'convergenceDiagnostics': self.convergence_diagnostics.to_dict(),
            'modelAssumptions': self.model_assumptions.to_dict(),
            'metadata': self.metadata.to_dict()
        }
        if include_samples:
            payload['posteriorSamples'] = {
                k: np.asarray(v, dtype=float).tolist() for k, v in self.posterior_samples.items()
            }
        return payload

    def to_long_dataframe(self, renormalize: bool = True) -> pd.DataFrame:
        """One row per item, ranked by median"""
        summary = self.renormalized_summary() if renormalize else self.summary_statistics
        records = []
        for item_id in self.item_ids:
            if item_id not in summary:
                continue
            s = summary[item_id]
            diag = self.convergence_diagnostics.items.get(item_id)
            records.append({
                'item_id': item_id,
                'median': s.median,
                'map': s.map_approx,
                'ci_lower': s.credible_interval.lower,
                'ci_upper': s.credible_interval.upper,
                'ci_width': s.credible_interval.width,
                'rhat': diag.rhat if diag else np.nan,
                'ess': diag.ess if diag else np.nan,
                'converged': diag.converged if diag else False
            })
        df = pd.DataFrame(records)
        if not df.empty:
            df = df.sort_values('median', ascending=False, kind='mergesort').reset_index(drop=True)
        return df

    def export(self, path_config: Union[PathConfig, str, Path, None] = None) -> Dict[str, Path]:
        """
        Write summary CSV, result JSON and compressed samples

        Args:
            path_config: PathConfig, or an output directory

        Returns:
            kind -> written path
        """
        if path_config is None:
            path_config = PathConfig()
        elif not isinstance(path_config, PathConfig):
            path_config = PathConfig(output_dir=str(path_config))
        written: Dict[str, Path] = {}

        summary_path = path_config.get_output_path(path_config.output_summary)
        written['summary'] = _write_with_fallback(
            summary_path, lambda p: self.to_long_dataframe().to_csv(p, index=False)
        )

        def _dump_json(p: Path) -> None:
            with open(p, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(include_samples=False), f, indent=2, ensure_ascii=False)

        result_path = path_config.get_output_path(path_config.output_result)
        written['result'] = _write_with_fallback(result_path, _dump_json)

        samples_path = path_config.get_output_path(path_config.output_samples)
        written['samples'] = _write_with_fallback(samples_path, self._save_npz)
        return written

    def _save_npz(self, path: Path) -> None:
        data: Dict[str, Any] = {
            'item_ids': np.array(self.item_ids, dtype=str),
            'samples': np.column_stack([self.posterior_samples[i] for i in self.item_ids])
        }
        meta = {
            'export_time': datetime.now().isoformat(timespec='seconds'),
            'metadata': self.metadata.to_dict()
        }
        data['meta'] = np.array(json.dumps(meta, ensure_ascii=False))
        np.savez_compressed(path, **data)


def _write_with_fallback(path: Path, writer: Callable[[Path], None]) -> Path:
    try:
        writer(path)
        return path
    except PermissionError:
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        alt = path.with_name(f"{path.stem}_{ts}{path.suffix}")
        writer(alt)
        warnings.warn(f"Could not write {path} (file in use?), wrote {alt} instead")
        return alt


# === Standalone function (process pool) ===

def _run_chain_standalone(
    config: MCMCConfig,
    model: WeightModel,
    chain: int,
    seed: np.random.SeedSequence
) -> ChainResult:
    """
    Run one chain in a worker process

    Must stay module level so it can be pickled.
    """
    return WeightSampler(config, model).run_chain(chain, np.random.default_rng(seed))


class InferenceSession:
    """
    State of one inference run

    Holds the inputs, the resolved model, the progress history and the final
    result. Nothing is kept at module level.
    """

    def __init__(
        self,
        datasets: Sequence[Any],
        config: Optional[MCMCConfig] = None,
        cancel_token: Optional[CancellationToken] = None
    ):
        self.datasets: List[Dataset] = parse_datasets(datasets)
        self.config = (config or MCMCConfig()).validate()
        self.cancel_token = cancel_token or CancellationToken()

        self.model: Optional[WeightModel] = None
        self.result: Optional[InferenceResult] = None
        self.events: List[ProgressEvent] = []
        self.phase = SamplerPhase.IDLE
        self._last_percent = 0.0
        self._started = 0.0

    # --- preparation ---

    def _reset(self) -> None:
        # a session may be run more than once; each run starts from scratch
        self.result = None
        self.events = []
        self.phase = SamplerPhase.IDLE
        self._last_percent = 0.0
        self._started = time.perf_counter()

    def _prepare(self) -> WeightModel:
        if not self.datasets:
            raise ValueError("Datasets array cannot be empty")
        self.model = build_model(self.datasets)
        return self.model

    def _event(self, phase: SamplerPhase, percent: float, **kwargs) -> ProgressEvent:
        # progress never goes backwards
        percent = max(self._last_percent, min(float(percent), 100.0))
        self._last_percent = percent
        self.phase = phase
        event = ProgressEvent(phase, percent, **kwargs)
        self.events.append(event)
        return event

    # --- core generator ---

    def iter_events(self) -> Generator[ProgressEvent, None, InferenceResult]:
        """
        Run inference step by step

        Yields a ProgressEvent at every cooperative yield point and returns the
        InferenceResult. EmptyUniverseError is raised before any sampling;
        other failures are re-raised as InferenceFailedError.
        """
        self._reset()
        model = self._prepare()

        if model.n_items == 1:
            result = self._single_item_result(model)
            yield self._event(SamplerPhase.DONE, 100.0)
            self.result = result
            return result

        try:
            sampler = WeightSampler(self.config, model)
            seeds = spawn_chain_rngs(self.config.random_seed, self.config.n_chains)
            sampling = SamplingResult(item_ids=list(model.item_ids))

            for chain, seed in enumerate(seeds):
                chain_events = sampler.iter_chain(chain, np.random.default_rng(seed))
                while True:
                    try:
                        step = next(chain_events)
                    except StopIteration as stop:
                        sampling.chains.append(stop.value)
                        break
                    self.cancel_token.raise_if_cancelled()
                    yield self._event(step.phase, step.percent, chain=step.chain, iteration=step.iteration)

            self.cancel_token.raise_if_cancelled()
            yield self._event(SamplerPhase.POST_PROCESSING, 95.0)
            result = self._post_process(model, sampling)
        except (InferenceCancelledError, InferenceFailedError):
            raise
        except Exception as exc:
            raise InferenceFailedError(exc) from exc

        yield self._event(SamplerPhase.DONE, 100.0)
        self.result = result
        return result

    # --- drivers ---

    def run(self, on_progress: Optional[ProgressCallback] = None, show_progress: bool = False) -> InferenceResult:
        """
        Blocking run

        With ``config.n_jobs > 1`` chains go to a process pool; the seeds are
        the same as in the serial path so results do not depend on n_jobs.
        """
        if self.config.n_jobs > 1 and self.config.n_chains > 1:
            return self._run_parallel(on_progress, show_progress)

        pbar = tqdm(total=100, desc="MCMC", unit="%") if show_progress else None
        gen = self.iter_events()
        try:
            while True:
                try:
                    event = next(gen)
                except StopIteration as stop:
                    return stop.value
                if on_progress is not None:
                    on_progress(event.percent)
                if pbar is not None:
                    pbar.update(event.percent - pbar.n)
        finally:
            if pbar is not None:
                pbar.close()

    async def stream(self) -> AsyncIterator[ProgressEvent]:
        """
        Progress events as an async generator

        Control returns to the event loop after every event. The final result
        is stored on ``self.result``.
        """
        gen = self.iter_events()
        while True:
            try:
                event = next(gen)
            except StopIteration as stop:
                self.result = stop.value
                return
            yield event
            await asyncio.sleep(0)

    async def run_async(self, on_progress: Optional[ProgressCallback] = None) -> InferenceResult:
        async for event in self.stream():
            if on_progress is not None:
                on_progress(event.percent)
        return self.result

    def _run_parallel(self, on_progress: Optional[ProgressCallback], show_progress: bool) -> InferenceResult:
        self._reset()
        model = self._prepare()
        if model.n_items == 1:
            self.result = self._single_item_result(model)
            self._report(on_progress, SamplerPhase.DONE, 100.0)
            return self.result

        cfg = self.config
        seeds = spawn_chain_rngs(cfg.random_seed, cfg.n_chains)
        span = 100.0 - cfg.progress_reserve
        chains: Dict[int, ChainResult] = {}

        try:
            with ProcessPoolExecutor(max_workers=min(cfg.n_jobs, cfg.n_chains)) as executor:
                future_to_chain = {
                    executor.submit(_run_chain_standalone, cfg, model, chain, seed): chain
                    for chain, seed in enumerate(seeds)
                }
                with tqdm(total=cfg.n_chains, desc="Chains", disable=not show_progress) as pbar:
                    for future in as_completed(future_to_chain):
                        if self.cancel_token.cancelled:
                            # chains already running still finish; queued ones are dropped
                            executor.shutdown(wait=False, cancel_futures=True)
                            self.cancel_token.raise_if_cancelled()
                        chain = future_to_chain[future]
                        chains[chain] = future.result()
                        pbar.update(1)
                        self._report(on_progress, SamplerPhase.SAMPLING,
                                     len(chains) / cfg.n_chains * span)

            sampling = SamplingResult(
                item_ids=list(model.item_ids),
                chains=[chains[c] for c in sorted(chains)]
            )
            self._report(on_progress, SamplerPhase.POST_PROCESSING, 95.0)
            result = self._post_process(model, sampling)
        except (InferenceCancelledError, InferenceFailedError):
            raise
        except Exception as exc:
            raise InferenceFailedError(exc) from exc

        self.result = result
        self._report(on_progress, SamplerPhase.DONE, 100.0)
        return result

    def _report(self, on_progress: Optional[ProgressCallback], phase: SamplerPhase, percent: float) -> None:
        event = self._event(phase, percent)
        if on_progress is not None:
            on_progress(event.percent)

    # --- post-processing ---

    def _metadata(self, model: WeightModel, acceptance_rate: Optional[float]) -> InferenceMetadata:
        return InferenceMetadata(
            n_items=model.n_items,
            n_datasets=len(self.datasets),
            n_samples=self.config.n_samples,
            n_chains=self.config.n_chains,
            burn_in=self.config.burn_in,
            acceptance_rate=acceptance_rate,
            inference_time=time.perf_counter() - self._started
        )

    def _post_process(self, model: WeightModel, sampling: SamplingResult) -> InferenceResult:
        cfg = self.config
        posterior = sampling.posterior_samples()
        summary = compute_statistics(posterior, cfg.credible_level)
        diagnostics = compute_convergence_diagnostics(
            posterior,
            method=cfg.diagnostics_method,
            n_chains=cfg.n_chains,
            ess_threshold=cfg.ess_threshold,
            rhat_threshold=cfg.rhat_threshold,
            require_rhat=cfg.require_rhat
        )
        if not diagnostics.converged:
            warnings.warn("MCMC sampling quality insufficient (converged=False): "
                          + "; ".join(diagnostics.warnings))

        return InferenceResult(
            item_ids=list(model.item_ids),
            posterior_samples=posterior,
            summary_statistics=summary,
            convergence_diagnostics=diagnostics,
            model_assumptions=model.assumptions,
            metadata=self._metadata(model, sampling.acceptance_rate),
            sampling=sampling
        )

    def _single_item_result(self, model: WeightModel) -> InferenceResult:
        """Sole item: weight is 1 with no uncertainty, sampling skipped"""
        item_id = model.item_ids[0]
        n_total = self.config.n_samples * self.config.n_chains
        diagnostics = ConvergenceDiagnostics(
            items={item_id: ItemDiagnostic(rhat=1.0, ess=float(n_total), converged=True)},
            converged=True,
            method=self.config.diagnostics_method
        )
        return InferenceResult(
            item_ids=[item_id],
            posterior_samples={item_id: np.ones(n_total)},
            summary_statistics={
                item_id: PosteriorSummary(1.0, 1.0, CredibleInterval(1.0, 1.0))
            },
            convergence_diagnostics=diagnostics,
            model_assumptions=model.assumptions,
            metadata=self._metadata(model, None)
        )


def run_inference(
    datasets: Sequence[Any],
    config: Optional[MCMCConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    show_progress: bool = False
) -> InferenceResult:
    """
    Run Bayesian weight inference

    Args:
        datasets: Dataset instances or ``{items, inputItems}`` dicts
        config: MCMCConfig, defaults if None
        on_progress: called with a non-decreasing percent in [0, 100]
        cancel_token: checked at every yield point

    Returns:
        InferenceResult

    Raises:
        ValueError: empty dataset list
        EmptyUniverseError: no output items
        InferenceFailedError: anything failing during sampling
    """
    session = InferenceSession(datasets, config, cancel_token)
    return session.run(on_progress, show_progress=show_progress)


async def run_inference_async(
    datasets: Sequence[Any],
    config: Optional[MCMCConfig] = None,
    on_progress: Optional[ProgressCallback] = None,
    cancel_token: Optional[CancellationToken] = None
) -> InferenceResult:
    """Awaitable variant that yields to the event loop at every progress point"""
    session = InferenceSession(datasets, config, cancel_token)
    return await session.run_async(on_progress)


__all__ = [
    'CancellationToken',
    'InferenceMetadata',
    'InferenceResult',
    'InferenceSession',
    'run_inference',
    'run_inference_async',
]
