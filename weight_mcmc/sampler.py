# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
MCMC sampler module (sampler.py)

Contains:
1. Gamma / Dirichlet random variates
2. Multinomial log-likelihood with input exclusion
3. Dirichlet log-prior
4. Logit random-walk proposal on the simplex
5. Metropolis sampler with cooperative progress events
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Generator, List, Optional, Tuple

import numpy as np
from scipy.special import expit, gammaln, logit

from .config import EPSILON, MCMCConfig
from .model import WeightModel


class SamplerPhase(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    BURN_IN = "burn_in"
    SAMPLING = "sampling"
    POST_PROCESSING = "post_processing"
    DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted at every yield point"""
    phase: SamplerPhase
    percent: float
    chain: Optional[int] = None
    iteration: Optional[int] = None


@dataclass
class ChainResult:
    """One chain's recorded states"""
    chain: int
    samples: np.ndarray              # shape (n_samples, n_items)
    n_accepted: int
    n_iterations: int                # burn-in + sampling

    @property
    def acceptance_rate(self) -> float:
        return self.n_accepted / self.n_iterations if self.n_iterations else 0.0


@dataclass
class SamplingResult:
    """All chains, in chain order"""
    item_ids: List[str]
    chains: List[ChainResult] = field(default_factory=list)

    @property
    def samples(self) -> np.ndarray:
        """Chain-concatenated samples, shape (n_chains * n_samples, n_items)"""
        return np.concatenate([c.samples for c in self.chains], axis=0)

    @property
    def acceptance_rate(self) -> float:
        total = sum(c.n_iterations for c in self.chains)
        return sum(c.n_accepted for c in self.chains) / total if total else 0.0

    def chain_samples(self) -> np.ndarray:
        """shape (n_chains, n_samples, n_items)"""
        return np.stack([c.samples for c in self.chains], axis=0)

    def posterior_samples(self) -> Dict[str, np.ndarray]:
        samples = self.samples
        return {item_id: samples[:, i].copy() for i, item_id in enumerate(self.item_ids)}


# === Random variates ===

def sample_gamma(shape: float, rng: np.random.Generator, scale: float = 1.0) -> float:
    """
    Gamma(shape, scale) variate

    Marsaglia & Tsang (2000) for shape >= 1; for shape < 1 the boost
    Gamma(shape) = Gamma(shape + 1) * U^(1/shape).
    """
    if shape <= 0:
        raise ValueError(f"shape must be positive; got {shape}")
    if shape < 1:
        boosted = sample_gamma(shape + 1.0, rng, scale)
        return boosted * rng.random() ** (1.0 / shape)

    d = shape - 1.0 / 3.0
    c = 1.0 / math.sqrt(9.0 * d)
    while True:
        x = rng.standard_normal()
        v = 1.0 + c * x
        if v <= 0:
            continue
        v = v * v * v
        u = rng.random()
        if u < 1.0 - 0.0331 * (x * x) * (x * x):
            return d * v * scale
        if u > 0 and math.log(u) < 0.5 * x * x + d * (1.0 - v + math.log(v)):
            return d * v * scale


def sample_dirichlet(alpha: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Dirichlet(α) via normalized independent Gamma(α_i, 1) draws"""
    draws = np.array([sample_gamma(float(a), rng) for a in alpha], dtype=float)
    total = draws.sum()
    if not np.isfinite(total) or total <= 0:
        return np.full(len(alpha), 1.0 / len(alpha))
    return draws / total


# === Posterior terms ===

def output_probabilities(weights: np.ndarray, model: WeightModel) -> np.ndarray:
    """
    Per-dataset output probability vectors, shape (n_datasets, n_items)

    Rows with a known input k get prob[k] = 0 and w_i / (1 - w_k) elsewhere,
    renormalized to absorb floating-point drift. Other rows use w as is.
    """
    probs = np.tile(np.asarray(weights, dtype=float), (model.n_datasets, 1))
    rows = np.flatnonzero(model.exclusion_index >= 0)
    if rows.size == 0:
        return probs

    k = model.exclusion_index[rows]
    rest = 1.0 - weights[k]
    rest = np.where(rest > 0, rest, 1.0)
    excluded = probs[rows] / rest[:, None]
    excluded[np.arange(rows.size), k] = 0.0
    row_sum = excluded.sum(axis=1, keepdims=True)
    excluded = np.divide(excluded, row_sum, out=excluded, where=row_sum > 0)
    probs[rows] = excluded
    return probs


def log_likelihood(weights: np.ndarray, model: WeightModel) -> float:
    """
    Multinomial log-likelihood summed over datasets

    Datasets with zero total count contribute nothing. Terms where an
    observed count meets a zero probability are skipped rather than -inf.
    """
    probs = output_probabilities(weights, model)
    active = (model.totals > 0)[:, None]
    mask = active & (model.counts > 0) & (probs > 0)
    return float(np.sum(model.counts[mask] * np.log(probs[mask])))


def log_prior(weights: np.ndarray, alpha: np.ndarray) -> float:
    """
    Unnormalized Dirichlet log-density

    log p(w | α) ∝ Σ (α_i - 1) log w_i
    """
    mask = (weights > 0) & (alpha > 0)
    return float(np.sum((alpha[mask] - 1.0) * np.log(weights[mask])))


def log_dirichlet_pdf(v: np.ndarray, alpha: np.ndarray) -> float:
    """
    Normalized Dirichlet log-density

    log p(v | α) = log Γ(Σα) - Σ log Γ(α_i) + Σ(α_i - 1) log v_i
    """
    v = np.clip(v, 1e-300, 1.0)
    log_beta = np.sum(gammaln(alpha)) - gammaln(np.sum(alpha))
    return float(-log_beta + np.sum((alpha - 1) * np.log(v)))


def propose_weights(weights: np.ndarray, scale: float, rng: np.random.Generator) -> np.ndarray:
    """
    Logit-space Gaussian random walk, renormalized onto the simplex

    The plain Metropolis ratio is used without the Jacobian of this map.
    """
    n = len(weights)
    clamped = np.clip(weights, EPSILON, 1.0 - EPSILON)
    logits = logit(clamped) + rng.normal(0.0, scale, size=n)
    proposal = np.clip(expit(logits), EPSILON, 1.0 - EPSILON)

    total = proposal.sum()
    if not np.isfinite(total) or total <= 0:
        return np.full(n, 1.0 / n)
    return proposal / total


def spawn_chain_rngs(seed: Optional[int], n_chains: int) -> List[np.random.SeedSequence]:
    """One independent seed sequence per chain, stable for a given seed"""
    return np.random.SeedSequence(seed).spawn(n_chains)


class WeightSampler:
    """
    Metropolis sampler over item weights

    Each chain runs Initializing -> BurnIn -> Sampling. ``iter_chain`` is a
    generator that yields a ProgressEvent every ``yield_every`` iterations
    and returns the ChainResult.
    """

    def __init__(self, config: MCMCConfig, model: WeightModel):
        self.config = config
        self.model = model
        self.alpha = np.full(model.n_items, float(config.prior_alpha))

    def log_posterior(self, weights: np.ndarray) -> float:
        return log_likelihood(weights, self.model) + log_prior(weights, self.alpha)

    def _percent(self, completed: int) -> float:
        span = 100.0 - self.config.progress_reserve
        total = max(self.config.total_iterations, 1)
        return min(completed / total * span, span)

    def _step(
        self,
        current: np.ndarray,
        current_log_post: float,
        rng: np.random.Generator
    ) -> Tuple[np.ndarray, float, bool]:
        proposed = propose_weights(current, self.config.proposal_scale, rng)
        proposed_log_post = self.log_posterior(proposed)
        if np.log(rng.random()) < proposed_log_post - current_log_post:
            return proposed, proposed_log_post, True
        return current, current_log_post, False

    def iter_chain(
        self,
        chain: int,
        rng: np.random.Generator
    ) -> Generator[ProgressEvent, None, ChainResult]:
        cfg = self.config
        per_chain = cfg.burn_in + cfg.n_samples
        completed = chain * per_chain

        yield ProgressEvent(SamplerPhase.INITIALIZING, self._percent(completed), chain, 0)

        current = sample_dirichlet(self.alpha, rng)
        current_log_post = self.log_posterior(current)
        n_accepted = 0

        for it in range(cfg.burn_in):
            current, current_log_post, accepted = self._step(current, current_log_post, rng)
            n_accepted += accepted
            completed += 1
            if it % cfg.yield_every == 0:
                yield ProgressEvent(SamplerPhase.BURN_IN, self._percent(completed), chain, it)

        samples = np.empty((cfg.n_samples, self.model.n_items), dtype=float)
        for it in range(cfg.n_samples):
            current, current_log_post, accepted = self._step(current, current_log_post, rng)
            n_accepted += accepted
            # recorded whether or not the proposal was accepted
            samples[it] = current
            completed += 1
            if it % cfg.yield_every == 0:
                yield ProgressEvent(SamplerPhase.SAMPLING, self._percent(completed), chain, it)

        yield ProgressEvent(SamplerPhase.SAMPLING, self._percent(completed), chain, cfg.n_samples)

        return ChainResult(
            chain=chain,
            samples=samples,
            n_accepted=int(n_accepted),
            n_iterations=per_chain
        )

    def run_chain(self, chain: int, rng: np.random.Generator) -> ChainResult:
        """Drive ``iter_chain`` to completion without reporting"""
        gen = self.iter_chain(chain, rng)
        while True:
            try:
                next(gen)
            except StopIteration as stop:
                return stop.value

    def sample(self, seeds: Optional[List[np.random.SeedSequence]] = None) -> SamplingResult:
        """Run all chains serially"""
        if seeds is None:
            seeds = spawn_chain_rngs(self.config.random_seed, self.config.n_chains)
        result = SamplingResult(item_ids=list(self.model.item_ids))
        for chain, seed in enumerate(seeds):
            result.chains.append(self.run_chain(chain, np.random.default_rng(seed)))
        return result


def create_sampler(model: WeightModel, config: Optional[MCMCConfig] = None) -> WeightSampler:
    if config is None:
        config = MCMCConfig()
    return WeightSampler(config.validate(), model)


if __name__ == "__main__":
    from .model import build_model

    model = build_model([
        {'items': [{'id': 'a', 'count': 40}, {'id': 'b', 'count': 25}, {'id': 'c', 'count': 10}],
         'inputItems': [{'id': 'c'}]},
        {'items': [{'id': 'a', 'count': 8}, {'id': 'c', 'count': 9}]},
    ])
    sampler = create_sampler(model, MCMCConfig(n_samples=1000, burn_in=300, random_seed=42))
    result = sampler.sample()
    print(f"acceptance rate: {result.acceptance_rate:.3f}")
    print(f"sample shape: {result.samples.shape}")
    print(f"posterior mean: {np.mean(result.samples, axis=0)}")
