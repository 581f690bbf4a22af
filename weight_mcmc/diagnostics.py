# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Diagnostics and visualization module (diagnostics.py)

Contains:
1. Heuristic convergence check (ess = sample count, rhat = 1)
2. Full diagnostics: Geyer ESS and split-chain Gelman-Rubin R-hat
3. Exclusion-constraint check on posterior samples
4. Text report and plots
"""

import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .config import DIAGNOSTICS_FULL, DIAGNOSTICS_HEURISTIC
from .density import kde_arrays

# matplotlib is only needed for plotting
try:
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False


@dataclass(frozen=True)
class ItemDiagnostic:
    rhat: float
    ess: float
    converged: bool

    def to_dict(self) -> Dict[str, Any]:
        return {'rhat': self.rhat, 'ess': self.ess, 'converged': self.converged}


@dataclass
class ConvergenceDiagnostics:
    """Per-item records plus an overall rollup"""
    items: Dict[str, ItemDiagnostic] = field(default_factory=dict)
    converged: bool = True
    warnings: List[str] = field(default_factory=list)
    method: str = DIAGNOSTICS_HEURISTIC

    def __getitem__(self, item_id: str) -> ItemDiagnostic:
        return self.items[item_id]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {k: v.to_dict() for k, v in self.items.items()}
        payload['overall'] = {'converged': self.converged, 'warnings': list(self.warnings)}
        return payload


def compute_autocorrelation(x: np.ndarray, max_lag: Optional[int] = None) -> np.ndarray:
    """
    Autocorrelation of one item's chain via FFT

    Args:
        x: 1D samples of one item weight
        max_lag: largest lag, default min(n // 2, 500)

    Returns:
        autocorrelation for lags 0..max_lag-1, each lag normalized by its
        own number of overlapping pairs
    """
    x = np.asarray(x, dtype=float)
    n = len(x)
    if max_lag is None:
        max_lag = min(n // 2, 500)

    centered = x - np.mean(x) if n else x
    variance = float(np.var(centered)) if n else 0.0
    if variance < 1e-20:
        # weights pinned at one value, e.g. a rejected-only chain
        return np.zeros(max_lag)

    # zero padding to 2n avoids circular wrap-around
    size = 1 << (2 * n - 1).bit_length()
    spectrum = np.fft.rfft(centered, size)
    acov = np.fft.irfft(spectrum * np.conj(spectrum), size)[:max_lag]
    return acov / (variance * (n - np.arange(max_lag)))


def compute_ess_geyer(samples: np.ndarray) -> Tuple[float, float]:
    """
    Effective sample size with Geyer's initial positive sequence

    Returns:
        (ESS, integrated autocorrelation time τ)
    """
    n = len(samples)
    acf = compute_autocorrelation(np.asarray(samples, dtype=float))
    if acf.size == 0 or not np.any(acf):
        # constant or very short chain: every draw counts
        return float(n), 1.0

    tau = 1.0
    for k in range(1, len(acf) // 2):
        # pairs (1,2), (3,4), ... stop at the first non-positive pair
        pair_sum = acf[2 * k - 1] + acf[2 * k]
        if pair_sum <= 0:
            break
        tau += 2 * pair_sum

    tau = max(tau, 1.0)
    return n / tau, tau


def compute_split_rhat(chains: np.ndarray) -> float:
    """
    Gelman-Rubin potential scale reduction on split chains

    Args:
        chains: shape (n_chains, n_samples) for one parameter
    """
    chains = np.atleast_2d(np.asarray(chains, dtype=float))
    half = chains.shape[1] // 2
    if half < 2:
        return float('nan')
    split = np.concatenate([chains[:, :half], chains[:, half:2 * half]], axis=0)
    n = split.shape[1]

    within = np.mean(np.var(split, axis=1, ddof=1))
    between = n * np.var(np.mean(split, axis=1), ddof=1)
    if within <= 0:
        return 1.0
    var_hat = (n - 1) / n * within + between / n
    return float(np.sqrt(var_hat / within))


def _heuristic_item(
    item_id: str,
    n_samples: int,
    ess_threshold: float,
    rhat_threshold: float,
    require_rhat: bool,
    messages: List[str]
) -> ItemDiagnostic:
    ess = float(n_samples)
    rhat = 1.0
    converged = ess > ess_threshold
    if require_rhat:
        converged = converged and rhat < rhat_threshold
    if ess <= ess_threshold:
        messages.append(f"Parameter '{item_id}' has ESS = {n_samples} (recommended: >{ess_threshold:g})")
    return ItemDiagnostic(rhat=rhat, ess=ess, converged=converged)


def _full_item(
    item_id: str,
    samples: np.ndarray,
    n_chains: int,
    ess_threshold: float,
    rhat_threshold: float,
    messages: List[str]
) -> ItemDiagnostic:
    # samples are chain-concatenated, so equal segments recover the chains
    per_chain = len(samples) // max(n_chains, 1)
    chains = samples[:per_chain * n_chains].reshape(n_chains, per_chain)

    ess = float(sum(compute_ess_geyer(c)[0] for c in chains))
    rhat = compute_split_rhat(chains)
    rhat_ok = not np.isfinite(rhat) or rhat < rhat_threshold
    converged = ess > ess_threshold and rhat_ok

    if np.isfinite(rhat) and rhat >= rhat_threshold:
        messages.append(f"Parameter '{item_id}' has R-hat = {rhat:.2f} (threshold: {rhat_threshold:g})")
    if ess <= ess_threshold:
        messages.append(f"Parameter '{item_id}' has ESS = {ess:.0f} (recommended: >{ess_threshold:g})")
    return ItemDiagnostic(rhat=rhat, ess=ess, converged=converged)


def compute_convergence_diagnostics(
    posterior_samples: Mapping[str, Sequence[float]],
    method: str = DIAGNOSTICS_HEURISTIC,
    n_chains: int = 1,
    ess_threshold: float = 400.0,
    rhat_threshold: float = 1.1,
    require_rhat: bool = False
) -> ConvergenceDiagnostics:
    """
    Per-item convergence records

    The heuristic method reports ess = sample count and rhat = 1.0 and only
    checks ess > threshold. The full method splits the pooled samples back
    into chains and computes Geyer ESS and split R-hat.

    Args:
        posterior_samples: item id -> chain-concatenated samples
        method: "heuristic" or "full"
        n_chains: number of chains the samples came from (full method)

    Returns:
        ConvergenceDiagnostics
    """
    if method not in (DIAGNOSTICS_HEURISTIC, DIAGNOSTICS_FULL):
        raise ValueError(f"Unknown diagnostics method: {method}")

    result = ConvergenceDiagnostics(method=method)
    for item_id, samples in posterior_samples.items():
        if samples is None or len(samples) == 0:
            continue
        if method == DIAGNOSTICS_FULL:
            record = _full_item(
                item_id, np.asarray(samples, dtype=float), n_chains,
                ess_threshold, rhat_threshold, result.warnings
            )
        else:
            record = _heuristic_item(
                item_id, len(samples), ess_threshold, rhat_threshold,
                require_rhat, result.warnings
            )
        result.items[item_id] = record

    result.converged = all(d.converged for d in result.items.values())
    return result


def check_exclusion(
    posterior_samples: Mapping[str, Sequence[float]],
    input_ids: Sequence[str],
    threshold: float = 1e-6
) -> List[str]:
    """
    Flag declared input items that carry posterior mass

    An input item that is also an output of other datasets legitimately has
    mass, so the messages are informational.
    """
    messages = []
    for input_id in dict.fromkeys(input_ids):
        samples = posterior_samples.get(input_id)
        if samples is None or len(samples) == 0:
            continue
        max_sample = float(np.max(samples))
        if max_sample > threshold:
            messages.append(
                f"Exclusion constraint: input item '{input_id}' has non-zero posterior samples "
                f"(max: {max_sample:.6f})"
            )
    return messages


def format_diagnostic_report(
    diagnostics: ConvergenceDiagnostics,
    acceptance_rate: Optional[float] = None
) -> str:
    """Plain-text diagnostic report"""
    ess = [d.ess for d in diagnostics.items.values()]
    lines = [
        "=" * 60,
        "Bayesian Weight Inference - Diagnostic Report",
        "=" * 60,
        "",
        f"Method: {diagnostics.method}",
        f"Items: {len(diagnostics.items)}",
        f"Converged items: {sum(d.converged for d in diagnostics.items.values())}",
        f"Overall converged: {diagnostics.converged}",
    ]
    if ess:
        lines += [
            "",
            "--- ESS ---",
            f"Min: {min(ess):.0f}",
            f"Mean: {np.mean(ess):.0f}",
        ]
    if acceptance_rate is not None:
        lines += ["", "--- Acceptance Rate ---", f"{acceptance_rate:.3f}"]
    if diagnostics.warnings:
        lines += ["", "--- Warnings ---"] + [f"  {w}" for w in diagnostics.warnings]
    lines += ["", "=" * 60]
    return "\n".join(lines)


# === Plotting ===

def plot_trace(
    chain_samples: np.ndarray,
    item_ids: Optional[List[str]] = None,
    title: str = "Weight Trace",
    figsize: Tuple[int, int] = (12, 8)
):
    """
    Trace of every item weight, one panel per item and one line per chain

    Args:
        chain_samples: (n_chains, n_samples, n_items), or (n_samples, n_items)
            for a single chain
        item_ids: panel labels
    """
    if not HAS_MATPLOTLIB:
        warnings.warn("matplotlib is not installed")
        return None

    chain_samples = np.asarray(chain_samples, dtype=float)
    if chain_samples.ndim == 2:
        chain_samples = chain_samples[None, :, :]
    n_chains, _, n_items = chain_samples.shape
    if item_ids is None:
        item_ids = [f"item {i + 1}" for i in range(n_items)]

    fig, axes = plt.subplots(n_items, 1, figsize=figsize, sharex=True, squeeze=False)
    for i, (ax, item_id) in enumerate(zip(axes[:, 0], item_ids)):
        for c in range(n_chains):
            ax.plot(chain_samples[c, :, i], alpha=0.6, lw=0.5, label=f"chain {c}")
        ax.axhline(np.median(chain_samples[:, :, i]), color='k', ls='--', lw=1)
        ax.set_ylim(0.0, min(1.0, chain_samples[:, :, i].max() * 1.1 + 1e-3))
        ax.set_ylabel(item_id, fontsize=9)

    if n_chains > 1:
        axes[0, 0].legend(fontsize=7, loc='upper right')
    axes[-1, 0].set_xlabel("Iteration (after burn-in)")
    fig.suptitle(title)
    fig.tight_layout()
    return fig


def plot_posterior_density(
    posterior_samples: Mapping[str, Sequence[float]],
    summary: Optional[Mapping[str, Any]] = None,
    num_points: int = 100,
    title: str = "Posterior Density",
    figsize: Tuple[int, int] = (12, 6)
):
    """
    Overlaid KDE curves with median markers
    """
    if not HAS_MATPLOTLIB:
        warnings.warn("matplotlib is not installed")
        return None

    fig, ax = plt.subplots(figsize=figsize)
    for item_id, samples in posterior_samples.items():
        x, y = kde_arrays(samples, num_points)
        if x.size == 0:
            continue
        line, = ax.plot(x, y, lw=1.5, label=item_id)
        if summary is not None and item_id in summary:
            ax.axvline(summary[item_id].median, color=line.get_color(), ls=':', lw=1)

    ax.set_xlabel("Weight")
    ax.set_ylabel("Density")
    ax.set_title(title)
    ax.legend(fontsize=8)
    fig.tight_layout()
    return fig
