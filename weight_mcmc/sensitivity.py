# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Proposal-scale sensitivity script

Runs the sampler on the same datasets under several proposal_scale values
and compares:
- acceptance rate
- mean credible-interval width
- overall convergence

Usage (from the project root):

    python -m weight_mcmc.sensitivity --input datasets.json

Writes a CSV summary under the output directory and prints a table.
"""

import argparse
from dataclasses import replace
from pathlib import Path
from typing import Any, List, Optional, Sequence

import numpy as np
import pandas as pd

try:
    import matplotlib.pyplot as plt
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

from .config import MCMCConfig, PathConfig
from .engine import run_inference

DEFAULT_SCALE_GRID = [0.02, 0.05, 0.1, 0.2, 0.5]


def run_proposal_scale_sensitivity(
    datasets: Sequence[Any],
    scale_grid: Optional[List[float]] = None,
    base_config: Optional[MCMCConfig] = None,
    path_config: Optional[PathConfig] = None,
    save: bool = True,
) -> pd.DataFrame:
    """Run one inference per proposal scale.

    Parameters
    ----------
    datasets : list
        Dataset instances or wire-shaped dicts.
    scale_grid : list[float] or None
        proposal_scale values; default DEFAULT_SCALE_GRID.
    base_config : MCMCConfig or None
        Everything except proposal_scale is taken from here.
        Defaults to a smaller seeded run to save time.
    save : bool
        Write the summary CSV (and plot, if matplotlib is available).

    Returns
    -------
    pd.DataFrame
        One row per proposal scale.
    """
    if scale_grid is None:
        scale_grid = list(DEFAULT_SCALE_GRID)
    if base_config is None:
        base_config = MCMCConfig(n_samples=1000, burn_in=300, random_seed=42)

    records = []
    for scale in scale_grid:
        cfg = replace(base_config, proposal_scale=float(scale))
        result = run_inference(datasets, cfg)

        widths = [s.credible_interval.width for s in result.summary_statistics.values()]
        diag = result.convergence_diagnostics
        records.append({
            'proposal_scale': float(scale),
            'acceptance_rate': result.metadata.acceptance_rate,
            'mean_ci_width': float(np.mean(widths)) if widths else np.nan,
            'converged': diag.converged,
            'converged_items': sum(d.converged for d in diag.items.values()),
            'n_items': result.metadata.n_items,
        })

    df = pd.DataFrame.from_records(records)

    if save:
        if path_config is None:
            path_config = PathConfig()
        out_dir = path_config.get_output_dir()
        out_path = out_dir / "proposal_scale_sensitivity.csv"
        df.to_csv(out_path, index=False)

        if HAS_MATPLOTLIB:
            _plot_sensitivity(df, out_dir)
        else:
            print("matplotlib not installed, skipping sensitivity plot.")

        print("=== Proposal scale sensitivity summary ===")
        print(df.to_string(index=False))
        print(f"\nSaved to: {out_path}")

    return df


def _plot_sensitivity(df: pd.DataFrame, out_dir: Path) -> None:
    """Acceptance rate and mean CI width against proposal scale."""
    fig, ax1 = plt.subplots(figsize=(6, 4))
    ax1.plot(df['proposal_scale'], df['acceptance_rate'], marker='o', color='tab:blue')
    ax1.set_xscale('log')
    ax1.set_xlabel('proposal_scale')
    ax1.set_ylabel('acceptance rate', color='tab:blue')

    ax2 = ax1.twinx()
    ax2.plot(df['proposal_scale'], df['mean_ci_width'], marker='s', color='tab:orange')
    ax2.set_ylabel('mean CI width', color='tab:orange')

    fig.suptitle('Proposal scale sensitivity')
    fig.tight_layout()
    fig.savefig(out_dir / "proposal_scale_sensitivity.png", dpi=150)
    plt.close(fig)


def main(argv: Optional[List[str]] = None) -> pd.DataFrame:
    from .main import load_datasets

    parser = argparse.ArgumentParser(
        description='Proposal-scale sensitivity sweep',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--input', type=str, required=True, help='datasets JSON or long CSV')
    parser.add_argument('--output', type=str, default='outputs/weight_mcmc', help='output directory')
    parser.add_argument('--scales', type=float, nargs='+', default=DEFAULT_SCALE_GRID,
                        help='proposal_scale grid')
    parser.add_argument('--n-samples', type=int, default=1000, help='samples per chain')
    parser.add_argument('--burn-in', type=int, default=300, help='burn-in iterations')
    parser.add_argument('--seed', type=int, default=42, help='random seed')
    args = parser.parse_args(argv)

    path_cfg = PathConfig(input_file=args.input, output_dir=args.output)
    datasets = load_datasets(path_cfg.get_input_path())
    base = MCMCConfig(n_samples=args.n_samples, burn_in=args.burn_in, random_seed=args.seed)
    return run_proposal_scale_sensitivity(datasets, args.scales, base, path_cfg)


if __name__ == "__main__":
    main()
