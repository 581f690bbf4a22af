# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Command-line runner (main.py)

Runs the full pipeline: load datasets, sample, summarize, export, plot.
"""

import argparse
import json
import sys
import time
from pathlib import Path
from typing import Any, List, Optional

import pandas as pd

from .config import DIAGNOSTICS_METHODS, MCMCConfig, PathConfig
from .diagnostics import HAS_MATPLOTLIB, check_exclusion, format_diagnostic_report
from .engine import run_inference
from .errors import WeightInferenceError
from .mle import estimate_item_weights
from .model import datasets_from_dataframe, parse_datasets

if HAS_MATPLOTLIB:
    from .diagnostics import plot_posterior_density, plot_trace
    import matplotlib.pyplot as plt


def load_datasets(path: Path) -> List[Any]:
    """
    Read datasets from disk

    ``.csv`` is read as a long table (dataset, item, count, role); anything
    else as JSON, either a list of datasets or ``{"datasets": [...]}``.
    """
    path = Path(path)
    if path.suffix.lower() == '.csv':
        return datasets_from_dataframe(pd.read_csv(path))

    with open(path, 'r', encoding='utf-8') as f:
        payload = json.load(f)
    if isinstance(payload, dict):
        payload = payload.get('datasets', [])
    return parse_datasets(payload)


def parse_args(argv: Optional[List[str]] = None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description="Bayesian item-weight estimation (MCMC)",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )

    # data paths
    parser.add_argument(
        "--input", "-i",
        type=str,
        default="datasets.json",
        help="datasets file, JSON or long CSV (relative to the working directory)"
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default="outputs/weight_mcmc",
        help="output directory (relative to the working directory)"
    )

    # MCMC parameters
    parser.add_argument(
        "--n-samples", "-n",
        type=int,
        default=2000,
        help="recorded samples per chain"
    )
    parser.add_argument(
        "--n-chains", "-c",
        type=int,
        default=2,
        help="number of chains"
    )
    parser.add_argument(
        "--burn-in", "-b",
        type=int,
        default=500,
        help="burn-in iterations per chain"
    )
    parser.add_argument(
        "--proposal-scale",
        type=float,
        default=0.1,
        help="std of the logit-space random walk"
    )
    parser.add_argument(
        "--prior-alpha",
        type=float,
        default=1.0,
        help="Dirichlet prior concentration"
    )
    parser.add_argument(
        "--level",
        type=float,
        default=0.95,
        help="credible-interval level"
    )
    parser.add_argument(
        "--diagnostics",
        choices=DIAGNOSTICS_METHODS,
        default="heuristic",
        help="convergence diagnostics method"
    )

    # parallelism
    parser.add_argument(
        "--n-jobs", "-j",
        type=int,
        default=1,
        help="chain processes, 1 runs chains serially"
    )

    # other
    parser.add_argument(
        "--seed",
        type=int,
        default=42,
        help="random seed"
    )
    parser.add_argument(
        "--no-plots",
        action="store_true",
        help="skip plots"
    )
    parser.add_argument(
        "--mle",
        action="store_true",
        help="also compute maximum-likelihood point weights"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="verbose output"
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point"""
    args = parse_args(argv)

    print("=" * 60)
    print("Bayesian item-weight estimation (MCMC)")
    print("=" * 60)
    print()

    start_time = time.time()

    # === configuration ===

    mcmc_config = MCMCConfig(
        n_samples=args.n_samples,
        n_chains=args.n_chains,
        burn_in=args.burn_in,
        proposal_scale=args.proposal_scale,
        prior_alpha=args.prior_alpha,
        credible_level=args.level,
        diagnostics_method=args.diagnostics,
        n_jobs=args.n_jobs,
        random_seed=args.seed
    )
    path_config = PathConfig(input_file=args.input, output_dir=args.output)

    print("Configuration:")
    print(f"  input: {path_config.get_input_path()}")
    print(f"  output: {path_config.get_output_dir()}")
    print(f"  samples/chain: {mcmc_config.n_samples}")
    print(f"  chains: {mcmc_config.n_chains}")
    print(f"  burn-in: {mcmc_config.burn_in}")
    print(f"  proposal σ: {mcmc_config.proposal_scale}")
    print(f"  prior α: {mcmc_config.prior_alpha}")
    print(f"  diagnostics: {mcmc_config.diagnostics_method}")
    print(f"  seed: {mcmc_config.random_seed}")
    print(f"  processes: {mcmc_config.n_jobs}")
    print()

    # === load ===

    try:
        print("Loading datasets...")
        datasets = load_datasets(path_config.get_input_path())
        print(f"  {len(datasets)} datasets loaded")
        print()

        # === inference ===

        print("Running MCMC...")
        result = run_inference(datasets, mcmc_config, show_progress=True)
    except (WeightInferenceError, ValueError, FileNotFoundError) as exc:
        print(f"\nError: {exc}", file=sys.stderr)
        return 1

    print(f"\nInference finished in {time.time() - start_time:.1f} s")
    print()

    # === export ===

    print("Exporting results...")
    written = result.export(path_config)
    table = result.to_long_dataframe()
    print(table.to_string(index=False))

    if args.mle:
        mle_weights = estimate_item_weights(datasets)
        mle_df = pd.DataFrame(
            sorted(mle_weights.items(), key=lambda kv: kv[1], reverse=True),
            columns=['item_id', 'mle_weight']
        )
        mle_path = path_config.get_output_path(path_config.output_mle)
        mle_df.to_csv(mle_path, index=False)
        written['mle'] = mle_path

    # === diagnostics ===

    report = format_diagnostic_report(result.convergence_diagnostics, result.metadata.acceptance_rate)
    report_path = path_config.get_output_path("diagnostic_report.txt")
    with open(report_path, 'w', encoding='utf-8') as f:
        f.write(report)
    written['report'] = report_path

    if args.verbose:
        print("\n" + report)
        input_ids = [i for ds in datasets for i in ds.input_items]
        for message in check_exclusion(result.posterior_samples, input_ids):
            print(f"  {message}")

    # === plots ===

    if HAS_MATPLOTLIB and not args.no_plots and result.sampling is not None:
        print("\nPlotting...")
        output_dir = path_config.get_output_dir()

        fig = plot_trace(result.sampling.chain_samples(), result.item_ids)
        if fig:
            fig.savefig(output_dir / "trace.png", dpi=150, bbox_inches='tight')
            print("  saved: trace.png")
            plt.close(fig)

        fig = plot_posterior_density(
            result.posterior_samples, result.summary_statistics, mcmc_config.kde_points
        )
        if fig:
            fig.savefig(output_dir / "posterior_density.png", dpi=150, bbox_inches='tight')
            print("  saved: posterior_density.png")
            plt.close(fig)

    # === done ===

    print("\n" + "=" * 60)
    print("Done!")
    print("=" * 60)
    print(f"Total time: {time.time() - start_time:.1f} s")
    print(f"Items: {result.metadata.n_items}")
    if result.metadata.acceptance_rate is not None:
        print(f"Acceptance rate: {result.metadata.acceptance_rate:.3f}")
    print(f"Converged: {result.convergence_diagnostics.converged}")
    print()
    print("Output files:")
    for path in written.values():
        print(f"  - {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
