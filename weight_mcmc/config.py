# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Configuration module (config.py)

Tunable sampler parameters, path configuration and constants.
"""

from dataclasses import dataclass, field
from typing import Optional
from pathlib import Path


@dataclass
class MCMCConfig:
    """MCMC sampling configuration"""

    # === Sampling parameters ===
    n_samples: int = 2000          # recorded samples per chain
    n_chains: int = 2              # independent chains
    burn_in: int = 500             # discarded warm-up iterations per chain

    # === Proposal parameters ===
    proposal_scale: float = 0.1    # std of the logit-space random walk σ

    # === Prior parameters ===
    prior_alpha: float = 1.0       # Dirichlet concentration α
                                   # α=1: flat over the simplex
                                   # α>1: favours even weights
                                   # α<1: favours sparse weights

    # === Summary parameters ===
    credible_level: float = 0.95
    kde_points: int = 100

    # === Cooperative scheduling ===
    yield_every: int = 50          # iterations between yield/progress points
    progress_reserve: float = 10.0 # percent kept back for post-processing

    # === Convergence diagnostics ===
    diagnostics_method: str = "heuristic"  # "heuristic" (ess=count, rhat=1) or "full"
    ess_threshold: float = 400.0
    rhat_threshold: float = 1.1
    require_rhat: bool = False     # also demand rhat < threshold in heuristic mode

    # === Parallelism ===
    n_jobs: int = 1                # chain processes, 1 runs chains serially

    # === Random seed ===
    random_seed: Optional[int] = None

    def validate(self) -> "MCMCConfig":
        if self.n_samples <= 0:
            raise ValueError(f"n_samples must be positive; got {self.n_samples}")
        if self.n_chains <= 0:
            raise ValueError(f"n_chains must be positive; got {self.n_chains}")
        if self.burn_in < 0:
            raise ValueError(f"burn_in must be non-negative; got {self.burn_in}")
        if self.proposal_scale <= 0:
            raise ValueError(f"proposal_scale must be positive; got {self.proposal_scale}")
        if self.prior_alpha <= 0:
            raise ValueError(f"prior_alpha must be positive; got {self.prior_alpha}")
        if not (0.0 < self.credible_level < 1.0):
            raise ValueError("Level must be between 0 and 1")
        if self.yield_every <= 0:
            raise ValueError(f"yield_every must be positive; got {self.yield_every}")
        if not (0.0 <= self.progress_reserve < 100.0):
            raise ValueError("progress_reserve must be in [0, 100)")
        if self.diagnostics_method not in DIAGNOSTICS_METHODS:
            raise ValueError(f"Unknown diagnostics method: {self.diagnostics_method}")
        return self

    @property
    def total_iterations(self) -> int:
        return self.n_chains * (self.burn_in + self.n_samples)


@dataclass
class PathConfig:
    """Path configuration for the command-line runner"""

    # working directory
    workspace: Path = field(default_factory=Path.cwd)

    # input data: JSON list of datasets or long-format CSV
    input_file: str = "datasets.json"

    # output directory
    output_dir: str = "outputs/weight_mcmc"

    # output file names
    output_summary: str = "posterior_summary.csv"
    output_samples: str = "posterior_samples.npz"
    output_result: str = "inference_result.json"
    output_mle: str = "mle_weights.csv"

    def get_input_path(self) -> Path:
        path = Path(self.input_file)
        if path.is_absolute():
            return path
        return self.workspace / path

    def get_output_dir(self) -> Path:
        output = self.workspace / self.output_dir
        output.mkdir(parents=True, exist_ok=True)
        return output

    def get_output_path(self, filename: str) -> Path:
        return self.get_output_dir() / filename


# === Constants ===

# clamp bound used by the logit proposal
EPSILON = 1e-10

# input-assumption kinds
MODE_SINGLE = "single"
MODE_MULTIPLE = "multiple"
MODE_UNKNOWN = "unknown"

# diagnostics methods
DIAGNOSTICS_HEURISTIC = "heuristic"
DIAGNOSTICS_FULL = "full"
DIAGNOSTICS_METHODS = (DIAGNOSTICS_HEURISTIC, DIAGNOSTICS_FULL)

# below this many samples per item the summary is flagged
MIN_SUMMARY_SAMPLES = 100

ERROR_PREFIX = "Bayesian inference failed: "
CALCULATION_TYPE = "bayesian"


def get_default_config() -> tuple:
    """Default configuration pair"""
    return MCMCConfig(), PathConfig()


if __name__ == "__main__":
    mcmc_cfg, path_cfg = get_default_config()
    print("=== MCMC config ===")
    print(f"samples/chain: {mcmc_cfg.n_samples}")
    print(f"chains: {mcmc_cfg.n_chains}")
    print(f"burn-in: {mcmc_cfg.burn_in}")
    print(f"proposal σ: {mcmc_cfg.proposal_scale}")
    print(f"total iterations: {mcmc_cfg.total_iterations}")
    print()
    print("=== Paths ===")
    print(f"workspace: {path_cfg.workspace}")
    print(f"input: {path_cfg.get_input_path()}")
