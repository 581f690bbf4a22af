# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation

Module list:
- config.py: parameter configuration
- errors.py: exception types
- model.py: datasets, item universe, input assumptions
- sampler.py: likelihood, prior, proposal, Metropolis sampler
- stats.py: posterior summaries
- density.py: kernel density estimate
- diagnostics.py: convergence diagnostics and plots
- engine.py: inference session and drivers
- mle.py: maximum-likelihood point estimator
- sensitivity.py: proposal-scale sweep
- main.py: command-line runner
"""

from .config import MCMCConfig, PathConfig, get_default_config
from .errors import (
    EmptyUniverseError,
    InferenceCancelledError,
    InferenceFailedError,
    InsufficientDataError,
    InvalidDatasetError,
    WeightInferenceError,
)
from .model import Dataset, ItemCount, build_model, validate_datasets
from .sampler import ProgressEvent, SamplerPhase, WeightSampler, create_sampler
from .stats import compute_statistics, renormalize_summary
from .density import compute_kde
from .diagnostics import ConvergenceDiagnostics, compute_convergence_diagnostics
from .engine import (
    CancellationToken,
    InferenceResult,
    InferenceSession,
    run_inference,
    run_inference_async,
)
from .mle import estimate_item_weights

__all__ = [
    'MCMCConfig',
    'PathConfig',
    'get_default_config',
    'WeightInferenceError',
    'InvalidDatasetError',
    'EmptyUniverseError',
    'InsufficientDataError',
    'InferenceCancelledError',
    'InferenceFailedError',
    'Dataset',
    'ItemCount',
    'build_model',
    'validate_datasets',
    'ProgressEvent',
    'SamplerPhase',
    'WeightSampler',
    'create_sampler',
    'compute_statistics',
    'renormalize_summary',
    'compute_kde',
    'ConvergenceDiagnostics',
    'compute_convergence_diagnostics',
    'CancellationToken',
    'InferenceResult',
    'InferenceSession',
    'run_inference',
    'run_inference_async',
    'estimate_item_weights'
]

__version__ = '1.0.0'
