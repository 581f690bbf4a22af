from __future__ import annotations

from .config import ERROR_PREFIX


class WeightInferenceError(Exception):
    """Base class for errors raised by the weight engine."""


class InvalidDatasetError(WeightInferenceError, ValueError):
    """A dataset record is malformed (missing items, negative counts...)."""


class EmptyUniverseError(WeightInferenceError, ValueError):
    """No output item appears in any dataset."""

    def __init__(self, message: str = "No items found in datasets") -> None:
        super().__init__(message)


class InsufficientDataError(WeightInferenceError, ValueError):
    """A dataset's total output count is zero."""

    def __init__(self, dataset_index: int) -> None:
        self.dataset_index = dataset_index
        super().__init__(
            f"Dataset {dataset_index}: all transformation counts are zero. "
            "Insufficient data for Bayesian inference."
        )


class InferenceCancelledError(WeightInferenceError):
    """The caller cancelled a running inference at a yield point."""


class InferenceFailedError(WeightInferenceError, RuntimeError):
    """Wraps any failure during sampling; the cause is chained."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(f"{ERROR_PREFIX}{cause}")
