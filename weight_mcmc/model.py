# -*- coding: utf-8 -*-
"""
Bayesian item-weight estimation
Dataset model builder (model.py)

Contains:
1. Dataset records and parsing (dicts / long-format DataFrame)
2. Item universe construction
3. Input-assumption resolution (single / multiple / unknown)
4. Count matrix and exclusion indices for the likelihood
5. Dataset signature and cache key for external caches
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .config import CALCULATION_TYPE, MODE_MULTIPLE, MODE_SINGLE, MODE_UNKNOWN
from .errors import EmptyUniverseError, InsufficientDataError, InvalidDatasetError


@dataclass(frozen=True)
class ItemCount:
    """One observed output item and how often it occurred"""
    id: str
    count: int


@dataclass(frozen=True)
class Dataset:
    """A single observation batch"""
    items: Tuple[ItemCount, ...]
    input_items: Tuple[str, ...] = ()

    @property
    def total_count(self) -> int:
        return sum(item.count for item in self.items)

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            'items': [{'id': item.id, 'count': item.count} for item in self.items]
        }
        if self.input_items:
            record['inputItems'] = [{'id': i} for i in self.input_items]
        return record


@dataclass(frozen=True)
class InputAssumption:
    """How a dataset's input item is treated by the likelihood"""
    kind: str                          # MODE_SINGLE / MODE_MULTIPLE / MODE_UNKNOWN
    input_ids: Tuple[str, ...] = ()

    @property
    def used_input(self) -> Optional[str]:
        # multiple declared inputs: only the first one enters the likelihood
        return self.input_ids[0] if self.input_ids else None

    @property
    def description(self) -> str:
        if self.kind == MODE_SINGLE:
            return f"Single known input: '{self.input_ids[0]}'"
        if self.kind == MODE_MULTIPLE:
            return f"Multiple known inputs: {', '.join(self.input_ids)} (using first)"
        return "Unknown input: uniform prior over all possible input items"

    def to_dict(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {'type': self.kind, 'description': self.description}
        if self.input_ids:
            record['inputItems'] = list(self.input_ids)
        return record


@dataclass
class ModelAssumptions:
    """Per-dataset input assumptions plus aggregate counts"""
    single_known_input: int = 0
    multiple_known_inputs: int = 0
    unknown_inputs: int = 0
    assumptions: Dict[int, InputAssumption] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'singleKnownInput': self.single_known_input,
            'multipleKnownInputs': self.multiple_known_inputs,
            'unknownInputs': self.unknown_inputs,
            'assumptions': {d: a.to_dict() for d, a in self.assumptions.items()}
        }


@dataclass
class WeightModel:
    """Resolved model consumed by the likelihood"""
    item_ids: List[str]
    counts: np.ndarray               # shape (n_datasets, n_items)
    totals: np.ndarray               # shape (n_datasets,)
    exclusion_index: np.ndarray      # shape (n_datasets,), -1 = no exclusion
    assumptions: ModelAssumptions

    @property
    def n_items(self) -> int:
        return len(self.item_ids)

    @property
    def n_datasets(self) -> int:
        return int(self.counts.shape[0])

    def index_of(self, item_id: str) -> int:
        try:
            return self.item_ids.index(item_id)
        except ValueError:
            return -1


# === Parsing ===

def _parse_count(value: Any, dataset_index: int, item_id: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool):
        raise InvalidDatasetError(f"Dataset {dataset_index}: count of '{item_id}' must be a number")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidDatasetError(
                f"Dataset {dataset_index}: count of '{item_id}' must be an integer; got {value}"
            )
        value = int(value)
    if not isinstance(value, (int, np.integer)):
        raise InvalidDatasetError(f"Dataset {dataset_index}: count of '{item_id}' must be a number")
    if value < 0:
        raise InvalidDatasetError(
            f"Dataset {dataset_index}: count of '{item_id}' must be non-negative; got {value}"
        )
    return int(value)


def parse_dataset(record: Any, dataset_index: int = 0) -> Dataset:
    """
    Convert a wire-shaped record into a Dataset

    Accepts ``{"items": [{"id", "count"}], "inputItems": [{"id"}]}``;
    ``input_items`` and bare-string input entries are accepted as well.
    Dataset instances are returned unchanged.
    """
    if isinstance(record, Dataset):
        return record
    if not isinstance(record, Mapping):
        raise InvalidDatasetError(f"Dataset {dataset_index}: dataset must be an object")

    raw_items = record.get('items')
    if not isinstance(raw_items, (list, tuple)):
        raise InvalidDatasetError(
            f"Dataset {dataset_index}: missing required field: items (must be an array)"
        )

    items: List[ItemCount] = []
    for raw in raw_items:
        if not isinstance(raw, Mapping) or not raw.get('id'):
            raise InvalidDatasetError(f"Dataset {dataset_index}: invalid item: missing id or count")
        item_id = str(raw['id'])
        items.append(ItemCount(item_id, _parse_count(raw.get('count'), dataset_index, item_id)))

    raw_inputs = record.get('inputItems', record.get('input_items')) or []
    input_items: List[str] = []
    for raw in raw_inputs:
        if isinstance(raw, str):
            input_items.append(raw)
        elif isinstance(raw, Mapping) and raw.get('id'):
            input_items.append(str(raw['id']))
        else:
            raise InvalidDatasetError(f"Dataset {dataset_index}: invalid input item: missing id")

    return Dataset(items=tuple(items), input_items=tuple(input_items))


def parse_datasets(records: Iterable[Any]) -> List[Dataset]:
    return [parse_dataset(r, i) for i, r in enumerate(records)]


def datasets_from_dataframe(df: pd.DataFrame) -> List[Dataset]:
    """
    Build datasets from a long-format table

    Columns: ``dataset`` (group key), ``item``, ``count`` and an optional
    ``role`` column with values ``output`` (default) or ``input``.
    Dataset order follows first appearance of each key.
    """
    missing = {'dataset', 'item'} - set(df.columns)
    if missing:
        raise ValueError(f"CSV missing columns: {sorted(missing)}")

    df = df.copy()
    if 'role' not in df.columns:
        df['role'] = 'output'
    df['role'] = df['role'].fillna('output').astype(str).str.strip().str.lower()
    if 'count' not in df.columns:
        df['count'] = 0
    df['count'] = df['count'].fillna(0)

    datasets: List[Dataset] = []
    for index, (_, group) in enumerate(df.groupby('dataset', sort=False)):
        outputs = group[group['role'] != 'input']
        inputs = group[group['role'] == 'input']
        items = tuple(
            ItemCount(str(item_id), _parse_count(float(count), index, str(item_id)))
            for item_id, count in zip(outputs['item'].tolist(), outputs['count'].tolist())
        )
        input_items = tuple(str(i) for i in inputs['item'].tolist())
        datasets.append(Dataset(items=items, input_items=input_items))
    return datasets


# === Universe / assumptions ===

def build_item_universe(datasets: Sequence[Dataset]) -> List[str]:
    """Output item ids in first-seen order; input-only ids are left out."""
    seen: Dict[str, None] = {}
    for ds in datasets:
        for item in ds.items:
            seen.setdefault(item.id, None)
    return list(seen)


def resolve_input_assumption(dataset: Dataset) -> InputAssumption:
    n_inputs = len(dataset.input_items)
    if n_inputs == 0:
        return InputAssumption(MODE_UNKNOWN)
    if n_inputs == 1:
        return InputAssumption(MODE_SINGLE, tuple(dataset.input_items))
    return InputAssumption(MODE_MULTIPLE, tuple(dataset.input_items))


def compute_model_assumptions(datasets: Sequence[Dataset]) -> ModelAssumptions:
    result = ModelAssumptions()
    for d, ds in enumerate(datasets):
        assumption = resolve_input_assumption(ds)
        if assumption.kind == MODE_UNKNOWN:
            result.unknown_inputs += 1
        elif assumption.kind == MODE_SINGLE:
            result.single_known_input += 1
        else:
            result.multiple_known_inputs += 1
        result.assumptions[d] = assumption
    return result


def build_model(datasets: Sequence[Any]) -> WeightModel:
    """
    Resolve datasets into the arrays the likelihood works on

    Args:
        datasets: Dataset instances or wire-shaped dicts

    Returns:
        WeightModel

    Raises:
        EmptyUniverseError: no output item in any dataset
    """
    datasets = parse_datasets(datasets)
    item_ids = build_item_universe(datasets)
    if not item_ids:
        raise EmptyUniverseError()

    index = {item_id: i for i, item_id in enumerate(item_ids)}
    n_datasets, n_items = len(datasets), len(item_ids)

    counts = np.zeros((n_datasets, n_items), dtype=float)
    exclusion = np.full(n_datasets, -1, dtype=int)
    assumptions = compute_model_assumptions(datasets)

    for d, ds in enumerate(datasets):
        for item in ds.items:
            counts[d, index[item.id]] += item.count
        # an input that never appears as an output has nothing to exclude
        used = assumptions.assumptions[d].used_input
        if used is not None and used in index:
            exclusion[d] = index[used]

    return WeightModel(
        item_ids=item_ids,
        counts=counts,
        totals=counts.sum(axis=1),
        exclusion_index=exclusion,
        assumptions=assumptions
    )


def validate_datasets(datasets: Sequence[Any]) -> List[Dataset]:
    """
    Caller-level validation run before inference

    The sampler only skips zero-total datasets; callers that want to reject
    them up front use this.
    """
    datasets = parse_datasets(datasets)
    if not datasets:
        raise ValueError("Datasets array cannot be empty")
    for d, ds in enumerate(datasets):
        if not ds.items:
            raise InvalidDatasetError(f"Dataset {d}: items array is required and cannot be empty")
        if ds.total_count == 0:
            raise InsufficientDataError(d)
    return datasets


# === Cache boundary ===

def dataset_signature(datasets: Sequence[Any], last_updated: Optional[str] = None) -> str:
    """Stable digest of dataset content, used as part of an external cache key."""
    payload = {
        'datasets': [ds.to_dict() for ds in parse_datasets(datasets)],
        'lastUpdated': last_updated
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return hashlib.sha1(canonical.encode('utf-8')).hexdigest()[:16]


def cache_key(category_id: str, signature: str, calculation_type: str = CALCULATION_TYPE) -> str:
    return f"weightCache:{category_id}:{signature}:{calculation_type}"


if __name__ == "__main__":
    demo = [
        {'items': [{'id': 'tul', 'count': 2030}, {'id': 'xoph', 'count': 2007}],
         'inputItems': [{'id': 'esh'}]},
        {'items': [{'id': 'xoph', 'count': 12}, {'id': 'chayula', 'count': 3}],
         'inputItems': [{'id': 'tul'}, {'id': 'esh'}]},
    ]
    model = build_model(demo)
    print(f"items: {model.item_ids}")
    print(f"counts:\n{model.counts}")
    print(f"exclusion: {model.exclusion_index}")
    for d, a in model.assumptions.assumptions.items():
        print(f"  dataset {d}: {a.description}")
    print(f"signature: {dataset_signature(demo)}")
