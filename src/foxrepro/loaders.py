"""Data loading utilities for the reproduction datasets.

This module reads the litter size and pup survival tables, maps the
configured CSV column names onto canonical role names, and validates the
invariants every dataset must satisfy before any model is fitted.
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .schemas import DatasetKind

logger = logging.getLogger(__name__)


# Canonical column names per role
ROLE_COLUMNS: Dict[str, str] = {
    "mother": "mother_id",
    "area": "area",
    "year": "year",
    "age": "age",
    "rodent": "rodent_index",
    "litter": "litter_id",
}

RESPONSE_COLUMNS: Dict[str, str] = {
    DatasetKind.LITTER_SIZE.value: "litter_size",
    DatasetKind.SURVIVAL.value: "survived",
}

GROUPING_ROLES = ("mother", "area", "year", "litter")

# Examples listed per violated invariant
_MAX_EXAMPLES = 5


class DataValidationError(Exception):
    """Raised when a dataset violates one or more invariants."""

    def __init__(self, dataset: str, errors: Sequence[str]):
        self.dataset = dataset
        self.errors = list(errors)
        message = f"Dataset '{dataset}' failed validation:\n  " + "\n  ".join(self.errors)
        super().__init__(message)


def response_column(kind: str) -> str:
    """Canonical response column for a dataset kind."""
    if kind not in RESPONSE_COLUMNS:
        raise ValueError(
            f"Unknown dataset kind '{kind}'. Expected one of {list(RESPONSE_COLUMNS)}"
        )
    return RESPONSE_COLUMNS[kind]


def required_roles(kind: str, rodent_key: Sequence[str] = ("year",)) -> List[str]:
    """Roles a dataset of the given kind must provide."""
    roles = ["mother", "year", "age", "response", "rodent"]
    if kind == DatasetKind.SURVIVAL.value:
        roles.append("litter")
    for role in rodent_key:
        if role not in roles:
            roles.append(role)
    return roles


def _canonical(role: str, kind: str) -> str:
    if role == "response":
        return response_column(kind)
    return ROLE_COLUMNS[role]


def _resolve_path(file: str, data_dir: Optional[str]) -> Path:
    path = Path(file)
    if not path.is_absolute() and data_dir is not None and not path.exists():
        path = Path(data_dir) / path
    return path


def _examples(frame: pd.DataFrame, columns: List[str]) -> str:
    rows = frame[columns].drop_duplicates().head(_MAX_EXAMPLES)
    return "; ".join(
        ", ".join(f"{c}={row[c]}" for c in columns) for _, row in rows.iterrows()
    )


def validate_data_directory(cfg: Mapping[str, Any]) -> Tuple[bool, List[str], List[str]]:
    """Check that every configured dataset file exists.

    Args:
        cfg: Analysis configuration.

    Returns:
        Tuple of (is_valid, found_files, missing_files)
    """
    data_dir = cfg["paths"]["data_dir"]
    found, missing = [], []
    for key, spec in cfg["datasets"].items():
        path = _resolve_path(spec["file"], data_dir)
        if path.exists():
            found.append(str(path))
        else:
            missing.append(f"{key}: {path}")
    return len(missing) == 0, found, missing


def validate_dataset(
    df: pd.DataFrame,
    kind: str,
    truncated: bool = False,
    rodent_key: Sequence[str] = ("year",),
    name: str = "dataset",
) -> None:
    """Validate dataset invariants on canonically named columns.

    Invariants:
        - required columns are present
        - each mother has at most one litter per year
        - litter size is a non-negative integer (positive when truncated)
        - survival is binary
        - rodent index is non-negative and constant within ``rodent_key``
        - age is non-negative

    Args:
        df: DataFrame with canonical column names
        kind: "litter_size" or "survival"
        truncated: Whether zero litters are excluded by design
        rodent_key: Roles the rodent index is recorded per
        name: Dataset name used in error messages

    Raises:
        DataValidationError: Listing every violated invariant
    """
    required = [_canonical(role, kind) for role in required_roles(kind, rodent_key)]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise DataValidationError(name, [f"Missing required columns: {missing}"])

    errors: List[str] = []
    response = response_column(kind)

    if len(df) == 0:
        raise DataValidationError(name, ["Dataset has no complete observations"])

    if not pd.api.types.is_numeric_dtype(df["age"]):
        errors.append("Column 'age' is not numeric")
    elif (df["age"] < 0).any():
        errors.append(f"Negative ages: {_examples(df[df['age'] < 0], ['mother_id', 'year', 'age'])}")

    y = df[response]
    if not pd.api.types.is_numeric_dtype(y):
        errors.append(f"Response '{response}' is not numeric")
    elif kind == DatasetKind.LITTER_SIZE.value:
        non_integer = np.mod(y.to_numpy(dtype=float), 1.0) != 0
        if non_integer.any():
            errors.append(f"Non-integer litter sizes: {sorted(y[non_integer].unique())[:_MAX_EXAMPLES]}")
        if (y < 0).any():
            errors.append(f"Negative litter sizes: {sorted(y[y < 0].unique())[:_MAX_EXAMPLES]}")
        if truncated and (y == 0).any():
            errors.append(
                f"{int((y == 0).sum())} zero litter sizes in a zero-truncated dataset"
            )
    else:
        invalid = ~y.isin([0, 1])
        if invalid.any():
            errors.append(f"Survival is not binary: {sorted(y[invalid].unique())[:_MAX_EXAMPLES]}")

    # One litter per mother and year
    if kind == DatasetKind.LITTER_SIZE.value:
        dup = df[df.duplicated(["mother_id", "year"], keep=False)]
        if not dup.empty:
            errors.append(
                f"Multiple litters for the same mother and year: "
                f"{_examples(dup, ['mother_id', 'year'])}"
            )
    else:
        n_litters = df.groupby(["mother_id", "year"], observed=True)["litter_id"].nunique()
        bad = n_litters[n_litters > 1].reset_index()
        if not bad.empty:
            errors.append(
                f"Multiple litters for the same mother and year: "
                f"{_examples(bad, ['mother_id', 'year'])}"
            )

    rodent = df["rodent_index"]
    if not pd.api.types.is_numeric_dtype(rodent):
        errors.append("Column 'rodent_index' is not numeric")
    else:
        if (rodent < 0).any():
            errors.append(
                f"Negative rodent index: {_examples(df[rodent < 0], ['year', 'rodent_index'])}"
            )
        key_cols = [ROLE_COLUMNS[r] for r in rodent_key]
        n_values = df.groupby(key_cols, observed=True)["rodent_index"].nunique()
        inconsistent = n_values[n_values > 1].reset_index()
        if not inconsistent.empty:
            errors.append(
                f"Rodent index not constant within {key_cols}: "
                f"{_examples(inconsistent, key_cols)}"
            )

    if errors:
        raise DataValidationError(name, errors)

    logger.debug(f"Dataset '{name}' passed validation ({len(df)} rows)")


def load_dataset(
    spec: Mapping[str, Any],
    name: str = "dataset",
    data_dir: Optional[str] = None,
) -> pd.DataFrame:
    """Load and validate one dataset.

    Args:
        spec: Dataset entry from the config (file, kind, truncated,
            columns, rodent_key)
        name: Dataset key, used in messages
        data_dir: Directory relative file names are resolved against

    Returns:
        DataFrame with canonical column names, complete cases only

    Raises:
        FileNotFoundError: If the CSV file doesn't exist
        DataValidationError: If the data violate an invariant
    """
    kind = spec.get("kind", DatasetKind.LITTER_SIZE.value)
    truncated = bool(spec.get("truncated", False))
    rodent_key = list(spec.get("rodent_key", ["year"]))
    columns = dict(spec.get("columns", {}))

    path = _resolve_path(spec["file"], data_dir)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    raw = pd.read_csv(path)
    logger.info(f"Loaded {len(raw)} rows from {path}")

    roles = required_roles(kind, rodent_key)
    for optional in ("area", "litter"):
        if optional in columns and optional not in roles:
            roles.append(optional)

    rename = {}
    missing = []
    for role in roles:
        source = columns.get(role, _canonical(role, kind))
        if source not in raw.columns:
            missing.append(f"{role} -> '{source}'")
        else:
            rename[source] = _canonical(role, kind)
    if missing:
        raise DataValidationError(name, [f"Columns not found in {path.name}: {missing}"])

    df = raw[list(rename)].rename(columns=rename)

    n_before = len(df)
    df = df.dropna().reset_index(drop=True)
    if len(df) < n_before:
        logger.warning(
            f"Dataset '{name}': dropped {n_before - len(df)} rows with missing values"
        )

    validate_dataset(df, kind=kind, truncated=truncated, rodent_key=rodent_key, name=name)

    response = response_column(kind)
    df[response] = df[response].astype(int)
    df.attrs["name"] = name
    df.attrs["kind"] = kind
    df.attrs["truncated"] = truncated
    df.attrs["source"] = str(path)
    return df


def load_all_datasets(cfg: Mapping[str, Any]) -> Dict[str, pd.DataFrame]:
    """Load every dataset declared in the config.

    Args:
        cfg: Analysis configuration

    Returns:
        Dictionary mapping dataset key to validated DataFrame
    """
    data_dir = cfg["paths"]["data_dir"]
    datasets = {}
    for key, spec in cfg["datasets"].items():
        datasets[key] = load_dataset(spec, name=key, data_dir=data_dir)
    return datasets
