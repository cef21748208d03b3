"""Descriptive summaries of the input datasets."""

import logging
from typing import Sequence

import pandas as pd

from ..loaders import response_column
from ..schemas import DatasetKind, DatasetSummary, _convert

logger = logging.getLogger(__name__)


def summarize_dataset(df: pd.DataFrame, name: str = "", kind: str = None) -> DatasetSummary:
    """Compute observation counts and ranges of one validated dataset.

    Args:
        df: Dataset with canonical column names
        name: Dataset name (defaults to ``df.attrs["name"]``)
        kind: Dataset kind (defaults to ``df.attrs["kind"]``)

    Returns:
        DatasetSummary
    """
    kind = kind or df.attrs.get("kind", DatasetKind.LITTER_SIZE.value)
    response = response_column(kind)
    y = df[response].astype(float)

    summary = DatasetSummary(
        name=name or df.attrs.get("name", ""),
        kind=kind,
        response=response,
        n_obs=len(df),
        n_mothers=int(df["mother_id"].nunique()),
        n_years=int(df["year"].nunique()),
        age_min=float(df["age"].min()),
        age_max=float(df["age"].max()),
        response_mean=float(y.mean()),
        response_sd=float(y.std()) if len(df) > 1 else 0.0,
        rodent_min=float(df["rodent_index"].min()),
        rodent_max=float(df["rodent_index"].max()),
    )
    if pd.api.types.is_numeric_dtype(df["year"]):
        summary.year_min = int(df["year"].min())
        summary.year_max = int(df["year"].max())
    if "area" in df.columns:
        summary.n_areas = int(df["area"].nunique())
    if "litter_id" in df.columns:
        summary.n_litters = int(df[["mother_id", "litter_id"]].drop_duplicates().shape[0])
    return summary


def dataset_table(summaries: Sequence[DatasetSummary]) -> pd.DataFrame:
    """One row per dataset for reporting."""
    return pd.DataFrame([_convert(s) for s in summaries]).set_index("name")
