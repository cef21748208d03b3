"""Marginal (population-level) predictions from fitted models.

Predictions vary one focal term over a grid while the remaining covariates
are held at typical values: the mean for numeric columns and the most
frequent level for categorical ones. Random effects are set to zero.
Confidence intervals are computed on the link scale from the fixed-effect
covariance and mapped to the response scale through the family mean.
"""

import logging
from typing import Optional, Sequence

import numpy as np
import pandas as pd
from scipy import stats

from ..models import GLMMResults

logger = logging.getLogger(__name__)


def _typical_value(series: pd.Series):
    if pd.api.types.is_bool_dtype(series) or not pd.api.types.is_numeric_dtype(series):
        return series.mode().iloc[0]
    return float(series.mean())


def reference_grid(
    results: GLMMResults,
    term: str,
    n_points: int = 100,
    values: Optional[Sequence] = None,
) -> pd.DataFrame:
    """Data grid over a focal term with other columns at typical values.

    Args:
        results: Fitted model
        term: Focal column name
        n_points: Grid size for a numeric term
        values: Explicit focal values (overrides ``n_points``)

    Returns:
        DataFrame with one row per focal value and every model data column

    Raises:
        KeyError: If ``term`` is not a column of the model data
    """
    data = results.model.data
    if term not in data.columns:
        raise KeyError(f"Focal term '{term}' not in model data columns {list(data.columns)}")

    focal = data[term]
    if values is not None:
        grid_values = np.asarray(values)
    elif pd.api.types.is_numeric_dtype(focal) and not pd.api.types.is_bool_dtype(focal):
        grid_values = np.linspace(float(focal.min()), float(focal.max()), n_points)
    else:
        grid_values = np.sort(focal.unique())

    grid = pd.DataFrame({term: grid_values})
    for column in data.columns:
        if column != term:
            grid[column] = _typical_value(data[column])
    return grid[list(data.columns)]


def marginal_predictions(
    results: GLMMResults,
    term: str,
    n_points: int = 100,
    ci_level: float = 0.95,
    values: Optional[Sequence] = None,
) -> pd.DataFrame:
    """Predicted response over a focal term with confidence intervals.

    Returns:
        DataFrame with columns [term, predicted, conf_low, conf_high, se_link]
    """
    if not 0.0 < ci_level < 1.0:
        raise ValueError(f"ci_level must be in (0, 1), got {ci_level}")

    grid = reference_grid(results, term, n_points=n_points, values=values)
    eta, se = results.predict_linear(grid)
    crit = stats.norm.ppf(0.5 + ci_level / 2)

    pred = pd.DataFrame(
        {
            term: grid[term].to_numpy(),
            "predicted": results.mean_response(eta),
            "conf_low": results.mean_response(eta - crit * se),
            "conf_high": results.mean_response(eta + crit * se),
            "se_link": se,
        }
    )
    logger.debug(f"{results.name}: {len(pred)} marginal predictions over '{term}'")
    return pred


def find_peak(pred: pd.DataFrame, term: str) -> float:
    """Value of the focal term at which the predicted response is largest."""
    if pred.empty:
        raise ValueError("Empty prediction table")
    idx = int(np.argmax(pred["predicted"].to_numpy()))
    if idx in (0, len(pred) - 1):
        logger.debug(f"Predicted maximum over '{term}' lies at the edge of the range")
    return float(pred[term].iloc[idx])
