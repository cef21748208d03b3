"""Model comparison by information criteria and likelihood ratio tests."""

import logging
from typing import Sequence

import numpy as np
import pandas as pd
from scipy import stats

from ..models import GLMMResults
from ..schemas import StatisticalTestResults

logger = logging.getLogger(__name__)


def akaike_weights(aic: Sequence[float]) -> np.ndarray:
    """Akaike weights from AIC values (sum to one)."""
    aic = np.asarray(aic, dtype=float)
    delta = aic - np.nanmin(aic)
    rel = np.exp(-0.5 * delta)
    return rel / np.nansum(rel)


def compare_models(results: Sequence[GLMMResults]) -> pd.DataFrame:
    """AIC table of competing models, best first.

    Returns:
        DataFrame indexed by model name with columns [family, formula, k,
        logLik, AIC, dAIC, weight, BIC, converged, singular]
    """
    if not results:
        raise ValueError("No models to compare")

    nobs = {r.nobs for r in results}
    if len(nobs) > 1:
        logger.warning(f"Compared models were fitted to different numbers of observations: {nobs}")

    table = pd.DataFrame(
        {
            "family": [r.family.name for r in results],
            "formula": [r.model.formula for r in results],
            "k": [r.df_model for r in results],
            "logLik": [r.llf for r in results],
            "AIC": [r.aic for r in results],
            "BIC": [r.bic for r in results],
            "converged": [r.converged for r in results],
            "singular": [r.singular for r in results],
        },
        index=pd.Index([r.name for r in results], name="model"),
    )
    table["dAIC"] = table["AIC"] - table["AIC"].min()
    table["weight"] = akaike_weights(table["AIC"])
    table = table[
        ["family", "formula", "k", "logLik", "AIC", "dAIC", "weight", "BIC", "converged", "singular"]
    ]
    return table.sort_values("AIC", kind="mergesort")


def select_best(table: pd.DataFrame) -> str:
    """Name of the lowest-AIC model, preferring converged fits."""
    candidates = table[table["converged"]] if table["converged"].any() else table
    return str(candidates["AIC"].idxmin())


def likelihood_ratio_test(
    reduced: GLMMResults,
    full: GLMMResults,
    alpha: float = 0.05,
) -> StatisticalTestResults:
    """Likelihood ratio test of a reduced model nested in a full model."""
    df = full.df_model - reduced.df_model
    if df <= 0:
        return StatisticalTestResults(
            test_name="Likelihood ratio",
            notes=f"'{full.name}' does not have more parameters than '{reduced.name}'",
        )

    statistic = max(0.0, 2.0 * (full.llf - reduced.llf))
    p_value = float(stats.chi2.sf(statistic, df))
    return StatisticalTestResults(
        test_name="Likelihood ratio",
        statistic=float(statistic),
        p_value=p_value,
        significant=p_value < alpha,
        notes=f"{reduced.name} vs {full.name}, df={df}",
    )
