"""Stage 1: Statistical Analysis Modules.

Pure functions on fitted models and datasets. No visualization or side
effects.

Modules:
    diagnostics: Simulated scaled residuals, uniformity, dispersion and outlier tests
    predictions: Marginal predictions over focal terms, peak location
    comparison: AIC tables, Akaike weights, likelihood ratio tests
    summary: Dataset descriptives
"""

from .comparison import akaike_weights, compare_models, likelihood_ratio_test, select_best
from .diagnostics import (
    SimulatedResiduals,
    check_model,
    diagnostics_table,
    dispersion_statistics,
    quantile_guides,
    simulate_residuals,
)
from .predictions import find_peak, marginal_predictions, reference_grid
from .summary import dataset_table, summarize_dataset

__all__ = [
    "SimulatedResiduals",
    "simulate_residuals",
    "check_model",
    "diagnostics_table",
    "dispersion_statistics",
    "quantile_guides",
    "reference_grid",
    "marginal_predictions",
    "find_peak",
    "akaike_weights",
    "compare_models",
    "select_best",
    "likelihood_ratio_test",
    "summarize_dataset",
    "dataset_table",
]
