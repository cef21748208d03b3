"""Simulation-based residual diagnostics for fitted mixed models.

Scaled (quantile) residuals are obtained by simulating new responses from
the fitted model and locating each observation within its simulated
distribution. Under a correctly specified model they are uniform on (0, 1),
regardless of the response family. Integer responses are randomized
between the lower and upper empirical CDF values so that ties do not
distort the distribution.

Tests:
    uniformity   one-sample Kolmogorov-Smirnov test against U(0, 1)
    dispersion   observed vs simulated variance of residuals around the
                 simulated mean (two-sided simulation p-value)
    outliers     observations outside the whole simulation envelope vs the
                 counts of the simulated datasets (integer responses) or
                 the rate 2 / (n_sim + 1) (binomial test, continuous ones)
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
import statsmodels.api as sm
from scipy import stats

from ..models import GLMMResults
from ..schemas import DiagnosticVerdict, ModelDiagnostics, StatisticalTestResults
from ..utils.seed import make_rng

logger = logging.getLogger(__name__)


@dataclass
class SimulatedResiduals:
    """Observed data, simulations and scaled residuals of one model."""
    model_name: str
    observed: np.ndarray
    simulated: np.ndarray          # (n_sim, n_obs)
    predicted: np.ndarray          # population-level predicted response
    scaled_residuals: np.ndarray   # in [0, 1]
    lower: np.ndarray              # P(sim < obs)
    upper: np.ndarray              # P(sim <= obs)
    integer_response: bool = True

    @property
    def n_sim(self) -> int:
        return self.simulated.shape[0]

    @property
    def n_obs(self) -> int:
        return self.simulated.shape[1]

    @property
    def simulated_mean(self) -> np.ndarray:
        return self.simulated.mean(axis=0)

    @property
    def outside_envelope(self) -> np.ndarray:
        """Observations below or above every simulated value."""
        return (self.upper == 0.0) | (self.lower == 1.0)


def scaled_residuals(
    observed: np.ndarray,
    simulated: np.ndarray,
    rng: np.random.Generator,
    integer_response: bool = True,
):
    """Quantile residuals of observations within their simulations.

    Returns:
        (residuals, lower, upper)
    """
    observed = np.asarray(observed, dtype=float)
    lower = (simulated < observed[None, :]).mean(axis=0)
    upper = (simulated <= observed[None, :]).mean(axis=0)
    if integer_response:
        residuals = lower + rng.random(len(observed)) * (upper - lower)
    else:
        residuals = upper
    return residuals, lower, upper


def simulate_residuals(
    results: GLMMResults,
    n_sim: int = 250,
    seed: Optional[int] = None,
) -> SimulatedResiduals:
    """Simulate from a fitted model and compute scaled residuals.

    Random effects are redrawn for every simulation, so the residuals
    check the full model including the variance components.

    Args:
        results: Fitted model
        n_sim: Number of simulated datasets
        seed: Random seed

    Returns:
        SimulatedResiduals
    """
    if n_sim < 10:
        raise ValueError(f"n_sim must be at least 10, got {n_sim}")

    rng = make_rng(seed)
    simulated = results.simulate(n_sim, rng, conditional=False)
    observed = results.design.y
    integer_response = results.family.integer_response
    residuals, lower, upper = scaled_residuals(
        observed, simulated, rng, integer_response=integer_response
    )
    logger.debug(f"{results.name}: simulated {n_sim} datasets for residual diagnostics")

    return SimulatedResiduals(
        model_name=results.name,
        observed=observed,
        simulated=simulated,
        predicted=results.predict(),
        scaled_residuals=residuals,
        lower=lower,
        upper=upper,
        integer_response=integer_response,
    )


def test_uniformity(sim_res: SimulatedResiduals, alpha: float = 0.05) -> StatisticalTestResults:
    """Kolmogorov-Smirnov test of the scaled residuals against U(0, 1)."""
    result = stats.kstest(sim_res.scaled_residuals, "uniform")
    p_value = float(result.pvalue)
    return StatisticalTestResults(
        test_name="KS uniformity",
        statistic=float(result.statistic),
        p_value=p_value,
        significant=p_value < alpha,
        notes=f"n={sim_res.n_obs}",
    )


def dispersion_statistics(sim_res: SimulatedResiduals):
    """Residual variance around the simulated mean, observed and per simulation.

    Returns:
        (observed_stat, simulated_stats)
    """
    mean = sim_res.simulated_mean
    observed_stat = float(np.var(sim_res.observed - mean, ddof=1))
    simulated_stats = np.var(sim_res.simulated - mean[None, :], axis=1, ddof=1)
    return observed_stat, simulated_stats


def test_dispersion(sim_res: SimulatedResiduals, alpha: float = 0.05) -> StatisticalTestResults:
    """Simulation test for over- or underdispersion.

    The statistic is the variance of observed minus simulated-mean values,
    compared with the same variance for each simulated dataset. The ratio
    of observed to mean simulated variance is reported as the effect size
    (> 1 overdispersion, < 1 underdispersion).
    """
    observed_stat, simulated_stats = dispersion_statistics(sim_res)
    expected = float(np.mean(simulated_stats))
    ratio = observed_stat / expected if expected > 0 else float("nan")

    p_greater = float(np.mean(simulated_stats >= observed_stat))
    p_less = float(np.mean(simulated_stats <= observed_stat))
    p_value = min(1.0, 2.0 * min(p_greater, p_less))

    return StatisticalTestResults(
        test_name="Dispersion",
        statistic=ratio,
        p_value=p_value,
        significant=p_value < alpha,
        effect_size=ratio,
        confidence_interval=(
            float(np.quantile(simulated_stats / expected, 0.025)),
            float(np.quantile(simulated_stats / expected, 0.975)),
        )
        if expected > 0
        else None,
        notes=f"n_sim={sim_res.n_sim}",
    )


def simulated_outlier_counts(simulated: np.ndarray) -> np.ndarray:
    """Envelope exceedances of each simulated dataset against the others.

    Every row is treated as the observed data and compared with the
    envelope of the remaining ``n_sim - 1`` rows.
    """
    ordered = np.sort(simulated, axis=0)
    lowest, second_lowest = ordered[0], ordered[1]
    highest, second_highest = ordered[-1], ordered[-2]

    min_others = np.where(simulated == lowest[None, :], second_lowest[None, :], lowest[None, :])
    max_others = np.where(simulated == highest[None, :], second_highest[None, :], highest[None, :])
    outside = (simulated < min_others) | (simulated > max_others)
    return outside.sum(axis=1)


def test_outliers(sim_res: SimulatedResiduals, alpha: float = 0.05) -> StatisticalTestResults:
    """Test the number of observations outside the simulation envelope.

    For integer responses the observed count is compared with the counts
    of the simulated datasets themselves, since ties make the nominal rate
    2 / (n_sim + 1) unreachable (binary data almost never leave the
    envelope). Continuous responses use a binomial test on that rate.
    """
    n_outliers = int(sim_res.outside_envelope.sum())

    if sim_res.integer_response:
        null_counts = simulated_outlier_counts(sim_res.simulated)
        p_greater = float(np.mean(null_counts >= n_outliers))
        p_less = float(np.mean(null_counts <= n_outliers))
        p_value = min(1.0, 2.0 * min(p_greater, p_less))
        expected = float(null_counts.mean())
        notes = f"simulated count {expected:.1f} (n_sim={sim_res.n_sim})"
    else:
        expected_rate = 2.0 / (sim_res.n_sim + 1)
        p_value = float(stats.binomtest(n_outliers, sim_res.n_obs, expected_rate).pvalue)
        notes = f"expected rate {expected_rate:.4f}"

    return StatisticalTestResults(
        test_name="Outliers",
        statistic=float(n_outliers),
        p_value=p_value,
        significant=p_value < alpha,
        effect_size=n_outliers / sim_res.n_obs,
        notes=notes,
    )


def quantile_guides(
    sim_res: SimulatedResiduals,
    quantiles: Sequence[float] = (0.25, 0.5, 0.75),
    n_points: int = 50,
) -> pd.DataFrame:
    """Quantile regressions of scaled residuals on rank-transformed predictions.

    Returns:
        Long DataFrame with columns [quantile, x, fitted]
    """
    x = stats.rankdata(sim_res.predicted) / len(sim_res.predicted)
    exog = sm.add_constant(x, has_constant="add")
    grid = np.linspace(0.0, 1.0, n_points)
    grid_exog = sm.add_constant(grid, has_constant="add")

    frames = []
    for q in quantiles:
        if np.ptp(x) == 0:
            fitted = np.full(n_points, np.quantile(sim_res.scaled_residuals, q))
        else:
            fit = sm.QuantReg(sim_res.scaled_residuals, exog).fit(q=q)
            fitted = grid_exog @ fit.params
        frames.append(pd.DataFrame({"quantile": q, "x": grid, "fitted": fitted}))
    return pd.concat(frames, ignore_index=True)


def check_model(
    results: GLMMResults,
    n_sim: int = 250,
    seed: Optional[int] = None,
    alpha: float = 0.05,
    sim_res: Optional[SimulatedResiduals] = None,
) -> ModelDiagnostics:
    """Run all residual diagnostics for a fitted model.

    Args:
        results: Fitted model
        n_sim: Number of simulations (ignored if ``sim_res`` is given)
        seed: Random seed
        alpha: Significance level
        sim_res: Precomputed simulated residuals

    Returns:
        ModelDiagnostics; verdict is WARNING if any test is significant and
        FAILED if the diagnostics could not be computed.
    """
    diagnostics = ModelDiagnostics(model_name=results.name, n_sim=n_sim, alpha=alpha)
    try:
        if sim_res is None:
            sim_res = simulate_residuals(results, n_sim=n_sim, seed=seed)
        diagnostics.n_sim = sim_res.n_sim
        diagnostics.uniformity = test_uniformity(sim_res, alpha)
        diagnostics.dispersion = test_dispersion(sim_res, alpha)
        diagnostics.outliers = test_outliers(sim_res, alpha)
    except Exception as e:
        logger.error(f"Residual diagnostics failed for {results.name}: {e}")
        diagnostics.verdict = DiagnosticVerdict.FAILED
        diagnostics.uniformity.notes = f"Diagnostics failed: {e}"
        return diagnostics

    if any(t.significant for t in diagnostics.tests):
        diagnostics.verdict = DiagnosticVerdict.WARNING
        flagged = [t.test_name for t in diagnostics.tests if t.significant]
        logger.warning(f"{results.name}: significant residual tests {flagged}")
    else:
        diagnostics.verdict = DiagnosticVerdict.OK

    logger.info(
        f"{results.name}: KS p={diagnostics.uniformity.p_value:.3f}, "
        f"dispersion={diagnostics.dispersion.statistic:.3f} "
        f"(p={diagnostics.dispersion.p_value:.3f}), verdict={diagnostics.verdict.value}"
    )
    return diagnostics


def diagnostics_table(diagnostics: Dict[str, ModelDiagnostics]) -> pd.DataFrame:
    """Flatten diagnostics of several models into one table."""
    rows = []
    for name, diag in diagnostics.items():
        for test in diag.tests:
            rows.append(
                {
                    "model": name,
                    "test": test.test_name,
                    "statistic": test.statistic,
                    "p_value": test.p_value,
                    "significant": test.significant,
                    "verdict": diag.verdict.value,
                }
            )
    return pd.DataFrame(rows)
