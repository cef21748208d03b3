"""Tests for simulation-based residual diagnostics."""

import numpy as np
import pandas as pd
import pytest

from foxrepro.models import GLMM
from foxrepro.schemas import DiagnosticVerdict
from foxrepro.statistics import diagnostics
from foxrepro.statistics.diagnostics import (
    check_model,
    diagnostics_table,
    quantile_guides,
    scaled_residuals,
    simulate_residuals,
)

FORMULA = "litter_size ~ age + rodent_index"


def _counts(rng: np.random.Generator, n: int, overdispersed: bool) -> pd.DataFrame:
    age = rng.uniform(1, 8, n)
    rodent = rng.gamma(2.0, 1.0, n)
    mu = np.exp(1.2 + 0.05 * age + 0.1 * rodent)
    if overdispersed:
        size = 1.5
        y = rng.negative_binomial(size, size / (size + mu))
    else:
        y = rng.poisson(mu)
    return pd.DataFrame({"litter_size": y, "age": age, "rodent_index": rodent})


@pytest.fixture(scope="module")
def correct_fit():
    data = _counts(np.random.default_rng(5), 300, overdispersed=False)
    return GLMM(FORMULA, data, family="poisson", name="correct").fit()


@pytest.fixture(scope="module")
def overdispersed_fit():
    data = _counts(np.random.default_rng(6), 300, overdispersed=True)
    return GLMM(FORMULA, data, family="poisson", name="overdispersed").fit()


@pytest.fixture(scope="module")
def binary_fit():
    rng = np.random.default_rng(8)
    age = rng.integers(1, 10, 1000).astype(float)
    eta = 0.6 + 0.5 * (age - 4.0) - 0.08 * (age - 4.0) ** 2
    data = pd.DataFrame({"survived": rng.binomial(1, 1 / (1 + np.exp(-eta))), "age": age})
    return GLMM("survived ~ poly(age, 2)", data, family="binomial", name="binary").fit()


class TestScaledResiduals:
    """Tests for quantile residual computation."""

    def test_residual_bounds(self, rng):
        observed = np.array([0.0, 2.0, 10.0])
        simulated = np.array([[1.0, 2.0, 3.0], [1.0, 1.0, 4.0], [0.0, 3.0, 5.0], [2.0, 2.0, 6.0]])
        residuals, lower, upper = scaled_residuals(observed, simulated, rng)

        np.testing.assert_allclose(lower, [0.0, 0.25, 1.0])
        np.testing.assert_allclose(upper, [0.25, 0.75, 1.0])
        assert np.all(residuals >= lower)
        assert np.all(residuals <= upper)

    def test_continuous_residuals_use_upper(self, rng):
        observed = np.array([0.5])
        simulated = np.array([[0.1], [0.7], [0.3], [0.9]])
        residuals, _, upper = scaled_residuals(observed, simulated, rng, integer_response=False)
        np.testing.assert_allclose(residuals, upper)

    def test_simulate_residuals(self, correct_fit):
        sim_res = simulate_residuals(correct_fit, n_sim=50, seed=1)

        assert sim_res.simulated.shape == (50, 300)
        assert sim_res.n_sim == 50
        assert sim_res.model_name == "correct"
        assert np.all((sim_res.scaled_residuals >= 0) & (sim_res.scaled_residuals <= 1))

    def test_simulate_residuals_reproducible(self, correct_fit):
        a = simulate_residuals(correct_fit, n_sim=20, seed=3)
        b = simulate_residuals(correct_fit, n_sim=20, seed=3)
        np.testing.assert_array_equal(a.scaled_residuals, b.scaled_residuals)

    def test_too_few_simulations(self, correct_fit):
        with pytest.raises(ValueError, match="at least 10"):
            simulate_residuals(correct_fit, n_sim=5)


class TestResidualTests:
    """Tests for uniformity, dispersion and outlier tests."""

    def test_correct_model_residuals_uniform(self, correct_fit):
        sim_res = simulate_residuals(correct_fit, n_sim=200, seed=11)
        result = diagnostics.test_uniformity(sim_res)
        assert result.p_value > 0.001

    def test_correct_model_dispersion_near_one(self, correct_fit):
        sim_res = simulate_residuals(correct_fit, n_sim=200, seed=11)
        result = diagnostics.test_dispersion(sim_res)
        assert 0.75 < result.statistic < 1.3

    def test_overdispersion_detected(self, overdispersed_fit):
        sim_res = simulate_residuals(overdispersed_fit, n_sim=200, seed=11)
        result = diagnostics.test_dispersion(sim_res)

        assert result.statistic > 1.5
        assert result.significant
        assert result.confidence_interval[0] < 1.0 < result.confidence_interval[1]

    def test_overdispersion_breaks_uniformity(self, overdispersed_fit):
        sim_res = simulate_residuals(overdispersed_fit, n_sim=200, seed=11)
        assert diagnostics.test_uniformity(sim_res).significant

    def test_outliers(self, overdispersed_fit):
        sim_res = simulate_residuals(overdispersed_fit, n_sim=100, seed=2)
        result = diagnostics.test_outliers(sim_res)

        assert result.statistic == sim_res.outside_envelope.sum()
        assert result.significant

    def test_simulated_outlier_counts(self):
        simulated = np.array([[0.0, 5.0], [1.0, 5.0], [2.0, 5.0], [3.0, 9.0]])
        counts = diagnostics.simulated_outlier_counts(simulated)
        np.testing.assert_array_equal(counts, [1, 0, 0, 2])

    def test_binary_model_without_outliers_not_flagged(self, binary_fit):
        diag = check_model(binary_fit, n_sim=200, seed=3)

        assert diag.outliers.statistic == 0.0
        assert not diag.outliers.significant
        assert diag.outliers.p_value == pytest.approx(1.0)

    def test_continuous_response_uses_binomial_rate(self, correct_fit):
        sim_res = simulate_residuals(correct_fit, n_sim=50, seed=2)
        sim_res.integer_response = False
        result = diagnostics.test_outliers(sim_res)
        assert "expected rate" in result.notes

    def test_dispersion_statistics_shapes(self, correct_fit):
        sim_res = simulate_residuals(correct_fit, n_sim=30, seed=4)
        observed, simulated = diagnostics.dispersion_statistics(sim_res)
        assert isinstance(observed, float)
        assert simulated.shape == (30,)


class TestCheckModel:
    """Tests for the combined diagnostics."""

    def test_overdispersed_model_flagged(self, overdispersed_fit):
        diag = check_model(overdispersed_fit, n_sim=100, seed=1)

        assert diag.verdict == DiagnosticVerdict.WARNING
        assert diag.dispersion.significant
        assert diag.n_sim == 100

    def test_correct_model_not_failed(self, correct_fit):
        diag = check_model(correct_fit, n_sim=100, seed=1)
        assert diag.verdict in (DiagnosticVerdict.OK, DiagnosticVerdict.WARNING)
        assert 0.0 <= diag.uniformity.p_value <= 1.0

    def test_failure_reported(self, correct_fit):
        diag = check_model(correct_fit, n_sim=2)

        assert diag.verdict == DiagnosticVerdict.FAILED
        assert "Diagnostics failed" in diag.uniformity.notes

    def test_diagnostics_table(self, correct_fit):
        diag = check_model(correct_fit, n_sim=50, seed=1)
        table = diagnostics_table({"correct": diag})

        assert len(table) == 3
        assert list(table["test"]) == ["KS uniformity", "Dispersion", "Outliers"]


class TestQuantileGuides:
    """Tests for residual quantile regressions."""

    def test_guides_shape(self, correct_fit):
        sim_res = simulate_residuals(correct_fit, n_sim=50, seed=1)
        guides = quantile_guides(sim_res, n_points=20)

        assert list(guides.columns) == ["quantile", "x", "fitted"]
        assert len(guides) == 60
        median = guides[guides["quantile"] == 0.5]["fitted"]
        assert median.between(0.3, 0.7).all()
