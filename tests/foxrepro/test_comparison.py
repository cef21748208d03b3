"""Tests for model comparison."""

import numpy as np
import pytest

from foxrepro.models import GLMM
from foxrepro.statistics import (
    akaike_weights,
    compare_models,
    likelihood_ratio_test,
    select_best,
)


@pytest.fixture(scope="module")
def candidate_fits(poisson_data):
    linear = GLMM("litter_size ~ age + rodent_index", poisson_data, name="linear").fit()
    quadratic = GLMM(
        "litter_size ~ poly(age, 2) + rodent_index", poisson_data, name="quadratic"
    ).fit()
    return linear, quadratic


class TestAkaikeWeights:
    """Tests for Akaike weights."""

    def test_weights_sum_to_one(self):
        weights = akaike_weights([100.0, 102.0, 110.0])
        assert weights.sum() == pytest.approx(1.0)
        assert weights[0] > weights[1] > weights[2]

    def test_equal_aic(self):
        np.testing.assert_allclose(akaike_weights([5.0, 5.0]), [0.5, 0.5])


class TestCompareModels:
    """Tests for AIC tables."""

    def test_table_layout(self, candidate_fits):
        table = compare_models(list(candidate_fits))

        assert table.index.name == "model"
        assert list(table.columns) == [
            "family", "formula", "k", "logLik", "AIC", "dAIC", "weight", "BIC", "converged", "singular",
        ]
        assert table["dAIC"].min() == 0.0
        assert table["AIC"].is_monotonic_increasing
        assert table["weight"].sum() == pytest.approx(1.0)

    def test_quadratic_preferred(self, candidate_fits):
        # The simulated age effect is quadratic
        table = compare_models(list(candidate_fits))
        assert select_best(table) == "quadratic"
        assert table.loc["quadratic", "k"] == table.loc["linear", "k"] + 1

    def test_empty(self):
        with pytest.raises(ValueError, match="No models"):
            compare_models([])

    def test_select_best_prefers_converged(self, candidate_fits):
        table = compare_models(list(candidate_fits))
        table["converged"] = True
        best = table.index[0]
        table.loc[best, "converged"] = False
        assert select_best(table) == table.index[1]


class TestLikelihoodRatio:
    """Tests for nested model comparison."""

    def test_lrt(self, candidate_fits):
        linear, quadratic = candidate_fits
        result = likelihood_ratio_test(linear, quadratic)

        assert result.statistic == pytest.approx(2 * (quadratic.llf - linear.llf))
        assert "df=1" in result.notes
        assert result.significant

    def test_lrt_wrong_order(self, candidate_fits):
        linear, quadratic = candidate_fits
        result = likelihood_ratio_test(quadratic, linear)

        assert result.p_value == 1.0
        assert "does not have more parameters" in result.notes
