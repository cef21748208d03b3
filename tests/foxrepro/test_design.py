"""Tests for design matrix construction."""

import numpy as np
import pandas as pd
import pytest

from foxrepro.models.design import (
    build_design,
    group_codes,
    orthopoly_basis,
    orthopoly_coefficients,
)


@pytest.fixture
def small_data() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "litter_size": [3, 5, 6, 2, 7, 4, 5, 6],
            "age": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 2.0, 3.0],
            "rodent_index": [0.1, 0.5, 1.2, 0.3, 2.0, 0.8, 0.5, 1.2],
            "mother_id": ["a", "a", "b", "b", "c", "c", "d", "d"],
            "year": [2001, 2002, 2001, 2002, 2001, 2002, 2003, 2003],
        }
    )


class TestOrthogonalPolynomials:
    """Tests for the poly() basis."""

    def test_basis_orthonormal(self):
        x = np.array([1.0, 2.0, 2.0, 3.0, 5.0, 8.0, 9.0])
        alpha, norm2 = orthopoly_coefficients(x, 3)
        basis = orthopoly_basis(x, alpha, norm2)

        assert basis.shape == (7, 3)
        np.testing.assert_allclose(basis.T @ basis, np.eye(3), atol=1e-10)
        np.testing.assert_allclose(basis.sum(axis=0), 0.0, atol=1e-10)

    def test_basis_spans_polynomials(self):
        x = np.linspace(0, 4, 9)
        alpha, norm2 = orthopoly_coefficients(x, 2)
        basis = np.column_stack([np.ones_like(x), orthopoly_basis(x, alpha, norm2)])
        target = 1.0 + 2.0 * x - 0.5 * x ** 2
        coef, *_ = np.linalg.lstsq(basis, target, rcond=None)
        np.testing.assert_allclose(basis @ coef, target, atol=1e-10)

    def test_poly_in_formula(self, small_data):
        design = build_design("litter_size ~ poly(age, 2)", small_data)

        assert design.x_names[0] == "Intercept"
        assert len(design.x_names) == 3
        np.testing.assert_allclose(design.X[:, 1:].T @ design.X[:, 1:], np.eye(2), atol=1e-10)

    def test_poly_degree_too_high(self, small_data):
        data = small_data.assign(age=[1.0, 1.0, 2.0, 2.0, 1.0, 2.0, 1.0, 2.0])
        with pytest.raises(Exception, match="unique points"):
            build_design("litter_size ~ poly(age, 2)", data)


class TestBuildDesign:
    """Tests for fixed and random effects matrices."""

    def test_fixed_matrix_reproduces_training_rows(self, small_data):
        design = build_design(
            "litter_size ~ poly(age, 2) + bs(rodent_index, df=3)", small_data
        )
        np.testing.assert_allclose(design.fixed_matrix(small_data), design.X)

    def test_fixed_matrix_on_new_data_uses_memorized_basis(self, small_data):
        design = build_design("litter_size ~ poly(age, 2)", small_data)
        grid = pd.DataFrame({"age": [small_data["age"].iloc[0]]})
        np.testing.assert_allclose(design.fixed_matrix(grid)[0], design.X[0])

    def test_response(self, small_data):
        design = build_design("litter_size ~ age", small_data)

        assert design.response == "litter_size"
        np.testing.assert_array_equal(design.y, small_data["litter_size"].to_numpy(dtype=float))

    def test_random_intercepts(self, small_data):
        design = build_design("litter_size ~ age", small_data, groups=["mother_id", "year"])

        assert design.n_groups == 2
        assert design.n_random == 4 + 3
        Z = design.Z.toarray()
        # One level per factor for each observation
        np.testing.assert_array_equal(Z.sum(axis=1), 2.0)
        np.testing.assert_array_equal(design.group_index, [0, 0, 0, 0, 1, 1, 1])
        assert [s.stop - s.start for s in design.random_slices()] == [4, 3]

    def test_no_groups(self, small_data):
        design = build_design("litter_size ~ age", small_data)
        assert design.n_random == 0
        assert design.Z.shape == (8, 0)

    def test_missing_group_column(self, small_data):
        with pytest.raises(ValueError, match="not found"):
            build_design("litter_size ~ age", small_data, groups=["litter_id"])

    def test_formula_without_response(self, small_data):
        with pytest.raises(ValueError, match="response"):
            build_design("age + rodent_index", small_data)


class TestGroupCodes:
    """Tests for grouping factor codes."""

    def test_single_column(self, small_data):
        codes, levels = group_codes(small_data, "mother_id")

        assert list(levels) == ["a", "b", "c", "d"]
        np.testing.assert_array_equal(codes, [0, 0, 1, 1, 2, 2, 3, 3])

    def test_interaction(self, small_data):
        codes, levels = group_codes(small_data, "mother_id:year")

        assert len(levels) == 7
        assert "a:2001" in set(levels)
        assert levels.name == "mother_id:year"
