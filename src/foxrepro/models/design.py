# src/foxrepro/models/design.py
"""Design matrices for mixed-effects models.

Fixed effects come from a patsy formula. Besides patsy's built-ins
(``bs``, ``cr``, ``center``, ``I``, ...) formulas may use ``poly(x, degree)``,
an orthogonal polynomial basis with the same construction as R's
``poly()``, and ``np`` for elementwise transforms.

Random effects are intercepts for one or more crossed grouping factors.
A grouping spec ``"a:b"`` is the interaction of columns a and b, used for
nested factors such as litters within mothers.

Example:
    >>> design = build_design(
    ...     "litter_size ~ poly(age, 2) + rodent_index",
    ...     data,
    ...     groups=["mother_id", "year"],
    ... )
    >>> design.X.shape, design.Z.shape
"""

import logging
from dataclasses import dataclass, field
from typing import List, Sequence

import numpy as np
import pandas as pd
from patsy import DesignInfo, EvalEnvironment, build_design_matrices, dmatrices
from patsy.state import stateful_transform
from scipy import sparse

logger = logging.getLogger(__name__)


class Poly(object):
    """Orthogonal polynomial basis (stateful patsy transform).

    The recurrence coefficients are memorized from the fitting data so that
    new data (prediction grids) are projected onto the same basis. Columns
    are orthonormal on the fitting data and orthogonal to the intercept.
    """

    def __init__(self):
        self._chunks = []
        self._degree = None
        self.alpha = None
        self.norm2 = None

    def memorize_chunk(self, x, degree=2):
        self._chunks.append(np.asarray(x, dtype=float).ravel())
        self._degree = int(degree)

    def memorize_finish(self):
        x = np.concatenate(self._chunks)
        self._chunks = []
        degree = self._degree
        if degree < 1:
            raise ValueError("poly(): 'degree' must be at least 1")
        if len(np.unique(x)) <= degree:
            raise ValueError("poly(): 'degree' must be less than number of unique points")
        self.alpha, self.norm2 = orthopoly_coefficients(x, degree)

    def transform(self, x, degree=2):
        x = np.asarray(x, dtype=float).ravel()
        return orthopoly_basis(x, self.alpha, self.norm2)


poly = stateful_transform(Poly)


def orthopoly_coefficients(x: np.ndarray, degree: int):
    """Three-term recurrence coefficients of orthogonal polynomials on x.

    Returns:
        (alpha, norm2): alpha has ``degree`` entries; norm2 has
        ``degree + 2`` entries with norm2[0] = 1 and norm2[k + 1] the
        squared norm of the k-th monic polynomial on x.
    """
    x = np.asarray(x, dtype=float)
    z_prev = np.zeros_like(x)
    z = np.ones_like(x)
    alpha = []
    norm2 = [1.0, float(len(x))]
    for _ in range(degree):
        a = float(np.sum(x * z ** 2) / norm2[-1])
        alpha.append(a)
        z_next = (x - a) * z - (norm2[-1] / norm2[-2]) * z_prev
        z_prev, z = z, z_next
        norm2.append(float(np.sum(z ** 2)))
    return np.array(alpha), np.array(norm2)


def orthopoly_basis(x: np.ndarray, alpha: np.ndarray, norm2: np.ndarray) -> np.ndarray:
    """Evaluate the normalized orthogonal polynomials (degree >= 1) at x."""
    degree = len(alpha)
    n = len(x)
    z = np.empty((n, degree + 1))
    z[:, 0] = 1.0
    z[:, 1] = x - alpha[0]
    for i in range(1, degree):
        z[:, i + 1] = (x - alpha[i]) * z[:, i] - (norm2[i + 1] / norm2[i]) * z[:, i - 1]
    return z[:, 1:] / np.sqrt(norm2[2:])


def formula_environment() -> EvalEnvironment:
    """Namespace formulas are evaluated in (on top of patsy built-ins)."""
    return EvalEnvironment([{"poly": poly, "np": np}])


def group_codes(data: pd.DataFrame, spec: str):
    """Integer codes and level labels for a grouping spec.

    Args:
        data: Model data
        spec: Column name, or ``"a:b"`` for the interaction of columns

    Returns:
        (codes, levels)
    """
    columns = [c.strip() for c in spec.split(":")]
    missing = [c for c in columns if c not in data.columns]
    if missing:
        raise ValueError(f"Grouping column(s) {missing} not found in data")
    if len(columns) == 1:
        values = data[columns[0]]
    else:
        values = data[columns].astype(str).agg(":".join, axis=1)
    codes, levels = pd.factorize(values, sort=True)
    return codes, pd.Index(levels, name=spec)


@dataclass
class ModelDesign:
    """Fixed- and random-effects design of a model."""

    formula: str
    response: str
    y: np.ndarray
    X: np.ndarray
    x_names: List[str]
    design_info: DesignInfo
    Z: sparse.csc_matrix
    group_names: List[str] = field(default_factory=list)
    group_levels: List[pd.Index] = field(default_factory=list)
    group_index: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=int))

    @property
    def nobs(self) -> int:
        return len(self.y)

    @property
    def n_fixed(self) -> int:
        return self.X.shape[1]

    @property
    def n_groups(self) -> int:
        return len(self.group_names)

    @property
    def n_random(self) -> int:
        return self.Z.shape[1]

    def fixed_matrix(self, newdata: pd.DataFrame) -> np.ndarray:
        """Fixed-effects matrix for new data, using the memorized bases."""
        (X,) = build_design_matrices([self.design_info], newdata, NA_action="raise")
        return np.asarray(X)

    def random_slices(self) -> List[slice]:
        """Column slices of Z belonging to each grouping factor."""
        slices = []
        start = 0
        for levels in self.group_levels:
            slices.append(slice(start, start + len(levels)))
            start += len(levels)
        return slices


def build_design(
    formula: str,
    data: pd.DataFrame,
    groups: Sequence[str] = (),
) -> ModelDesign:
    """Build fixed- and random-effects matrices.

    Args:
        formula: Patsy formula with the response on the left-hand side
        data: Model data (complete cases)
        groups: Grouping specs for random intercepts

    Returns:
        ModelDesign

    Raises:
        ValueError: If the formula has no response or a grouping column is missing
    """
    if "~" not in formula:
        raise ValueError(f"Formula must have a response: '{formula}'")

    y_dm, X_dm = dmatrices(
        formula,
        data,
        eval_env=formula_environment(),
        NA_action="raise",
    )
    if y_dm.shape[1] != 1:
        raise ValueError(f"Formula must have a single response column: '{formula}'")

    n = len(data)
    blocks = []
    levels_list = []
    group_index = []
    for k, spec in enumerate(groups):
        codes, levels = group_codes(data, spec)
        blocks.append(
            sparse.csc_matrix(
                (np.ones(n), (np.arange(n), codes)),
                shape=(n, len(levels)),
            )
        )
        levels_list.append(levels)
        group_index.extend([k] * len(levels))

    if blocks:
        Z = sparse.hstack(blocks, format="csc")
    else:
        Z = sparse.csc_matrix((n, 0))

    design = ModelDesign(
        formula=formula,
        response=y_dm.design_info.column_names[0],
        y=np.asarray(y_dm, dtype=float).ravel(),
        X=np.asarray(X_dm, dtype=float),
        x_names=list(X_dm.design_info.column_names),
        design_info=X_dm.design_info,
        Z=Z,
        group_names=list(groups),
        group_levels=levels_list,
        group_index=np.asarray(group_index, dtype=int),
    )
    logger.debug(
        f"Design '{formula}': n={design.nobs}, p={design.n_fixed}, "
        f"q={design.n_random} ({', '.join(f'{g}={len(l)}' for g, l in zip(groups, levels_list))})"
    )
    return design
