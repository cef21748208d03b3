"""Quasirandom horizontal offsets for scatter plots of grouped data.

Points within a group are spread sideways by a low-discrepancy (van der
Corput) sequence, assigned in order of their y values and scaled by the
kernel density of y, so the spread of the cloud traces the distribution
shape like a violin plot without random jitter.
"""

from typing import Optional, Union

import numpy as np
from scipy import stats
from scipy.stats import qmc


def van_der_corput(n: int) -> np.ndarray:
    """First ``n`` elements of the base-2 van der Corput sequence, skipping 0."""
    sampler = qmc.Halton(d=1, scramble=False)
    sampler.fast_forward(1)
    return sampler.random(n)[:, 0]


def quasirandom_offsets(
    y: np.ndarray,
    width: float = 0.4,
    bw_method: Optional[Union[str, float]] = None,
) -> np.ndarray:
    """Offsets in [-width, width] for one group of points.

    Args:
        y: Values of the group
        width: Maximum offset, reached where the density of y peaks
        bw_method: Bandwidth passed to ``scipy.stats.gaussian_kde``

    Returns:
        Offsets aligned with ``y``
    """
    y = np.asarray(y, dtype=float)
    n = len(y)
    if n == 0:
        return np.zeros(0)
    if n == 1:
        return np.zeros(1)

    if np.ptp(y) == 0:
        density = np.ones(n)
    else:
        density = stats.gaussian_kde(y, bw_method=bw_method)(y)
        density = density / density.max()

    ranks = stats.rankdata(y, method="ordinal").astype(int) - 1
    offsets = (van_der_corput(n)[ranks] - 0.5) * 2.0 * density
    return offsets * width


def group_quasirandom(
    x: np.ndarray,
    y: np.ndarray,
    width: float = 0.4,
    bw_method: Optional[Union[str, float]] = None,
) -> np.ndarray:
    """Quasirandom x positions for points grouped by their x value."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    positions = x.copy()
    for value in np.unique(x):
        mask = x == value
        positions[mask] = value + quasirandom_offsets(y[mask], width=width, bw_method=bw_method)
    return positions
