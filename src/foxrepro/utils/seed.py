# src/foxrepro/utils/seed.py
"""Reproducibility utilities.

Sets random seeds for Python and NumPy so that simulation-based
diagnostics and jittered plots are identical across renders.
"""

import logging
import random
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


def set_seed(seed: int) -> None:
    """Set random seed for reproducibility.

    Seeds Python's ``random`` module and NumPy's legacy global generator.
    Code that owns its randomness should still take a ``np.random.Generator``
    from :func:`make_rng`.

    Args:
        seed: Random seed value.

    Example:
        >>> from foxrepro.utils.seed import set_seed
        >>> set_seed(42)
    """
    random.seed(seed)
    np.random.seed(seed)
    logger.info(f"Set random seed: {seed}")


def make_rng(seed: Optional[int] = None, offset: int = 0) -> np.random.Generator:
    """Create an independent NumPy generator.

    Args:
        seed: Base seed (None for fresh entropy).
        offset: Added to the seed so that different consumers of the same
            base seed draw independent streams.
    """
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng(seed + offset)
