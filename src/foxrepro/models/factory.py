# src/foxrepro/models/factory.py
"""Model creation from configuration entries.

Example:
    >>> spec = {
    ...     "name": "quadratic",
    ...     "formula": "litter_size ~ poly(age, 2) + rodent_index",
    ...     "family": "truncated_compois",
    ...     "groups": ["mother_id", "year", "area"],
    ... }
    >>> results = fit_model(spec, data)
"""

import logging
from typing import Any, Dict, List, Mapping

import pandas as pd

from .glmm import GLMM, GLMMResults, ModelFitError

logger = logging.getLogger(__name__)


def get_model_spec(spec: Mapping[str, Any]) -> Dict[str, Any]:
    """Normalize a model entry from the config.

    Raises:
        ModelFitError: If ``formula`` or ``family`` is missing.
    """
    missing = [k for k in ("formula", "family") if not spec.get(k)]
    if missing:
        raise ModelFitError(f"Model entry {dict(spec)} is missing {missing}")
    groups: List[str] = [str(g) for g in (spec.get("groups") or [])]
    return {
        "name": str(spec.get("name") or spec["formula"]),
        "formula": str(spec["formula"]),
        "family": str(spec["family"]),
        "groups": groups,
        "maxiter": int(spec.get("maxiter", 500)),
    }


def fit_model(spec: Mapping[str, Any], data: pd.DataFrame) -> GLMMResults:
    """Build and fit the model described by a config entry.

    Args:
        spec: Entry with ``name``, ``formula``, ``family`` and ``groups``.
        data: Validated dataset.

    Returns:
        GLMMResults
    """
    spec = get_model_spec(spec)
    model = GLMM(
        spec["formula"],
        data,
        family=spec["family"],
        groups=spec["groups"],
        name=spec["name"],
    )
    return model.fit(maxiter=spec["maxiter"])
