# src/foxrepro/models/__init__.py
"""
Mixed-effects models for the reproduction analyses.

Components:
- families: response distributions (Poisson, COM-Poisson, truncated, binomial)
- design: patsy fixed effects, orthogonal polynomials, random-intercept matrices
- glmm: Laplace-approximation fitting and results
- factory: model creation from config entries
"""

from .design import ModelDesign, build_design, group_codes, poly
from .factory import fit_model, get_model_spec
from .families import FAMILIES, Family, get_family
from .glmm import GLMM, GLMMResults, ModelFitError

__all__ = [
    # Families
    "FAMILIES",
    "Family",
    "get_family",
    # Design
    "ModelDesign",
    "build_design",
    "group_codes",
    "poly",
    # Fitting
    "GLMM",
    "GLMMResults",
    "ModelFitError",
    "fit_model",
    "get_model_spec",
]
