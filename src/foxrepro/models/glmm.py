# src/foxrepro/models/glmm.py
"""Generalized linear mixed models with crossed random intercepts.

Model:
    eta = X beta + Z u,     u_k ~ N(0, theta_k^2) for grouping factor k
    y | eta ~ family(eta, extra)

Estimation is maximum likelihood under the Laplace approximation. The
random effects are handled in the spherical parametrization u = Lambda b,
b ~ N(0, I), Lambda = diag(theta), so that a zero variance component is an
ordinary boundary point (theta_k = 0) rather than a singularity:

    h(b)       = sum_i loglik(y_i | eta_i) - b'b / 2
    H(b)       = Lambda Z' W Z Lambda + I,   W = diag(Var[y | eta])
    loglik(.) ~= h(b_hat) - log|H(b_hat)| / 2

The conditional modes b_hat are found by penalized Newton iterations (inner
loop); beta, theta >= 0 and the family parameters are optimized with
L-BFGS-B (outer loop). Parameter covariance comes from a numerical Hessian
of the approximate log-likelihood.

Example:
    >>> model = GLMM(
    ...     "litter_size ~ bs(age, df=3) + rodent_index",
    ...     data,
    ...     family="truncated_compois",
    ...     groups=["mother_id", "year"],
    ... )
    >>> results = model.fit()
    >>> results.aic, results.fe_table()
"""

import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from patsy import PatsyError
from scipy import linalg, optimize, sparse, stats
from statsmodels.tools.numdiff import approx_hess3

from ..schemas import FitSummary
from .design import ModelDesign, build_design
from .families import Family, get_family

logger = logging.getLogger(__name__)

# Linear predictor is clipped to keep every family's likelihood finite
_ETA_BOUND = 30.0

# Variance components below this are treated as sitting on the boundary
_BOUNDARY_TOL = 1e-4

_THETA_START = 0.5

# Largest projected gradient accepted when the line search stops early
_GRADIENT_TOL = 1e-3


class ModelFitError(Exception):
    """Raised when a model cannot be fitted."""

    pass


def _projected_gradient(x: np.ndarray, grad: np.ndarray, bounds) -> np.ndarray:
    """Gradient with components pushing against an active bound zeroed."""
    grad = np.array(grad, dtype=float)
    for i, (lo, hi) in enumerate(bounds):
        if lo is not None and x[i] <= lo and grad[i] > 0:
            grad[i] = 0.0
        if hi is not None and x[i] >= hi and grad[i] < 0:
            grad[i] = 0.0
    return grad


def _default_intercept(family: Family, y: np.ndarray) -> float:
    """Starting intercept on the link scale."""
    ybar = float(np.mean(y))
    if family.link == "logit":
        p = np.clip(ybar, 0.01, 0.99)
        return float(np.log(p / (1 - p)))
    return float(np.log(max(ybar, 0.1)))


class GLMM:
    """Mixed-effects model definition.

    Args:
        formula: Patsy formula for the response and fixed effects.
        data: Model data (complete cases).
        family: Family instance or registry name.
        groups: Grouping specs for crossed random intercepts.
        name: Label used in tables and logs.

    Raises:
        ModelFitError: If the formula cannot be built on the data or the
            response is invalid for the family.
    """

    def __init__(
        self,
        formula: str,
        data: pd.DataFrame,
        family: Union[str, Family] = "poisson",
        groups: Sequence[str] = (),
        name: Optional[str] = None,
    ):
        self.formula = formula
        self.family = get_family(family) if isinstance(family, str) else family
        self.data = data.reset_index(drop=True)
        self.groups = list(groups)
        self.name = name or formula
        try:
            self.design: ModelDesign = build_design(formula, self.data, self.groups)
        except (ValueError, KeyError, PatsyError) as e:
            raise ModelFitError(f"{self.name}: invalid design: {e}") from e

        try:
            self.family.check_response(self.design.y)
        except ValueError as e:
            raise ModelFitError(f"{self.name}: {e}") from e

        self._b = np.zeros(self.design.n_random)
        self.max_inner = 50
        self.inner_tol = 1e-10

    # ------------------------------------------------------------------
    # Parameter bookkeeping
    # ------------------------------------------------------------------

    @property
    def n_fixed(self) -> int:
        return self.design.n_fixed

    @property
    def n_theta(self) -> int:
        return self.design.n_groups

    @property
    def param_names(self) -> List[str]:
        return (
            list(self.design.x_names)
            + [f"sd({g})" for g in self.groups]
            + list(self.family.extra_names)
        )

    def _unpack(self, params: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        p, k = self.n_fixed, self.n_theta
        return params[:p], params[p:p + k], params[p + k:]

    def start_params(self) -> np.ndarray:
        beta = np.zeros(self.n_fixed)
        if "Intercept" in self.design.x_names:
            beta[self.design.x_names.index("Intercept")] = _default_intercept(
                self.family, self.design.y
            )
        theta = np.full(self.n_theta, _THETA_START)
        extra = np.asarray(self.family.extra_start, dtype=float)
        return np.concatenate([beta, theta, extra])

    def bounds(self) -> List[Tuple[Optional[float], Optional[float]]]:
        return (
            [(None, None)] * self.n_fixed
            + [(0.0, None)] * self.n_theta
            + list(self.family.extra_bounds)
        )

    # ------------------------------------------------------------------
    # Likelihood
    # ------------------------------------------------------------------

    def _loglik_eta(self, eta: np.ndarray, extra: np.ndarray) -> float:
        eta = np.clip(eta, -_ETA_BOUND, _ETA_BOUND)
        return float(np.sum(self.family.loglik(self.design.y, eta, extra)))

    def conditional_modes(
        self,
        beta: np.ndarray,
        theta: np.ndarray,
        extra: np.ndarray,
        b0: Optional[np.ndarray] = None,
    ) -> Tuple[np.ndarray, float, float]:
        """Maximize h(b) by penalized Newton iterations.

        Args:
            beta: Fixed effects.
            theta: Random-effect standard deviations.
            extra: Family parameters.
            b0: Starting spherical random effects.

        Returns:
            (b_hat, h(b_hat), log|H(b_hat)|)
        """
        design = self.design
        y = design.y
        q = design.n_random
        fixed = design.X @ beta
        ZL = (design.Z @ sparse.diags(theta[design.group_index])).tocsc()
        identity = np.eye(q)

        def penalized(b: np.ndarray) -> float:
            return self._loglik_eta(fixed + ZL @ b, extra) - 0.5 * float(b @ b)

        def curvature(b: np.ndarray):
            eta = np.clip(fixed + ZL @ b, -_ETA_BOUND, _ETA_BOUND)
            mu, var = self.family.moments(eta, extra)
            H = (ZL.T @ (sparse.diags(var) @ ZL)).toarray() + identity
            return mu, H

        b = np.zeros(q) if b0 is None else np.array(b0, dtype=float)
        h = penalized(b)
        for _ in range(self.max_inner):
            mu, H = curvature(b)
            grad = ZL.T @ (y - mu) - b
            step = linalg.cho_solve(linalg.cho_factor(H), grad)
            t = 1.0
            while True:
                b_new = b + t * step
                h_new = penalized(b_new)
                if h_new >= h - 1e-12 or t < 1e-8:
                    break
                t *= 0.5
            converged = np.max(np.abs(t * step)) < self.inner_tol
            b, h = b_new, h_new
            if converged:
                break

        _, H = curvature(b)
        chol = linalg.cholesky(H, lower=True)
        logdet = 2.0 * float(np.sum(np.log(np.diag(chol))))
        return b, h, logdet

    def loglike(self, params: np.ndarray) -> float:
        """Laplace-approximate marginal log-likelihood."""
        beta, theta, extra = self._unpack(np.asarray(params, dtype=float))
        if self.design.n_random == 0:
            return self._loglik_eta(self.design.X @ beta, extra)
        b, h, logdet = self.conditional_modes(beta, theta, extra, self._b)
        self._b = b
        return h - 0.5 * logdet

    # ------------------------------------------------------------------
    # Fitting
    # ------------------------------------------------------------------

    def _minimize(self, x0, free, maxiter, tol):
        """Minimize the negative log-likelihood over the ``free`` indices."""
        x_full = np.array(x0, dtype=float)
        bounds = [b for b, f in zip(self.bounds(), free) if f]

        def objective(x_free):
            x_full[free] = x_free
            return -self.loglike(x_full)

        res = optimize.minimize(
            objective,
            x_full[free],
            method="L-BFGS-B",
            jac="3-point",
            bounds=bounds,
            options={"maxiter": maxiter, "ftol": tol, "gtol": 1e-6},
        )
        x_full[free] = res.x
        return x_full, res

    def fit(self, maxiter: int = 500, tol: float = 1e-10) -> "GLMMResults":
        """Fit the model by maximum likelihood.

        The fixed effects are first fitted without random effects to obtain
        starting values.

        Args:
            maxiter: Maximum outer iterations.
            tol: Relative tolerance on the objective.

        Returns:
            GLMMResults

        Raises:
            ModelFitError: If the likelihood is not finite or the Laplace
                curvature cannot be factorized.
        """
        try:
            return self._fit(maxiter, tol)
        except linalg.LinAlgError as e:
            raise ModelFitError(f"{self.name}: linear algebra failure during fit: {e}") from e

    def _fit(self, maxiter: int, tol: float) -> "GLMMResults":
        x0 = self.start_params()
        if not np.isfinite(self.loglike(x0)):
            raise ModelFitError(f"{self.name}: non-finite log-likelihood at start values")

        logger.info(
            f"Fitting {self.name} [{self.family.name}] "
            f"n={self.design.nobs}, p={self.n_fixed}, groups={self.groups or 'none'}"
        )

        n_params = len(x0)
        if self.n_theta > 0:
            # Starting fixed effects from the model without random effects
            fixed_only = np.ones(n_params, dtype=bool)
            fixed_only[self.n_fixed:self.n_fixed + self.n_theta] = False
            x_glm = x0.copy()
            x_glm[self.n_fixed:self.n_fixed + self.n_theta] = 0.0
            x_glm, _ = self._minimize(x_glm, fixed_only, maxiter, tol)
            x0[:self.n_fixed] = x_glm[:self.n_fixed]
            x0[self.n_fixed + self.n_theta:] = x_glm[self.n_fixed + self.n_theta:]
            self._b = np.zeros(self.design.n_random)

        x_hat, res = self._minimize(x0, np.ones(n_params, dtype=bool), maxiter, tol)
        llf = self.loglike(x_hat)
        if not np.isfinite(llf):
            raise ModelFitError(f"{self.name}: non-finite log-likelihood at optimum")

        converged = bool(res.success) or bool(
            np.max(np.abs(_projected_gradient(x_hat, res.jac, self.bounds())), initial=0.0)
            < _GRADIENT_TOL
        )
        if not converged:
            logger.warning(f"{self.name}: optimizer did not converge ({res.message})")

        beta, theta, extra = self._unpack(x_hat)
        if self.design.n_random > 0:
            b_hat, _, _ = self.conditional_modes(beta, theta, extra, self._b)
        else:
            b_hat = np.zeros(0)

        boundary = np.zeros(n_params, dtype=bool)
        boundary[self.n_fixed:self.n_fixed + self.n_theta] = theta < _BOUNDARY_TOL
        singular = bool(boundary.any())
        if singular:
            logger.warning(
                f"{self.name}: singular fit, variance of "
                f"{[g for g, t in zip(self.groups, theta) if t < _BOUNDARY_TOL]} estimated at zero"
            )

        cov = self._covariance(x_hat, boundary)

        results = GLMMResults(
            model=self,
            params=x_hat,
            cov=cov,
            llf=llf,
            b=b_hat,
            converged=converged,
            singular=singular,
            message=str(res.message),
            n_iter=int(res.nit),
        )
        logger.info(f"{self.name}: logLik={llf:.3f}, AIC={results.aic:.2f}")
        return results

    def _covariance(self, x_hat: np.ndarray, boundary: np.ndarray) -> np.ndarray:
        """Inverse numerical Hessian of the negative log-likelihood.

        Parameters on the boundary are excluded from the inversion and get
        NaN variances.
        """
        n_params = len(x_hat)
        cov = np.full((n_params, n_params), np.nan)
        free = ~boundary
        b_saved = self._b.copy()

        def neg_loglike(x_free):
            x = x_hat.copy()
            x[free] = x_free
            return -self.loglike(x)

        try:
            hess = approx_hess3(x_hat[free], neg_loglike)
        finally:
            self._b = b_saved

        hess = 0.5 * (hess + hess.T)
        eigvals = np.linalg.eigvalsh(hess)
        if np.all(eigvals > 0):
            sub = np.linalg.inv(hess)
        else:
            logger.warning(
                f"{self.name}: Hessian not positive definite "
                f"(min eigenvalue {eigvals.min():.3g}), using pseudo-inverse"
            )
            sub = np.linalg.pinv(hess)
        cov[np.ix_(free, free)] = sub
        return cov


class GLMMResults:
    """Results of a fitted GLMM."""

    def __init__(
        self,
        model: GLMM,
        params: np.ndarray,
        cov: np.ndarray,
        llf: float,
        b: np.ndarray,
        converged: bool = True,
        singular: bool = False,
        message: str = "",
        n_iter: int = 0,
    ):
        self.model = model
        self._params = np.asarray(params, dtype=float)
        self._cov = np.asarray(cov, dtype=float)
        self.llf = float(llf)
        self._b = np.asarray(b, dtype=float)
        self.converged = converged
        self.singular = singular
        self.message = message
        self.n_iter = n_iter

    @property
    def name(self) -> str:
        return self.model.name

    @property
    def family(self) -> Family:
        return self.model.family

    @property
    def design(self) -> ModelDesign:
        return self.model.design

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    @property
    def params(self) -> pd.Series:
        return pd.Series(self._params, index=self.model.param_names)

    @property
    def cov_params(self) -> pd.DataFrame:
        names = self.model.param_names
        return pd.DataFrame(self._cov, index=names, columns=names)

    @property
    def bse(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self._cov)), index=self.model.param_names)

    @property
    def _parts(self):
        return self.model._unpack(self._params)

    @property
    def fe_params(self) -> pd.Series:
        return pd.Series(self._parts[0], index=self.design.x_names)

    @property
    def fe_cov(self) -> np.ndarray:
        p = self.model.n_fixed
        return self._cov[:p, :p]

    @property
    def fe_bse(self) -> pd.Series:
        return pd.Series(np.sqrt(np.diag(self.fe_cov)), index=self.design.x_names)

    @property
    def extra_params(self) -> Dict[str, float]:
        return self.family.describe_extra(self._parts[2])

    @property
    def random_effect_sd(self) -> Dict[str, float]:
        return {g: float(t) for g, t in zip(self.model.groups, self._parts[1])}

    @property
    def random_effects(self) -> Dict[str, pd.Series]:
        """Conditional modes of the random intercepts per grouping factor."""
        theta = self._parts[1]
        u = self._b * theta[self.design.group_index] if self._b.size else self._b
        out = {}
        for g, levels, sl in zip(self.model.groups, self.design.group_levels, self.design.random_slices()):
            out[g] = pd.Series(u[sl], index=levels)
        return out

    def fe_table(self, alpha: float = 0.05) -> pd.DataFrame:
        """Fixed-effect estimates with Wald statistics and CIs."""
        est = self.fe_params
        se = self.fe_bse
        z = est / se
        crit = stats.norm.ppf(1 - alpha / 2)
        return pd.DataFrame(
            {
                "estimate": est,
                "std_err": se,
                "z": z,
                "p_value": 2 * stats.norm.sf(np.abs(z)),
                "conf_low": est - crit * se,
                "conf_high": est + crit * se,
            }
        )

    # ------------------------------------------------------------------
    # Fit statistics
    # ------------------------------------------------------------------

    @property
    def nobs(self) -> int:
        return self.design.nobs

    @property
    def df_model(self) -> int:
        """Number of estimated parameters."""
        return len(self._params)

    @property
    def aic(self) -> float:
        return -2.0 * self.llf + 2.0 * self.df_model

    @property
    def bic(self) -> float:
        return -2.0 * self.llf + self.df_model * np.log(self.nobs)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def _random_matrix(self, newdata: pd.DataFrame) -> sparse.csc_matrix:
        """Z for new data; unseen levels get no random effect."""
        n = len(newdata)
        blocks = []
        for g, levels in zip(self.model.groups, self.design.group_levels):
            columns = [c.strip() for c in g.split(":")]
            if len(columns) == 1:
                values = newdata[columns[0]]
            else:
                values = newdata[columns].astype(str).agg(":".join, axis=1)
            codes = levels.get_indexer(values)
            seen = codes >= 0
            blocks.append(
                sparse.csc_matrix(
                    (np.ones(seen.sum()), (np.arange(n)[seen], codes[seen])),
                    shape=(n, len(levels)),
                )
            )
        return sparse.hstack(blocks, format="csc")

    def _u(self) -> np.ndarray:
        theta = self._parts[1]
        return self._b * theta[self.design.group_index]

    def linear_predictor(
        self,
        newdata: Optional[pd.DataFrame] = None,
        include_random: bool = False,
    ) -> np.ndarray:
        X = self.design.X if newdata is None else self.design.fixed_matrix(newdata)
        eta = X @ self._parts[0]
        if include_random and self.design.n_random > 0:
            Z = self.design.Z if newdata is None else self._random_matrix(newdata)
            eta = eta + Z @ self._u()
        return np.clip(eta, -_ETA_BOUND, _ETA_BOUND)

    def predict_linear(self, newdata: pd.DataFrame) -> Tuple[np.ndarray, np.ndarray]:
        """Population-level linear predictor and its standard error."""
        X = self.design.fixed_matrix(newdata)
        eta = X @ self._parts[0]
        se = np.sqrt(np.einsum("ij,jk,ik->i", X, self.fe_cov, X))
        return eta, se

    def mean_response(self, eta: np.ndarray) -> np.ndarray:
        """Map linear predictor values to the response scale."""
        eta = np.clip(np.asarray(eta, dtype=float), -_ETA_BOUND, _ETA_BOUND)
        return self.family.mean(eta, self._parts[2])

    def predict(
        self,
        newdata: Optional[pd.DataFrame] = None,
        include_random: bool = False,
    ) -> np.ndarray:
        """Response-scale mean (population level unless ``include_random``)."""
        return self.mean_response(self.linear_predictor(newdata, include_random=include_random))

    @property
    def fittedvalues(self) -> np.ndarray:
        """Conditional means including the random effects."""
        return self.predict(include_random=True)

    def simulate(
        self,
        n_sim: int,
        rng: np.random.Generator,
        conditional: bool = False,
    ) -> np.ndarray:
        """Simulate responses from the fitted model.

        Args:
            n_sim: Number of simulated datasets.
            rng: Random generator.
            conditional: If True, condition on the estimated random effects;
                otherwise draw new random effects for every simulation.

        Returns:
            Array of shape (n_sim, nobs)
        """
        beta, theta, extra = self._parts
        fixed = self.design.X @ beta
        Z = self.design.Z
        lam = theta[self.design.group_index]
        sims = np.empty((n_sim, self.nobs))
        for s in range(n_sim):
            eta = fixed
            if self.design.n_random > 0:
                u = self._u() if conditional else lam * rng.standard_normal(len(lam))
                eta = fixed + Z @ u
            eta = np.clip(eta, -_ETA_BOUND, _ETA_BOUND)
            sims[s] = self.family.sample(eta, extra, rng)
        return sims

    # ------------------------------------------------------------------
    # Summaries
    # ------------------------------------------------------------------

    def summary_frame(self) -> pd.DataFrame:
        """All parameters with their standard errors, one row each.

        Variance components are reported as standard deviations and family
        parameters on their natural scale alongside the optimizer scale.
        """
        params = self.params
        bse = self.bse
        n_fixed = self.model.n_fixed
        n_theta = self.model.n_theta
        kind = (
            ["fixed"] * n_fixed
            + ["random"] * n_theta
            + ["family"] * self.family.n_extra
        )
        frame = pd.DataFrame(
            {"component": kind, "estimate": params.values, "std_err": bse.values},
            index=params.index,
        )
        for name, value in self.extra_params.items():
            frame.loc[name] = ["family", value, np.nan]
        return frame

    def to_summary(self) -> FitSummary:
        table = self.fe_table()
        fixed = {
            term: {
                "estimate": float(row["estimate"]),
                "se": float(row["std_err"]),
                "z": float(row["z"]),
                "p": float(row["p_value"]),
            }
            for term, row in table.iterrows()
        }
        return FitSummary(
            name=self.name,
            family=self.family.name,
            formula=self.model.formula,
            groups=list(self.model.groups),
            nobs=self.nobs,
            df_model=self.df_model,
            llf=self.llf,
            aic=self.aic,
            bic=self.bic,
            converged=self.converged,
            singular=self.singular,
            extra=self.extra_params,
            random_effect_sd=self.random_effect_sd,
            fixed_effects=fixed,
            message=self.message,
        )

    def summary(self) -> str:
        """Plain-text summary."""
        lines = [
            f"Model: {self.name}",
            f"Family: {self.family.name}    Formula: {self.model.formula}",
            f"No. observations: {self.nobs}    Parameters: {self.df_model}",
            f"logLik: {self.llf:.3f}    AIC: {self.aic:.2f}    BIC: {self.bic:.2f}",
        ]
        if self.model.groups:
            lines.append("Random intercepts (SD):")
            for g, sd in self.random_effect_sd.items():
                lines.append(f"  {g:<20} {sd:.4f}  ({len(self.random_effects[g])} levels)")
        for k, v in self.extra_params.items():
            lines.append(f"{k}: {v:.4f}")
        lines.append("Fixed effects:")
        lines.append(self.fe_table().to_string(float_format=lambda v: f"{v:.4f}"))
        if self.singular:
            lines.append("Note: singular fit (a variance component is zero)")
        if not self.converged:
            lines.append(f"Warning: optimizer did not converge ({self.message})")
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"GLMMResults(name={self.name!r}, family={self.family.name}, aic={self.aic:.2f})"
