# src/foxrepro/models/families.py
"""Response distributions for the mixed-effects models.

Every family here is an exponential family in the linear predictor eta
(log rate for counts, logit for binary outcomes), optionally truncated at
zero. For such families the derivatives of the log-likelihood with respect
to eta are

    d loglik / d eta   = y - E[Y]
    d2 loglik / d eta2 = -Var[Y]

so ``moments`` is all the fitting code needs besides ``loglik``.

Families:
    poisson              Poisson, log link
    truncated_poisson    zero-truncated Poisson
    compois              Conway-Maxwell Poisson (rate lambda = exp(eta), dispersion nu)
    truncated_compois    zero-truncated Conway-Maxwell Poisson
    binomial             Bernoulli, logit link

Example:
    >>> family = get_family("truncated_compois")
    >>> ll = family.loglik(y, eta, extra=np.array([0.2]))
"""

import logging
from typing import Dict, Tuple

import numpy as np
from scipy import stats
from scipy.special import expit, gammaln, logsumexp

logger = logging.getLogger(__name__)

# Largest count considered when normalising COM-Poisson probabilities
_MAX_SUPPORT = 1000

# Bound on the log of the approximate COM-Poisson mean used to size the support
_MAX_LOG_MODE = np.log(400.0)

# Probability at the support cut-off above which the normaliser is reported as truncated
_TAIL_TOL = 1e-6


class Family:
    """Base class for response distributions.

    Attributes:
        name: Registry name.
        extra_names: Names of family parameters estimated with the model.
        extra_start: Starting values for those parameters.
        extra_bounds: Optimizer bounds for those parameters.
        integer_response: Whether responses are counts (used by residual
            randomization).
    """

    name: str = "family"
    link: str = "log"
    extra_names: Tuple[str, ...] = ()
    extra_start: Tuple[float, ...] = ()
    extra_bounds: Tuple[Tuple[float, float], ...] = ()
    integer_response: bool = True
    truncated: bool = False

    @property
    def n_extra(self) -> int:
        return len(self.extra_names)

    def check_response(self, y: np.ndarray) -> None:
        """Raise ``ValueError`` if ``y`` is not a valid response."""
        y = np.asarray(y, dtype=float)
        if np.any(y < 0) or np.any(np.mod(y, 1.0) != 0):
            raise ValueError(f"{self.name} requires non-negative integer responses")
        if self.truncated and np.any(y == 0):
            raise ValueError(f"{self.name} is zero-truncated; responses must be >= 1")

    def loglik(self, y: np.ndarray, eta: np.ndarray, extra: np.ndarray) -> np.ndarray:
        """Per-observation log-likelihood."""
        raise NotImplementedError

    def moments(self, eta: np.ndarray, extra: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """Mean and variance of the response given eta."""
        raise NotImplementedError

    def mean(self, eta: np.ndarray, extra: np.ndarray) -> np.ndarray:
        """Response-scale mean."""
        return self.moments(eta, extra)[0]

    def sample(
        self,
        eta: np.ndarray,
        extra: np.ndarray,
        rng: np.random.Generator,
    ) -> np.ndarray:
        """Draw one response per element of eta."""
        raise NotImplementedError

    def describe_extra(self, extra: np.ndarray) -> Dict[str, float]:
        """Family parameters on their natural scale."""
        return {}

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class Poisson(Family):
    name = "poisson"

    def loglik(self, y, eta, extra):
        return y * eta - np.exp(eta) - gammaln(y + 1)

    def moments(self, eta, extra):
        mu = np.exp(eta)
        return mu, mu

    def sample(self, eta, extra, rng):
        return rng.poisson(np.exp(eta)).astype(float)


class TruncatedPoisson(Family):
    """Zero-truncated Poisson: P(Y = y | Y > 0)."""

    name = "truncated_poisson"
    truncated = True

    def loglik(self, y, eta, extra):
        lam = np.exp(eta)
        return y * eta - lam - gammaln(y + 1) - np.log(-np.expm1(-lam))

    def moments(self, eta, extra):
        lam = np.exp(eta)
        mean = lam / -np.expm1(-lam)
        var = mean * (1.0 + lam - mean)
        return mean, np.maximum(var, 1e-12)

    def sample(self, eta, extra, rng):
        lam = np.exp(eta)
        # Inverse CDF restricted to the upper tail above P(Y = 0)
        u = rng.uniform(np.exp(-lam), 1.0)
        u = np.minimum(u, np.nextafter(1.0, 0.0))
        draws = stats.poisson.ppf(u, lam)
        return np.maximum(draws, 1.0)


class COMPoisson(Family):
    """Conway-Maxwell Poisson with rate lambda = exp(eta).

    P(Y = y) = lambda^y / (y!)^nu / Z(lambda, nu), with the dispersion
    parameter estimated on the log scale (``log_nu``). nu = 1 is Poisson,
    nu < 1 overdispersed, nu > 1 underdispersed (typical of litter sizes).
    """

    name = "compois"
    extra_names = ("log_nu",)
    extra_start = (0.0,)
    extra_bounds = ((np.log(0.2), 4.0),)
    _tail_warned = False

    def _support(self, eta: np.ndarray, nu: float):
        """Finite support and unnormalized log weights for each eta."""
        eta = np.atleast_1d(np.asarray(eta, dtype=float))
        log_mode = np.clip(eta / nu, None, _MAX_LOG_MODE)
        mu = float(np.exp(log_mode).max()) if eta.size else 1.0
        upper = int(min(_MAX_SUPPORT, np.ceil(mu + 12.0 * np.sqrt(mu / nu + 1.0) + 20.0)))
        start = 1 if self.truncated else 0
        support = np.arange(start, upper + 1, dtype=float)
        log_w = eta[:, None] * support[None, :] - nu * gammaln(support + 1.0)[None, :]
        return support, log_w

    def _normalized(self, eta: np.ndarray, extra: np.ndarray):
        """Support, log weights and log Z; warns once if Z is cut off."""
        nu = float(np.exp(extra[0]))
        support, log_w = self._support(eta, nu)
        log_z = logsumexp(log_w, axis=1, keepdims=True)
        if log_w.size and not self._tail_warned:
            tail = float(np.exp(np.max(log_w[:, -1:] - log_z)))
            if tail > _TAIL_TOL:
                logger.warning(
                    f"{self.name}: support cut at {int(support[-1])} holds probability "
                    f"{tail:.2e} (nu={nu:.3f}, max eta={float(np.max(eta)):.2f}); "
                    f"the normalising constant is truncated"
                )
                self._tail_warned = True
        return support, log_w, log_z

    def log_normalizer(self, eta: np.ndarray, extra: np.ndarray) -> np.ndarray:
        """log Z(lambda, nu), summed over the (possibly truncated) support."""
        _, _, log_z = self._normalized(eta, extra)
        return log_z[:, 0]

    def probabilities(self, eta: np.ndarray, extra: np.ndarray):
        """Support and probability matrix (n_obs x n_support)."""
        support, log_w, log_z = self._normalized(eta, extra)
        return support, np.exp(log_w - log_z)

    def loglik(self, y, eta, extra):
        nu = float(np.exp(extra[0]))
        return y * eta - nu * gammaln(y + 1) - self.log_normalizer(eta, extra)

    def moments(self, eta, extra):
        support, probs = self.probabilities(eta, extra)
        mean = probs @ support
        var = probs @ (support ** 2) - mean ** 2
        return mean, np.maximum(var, 1e-12)

    def sample(self, eta, extra, rng):
        support, probs = self.probabilities(eta, extra)
        cdf = np.cumsum(probs, axis=1)
        u = rng.random(probs.shape[0])
        idx = (cdf < u[:, None]).sum(axis=1)
        idx = np.minimum(idx, len(support) - 1)
        return support[idx]

    def describe_extra(self, extra):
        return {"nu": float(np.exp(extra[0]))}


class TruncatedCOMPoisson(COMPoisson):
    """Zero-truncated Conway-Maxwell Poisson: P(Y = y | Y > 0)."""

    name = "truncated_compois"
    truncated = True


class Binomial(Family):
    """Bernoulli outcomes (e.g. pup survival) with a logit link."""

    name = "binomial"
    link = "logit"

    def check_response(self, y):
        y = np.asarray(y, dtype=float)
        if not np.all(np.isin(y, (0.0, 1.0))):
            raise ValueError("binomial requires binary (0/1) responses")

    def loglik(self, y, eta, extra):
        return y * eta - np.logaddexp(0.0, eta)

    def moments(self, eta, extra):
        p = expit(eta)
        return p, np.maximum(p * (1.0 - p), 1e-12)

    def sample(self, eta, extra, rng):
        return rng.binomial(1, expit(eta)).astype(float)


FAMILIES: Dict[str, type] = {
    cls.name: cls
    for cls in (Poisson, TruncatedPoisson, COMPoisson, TruncatedCOMPoisson, Binomial)
}


def get_family(name: str) -> Family:
    """Instantiate a family by registry name.

    Raises:
        ValueError: If the name is unknown.
    """
    key = name.lower()
    if key not in FAMILIES:
        raise ValueError(f"Unknown family '{name}'. Available: {sorted(FAMILIES)}")
    return FAMILIES[key]()
