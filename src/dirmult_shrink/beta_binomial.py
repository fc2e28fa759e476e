"""
Two-parameter beta-binomial maximum likelihood.

A direct optimiser for the k = 2 case (e.g. hits vs. non-hits), independent
of the fixed-point engine and of :mod:`dirmult_shrink.special`. A
Dirichlet-multinomial fit on a two-column matrix should agree with it.
"""
from __future__ import annotations

import warnings
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from scipy.optimize import minimize
from scipy.special import digamma, gammaln

from .errors import InvalidInputError


@dataclass(frozen=True)
class BetaBinomialFit:
    """Container for a beta-binomial fit."""
    alpha: float
    beta: float
    log_likelihood: float
    converged: bool

    @property
    def mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)


def _bb_neg_ll_and_grad(log_params: np.ndarray, y: np.ndarray, n: np.ndarray) -> Tuple[float, np.ndarray]:
    a, b = np.exp(log_params)
    s = a + b
    ll = np.sum(
        gammaln(s) - gammaln(n + s)
        + gammaln(y + a) - gammaln(a)
        + gammaln(n - y + b) - gammaln(b)
    )
    common = np.sum(digamma(s) - digamma(n + s))
    d_a = common + np.sum(digamma(y + a) - digamma(a))
    d_b = common + np.sum(digamma(n - y + b) - digamma(b))
    # chain rule for the log parameterisation
    grad = np.array([a * d_a, b * d_b])
    return -float(ll), -grad


def fit_beta_binomial(
    successes: np.ndarray,
    totals: np.ndarray,
    init: Optional[Tuple[float, float]] = None,
    max_iter: int = 1000,
    tol: float = 1e-14,
) -> BetaBinomialFit:
    """Fit Beta(alpha, beta) to success counts by maximum likelihood.

    Parameters
    ----------
    successes : array-like
        Success counts y_i.
    totals : array-like
        Trial counts n_i >= y_i. Rows with n_i = 0 are dropped.
    init : (float, float), optional
        Starting (alpha, beta). Defaults to a method-of-moments guess.
    max_iter : int
        Maximum L-BFGS-B iterations.
    tol : float
        ``ftol`` passed to L-BFGS-B.

    Returns
    -------
    BetaBinomialFit
        Estimated parameters and log-likelihood (binomial coefficient omitted).
    """
    y = np.asarray(successes, dtype=float)
    n = np.asarray(totals, dtype=float)
    if y.shape != n.shape or y.ndim != 1:
        raise InvalidInputError("successes and totals must be 1-D arrays of equal length.")
    if np.any(y < 0) or np.any(y > n):
        raise InvalidInputError("Need 0 <= successes <= totals.")

    keep = n > 0
    y, n = y[keep], n[keep]
    if y.size == 0:
        raise InvalidInputError("No rows with a positive total.")

    if init is None:
        rates = y / n
        mu = float(np.clip(np.mean(rates), 1e-3, 1 - 1e-3))
        var = float(np.var(rates, ddof=1)) if rates.size > 1 else 0.0
        if 0 < var < mu * (1 - mu):
            common = mu * (1 - mu) / var - 1
        else:
            common = 10.0
        init = (max(mu * common, 1e-2), max((1 - mu) * common, 1e-2))

    x0 = np.log(np.asarray(init, dtype=float))
    bounds = [(np.log(1e-6), np.log(1e8))] * 2

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        result = minimize(
            fun=_bb_neg_ll_and_grad,
            x0=x0,
            args=(y, n),
            jac=True,
            method="L-BFGS-B",
            bounds=bounds,
            options={"maxiter": max_iter, "ftol": tol, "gtol": 1e-10},
        )

    a, b = np.exp(result.x)
    return BetaBinomialFit(
        alpha=float(a),
        beta=float(b),
        log_likelihood=-float(result.fun),
        converged=bool(result.success),
    )
