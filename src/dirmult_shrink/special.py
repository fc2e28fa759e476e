"""
Special functions for the Dirichlet-multinomial likelihood.

Vectorised digamma, trigamma and log-gamma on the positive real axis. Each
function shifts its argument upward with the functional recurrence until it
reaches ``ASYMPTOTIC_THRESHOLD`` and then sums the asymptotic (Stirling /
Bernoulli) series, which keeps relative error near 1e-10 or better from
fractional arguments up to the millions.

Functions
---------
digamma
    psi(x) = d/dx log Gamma(x).
trigamma
    psi'(x) = d^2/dx^2 log Gamma(x).
log_gamma
    log Gamma(x).
"""
from __future__ import annotations

from typing import Union

import numpy as np

from .constants import ASYMPTOTIC_THRESHOLD
from .errors import DomainError

ArrayLike = Union[float, int, np.ndarray]

_HALF_LOG_2PI = 0.5 * np.log(2.0 * np.pi)

# Bernoulli-number coefficients, innermost first when evaluated by Horner
# in w = 1 / x^2 with alternating signs.
_DIGAMMA_COEFFS = (
    1.0 / 12.0,
    1.0 / 120.0,
    1.0 / 252.0,
    1.0 / 240.0,
    1.0 / 132.0,
    691.0 / 32760.0,
    1.0 / 12.0,
)
_TRIGAMMA_COEFFS = (
    1.0 / 6.0,
    1.0 / 30.0,
    1.0 / 42.0,
    1.0 / 30.0,
    5.0 / 66.0,
    691.0 / 2730.0,
    7.0 / 6.0,
)
_STIRLING_COEFFS = (
    1.0 / 12.0,
    1.0 / 360.0,
    1.0 / 1260.0,
    1.0 / 1680.0,
    1.0 / 1188.0,
    691.0 / 360360.0,
    1.0 / 156.0,
)

# Positive zero of digamma as a double, and digamma's value there
_DIGAMMA_ROOT = 1.4616321449683623
_DIGAMMA_ROOT_VALUE = -9.2412655217294275e-17
_ROOT_RADIUS = 0.25
_ROOT_TERMS = 30

# Signed Bernoulli numbers B_2 .. B_14
_BERNOULLI = (
    1.0 / 6.0,
    -1.0 / 30.0,
    1.0 / 42.0,
    -1.0 / 30.0,
    5.0 / 66.0,
    -691.0 / 2730.0,
    7.0 / 6.0,
)


def _hurwitz_zeta(s: float, a: float, n_direct: int = 10) -> float:
    """zeta(s, a) for s > 1 by Euler-Maclaurin summation after ``n_direct`` terms."""
    y = a + n_direct
    total = float(np.sum((a + np.arange(n_direct)) ** -s))
    total += y ** (1.0 - s) / (s - 1.0) + 0.5 * y ** -s

    rising = s
    factorial = 2.0
    power = y ** (-s - 1.0)
    for j, b in enumerate(_BERNOULLI, start=1):
        total += b / factorial * rising * power
        rising *= (s + 2 * j - 1) * (s + 2 * j)
        factorial *= (2 * j + 1) * (2 * j + 2)
        power /= y * y
    return total


# Taylor coefficients of psi about its root: psi^(n)(x0) / n! = (-1)^(n+1) zeta(n+1, x0)
_ROOT_COEFFS = tuple(
    (-1.0) ** (n + 1) * _hurwitz_zeta(n + 1.0, _DIGAMMA_ROOT) for n in range(1, _ROOT_TERMS + 1)
)


def _digamma_near_root(x: np.ndarray) -> np.ndarray:
    t = x - _DIGAMMA_ROOT
    acc = np.full_like(t, _ROOT_COEFFS[-1])
    for c in reversed(_ROOT_COEFFS[:-1]):
        acc = c + t * acc
    return _DIGAMMA_ROOT_VALUE + t * acc


def _alternating_series(w: np.ndarray, coeffs: tuple) -> np.ndarray:
    """Evaluate c0 - c1 w + c2 w^2 - ... by Horner's rule."""
    acc = np.full_like(w, coeffs[-1])
    for c in reversed(coeffs[:-1]):
        acc = c - w * acc
    return acc


def _check_domain(x: ArrayLike, name: str) -> np.ndarray:
    arr = np.atleast_1d(np.array(x, dtype=float))
    bad = ~(arr > 0)  # also catches NaN
    if np.any(bad):
        first = arr[bad].flat[0]
        raise DomainError(f"{name}(x) requires x > 0, got {first!r}.")
    return arr


def _shift(z: np.ndarray, step) -> np.ndarray:
    """Apply ``step(z[mask])`` and shift z upward until all z >= threshold.

    Returns the accumulated recurrence correction; ``z`` is modified in place.
    """
    acc = np.zeros_like(z)
    small = z < ASYMPTOTIC_THRESHOLD
    while np.any(small):
        acc[small] += step(z[small])
        z[small] += 1.0
        small = z < ASYMPTOTIC_THRESHOLD
    return acc


def _as_output(out: np.ndarray, x: ArrayLike) -> ArrayLike:
    if np.ndim(x) == 0:
        return float(out[0])
    return out


def digamma(x: ArrayLike) -> ArrayLike:
    """Digamma function psi(x) for x > 0.

    Uses psi(x) = psi(x + 1) - 1/x to reach x >= 10, then

        psi(x) ~ ln x - 1/(2x) - sum_k B_2k / (2k x^2k)

    Within 0.25 of the positive root x0 ~ 1.46163 the recurrence and series
    nearly cancel, so a Taylor series about x0 is used instead.

    Parameters
    ----------
    x : float or np.ndarray
        Positive argument(s).

    Returns
    -------
    float or np.ndarray
        psi(x), same shape as ``x``.

    Raises
    ------
    DomainError
        If any element is <= 0 or NaN.
    """
    z = _check_domain(x, "digamma")
    near = np.abs(z - _DIGAMMA_ROOT) < _ROOT_RADIUS
    root_part = _digamma_near_root(z[near])
    acc = _shift(z, lambda v: -1.0 / v)
    w = 1.0 / (z * z)
    out = acc + np.log(z) - 0.5 / z - w * _alternating_series(w, _DIGAMMA_COEFFS)
    out[near] = root_part
    return _as_output(out, x)


def trigamma(x: ArrayLike) -> ArrayLike:
    """Trigamma function psi'(x) for x > 0.

    Uses psi'(x) = psi'(x + 1) + 1/x^2 to reach x >= 10, then

        psi'(x) ~ 1/x + 1/(2x^2) + sum_k B_2k / x^(2k+1)
    """
    z = _check_domain(x, "trigamma")
    acc = _shift(z, lambda v: 1.0 / (v * v))
    w = 1.0 / (z * z)
    series = 1.0 + 0.5 / z + w * _alternating_series(w, _TRIGAMMA_COEFFS)
    out = acc + series / z
    return _as_output(out, x)


def log_gamma(x: ArrayLike) -> ArrayLike:
    """Natural log of the gamma function for x > 0.

    Uses log Gamma(x) = log Gamma(x + 1) - log x to reach x >= 10, then
    Stirling's series. Near the zeros at x = 1 and x = 2 the error is
    absolute (~1e-14) rather than relative.
    """
    z = _check_domain(x, "log_gamma")
    acc = _shift(z, lambda v: -np.log(v))
    w = 1.0 / (z * z)
    out = (
        acc
        + (z - 0.5) * np.log(z)
        - z
        + _HALF_LOG_2PI
        + _alternating_series(w, _STIRLING_COEFFS) / z
    )
    return _as_output(out, x)
