"""
Dirichlet-Multinomial maximum-likelihood fitting.

Model specification:
    (x_i1, ..., x_ik) | p_i ~ Multinomial(n_i, p_i)
    p_i ~ Dirichlet(alpha)

where i indexes entities (e.g. players), j indexes categories (e.g. Single,
Double, Triple, HR, NonHit) and n_i = sum_j x_ij. The concentration vector
alpha is shared by all entities and estimated from the marginal likelihood

    logL(alpha) = sum_i [ lnG(A) - lnG(n_i + A) + sum_j ( lnG(x_ij + alpha_j) - lnG(alpha_j) ) ]

with A = sum_j alpha_j. Each iteration proposes Minka's fixed-point update

    alpha_j <- alpha_j * sum_i [psi(x_ij + alpha_j) - psi(alpha_j)]
                       / sum_i [psi(n_i + A) - psi(A)]

which never decreases logL, and a Newton step using the diagonal-plus-constant
Hessian; the proposal with the higher logL is kept. The fixed point alone
contracts slowly, so small steps do not mean the optimum is near. The fit
is therefore declared converged on the scaled score

    r_j = alpha_j * dlogL/dalpha_j / n_rows

(the per-row logL gain for a relative change in alpha_j) falling below the
tolerance. Components held at the floor, and the direction along the bound
sum(alpha) = max_precision, do not count once the score pushes past them.
Rows with n_i = 0 are left out.

Classes
-------
DirichletMultinomialEstimator
    Holds fit options; ``fit`` returns a FittedModel.

Functions
---------
fit_dm_model
    Fit the concentration vector to a CountMatrix.
dm_log_likelihood
    Marginal log-likelihood of counts under alpha.
moment_initial_alpha
    Method-of-moments starting point.
observed_information
    Negative Hessian of logL in alpha.
simulate_dm_counts
    Generate synthetic counts from a known alpha.
"""
from __future__ import annotations

import logging
import time
import warnings
from contextlib import nullcontext
from multiprocessing.pool import ThreadPool
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .config import FitOptions
from .data import AlphaVector, CountMatrix
from .errors import InvalidInputError, NonConvergenceError
from .model import (
    STATUS_CANCELLED,
    STATUS_CONVERGED,
    STATUS_MAX_ITERATIONS,
    STATUS_UNSTABLE,
    FitDiagnostics,
    FittedModel,
)
from .special import digamma, log_gamma, trigamma

logger = logging.getLogger(__name__)


def _usable_counts(counts: np.ndarray) -> np.ndarray:
    counts = np.asarray(counts, dtype=float)
    return counts[counts.sum(axis=1) > 0]


def dm_log_likelihood(counts: np.ndarray, alpha: np.ndarray) -> float:
    """Compute the Dirichlet-Multinomial log-likelihood.

    Parameters
    ----------
    counts : np.ndarray
        Count matrix, shape (n_obs, k). Rows with total 0 are ignored.
    alpha : np.ndarray
        Concentration parameters, shape (k,).

    Returns
    -------
    float
        Log-likelihood, without the multinomial coefficient.
    """
    counts = _usable_counts(counts)
    alpha = np.asarray(alpha, dtype=float)
    if counts.shape[0] == 0:
        return 0.0
    return _chunk_statistics(counts, counts.sum(axis=1), alpha)[2]


def _chunk_statistics(
    counts: np.ndarray,
    totals: np.ndarray,
    alpha: np.ndarray,
) -> Tuple[np.ndarray, float, float]:
    """Per-category numerator sums, denominator sum and logL over a block of rows."""
    alpha_sum = alpha.sum()
    shifted = counts + alpha[np.newaxis, :]

    # Differences are taken elementwise so zero counts contribute exactly 0
    numer = np.sum(digamma(shifted) - digamma(alpha)[np.newaxis, :], axis=0)
    denom = float(np.sum(digamma(totals + alpha_sum) - digamma(alpha_sum)))

    ll = (
        np.sum(log_gamma(alpha_sum) - log_gamma(totals + alpha_sum))
        + np.sum(log_gamma(shifted) - log_gamma(alpha)[np.newaxis, :])
    )
    return numer, denom, float(ll)


def _chunk_curvature(
    counts: np.ndarray,
    totals: np.ndarray,
    alpha: np.ndarray,
) -> Tuple[np.ndarray, float]:
    """Hessian of logL over a block of rows as diag(q) + c * ones((k, k))."""
    alpha_sum = alpha.sum()
    q = np.sum(trigamma(counts + alpha[np.newaxis, :]) - trigamma(alpha)[np.newaxis, :], axis=0)
    c = float(np.sum(trigamma(alpha_sum) - trigamma(totals + alpha_sum)))
    return q, c


def moment_initial_alpha(
    counts: np.ndarray,
    init_alpha: float = 1.0,
    max_precision: float = 1e4,
    floor: float = 1e-6,
) -> np.ndarray:
    """Method-of-moments starting point for alpha.

    Uses the column means m_j and variances v_j of the row proportions
    x_ij / n_i. Under the Dirichlet-multinomial,

        E[v_j] = m_j (1 - m_j) (1 + A h) / (1 + A),   h = mean_i(1 / n_i)

    so each category gives A_j = (1 - r_j) / (r_j - h) with
    r_j = v_j / (m_j (1 - m_j)). The median of the A_j is used. Categories
    showing no excess dispersion (r_j <= h) push A to ``max_precision``.

    Parameters
    ----------
    counts : np.ndarray
        Count matrix, shape (n_obs, k).
    init_alpha : float
        Per-category value returned when fewer than two rows are usable.
    max_precision : float
        Upper bound on the starting sum of alpha.
    floor : float
        Lower bound on each starting component.

    Returns
    -------
    np.ndarray
        Starting alpha, shape (k,).
    """
    counts = _usable_counts(counts)
    k = counts.shape[1]
    if counts.shape[0] < 2:
        return np.full(k, float(init_alpha))

    totals = counts.sum(axis=1)
    props = counts / totals[:, np.newaxis]
    m = props.mean(axis=0)
    v = props.var(axis=0, ddof=1)
    h = float(np.mean(1.0 / totals))

    interior = (m > 0) & (m < 1)
    if not np.any(interior):
        return np.full(k, float(init_alpha))

    r = v[interior] / (m[interior] * (1.0 - m[interior]))
    with np.errstate(divide="ignore", invalid="ignore"):
        precision = np.where(
            r <= h,
            max_precision,
            np.where(r < 1.0, (1.0 - r) / (r - h), np.nan),
        )

    finite = np.isfinite(precision)
    if np.any(finite):
        total = float(np.median(precision[finite]))
    else:
        total = k * float(init_alpha)
    total = float(np.clip(total, k * floor, max_precision))

    return np.maximum(m * total, floor)


def observed_information(counts: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Negative Hessian of the log-likelihood with respect to alpha.

        -H_jl = delta_jl sum_i [psi'(alpha_j) - psi'(x_ij + alpha_j)]
                - sum_i [psi'(A) - psi'(n_i + A)]

    Parameters
    ----------
    counts : np.ndarray
        Count matrix, shape (n_obs, k).
    alpha : np.ndarray
        Concentration parameters, shape (k,).

    Returns
    -------
    np.ndarray
        Observed information, shape (k, k).
    """
    counts = _usable_counts(counts)
    alpha = np.asarray(alpha, dtype=float)
    q, c = _chunk_curvature(counts, counts.sum(axis=1), alpha)
    return np.diag(-q) - c


def _standard_errors(counts: np.ndarray, alpha: np.ndarray, jitter: float = 1e-10) -> np.ndarray:
    """Square roots of the diagonal of the inverse observed information.

    Categories never observed in any usable row sit on the boundary and get
    NaN; the remaining block is inverted on its own.
    """
    counts = _usable_counts(counts)
    k = alpha.size
    se = np.full(k, np.nan)

    observed = counts.sum(axis=0) > 0
    if observed.sum() == 0:
        return se

    info = observed_information(counts, alpha)[np.ix_(observed, observed)]

    eye = np.eye(info.shape[0])
    try:
        cov = np.linalg.inv(info)
    except np.linalg.LinAlgError:
        try:
            cov = np.linalg.inv(info + jitter * eye)
        except np.linalg.LinAlgError:
            logger.warning("Observed information singular; using pseudo-inverse for standard errors.")
            cov = np.linalg.pinv(info)

    var = np.diag(cov)
    with np.errstate(invalid="ignore"):
        se[observed] = np.where(var > 0, np.sqrt(np.abs(var)), np.nan)
    return se


def _row_chunks(counts: np.ndarray, n_workers: int) -> List[Tuple[np.ndarray, np.ndarray]]:
    """Split usable rows into contiguous blocks, in row order."""
    n_chunks = max(1, min(int(n_workers), counts.shape[0]))
    blocks = np.array_split(counts, n_chunks, axis=0)
    return [(b, b.sum(axis=1)) for b in blocks]


def _reduce(func, chunks, alpha: np.ndarray, pool: Optional[ThreadPool]) -> tuple:
    """Apply ``func(counts, totals, alpha)`` to every chunk and add the parts."""
    args = [(c, t, alpha) for c, t in chunks]
    if pool is None:
        parts = [func(*a) for a in args]
    else:
        parts = pool.starmap(func, args)

    # Combine in chunk order so repeated fits give identical results
    total = parts[0]
    for part in parts[1:]:
        total = tuple(a + b for a, b in zip(total, part))
    return total


def _fixed_point_update(
    alpha: np.ndarray,
    numer: np.ndarray,
    denom: float,
    floor: float,
) -> Tuple[np.ndarray, int, bool]:
    """One Minka update with clamping.

    Returns the new alpha, the number of components clamped for falling to
    or below the floor, and whether any component came out non-finite.
    """
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        new = alpha * numer / denom

    nonfinite = ~np.isfinite(new)
    nonpositive = ~nonfinite & (new <= floor)
    new = np.where(nonfinite | nonpositive, floor, new)
    return new, int(nonpositive.sum()), bool(nonfinite.any())


def _is_cancelled(cancel, deadline: Optional[float]) -> bool:
    if cancel is not None and cancel.is_set():
        return True
    if deadline is not None and time.monotonic() >= deadline:
        return True
    return False


def _bound_precision(alpha: np.ndarray, bound: float, floor: float) -> np.ndarray:
    """Scale alpha back onto sum(alpha) = bound when it lies beyond it."""
    total = alpha.sum()
    if not total > bound:
        return alpha
    return np.maximum(alpha * (bound / total), floor)


def _score_residual(
    alpha: np.ndarray,
    score: np.ndarray,
    n_rows: int,
    floor: float,
    bound: float,
) -> Tuple[float, bool]:
    """Largest scaled score component that is not held by a bound.

    Returns the residual and whether sum(alpha) sits on ``bound`` with the
    score pointing past it. In that case the residual is taken from the
    score minus its alpha-weighted mean, i.e. along sum(alpha) = bound.
    """
    free = ~((alpha <= floor) & (score <= 0))
    if not np.any(free):
        return 0.0, False

    scaled = alpha * score / n_rows
    on_bound = bool(alpha.sum() >= bound * (1.0 - 1e-9) and scaled[free].sum() > 0)
    if on_bound:
        mu = np.sum(alpha[free] * score[free]) / np.sum(alpha[free])
        scaled = alpha * (score - mu) / n_rows
    return float(np.max(np.abs(scaled[free]))), on_bound


def _newton_update(
    alpha: np.ndarray,
    score: np.ndarray,
    q: np.ndarray,
    c: float,
    free: np.ndarray,
    on_bound: bool,
) -> Optional[np.ndarray]:
    """Newton step on the ``free`` components for the Hessian diag(q) + c.

    Off the bound the step is -H^-1 g by Sherman-Morrison. On the bound the
    step keeps sum(alpha) fixed, where the constant part of H drops out.
    Returns None when H is not negative definite or the step leaves the
    positive orthant.
    """
    q_f = q[free]
    g_f = score[free]
    if q_f.size == 0 or not np.all(q_f < 0):
        return None

    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        if on_bound:
            nu = np.sum(g_f / q_f) / np.sum(1.0 / q_f)
            step = (nu - g_f) / q_f
        else:
            scale = 1.0 + c * np.sum(1.0 / q_f)
            if not scale > 0:
                return None
            step = -(g_f - c * np.sum(g_f / q_f) / scale) / q_f

    new = alpha.copy()
    new[free] = alpha[free] + step
    if not np.all(np.isfinite(new)) or np.any(new[free] <= 0):
        return None
    return new


def fit_dm_model(
    matrix: CountMatrix,
    tolerance: Optional[float] = None,
    max_iterations: Optional[int] = None,
    options: Optional[FitOptions] = None,
    cancel=None,
    deadline: Optional[float] = None,
    alpha_init: Optional[Sequence[float]] = None,
    verbose: bool = False,
) -> FittedModel:
    """Fit the Dirichlet-Multinomial concentration vector via maximum likelihood.

    Parameters
    ----------
    matrix : CountMatrix
        Aggregated counts, one row per entity.
    tolerance : float, optional
        Overrides ``options.tolerance`` (default 1e-6), the bound on the
        scaled score alpha_j * dlogL/dalpha_j / n_rows.
    max_iterations : int, optional
        Overrides ``options.max_iterations`` (default 1000).
    options : FitOptions, optional
        Full set of fit settings.
    cancel : object with ``is_set()``, optional
        e.g. a ``threading.Event``; checked between iterations.
    deadline : float, optional
        Absolute ``time.monotonic()`` value after which the fit stops.
    alpha_init : sequence of float, optional
        Starting point. Defaults to the method-of-moments estimate.
    verbose : bool
        Log progress at INFO instead of DEBUG.

    Returns
    -------
    FittedModel
        Always carries a usable alpha. ``diagnostics.converged`` is False when
        the iteration budget ran out, the fit was cancelled, or updates were
        non-finite at every step; a :class:`NonConvergenceError` warning is
        issued in the first and last cases.

    Raises
    ------
    InvalidInputError
        If ``matrix`` is not a CountMatrix or has no row with a positive total.
    """
    if not isinstance(matrix, CountMatrix):
        matrix = CountMatrix(matrix)

    opts = (options or FitOptions()).with_overrides(tolerance=tolerance, max_iterations=max_iterations)

    usable = matrix.counts[matrix.usable_mask].astype(float)
    n_skipped = matrix.n_degenerate
    n_rows, k = usable.shape
    if n_rows == 0:
        raise InvalidInputError("All rows have total count 0; nothing to fit.")
    observed = usable.sum(axis=0) > 0

    if alpha_init is None:
        alpha = moment_initial_alpha(
            usable,
            init_alpha=opts.init_alpha,
            max_precision=opts.max_init_precision,
            floor=opts.alpha_floor,
        )
    else:
        alpha = AlphaVector(alpha_init, matrix.categories).values.astype(float)
    alpha = _bound_precision(alpha, opts.max_precision, opts.alpha_floor)

    log = logger.info if verbose else logger.debug
    logger.info(
        f"Fitting Dirichlet-multinomial: {n_rows} rows x {k} categories "
        f"({n_skipped} rows with total 0 skipped)"
    )

    chunks = _row_chunks(usable, opts.n_workers)
    pool_ctx = ThreadPool(processes=len(chunks)) if len(chunks) > 1 else nullcontext(None)

    n_floor_clamps = 0
    n_nonfinite = 0
    n_newton = 0
    n_iter = 0
    status = STATUS_MAX_ITERATIONS

    with pool_ctx as pool:
        numer, denom, ll = _reduce(_chunk_statistics, chunks, alpha, pool)
        trace = [ll]
        log(f"  init: logL={ll:.6f}, alpha={np.round(alpha, 4).tolist()}")

        while True:
            score = numer - denom
            residual, on_bound = _score_residual(alpha, score, n_rows, opts.alpha_floor, opts.max_precision)

            if _is_cancelled(cancel, deadline):
                status = STATUS_CANCELLED
                break
            if residual < opts.tolerance:
                status = STATUS_CONVERGED
                break
            if n_iter >= opts.max_iterations:
                break

            fp_alpha, clamped, nonfinite = _fixed_point_update(alpha, numer, denom, opts.alpha_floor)
            fp_alpha = _bound_precision(fp_alpha, opts.max_precision, opts.alpha_floor)
            n_iter += 1
            n_floor_clamps += clamped
            if nonfinite:
                n_nonfinite += 1
                logger.debug(f"  iter {n_iter}: non-finite alpha update clamped to {opts.alpha_floor}")

            new_alpha = fp_alpha
            new_numer, new_denom, new_ll = _reduce(_chunk_statistics, chunks, fp_alpha, pool)

            q, c = _reduce(_chunk_curvature, chunks, alpha, pool)
            free = observed & (alpha > opts.alpha_floor)
            nt_alpha = _newton_update(alpha, score, q, c, free, on_bound)
            if nt_alpha is not None:
                if not on_bound:
                    nt_alpha = np.where(free, nt_alpha, fp_alpha)
                nt_alpha = _bound_precision(nt_alpha, opts.max_precision, opts.alpha_floor)
                nt_numer, nt_denom, nt_ll = _reduce(_chunk_statistics, chunks, nt_alpha, pool)
                # ties within rounding go to Newton, which converges faster near the optimum
                if nt_ll >= new_ll - 1e-12 * max(abs(new_ll), 1.0):
                    new_alpha, new_numer, new_denom, new_ll = nt_alpha, nt_numer, nt_denom, nt_ll
                    n_newton += 1

            rel_alpha = float(np.max(np.abs(new_alpha - alpha) / alpha))
            alpha, numer, denom, ll = new_alpha, new_numer, new_denom, new_ll
            trace.append(ll)

            log(
                f"  iter {n_iter}: logL={ll:.6f}, score residual={residual:.3e}, "
                f"rel_dalpha={rel_alpha:.3e}, sum(alpha)={alpha.sum():.4f}"
            )

    if status == STATUS_MAX_ITERATIONS and n_iter > 0 and n_nonfinite == n_iter:
        status = STATUS_UNSTABLE

    converged = status == STATUS_CONVERGED
    if status in (STATUS_MAX_ITERATIONS, STATUS_UNSTABLE):
        warnings.warn(
            f"Dirichlet-multinomial fit did not converge (status '{status}', "
            f"{n_iter} iterations, score residual {residual:.3e}); returning the last alpha.",
            NonConvergenceError,
            stacklevel=2,
        )
    elif status == STATUS_CANCELLED:
        logger.info(f"Fit cancelled after {n_iter} iterations; returning the current alpha.")

    se = _standard_errors(usable, alpha)

    logger.info(
        f"Fit finished: status={status}, iterations={n_iter} ({n_newton} Newton), logL={ll:.6f}, "
        f"sum(alpha)={alpha.sum():.4f}{' (precision bound)' if on_bound else ''}"
    )

    diagnostics = FitDiagnostics(
        log_likelihood=float(ll),
        n_iterations=n_iter,
        converged=converged,
        status=status,
        standard_errors=se,
        n_skipped_rows=n_skipped,
        n_floor_clamps=n_floor_clamps,
        n_nonfinite_updates=n_nonfinite,
        log_likelihood_trace=tuple(trace),
        score_residual=residual,
        at_precision_bound=on_bound,
    )
    return FittedModel(
        alpha=AlphaVector(alpha, matrix.categories),
        diagnostics=diagnostics,
        confidence_level=opts.confidence_level,
    )


class DirichletMultinomialEstimator:
    """Reusable fitter bound to a set of :class:`FitOptions`.

    Holds no per-fit state, so one instance can serve concurrent ``fit`` calls
    on different matrices.
    """

    def __init__(self, options: Optional[FitOptions] = None, **kwargs):
        base = options or FitOptions()
        self.options = base.with_overrides(**kwargs)

    def fit(self, matrix: CountMatrix, cancel=None, deadline: Optional[float] = None) -> FittedModel:
        return fit_dm_model(matrix, options=self.options, cancel=cancel, deadline=deadline)


def simulate_dm_counts(
    alpha: Sequence[float],
    n_rows: int = 500,
    total_count_mean: float = 50.0,
    total_count_cv: float = 0.0,
    categories: Optional[Sequence[str]] = None,
    seed: int = 42,
) -> CountMatrix:
    """Generate synthetic counts from a Dirichlet-Multinomial.

    Parameters
    ----------
    alpha : sequence of float
        True concentration parameters.
    n_rows : int
        Number of entities.
    total_count_mean : float
        Mean total count per entity.
    total_count_cv : float
        Log-scale spread of totals. 0 gives every row the same total.
    categories : sequence of str, optional
        Category names.
    seed : int
        Random seed.

    Returns
    -------
    CountMatrix
        Simulated counts.
    """
    rng = np.random.default_rng(seed)
    alpha = AlphaVector(alpha, categories)

    if total_count_cv > 0:
        log_total = np.log(total_count_mean) + rng.normal(0, total_count_cv, size=n_rows)
        totals = np.maximum(1, np.exp(log_total).astype(int))
    else:
        totals = np.full(n_rows, max(1, int(round(total_count_mean))))

    probs = rng.dirichlet(alpha.values, size=n_rows)
    counts = np.array([rng.multinomial(n, p) for n, p in zip(totals, probs)])

    return CountMatrix(
        counts,
        categories=alpha.categories,
        entity_ids=[f"entity_{i}" for i in range(n_rows)],
    )
