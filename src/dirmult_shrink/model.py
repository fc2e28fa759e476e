"""
Fitted Dirichlet-multinomial model containers.

Classes
-------
FitDiagnostics
    Convergence and quality metadata for one fit.
FittedModel
    Concentration vector plus diagnostics, with a fixed-schema parameter table.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd
from scipy.stats import norm

from .constants import DEFAULT_CONFIDENCE_LEVEL
from .data import AlphaVector
from .errors import (
    DegenerateRowError,
    FitWarning,
    NonConvergenceError,
    NumericalInstabilityError,
)

# Terminal states of a fit
STATUS_CONVERGED = "converged"
STATUS_MAX_ITERATIONS = "max_iterations"
STATUS_CANCELLED = "cancelled"
STATUS_UNSTABLE = "unstable"


@dataclass(frozen=True, eq=False)
class FitDiagnostics:
    """Container for fit diagnostics.

    Attributes
    ----------
    log_likelihood : float
        Log-likelihood at the returned alpha (multinomial coefficient omitted).
    n_iterations : int
        Fixed-point updates performed.
    converged : bool
        Whether the tolerance was met.
    status : str
        One of ``converged``, ``max_iterations``, ``cancelled``, ``unstable``.
    standard_errors : np.ndarray
        Asymptotic standard error per category from the inverse observed
        information. NaN where the information matrix gives no positive
        variance (e.g. a category held at the floor).
    n_skipped_rows : int
        Rows with total 0 left out of the likelihood.
    n_floor_clamps : int
        Component updates that came out non-positive and were set to the floor.
    n_nonfinite_updates : int
        Iterations in which at least one update was non-finite.
    log_likelihood_trace : tuple of float
        Log-likelihood after initialisation and after every update.
    score_residual : float
        Largest scaled score component alpha_j * dlogL/dalpha_j / n_rows
        at the returned alpha, ignoring components held by a bound.
    at_precision_bound : bool
        Whether sum(alpha) ended on the precision bound with the likelihood
        still rising along it (no excess dispersion in the data).
    """
    log_likelihood: float
    n_iterations: int
    converged: bool
    status: str
    standard_errors: np.ndarray
    n_skipped_rows: int = 0
    n_floor_clamps: int = 0
    n_nonfinite_updates: int = 0
    log_likelihood_trace: Tuple[float, ...] = ()
    score_residual: float = float("nan")
    at_precision_bound: bool = False

    def conditions(self) -> List[FitWarning]:
        """Recovered or soft conditions met during the fit, as warning instances."""
        found: List[FitWarning] = []
        if self.n_skipped_rows:
            found.append(DegenerateRowError(f"{self.n_skipped_rows} rows with total 0 were skipped."))
        if self.n_nonfinite_updates:
            found.append(NumericalInstabilityError(
                f"{self.n_nonfinite_updates} iterations produced non-finite alpha updates (clamped)."
            ))
        if not self.converged:
            found.append(NonConvergenceError(
                f"Fit stopped with status '{self.status}' after {self.n_iterations} iterations."
            ))
        return found


@dataclass(frozen=True, eq=False)
class FittedModel:
    """Result of a Dirichlet-multinomial fit.

    Instances are immutable and owned by whoever requested the fit; they can
    be shared freely across threads and shrinkage calls.
    """
    alpha: AlphaVector
    diagnostics: FitDiagnostics
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL

    @property
    def categories(self):
        return self.alpha.categories

    @property
    def converged(self) -> bool:
        return self.diagnostics.converged

    @property
    def prior_mean(self) -> np.ndarray:
        return self.alpha.prior_mean

    def parameter_table(self, level: Optional[float] = None) -> pd.DataFrame:
        """Per-category estimates with asymptotic (Wald) confidence bounds.

        Parameters
        ----------
        level : float, optional
            Two-sided confidence level. Defaults to the level the model was
            fitted with (``FitOptions.confidence_level``).

        Returns
        -------
        pd.DataFrame
            Columns ``category``, ``estimate``, ``std_error``, ``ci_low``,
            ``ci_high``; one row per category in input order.
        """
        level = self.confidence_level if level is None else float(level)
        z = norm.ppf(0.5 + level / 2.0)
        est = np.asarray(self.alpha.values, dtype=float)
        se = np.asarray(self.diagnostics.standard_errors, dtype=float)
        return pd.DataFrame(
            {
                "category": self.alpha.categories,
                "estimate": est,
                "std_error": se,
                "ci_low": est - z * se,
                "ci_high": est + z * se,
            }
        )

    def raise_for_convergence(self) -> None:
        """Raise :class:`NonConvergenceError` if the fit did not converge."""
        for condition in self.diagnostics.conditions():
            if isinstance(condition, NonConvergenceError):
                raise condition
