"""
Model-fit diagnostics.

A single Dirichlet ties every category's variance to one precision, sum(alpha).
When categories are dispersed differently across entities (for batting data,
home runs vary more between players than the model allows, doubles less) the
fitted model under- or over-states those variances. These functions report
that misfit per category; they do not correct it.

Functions
---------
dispersion_table
    Observed vs. model-implied variance of row proportions per category.
"""
from __future__ import annotations

import numpy as np
import pandas as pd

from .data import CountMatrix
from .errors import InvalidInputError
from .model import FittedModel


def dispersion_table(matrix: CountMatrix, model: FittedModel) -> pd.DataFrame:
    """Compare observed and fitted variances of the row proportions.

    For entity i with total n_i, the Dirichlet-multinomial gives

        Var(x_ij / n_i) = p_j (1 - p_j) / n_i * (n_i + A) / (1 + A)

    with p_j = alpha_j / A and A = sum(alpha). The expected variance reported
    here is that quantity averaged over usable rows; the multinomial column is
    the same average without the (n_i + A) / (1 + A) inflation.

    Parameters
    ----------
    matrix : CountMatrix
        The counts the model was fitted to (or comparable counts).
    model : FittedModel
        Fitted model.

    Returns
    -------
    pd.DataFrame
        Index = categories, columns:
        - observed_mean, expected_mean
        - observed_var: sample variance of x_ij / n_i (ddof=1)
        - expected_var: model-implied variance
        - multinomial_var: variance with no between-entity spread
        - var_ratio: observed_var / expected_var (> 1: model too tight)

    Examples
    --------
    >>> tab = dispersion_table(matrix, model)
    >>> tab.loc["HR", "var_ratio"]
    """
    if list(matrix.categories) != list(model.categories):
        raise InvalidInputError("Matrix and model categories differ.")

    props = matrix.proportions()
    if props.shape[0] < 2:
        raise InvalidInputError("Need at least two rows with a positive total.")

    totals = matrix.totals[matrix.usable_mask].astype(float)
    p = model.prior_mean
    a_sum = model.alpha.total

    base = p * (1.0 - p)
    multinomial_var = base * np.mean(1.0 / totals)
    inflation = (totals + a_sum) / (totals * (1.0 + a_sum))
    expected_var = base * np.mean(inflation)
    observed_var = props.var(axis=0, ddof=1)

    out = pd.DataFrame(
        {
            "observed_mean": props.mean(axis=0),
            "expected_mean": p,
            "observed_var": observed_var,
            "expected_var": expected_var,
            "multinomial_var": multinomial_var,
            "var_ratio": observed_var / np.where(expected_var > 0, expected_var, np.nan),
        },
        index=pd.Index(model.categories, name="category"),
    )
    return out
