"""
Posterior shrinkage of per-entity category proportions.

Given a fitted concentration vector alpha, the posterior for an entity with
counts x (total n) is Dirichlet(x + alpha), whose mean

    estimate_j = (x_j + alpha_j) / (n + sum(alpha))

pulls the raw proportion x_j / n toward the prior mean alpha_j / sum(alpha).
Entities with few observations are pulled the most.

Classes
-------
ShrinkageEstimate
    Shrunken proportion vector for one entity.

Functions
---------
shrink
    Posterior mean proportions for one row of counts.
shrink_matrix
    Posterior mean proportions for every entity of a CountMatrix.
weighted_score
    Dot product of an estimate with a weight vector (e.g. slugging).
weighted_scores
    Weighted score for every row of a shrinkage table.
credible_intervals
    Marginal posterior Beta intervals per category.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats

from .data import CountMatrix
from .errors import InvalidInputError
from .model import FittedModel

Weights = Union[Sequence[float], Mapping[str, float], np.ndarray]


@dataclass(frozen=True, eq=False)
class ShrinkageEstimate:
    """Shrunken proportions for one entity; components in (0, 1), summing to 1."""
    values: np.ndarray
    categories: Sequence[str]

    def __len__(self) -> int:
        return len(self.values)

    def to_series(self) -> pd.Series:
        return pd.Series(self.values, index=list(self.categories))


def _check_row(row_counts, k: int) -> np.ndarray:
    x = np.asarray(row_counts, dtype=float)
    if x.ndim != 1 or x.size != k:
        raise InvalidInputError(f"Expected {k} counts, got shape {x.shape}.")
    if not np.all(np.isfinite(x)) or np.any(x < 0):
        raise InvalidInputError(f"Counts must be finite and non-negative, got {x}.")
    if np.any(x != np.round(x)):
        raise InvalidInputError(f"Counts must be whole numbers, got {x}.")
    return x


def _weight_vector(weights: Weights, categories: Sequence[str]) -> np.ndarray:
    if isinstance(weights, Mapping):
        missing = [c for c in categories if c not in weights]
        if missing:
            raise InvalidInputError(f"No weight given for categories: {missing}")
        return np.array([float(weights[c]) for c in categories])

    w = np.asarray(weights, dtype=float)
    if w.ndim != 1 or w.size != len(categories):
        raise InvalidInputError(f"Expected {len(categories)} weights, got shape {w.shape}.")
    return w


def shrink(row_counts: Sequence[float], model: FittedModel) -> ShrinkageEstimate:
    """Posterior mean proportions for one entity.

    Parameters
    ----------
    row_counts : sequence of float
        The entity's k non-negative counts, in the model's category order.
    model : FittedModel
        Fitted concentration parameters.

    Returns
    -------
    ShrinkageEstimate
        (x_j + alpha_j) / (n + sum(alpha)). With n = 0 this is exactly the
        prior mean alpha_j / sum(alpha).

    Examples
    --------
    >>> est = shrink([3, 1, 0, 0, 6], model)
    >>> est.values.sum()
    1.0
    """
    alpha = model.alpha.values
    x = _check_row(row_counts, alpha.size)
    posterior = x + alpha
    return ShrinkageEstimate(values=posterior / posterior.sum(), categories=model.categories)


def shrink_matrix(matrix: CountMatrix, model: FittedModel) -> pd.DataFrame:
    """Shrunken proportions for every entity of ``matrix``.

    Returns
    -------
    pd.DataFrame
        Index = entity ids, columns = categories; each row sums to 1.
    """
    if list(matrix.categories) != list(model.categories):
        raise InvalidInputError(
            f"Matrix categories {matrix.categories} do not match model categories {model.categories}."
        )
    posterior = matrix.counts.astype(float) + model.alpha.values[np.newaxis, :]
    est = posterior / posterior.sum(axis=1, keepdims=True)
    out = pd.DataFrame(est, index=matrix.entity_ids, columns=matrix.categories)
    out.index.name = "entity_id"
    return out


def weighted_score(estimate: Union[ShrinkageEstimate, Sequence[float]], weights: Weights) -> float:
    """Weighted sum of a proportion vector.

    With weights (1, 2, 3, 4, 0) over (Single, Double, Triple, HR, NonHit) this
    is a slugging-style score. ``weights`` may be a sequence in category order
    or a mapping from category name to weight.
    """
    if isinstance(estimate, ShrinkageEstimate):
        values = np.asarray(estimate.values, dtype=float)
        categories = list(estimate.categories)
    else:
        values = np.asarray(estimate, dtype=float)
        if isinstance(weights, Mapping):
            raise InvalidInputError("Mapping weights need a ShrinkageEstimate with category names.")
        categories = [str(j) for j in range(values.size)]
    w = _weight_vector(weights, categories)
    return float(values @ w)


def weighted_scores(table: pd.DataFrame, weights: Weights, name: str = "score") -> pd.Series:
    """Weighted score for each row of a :func:`shrink_matrix` table."""
    w = _weight_vector(weights, [str(c) for c in table.columns])
    return pd.Series(table.to_numpy(dtype=float) @ w, index=table.index, name=name)


def credible_intervals(
    row_counts: Sequence[float],
    model: FittedModel,
    level: Optional[float] = None,
) -> pd.DataFrame:
    """Equal-tailed posterior intervals for each category proportion.

    The marginal posterior of p_j under Dirichlet(x + alpha) is
    Beta(x_j + alpha_j, n + sum(alpha) - x_j - alpha_j).
    ``level`` defaults to the model's confidence level.

    Returns
    -------
    pd.DataFrame
        Columns ``category``, ``estimate``, ``lower``, ``upper``.
    """
    level = model.confidence_level if level is None else float(level)
    if not 0 < level < 1:
        raise InvalidInputError(f"level must be in (0, 1), got {level}.")

    alpha = model.alpha.values
    x = _check_row(row_counts, alpha.size)
    a = x + alpha
    b = a.sum() - a
    tail = (1.0 - level) / 2.0
    return pd.DataFrame(
        {
            "category": list(model.categories),
            "estimate": a / a.sum(),
            "lower": stats.beta.ppf(tail, a, b),
            "upper": stats.beta.ppf(1.0 - tail, a, b),
        }
    )
