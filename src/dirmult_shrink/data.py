"""
Count matrix and concentration vector containers.

Classes
-------
CountMatrix
    Immutable entities x categories table of non-negative integer counts.
AlphaVector
    Immutable vector of positive Dirichlet concentration parameters.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .errors import InvalidInputError


def _default_categories(k: int) -> List[str]:
    return [f"cat_{j}" for j in range(k)]


def _frozen_array(values: np.ndarray) -> np.ndarray:
    arr = np.array(values, copy=True)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class CountMatrix:
    """Aggregated category counts, one row per entity.

    Attributes
    ----------
    counts : np.ndarray
        Integer array of shape (n_entities, n_categories). Read-only.
    categories : List[str]
        Category names, in column order.
    entity_ids : List[str]
        Row labels.

    Notes
    -----
    Rows with a total of 0 are degenerate: they carry no information about
    the concentration parameters and are excluded from the likelihood.
    """
    counts: np.ndarray
    categories: Optional[Sequence[str]] = None
    entity_ids: Optional[Sequence[str]] = None

    def __post_init__(self):
        raw = np.asarray(self.counts)
        if raw.ndim != 2:
            raise InvalidInputError(f"counts must be 2-D, got shape {raw.shape}.")

        n, k = raw.shape
        if k < 2:
            raise InvalidInputError(f"Need at least 2 categories, got {k}.")

        try:
            as_float = raw.astype(float)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError("counts must be numeric.") from exc

        if not np.all(np.isfinite(as_float)):
            raise InvalidInputError("counts must be finite.")
        if np.any(as_float < 0):
            rows = np.unique(np.where(as_float < 0)[0])
            raise InvalidInputError(f"counts must be non-negative (rows {rows[:10].tolist()}).")
        if np.any(as_float != np.round(as_float)):
            raise InvalidInputError("counts must be whole numbers.")

        categories = list(self.categories) if self.categories is not None else _default_categories(k)
        if len(categories) != k:
            raise InvalidInputError(f"Got {len(categories)} category names for {k} columns.")

        entity_ids = [str(e) for e in self.entity_ids] if self.entity_ids is not None else [str(i) for i in range(n)]
        if len(entity_ids) != n:
            raise InvalidInputError(f"Got {len(entity_ids)} entity ids for {n} rows.")

        object.__setattr__(self, "counts", _frozen_array(as_float.astype(np.int64)))
        object.__setattr__(self, "categories", [str(c) for c in categories])
        object.__setattr__(self, "entity_ids", entity_ids)

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        categories: Optional[Sequence[str]] = None,
        id_col: Optional[str] = None,
    ) -> "CountMatrix":
        """Build a CountMatrix from a wide table of counts.

        Parameters
        ----------
        df : pd.DataFrame
            One row per entity. If ``id_col`` is given, that column holds the
            entity ids; otherwise the index is used.
        categories : sequence of str, optional
            Count columns, in order. Defaults to every column except ``id_col``.
        id_col : str, optional
            Column with entity identifiers.
        """
        if id_col is not None:
            if id_col not in df.columns:
                raise InvalidInputError(f"Missing id column '{id_col}'.")
            ids = df[id_col].astype(str).tolist()
        else:
            ids = df.index.astype(str).tolist()

        if categories is None:
            categories = [c for c in df.columns if c != id_col]
        missing = [c for c in categories if c not in df.columns]
        if missing:
            raise InvalidInputError(f"Missing category columns: {missing}")

        try:
            values = df[list(categories)].apply(pd.to_numeric, errors="raise").to_numpy(dtype=float)
        except (TypeError, ValueError) as exc:
            raise InvalidInputError(f"Non-numeric values in count columns: {exc}") from exc

        return cls(values, categories=list(categories), entity_ids=ids)

    @property
    def n_entities(self) -> int:
        return self.counts.shape[0]

    @property
    def n_categories(self) -> int:
        return self.counts.shape[1]

    @property
    def totals(self) -> np.ndarray:
        return self.counts.sum(axis=1)

    @property
    def usable_mask(self) -> np.ndarray:
        """Rows with a positive total."""
        return self.totals > 0

    @property
    def n_degenerate(self) -> int:
        return int(np.sum(~self.usable_mask))

    def proportions(self) -> np.ndarray:
        """Raw row proportions x_ij / n_i for usable rows."""
        usable = self.counts[self.usable_mask].astype(float)
        return usable / usable.sum(axis=1, keepdims=True)

    def to_frame(self) -> pd.DataFrame:
        out = pd.DataFrame(self.counts, index=self.entity_ids, columns=self.categories)
        out.index.name = "entity_id"
        return out


@dataclass(frozen=True, eq=False)
class AlphaVector:
    """Dirichlet concentration parameters, one per category."""
    values: np.ndarray
    categories: Optional[Sequence[str]] = None

    def __post_init__(self):
        vals = np.asarray(self.values, dtype=float)
        if vals.ndim != 1 or vals.size < 2:
            raise InvalidInputError(f"alpha must be a vector of length >= 2, got shape {vals.shape}.")
        if not np.all(np.isfinite(vals)) or np.any(vals <= 0):
            raise InvalidInputError(f"alpha components must be positive and finite, got {vals}.")

        categories = list(self.categories) if self.categories is not None else _default_categories(vals.size)
        if len(categories) != vals.size:
            raise InvalidInputError(f"Got {len(categories)} category names for {vals.size} alpha values.")

        object.__setattr__(self, "values", _frozen_array(vals))
        object.__setattr__(self, "categories", [str(c) for c in categories])

    def __len__(self) -> int:
        return self.values.size

    @property
    def total(self) -> float:
        return float(self.values.sum())

    @property
    def prior_mean(self) -> np.ndarray:
        return self.values / self.values.sum()

    def to_series(self) -> pd.Series:
        return pd.Series(self.values, index=self.categories, name="alpha")
