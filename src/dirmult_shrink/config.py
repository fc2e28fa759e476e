from __future__ import annotations

from dataclasses import dataclass, replace

from .constants import (
    ALPHA_FLOOR,
    DEFAULT_CONFIDENCE_LEVEL,
    DEFAULT_MAX_ITERATIONS,
    DEFAULT_TOLERANCE,
    INIT_ALPHA,
    MAX_INIT_PRECISION,
    MAX_PRECISION,
)
from .errors import InvalidInputError


@dataclass(frozen=True)
class FitOptions:
    """Settings for :func:`fit_dm_model`.

    Parameters
    ----------
    tolerance : float
        Stop once every component of the scaled score
        alpha_j * dlogL/dalpha_j / n_rows is below this in absolute value.
    max_iterations : int
        Fixed-point iteration budget.
    alpha_floor : float
        Positive value substituted for non-positive or non-finite updates.
    init_alpha : float
        Per-category start when fewer than two usable rows exist.
    max_init_precision : float
        Cap on the moment-based starting sum of alpha.
    max_precision : float
        Bound on sum(alpha) during the fit. A fit that ends on the bound is
        converged when the score has no component along the bound.
    n_workers : int
        Threads used for the per-iteration row sums. 1 keeps the loop serial.
    confidence_level : float
        Level for the Wald bounds in the parameter table.
    """
    tolerance: float = DEFAULT_TOLERANCE
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    alpha_floor: float = ALPHA_FLOOR
    init_alpha: float = INIT_ALPHA
    max_init_precision: float = MAX_INIT_PRECISION
    max_precision: float = MAX_PRECISION
    n_workers: int = 1
    confidence_level: float = DEFAULT_CONFIDENCE_LEVEL

    def __post_init__(self):
        if not self.tolerance > 0:
            raise InvalidInputError(f"tolerance must be > 0, got {self.tolerance}.")
        if int(self.max_iterations) < 1:
            raise InvalidInputError(f"max_iterations must be >= 1, got {self.max_iterations}.")
        if not self.alpha_floor > 0:
            raise InvalidInputError(f"alpha_floor must be > 0, got {self.alpha_floor}.")
        if not self.init_alpha > 0:
            raise InvalidInputError(f"init_alpha must be > 0, got {self.init_alpha}.")
        if not self.max_init_precision > 0:
            raise InvalidInputError(f"max_init_precision must be > 0, got {self.max_init_precision}.")
        if not self.max_precision >= self.max_init_precision:
            raise InvalidInputError(
                f"max_precision ({self.max_precision}) must be >= max_init_precision ({self.max_init_precision})."
            )
        if int(self.n_workers) < 1:
            raise InvalidInputError(f"n_workers must be >= 1, got {self.n_workers}.")
        if not 0 < self.confidence_level < 1:
            raise InvalidInputError(f"confidence_level must be in (0, 1), got {self.confidence_level}.")

    def with_overrides(self, **kwargs) -> "FitOptions":
        """Return a copy with the non-None keyword arguments applied."""
        changes = {k: v for k, v in kwargs.items() if v is not None}
        return replace(self, **changes) if changes else self
