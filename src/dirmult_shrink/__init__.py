"""
dirmult-shrink: Empirical-Bayes shrinkage of multi-category proportions.

This package fits a Dirichlet-multinomial prior to a matrix of per-entity
category counts (e.g. Single / Double / Triple / HR / NonHit per batter) by
maximum likelihood, then shrinks each entity's raw proportions toward the
population with the posterior mean.

Modules
-------
special
    Digamma, trigamma and log-gamma on the positive axis.
data
    CountMatrix and AlphaVector containers with input validation.
config
    FitOptions settings dataclass.
dirichlet_multinomial
    Minka fixed-point maximum likelihood, information matrix, simulation.
model
    FittedModel and FitDiagnostics results.
shrinkage
    Posterior mean proportions, weighted scores, credible intervals.
beta_binomial
    Direct two-parameter beta-binomial fit (k = 2 reference).
diagnostics
    Observed vs. model-implied variance per category.
io
    Count table loading and result writing.

Example
-------
>>> import dirmult_shrink as dms
>>> matrix = dms.load_count_table("data/batting_counts.csv", id_col="playerID")
>>> model = dms.fit_dm_model(matrix)
>>> model.parameter_table()
>>> table = dms.shrink_matrix(matrix, model)
>>> slugging = dms.weighted_scores(table, dms.SLUGGING_WEIGHTS)
"""

__version__ = "0.1.0"

# beta_binomial
from .beta_binomial import (
    BetaBinomialFit,
    fit_beta_binomial,
)

# config
from .config import FitOptions

# constants
from .constants import (
    BATTING_CATEGORIES,
    SLUGGING_WEIGHTS,
)

# data
from .data import (
    AlphaVector,
    CountMatrix,
)

# diagnostics
from .diagnostics import dispersion_table

# dirichlet_multinomial
from .dirichlet_multinomial import (
    DirichletMultinomialEstimator,
    dm_log_likelihood,
    fit_dm_model,
    moment_initial_alpha,
    observed_information,
    simulate_dm_counts,
)

# errors
from .errors import (
    DegenerateRowError,
    DirMultError,
    DomainError,
    FitWarning,
    InvalidInputError,
    NonConvergenceError,
    NumericalInstabilityError,
)

# io
from .io import (
    Paths,
    load_count_table,
    write_tables,
)

# model
from .model import (
    FitDiagnostics,
    FittedModel,
)

# shrinkage
from .shrinkage import (
    ShrinkageEstimate,
    credible_intervals,
    shrink,
    shrink_matrix,
    weighted_score,
    weighted_scores,
)

# special
from .special import (
    digamma,
    log_gamma,
    trigamma,
)

__all__ = [
    # beta_binomial
    "BetaBinomialFit",
    "fit_beta_binomial",
    # config
    "FitOptions",
    # constants
    "BATTING_CATEGORIES",
    "SLUGGING_WEIGHTS",
    # data
    "AlphaVector",
    "CountMatrix",
    # diagnostics
    "dispersion_table",
    # dirichlet_multinomial
    "DirichletMultinomialEstimator",
    "dm_log_likelihood",
    "fit_dm_model",
    "moment_initial_alpha",
    "observed_information",
    "simulate_dm_counts",
    # errors
    "DegenerateRowError",
    "DirMultError",
    "DomainError",
    "FitWarning",
    "InvalidInputError",
    "NonConvergenceError",
    "NumericalInstabilityError",
    # io
    "Paths",
    "load_count_table",
    "write_tables",
    # model
    "FitDiagnostics",
    "FittedModel",
    # shrinkage
    "ShrinkageEstimate",
    "credible_intervals",
    "shrink",
    "shrink_matrix",
    "weighted_score",
    "weighted_scores",
    # special
    "digamma",
    "log_gamma",
    "trigamma",
]
