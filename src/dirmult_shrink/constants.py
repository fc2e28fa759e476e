"""
Constants for Dirichlet-multinomial fitting and shrinkage.

Contains the default numerical settings used by the fitting engine and the
batting-outcome categories used in the worked examples.
"""

# Fixed-point iteration defaults
DEFAULT_TOLERANCE = 1e-6
DEFAULT_MAX_ITERATIONS = 1000

# Positive floor applied when an alpha update is non-positive or non-finite
ALPHA_FLOOR = 1e-6

# Starting value per category when moments cannot be computed (< 2 usable rows)
INIT_ALPHA = 1.0

# Cap on the moment-based precision (sum of alpha) when rows show no excess
# dispersion over multinomial sampling
MAX_INIT_PRECISION = 1e4

# Upper bound on sum(alpha) during the fit. Rows with no excess dispersion push
# the likelihood maximum to infinite precision; the fit stops on this bound
MAX_PRECISION = 1e6

# Recurrence threshold for the asymptotic series in special.py
ASYMPTOTIC_THRESHOLD = 10.0

DEFAULT_CONFIDENCE_LEVEL = 0.95

# Batting outcome categories (already aggregated per player)
BATTING_CATEGORIES = ["Single", "Double", "Triple", "HR", "NonHit"]

# Total bases per outcome, gives slugging percentage as a weighted score
SLUGGING_WEIGHTS = {
    "Single": 1.0,
    "Double": 2.0,
    "Triple": 3.0,
    "HR": 4.0,
    "NonHit": 0.0,
}
