import numpy as np
import pytest

from dirmult_shrink import AlphaVector, FitDiagnostics, FittedModel, simulate_dm_counts


@pytest.fixture
def make_model():
    """Build a FittedModel around a fixed alpha, without fitting."""
    def _make(alpha, categories=None, confidence_level=0.95):
        av = AlphaVector(alpha, categories)
        diag = FitDiagnostics(
            log_likelihood=0.0,
            n_iterations=0,
            converged=True,
            status="converged",
            standard_errors=np.full(len(av), np.nan),
        )
        return FittedModel(alpha=av, diagnostics=diag, confidence_level=confidence_level)
    return _make


@pytest.fixture(scope="session")
def batting_like_matrix():
    return simulate_dm_counts(
        [20.0, 5.0, 0.5, 3.0, 71.5],
        n_rows=800,
        total_count_mean=300,
        total_count_cv=0.6,
        categories=["Single", "Double", "Triple", "HR", "NonHit"],
        seed=11,
    )
