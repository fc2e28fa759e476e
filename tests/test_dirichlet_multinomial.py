"""Fixed-point maximum likelihood for the Dirichlet-multinomial."""
import threading
import time
import warnings

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose, assert_array_equal
from scipy.special import gammaln

from dirmult_shrink import (
    CountMatrix,
    DegenerateRowError,
    DirichletMultinomialEstimator,
    FitOptions,
    InvalidInputError,
    NonConvergenceError,
    dm_log_likelihood,
    fit_beta_binomial,
    fit_dm_model,
    moment_initial_alpha,
    observed_information,
    simulate_dm_counts,
)

TRUE_ALPHA = np.array([2.0, 3.0, 5.0])


def _reference_log_likelihood(counts, alpha):
    counts = np.asarray(counts, dtype=float)
    n = counts.sum(axis=1)
    a = alpha.sum()
    return float(np.sum(
        gammaln(a) - gammaln(n + a) + np.sum(gammaln(counts + alpha) - gammaln(alpha), axis=1)
    ))


def test_log_likelihood_matches_gammaln_reference():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=50, total_count_mean=25, seed=3)
    alpha = np.array([1.5, 2.5, 4.0])
    assert dm_log_likelihood(sim.counts, alpha) == pytest.approx(
        _reference_log_likelihood(sim.counts, alpha), rel=1e-9
    )


def test_log_likelihood_ignores_zero_rows():
    counts = np.array([[3, 1, 2], [0, 0, 0], [5, 5, 0]])
    alpha = np.array([1.0, 2.0, 3.0])
    assert dm_log_likelihood(counts, alpha) == pytest.approx(
        dm_log_likelihood(counts[[0, 2]], alpha), rel=1e-14
    )


def test_proportional_rows_converge_to_shared_ratios():
    matrix = CountMatrix([[50, 30, 20], [5, 3, 2], [500, 300, 200]])
    with warnings.catch_warnings():
        warnings.simplefilter("error", NonConvergenceError)
        model = fit_dm_model(matrix)

    assert model.converged
    assert model.diagnostics.status == "converged"
    assert model.diagnostics.n_iterations <= 1000
    ratios = model.alpha.values / model.alpha.total
    assert_allclose(ratios, [0.5, 0.3, 0.2], rtol=0.02)
    assert np.all(np.isfinite(model.alpha.values))
    # no excess dispersion: the likelihood keeps rising with the precision
    assert model.diagnostics.at_precision_bound
    assert model.alpha.total == pytest.approx(FitOptions().max_precision, rel=1e-6)


def test_never_observed_category_stays_small_and_positive():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=500, total_count_mean=20, seed=5)
    counts = np.column_stack([sim.counts, np.zeros(sim.n_entities, dtype=int)])
    model = fit_dm_model(CountMatrix(counts, categories=["a", "b", "c", "never"]))

    assert model.converged
    never = model.alpha.values[3]
    assert 0 < never < 1e-3
    assert np.isfinite(never)
    assert model.diagnostics.n_floor_clamps > 0
    assert np.isnan(model.diagnostics.standard_errors[3])
    assert np.all(np.isfinite(model.diagnostics.standard_errors[:3]))


def test_recovers_true_alpha_as_rows_grow():
    errors = []
    for n_rows, seed in [(10, 101), (100, 102), (10_000, 103)]:
        sim = simulate_dm_counts(TRUE_ALPHA, n_rows=n_rows, total_count_mean=20, seed=seed)
        model = fit_dm_model(sim)
        assert np.all(model.alpha.values > 0)
        if n_rows >= 100:
            assert model.converged
        errors.append(np.max(np.abs(model.alpha.values - TRUE_ALPHA) / TRUE_ALPHA))

    assert errors[-1] < 0.05
    assert errors[-1] <= max(errors[:-1])


@pytest.fixture(scope="module")
def hit_out_counts():
    return simulate_dm_counts([3.0, 7.0], n_rows=2000, total_count_mean=30, total_count_cv=0.5, seed=7)


@pytest.mark.parametrize("alpha_init", [None, [30.0, 70.0], [0.1, 0.1]])
def test_two_categories_match_beta_binomial(hit_out_counts, alpha_init):
    model = fit_dm_model(hit_out_counts, alpha_init=alpha_init)
    bb = fit_beta_binomial(hit_out_counts.counts[:, 0], hit_out_counts.totals)

    assert model.converged
    assert model.diagnostics.score_residual < 1e-6
    assert_allclose(model.alpha.values, [bb.alpha, bb.beta], rtol=1e-4)
    assert model.diagnostics.log_likelihood == pytest.approx(bb.log_likelihood, abs=1e-6)


@pytest.fixture(scope="module")
def large_sample():
    return simulate_dm_counts(TRUE_ALPHA, n_rows=10_000, total_count_mean=20, seed=103)


@pytest.mark.parametrize("alpha_init", [None, [0.1, 0.1, 0.1], [40.0, 40.0, 40.0]])
def test_converged_fit_is_at_the_optimum(large_sample, alpha_init):
    reference = fit_dm_model(large_sample, tolerance=1e-11)
    model = fit_dm_model(large_sample, alpha_init=alpha_init)

    assert reference.converged
    assert model.converged
    assert model.diagnostics.n_iterations > 0
    assert_allclose(model.alpha.values, reference.alpha.values, rtol=1e-4)
    assert_allclose(model.alpha.values, TRUE_ALPHA, rtol=0.05)
    assert not model.diagnostics.at_precision_bound


def test_log_likelihood_never_decreases():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=300, total_count_mean=40, seed=9)
    model = fit_dm_model(sim, alpha_init=[20.0, 20.0, 20.0], tolerance=1e-10)
    trace = np.array(model.diagnostics.log_likelihood_trace)
    assert trace.size == model.diagnostics.n_iterations + 1
    assert np.all(np.diff(trace) >= -1e-9 * np.abs(trace[:-1]))


def test_degenerate_rows_are_skipped_and_counted():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=200, total_count_mean=20, seed=13)
    with_zeros = CountMatrix(np.vstack([sim.counts, np.zeros((2, 3), dtype=int)]))

    base = fit_dm_model(sim)
    model = fit_dm_model(with_zeros)

    assert model.diagnostics.n_skipped_rows == 2
    assert_allclose(model.alpha.values, base.alpha.values, rtol=1e-12)
    assert any(isinstance(c, DegenerateRowError) for c in model.diagnostics.conditions())


def test_all_rows_degenerate_is_invalid():
    with pytest.raises(InvalidInputError):
        fit_dm_model(CountMatrix([[0, 0, 0], [0, 0, 0]]))


def test_structural_errors_raise_before_fitting():
    with pytest.raises(InvalidInputError):
        fit_dm_model([[1], [2]])
    with pytest.raises(InvalidInputError):
        fit_dm_model([[1, -2], [3, 4]])


def test_iteration_budget_exhausted_returns_flagged_result():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=300, total_count_mean=20, seed=17)
    with pytest.warns(NonConvergenceError):
        model = fit_dm_model(sim, max_iterations=2, tolerance=1e-15, alpha_init=[50.0, 50.0, 50.0])

    assert not model.converged
    assert model.diagnostics.status == "max_iterations"
    assert model.diagnostics.n_iterations == 2
    assert np.all(np.isfinite(model.alpha.values)) and np.all(model.alpha.values > 0)
    with pytest.raises(NonConvergenceError):
        model.raise_for_convergence()


def test_cancel_event_returns_starting_point():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=100, total_count_mean=20, seed=19)
    event = threading.Event()
    event.set()
    model = fit_dm_model(sim, cancel=event)

    assert model.diagnostics.status == "cancelled"
    assert not model.converged
    assert model.diagnostics.n_iterations == 0
    assert_allclose(model.alpha.values, moment_initial_alpha(sim.counts))


def test_expired_deadline_cancels():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=100, total_count_mean=20, seed=19)
    model = fit_dm_model(sim, deadline=time.monotonic() - 1.0)
    assert model.diagnostics.status == "cancelled"


def test_worker_threads_reproducible():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=1000, total_count_mean=20, seed=23)
    serial = fit_dm_model(sim, tolerance=1e-10)
    threaded_a = DirichletMultinomialEstimator(n_workers=4, tolerance=1e-10).fit(sim)
    threaded_b = DirichletMultinomialEstimator(FitOptions(n_workers=4, tolerance=1e-10)).fit(sim)

    assert_array_equal(threaded_a.alpha.values, threaded_b.alpha.values)
    assert_allclose(threaded_a.alpha.values, serial.alpha.values, rtol=1e-4)


def test_parameter_table_schema():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=2000, total_count_mean=20, seed=29)
    model = fit_dm_model(sim, tolerance=1e-8)
    table = model.parameter_table()

    assert list(table.columns) == ["category", "estimate", "std_error", "ci_low", "ci_high"]
    assert table["category"].tolist() == sim.categories
    assert np.all(table["std_error"] > 0)
    assert np.all(table["ci_low"] < table["estimate"])
    assert np.all(table["estimate"] < table["ci_high"])
    wider = model.parameter_table(level=0.99)
    assert np.all(wider["ci_high"] > table["ci_high"])


def test_parameter_table_uses_fitted_confidence_level():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=500, total_count_mean=20, seed=37)
    model = fit_dm_model(sim, options=FitOptions(confidence_level=0.8))

    assert model.confidence_level == 0.8
    pd.testing.assert_frame_equal(model.parameter_table(), model.parameter_table(level=0.8))
    narrow = model.parameter_table()
    default = model.parameter_table(level=0.95)
    assert np.all(narrow["ci_high"] < default["ci_high"])


def test_observed_information_matches_finite_differences():
    sim = simulate_dm_counts(TRUE_ALPHA, n_rows=200, total_count_mean=20, seed=31)
    alpha = np.array([2.2, 2.9, 5.3])
    info = observed_information(sim.counts, alpha)

    h = 1e-3
    k = alpha.size
    numeric = np.zeros((k, k))
    for j in range(k):
        for l in range(k):
            e_j = np.eye(k)[j] * h
            e_l = np.eye(k)[l] * h
            numeric[j, l] = -(
                dm_log_likelihood(sim.counts, alpha + e_j + e_l)
                - dm_log_likelihood(sim.counts, alpha + e_j - e_l)
                - dm_log_likelihood(sim.counts, alpha - e_j + e_l)
                + dm_log_likelihood(sim.counts, alpha - e_j - e_l)
            ) / (4 * h * h)

    assert_allclose(info, numeric, rtol=1e-3)


def test_moment_initial_alpha_edge_cases():
    assert_array_equal(moment_initial_alpha([[3, 4, 5]], init_alpha=1.0), [1.0, 1.0, 1.0])

    proportional = np.array([[50, 30, 20], [5, 3, 2], [500, 300, 200]])
    start = moment_initial_alpha(proportional, max_precision=1e4)
    assert start.sum() == pytest.approx(1e4)
    assert_allclose(start / start.sum(), [0.5, 0.3, 0.2])


def test_invalid_options():
    with pytest.raises(InvalidInputError):
        FitOptions(tolerance=0)
    with pytest.raises(InvalidInputError):
        FitOptions(n_workers=0)
    with pytest.raises(InvalidInputError):
        FitOptions(confidence_level=1.5)
    with pytest.raises(InvalidInputError):
        FitOptions(max_precision=100.0, max_init_precision=1e4)


def test_single_row_ends_on_precision_bound():
    model = fit_dm_model(CountMatrix([[30, 10, 60]]), options=FitOptions(max_precision=1e5))

    assert model.converged
    assert model.diagnostics.at_precision_bound
    assert model.alpha.total == pytest.approx(1e5, rel=1e-6)
    assert_allclose(model.prior_mean, [0.3, 0.1, 0.6], rtol=1e-3)


def test_simulate_dm_counts_shapes():
    sim = simulate_dm_counts([1.0, 1.0], n_rows=30, total_count_mean=12, seed=1)
    assert sim.counts.shape == (30, 2)
    assert_array_equal(sim.totals, np.full(30, 12))
    assert sim.entity_ids[0] == "entity_0"
