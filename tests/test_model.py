"""Tests for the EM solver."""

import numpy as np
import pytest
from scipy.sparse import csc_matrix

from decontx import DecontXModel, InvalidInput, InvalidParameter, LogLikelihoodTracker
from decontx.model import add_log_likelihood
from decontx.utils import check_counts


def _true_contamination(sim):
    observed = sim['observedCounts'].sum(axis=0)
    return (observed - sim['nativeCounts'].sum(axis=0)) / observed


def test_contamination_in_unit_interval(fitted):
    _, result = fitted
    assert np.all(result['contamination'] >= 0)
    assert np.all(result['contamination'] <= 1)


def test_theta_strictly_inside_unit_interval(fitted):
    _, result = fitted
    assert np.all(result['theta'] > 0)
    assert np.all(result['theta'] < 1)


def test_small_delta_keeps_theta_inside_unit_interval():
    rng = np.random.default_rng(3)
    counts = check_counts(rng.poisson(5, size=(20, 400)))
    z = np.repeat([1, 2], 200)
    model = DecontXModel(delta=1e-3, random_state=1)

    theta, _, _ = model.initialize(counts, z, 2)
    assert np.all((theta > 0) & (theta < 1))

    result = model.fit_transform(counts, z)
    assert np.all((result["theta"] > 0) & (result["theta"] < 1))
    assert np.all(np.isfinite(result["log_likelihood"]))


def test_phi_eta_columns_sum_to_one_every_iteration(simulated):
    model = DecontXModel(random_state=7)
    counts = check_counts(simulated['observedCounts'])
    z = np.asarray(simulated['z'], dtype=np.int64)
    theta, phi, eta = model.initialize(counts, z, 3)
    np.testing.assert_allclose(phi.sum(axis=0), 1.0, atol=1e-6)
    np.testing.assert_allclose(eta.sum(axis=0), 1.0, atol=1e-6)

    for _ in range(5):
        step = model.em_step(counts, theta, phi, eta, z)
        theta, phi, eta = step['theta'], step['phi'], step['eta']
        np.testing.assert_allclose(phi.sum(axis=0), 1.0, atol=1e-6)
        np.testing.assert_allclose(eta.sum(axis=0), 1.0, atol=1e-6)
        assert np.all((theta > 0) & (theta < 1))
        assert np.all(step['delta'] > 0)


def test_decontaminated_counts_bounded_by_observed(simulated, fitted):
    _, result = fitted
    native = result['decontaminated_counts'].toarray()
    observed = simulated['observedCounts']
    assert native.shape == observed.shape
    assert np.all(native >= 0)
    assert np.all(native <= observed + 1e-9)

    col_sums = native.sum(axis=0)
    expected = (1 - result['contamination']) * observed.sum(axis=0)
    np.testing.assert_allclose(col_sums, expected, rtol=1e-9)


def test_recovers_simulated_contamination(simulated, fitted):
    _, result = fitted
    r = np.corrcoef(result['contamination'], _true_contamination(simulated))[0, 1]
    assert r > 0.9


def test_fit_is_deterministic(simulated, fitted):
    _, first = fitted
    second = DecontXModel(random_state=12345).fit_transform(
        simulated['observedCounts'], simulated['z']
    )
    for key in ('theta', 'phi', 'eta', 'contamination', 'delta'):
        np.testing.assert_array_equal(first[key], second[key])
    assert first['log_likelihood'] == second['log_likelihood']


def test_extra_iteration_at_fixed_point_is_small(simulated, fitted):
    model, result = fitted
    assert result['converged']
    counts = check_counts(simulated['observedCounts'])
    step = model.em_step(counts, result['theta'], result['phi'], result['eta'], result['z'])
    assert np.max(np.abs(step['theta'] - result['theta'])) < model.convergence_threshold


def test_log_likelihood_trace(fitted):
    _, result = fitted
    trace = result['log_likelihood']
    n_iter = result['iteration']
    expected = 1 + n_iter // 10 + (1 if n_iter % 10 else 0)
    assert len(trace) == expected
    assert np.all(np.isfinite(trace))
    assert trace[-1] > trace[0]


def test_fitted_attributes(fitted):
    model, result = fitted
    assert model.n_iter_ == result['iteration']
    assert model.theta_ is result['theta']
    assert model.log_likelihood_ == result['log_likelihood']
    assert result['phi'].shape == (100, 3)
    assert result['eta'].shape == (100, 3)


def test_max_iter_caps_iterations(small_counts):
    counts, z = small_counts
    result = DecontXModel(max_iter=1, iter_loglik=1).fit_transform(counts, z)
    assert result['iteration'] == 1
    assert len(result['log_likelihood']) == 2


def test_labels_are_relabelled_densely(small_counts):
    counts, z = small_counts
    result = DecontXModel().fit_transform(counts, z)
    assert set(result['z']) == {1, 2}
    np.testing.assert_array_equal(result['labels'][result['z'] - 1], z)


def test_accepts_sparse_input(small_counts):
    counts, z = small_counts
    dense = DecontXModel().fit_transform(counts, z)
    sparse = DecontXModel().fit_transform(csc_matrix(counts), z)
    np.testing.assert_array_equal(dense['contamination'], sparse['contamination'])


def test_empty_cell_gets_zero_contamination(small_counts):
    counts, z = small_counts
    counts = counts.copy()
    counts[:, 0] = 0
    result = DecontXModel().fit_transform(counts, z)
    assert result['contamination'][0] == 0
    assert np.all(np.isfinite(result['theta']))
    assert np.all(np.isfinite(result['delta']))


def test_single_cluster_raises_before_em(small_counts):
    counts, _ = small_counts
    model = DecontXModel()
    with pytest.raises(InvalidParameter, match="only one cluster"):
        model.fit_transform(counts, np.ones(counts.shape[1]))
    assert model.n_iter_ == 0
    assert model.log_likelihood_ == []


def test_label_length_mismatch(small_counts):
    counts, z = small_counts
    with pytest.raises(InvalidParameter):
        DecontXModel().fit_transform(counts, z[:-1])


def test_missing_values_rejected(small_counts):
    counts, z = small_counts
    counts = counts.astype(float)
    counts[3, 3] = np.nan
    with pytest.raises(InvalidInput, match="Missing value"):
        DecontXModel().fit_transform(counts, z)


def test_one_dimensional_counts_rejected():
    with pytest.raises(InvalidInput, match="must be 2-dimensional, got 1 dimension"):
        DecontXModel().fit_transform(np.arange(10), np.arange(10) % 2)


@pytest.mark.parametrize("delta", [0, -1.0, [10, 10], "10"])
def test_invalid_delta(delta):
    with pytest.raises(InvalidParameter):
        DecontXModel(delta=delta)


def test_invalid_hyperparameters():
    with pytest.raises(InvalidParameter):
        DecontXModel(max_iter=0)
    with pytest.raises(InvalidParameter):
        DecontXModel(convergence_threshold=-0.1)
    with pytest.raises(InvalidParameter):
        DecontXModel(iter_loglik=2.5)


def test_errors_are_value_errors():
    assert issubclass(InvalidInput, ValueError)
    assert issubclass(InvalidParameter, ValueError)


def test_tracker_cadence():
    tracker = LogLikelihoodTracker(iter_loglik=5)
    due = [i for i in range(13) if tracker.is_due(i)]
    assert due == [0, 5, 10]
    assert tracker.is_due(7, converged=True)


def test_add_log_likelihood_pads_shorter_trace():
    np.testing.assert_array_equal(add_log_likelihood([1, 2, 3], [10]), [11, 12, 13])
    np.testing.assert_array_equal(add_log_likelihood([1], [10, 20]), [11, 21])
    np.testing.assert_array_equal(add_log_likelihood([], [4, 5]), [4, 5])
