"""Tests for the contamination simulator."""

import numpy as np
import pytest

from decontx import InvalidParameter, simulate_contamination


def test_simulation_shapes(simulated):
    assert simulated['observedCounts'].shape == (100, 300)
    assert simulated['nativeCounts'].shape == (100, 300)
    assert simulated['phi'].shape == (100, 3)
    assert simulated['eta'].shape == (100, 3)
    assert len(simulated['z']) == 300
    assert simulated['geneNames'][0] == "Gene_1"
    assert simulated['cellNames'][-1] == "Cell_300"


def test_observed_is_native_plus_contamination(simulated):
    np.testing.assert_array_equal(
        simulated['observedCounts'],
        simulated['nativeCounts'] + simulated['contaminationCounts'],
    )
    np.testing.assert_array_equal(simulated['observedCounts'].sum(axis=0), simulated['NByC'])
    assert simulated['NByC'].min() >= 500
    assert simulated['NByC'].max() <= 1000


def test_profiles_are_distributions(simulated):
    np.testing.assert_allclose(simulated['phi'].sum(axis=0), 1.0)
    np.testing.assert_allclose(simulated['eta'].sum(axis=0), 1.0)
    assert set(np.unique(simulated['z'])) == {1, 2, 3}


def test_eta_pools_other_clusters(simulated):
    native = simulated['nativeCounts']
    z = simulated['z']
    others = native[:, z != 1].sum(axis=1)
    np.testing.assert_allclose(simulated['eta'][:, 0], others / others.sum())


def test_simulation_is_reproducible():
    a = simulate_contamination(n_cells=50, n_genes=20, seed=3)
    b = simulate_contamination(n_cells=50, n_genes=20, seed=3)
    np.testing.assert_array_equal(a['observedCounts'], b['observedCounts'])
    np.testing.assert_array_equal(a['z'], b['z'])


def test_scalar_delta_is_symmetric():
    sim = simulate_contamination(n_cells=2000, n_genes=10, delta=5, seed=1)
    assert abs(sim['contamination'].mean() - 0.5) < 0.02


def test_fewer_clusters_than_requested_warns():
    with pytest.warns(UserWarning, match="clusters are simulated"):
        sim = simulate_contamination(n_cells=2, n_genes=10, n_clusters=6, seed=1)
    k = len(np.unique(sim['z']))
    assert k <= 2
    assert sim['phi'].shape == (10, k)
    assert set(np.unique(sim['z'])) == set(range(1, k + 1))


@pytest.mark.parametrize("delta", [0, (1, -2), (1, 2, 3)])
def test_invalid_delta(delta):
    with pytest.raises(InvalidParameter):
        simulate_contamination(delta=delta)
