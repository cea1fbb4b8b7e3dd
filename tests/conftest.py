"""Shared fixtures for decontx tests."""

import matplotlib

matplotlib.use("Agg")

import numpy as np
import pytest

from decontx import DecontXModel, simulate_contamination


@pytest.fixture(scope="session")
def simulated():
    """Default simulation: 300 cells, 100 genes, 3 clusters."""
    return simulate_contamination(
        n_cells=300, n_genes=100, n_clusters=3, n_range=(500, 1000),
        beta=0.5, delta=(1, 2), seed=12345
    )


@pytest.fixture(scope="session")
def fitted(simulated):
    """DecontXModel fitted on the default simulation."""
    model = DecontXModel(random_state=12345)
    result = model.fit_transform(simulated['observedCounts'], simulated['z'])
    return model, result


@pytest.fixture
def small_counts():
    """A small two-cluster matrix, genes x cells."""
    rng = np.random.default_rng(0)
    profile_a = np.r_[np.full(10, 8.0), np.full(10, 0.5)]
    profile_b = profile_a[::-1]
    counts = np.column_stack(
        [rng.poisson(profile_a) for _ in range(20)] + [rng.poisson(profile_b) for _ in range(20)]
    )
    z = np.array(["a"] * 20 + ["b"] * 20)
    return counts, z
