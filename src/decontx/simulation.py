"""Simulation of contaminated count matrices with known ground truth."""

import warnings
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .errors import InvalidParameter
from .utils import check_positive_float, check_positive_int


def simulate_contamination(
        n_cells: int = 300,
        n_genes: int = 100,
        n_clusters: int = 3,
        n_range: Tuple[int, int] = (500, 1000),
        beta: float = 0.5,
        delta: Union[float, Sequence[float]] = (1.0, 2.0),
        seed: Optional[int] = 12345,
) -> Dict:
    """
    Simulate a contaminated count matrix, equivalent to R's simulateContaminatedMatrix.

    Each cell draws a contamination proportion from Beta(delta), a cluster
    uniformly from ``n_clusters`` and a total count uniformly from
    ``n_range``. Native counts follow the cluster's Dirichlet(beta) profile;
    contamination counts follow the pooled native counts of all other clusters.

    Parameters
    ----------
    delta : float or pair of floats
        A scalar gives a symmetric Beta(delta, delta); a pair gives
        Beta(delta[0], delta[1]).
    seed : int, optional
        Seed for the random generator. None is not reproducible.

    Returns
    -------
    dict
        ``nativeCounts``, ``contaminationCounts`` and ``observedCounts``
        (genes x cells), ``NByC``, ``contamination`` (true proportion per
        cell), ``z``, ``phi`` and ``eta`` (genes x clusters), ``geneNames``
        and ``cellNames``.
    """
    n_cells = check_positive_int(n_cells, 'C')
    n_genes = check_positive_int(n_genes, 'G')
    n_clusters = check_positive_int(n_clusters, 'K')
    beta = check_positive_float(beta, 'beta')

    n_range = np.asarray(n_range)
    if n_range.shape != (2,) or n_range.min() < 0:
        raise InvalidParameter("'NRange' must be two non-negative integers.")
    n_min, n_max = int(n_range.min()), int(n_range.max())

    delta = np.atleast_1d(np.asarray(delta, dtype=np.float64))
    if len(delta) == 1:
        delta = np.repeat(delta, 2)
    if len(delta) != 2 or np.any(delta <= 0):
        raise InvalidParameter("'delta' must be one or two positive values.")

    rng = np.random.default_rng(seed)

    # Contamination proportion per cell
    contamination_props = rng.beta(delta[0], delta[1], size=n_cells)

    # Cluster assignment
    z = rng.integers(1, n_clusters + 1, size=n_cells)
    n_populated = len(np.unique(z))
    if n_populated < n_clusters:
        warnings.warn(
            f"Only {n_populated} clusters are simulated. Try to increase number "
            "of cells 'C' if more clusters are needed"
        )
        n_clusters = n_populated
        codes, _ = pd.factorize(z, sort=False)
        z = codes + 1

    # Total counts per cell, split into contamination and native counts
    n_counts = rng.integers(n_min, n_max + 1, size=n_cells)
    contam_counts = rng.binomial(n_counts, contamination_props)
    native_counts = n_counts - contam_counts

    # Native expression profile per cluster, clusters x genes
    phi = rng.dirichlet(np.full(n_genes, beta), size=n_clusters)

    native_matrix = np.zeros((n_genes, n_cells), dtype=np.int64)
    for i in range(n_cells):
        native_matrix[:, i] = rng.multinomial(native_counts[i], phi[z[i] - 1])

    # Contamination profile: native counts of every other cluster
    own = np.zeros((n_genes, n_clusters))
    for k in range(n_clusters):
        own[:, k] = native_matrix[:, z == k + 1].sum(axis=1)
    others = own.sum(axis=1)[:, None] - own
    eta = (others + 1e-20) / (others.sum(axis=0) + n_genes * 1e-20)

    contam_matrix = np.zeros((n_genes, n_cells), dtype=np.int64)
    for i in range(n_cells):
        contam_matrix[:, i] = rng.multinomial(contam_counts[i], eta[:, z[i] - 1])

    observed_matrix = native_matrix + contam_matrix

    return {
        'nativeCounts': native_matrix,
        'contaminationCounts': contam_matrix,
        'observedCounts': observed_matrix,
        'NByC': n_counts,
        'contamination': contamination_props,
        'z': z,
        'phi': phi.T,
        'eta': eta,
        'geneNames': [f"Gene_{g + 1}" for g in range(n_genes)],
        'cellNames': [f"Cell_{c + 1}" for c in range(n_cells)],
    }
