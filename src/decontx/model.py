"""
DecontX Bayesian mixture model implementation.

Each cell's counts are a mixture of a native component (the expression
profile Phi of its own cluster) and a contamination component (Eta, the
pooled native profile of every other cluster). Parameters are fitted by EM
following Yang et al. (2020), with the Beta prior on the native proportion
re-estimated from the data at every iteration.
"""

import logging
from typing import Dict, List, Optional

import numpy as np
from scipy.sparse import csc_matrix

from .dirichlet import fit_dirichlet
from .fast_ops import (
    col_sum_by_group_sparse_data,
    col_sums_sparse,
    decontx_e_step,
    decontx_initialize,
    decontx_log_likelihood,
    fast_norm_prop,
)
from .utils import (
    check_counts,
    check_delta,
    check_positive_float,
    check_positive_int,
    process_cell_labels,
)

logger = logging.getLogger(__name__)


class LogLikelihoodTracker:
    """
    Evaluates the mixture log-likelihood at a fixed cadence and keeps the trace.

    The trace is diagnostic only; it never decides when EM stops.
    """

    def __init__(self, iter_loglik: int = 10, pseudocount: float = 1e-20):
        self.iter_loglik = iter_loglik
        self.pseudocount = pseudocount
        self.trace: List[float] = []

    def is_due(self, iteration: int, converged: bool = False) -> bool:
        return iteration == 0 or converged or iteration % self.iter_loglik == 0

    def evaluate(self, counts: csc_matrix, theta, phi, eta, z) -> float:
        return float(decontx_log_likelihood(
            counts.data, counts.indices, counts.indptr,
            theta, phi, eta, z, self.pseudocount
        ))

    def record(self, counts: csc_matrix, theta, phi, eta, z) -> float:
        ll = self.evaluate(counts, theta, phi, eta, z)
        self.trace.append(ll)
        return ll


def add_log_likelihood(ll_a, ll_b) -> np.ndarray:
    """
    Add two log-likelihood traces of possibly different lengths.

    The shorter trace is padded with its last value, so a batch that
    converged early keeps contributing its final likelihood.
    """
    ll_a = np.asarray(ll_a, dtype=np.float64)
    ll_b = np.asarray(ll_b, dtype=np.float64)
    if len(ll_a) == 0:
        return ll_b.copy()
    if len(ll_b) == 0:
        return ll_a.copy()
    n = max(len(ll_a), len(ll_b))
    ll_a = np.concatenate([ll_a, np.repeat(ll_a[-1], n - len(ll_a))])
    ll_b = np.concatenate([ll_b, np.repeat(ll_b[-1], n - len(ll_b))])
    return ll_a + ll_b


class DecontXModel:
    """
    EM solver for one batch of cells sharing cluster labels.

    Counts are genes x cells. Hyperparameters are validated on construction.
    ``random_state`` seeds the draw of the initial theta and may be an int,
    a ``numpy.random.SeedSequence`` or None (not reproducible).
    """

    def __init__(self, **kwargs):
        self.max_iter = check_positive_int(kwargs.get('max_iter', 500), 'maxIter')
        self.convergence_threshold = check_positive_float(
            kwargs.get('convergence_threshold', 0.001), 'convergence'
        )
        self.iter_loglik = check_positive_int(kwargs.get('iter_loglik', 10), 'iterLogLik')
        self.delta = check_delta(kwargs.get('delta', 10.0))
        self.random_state = kwargs.get('random_state', 12345)
        self.pseudocount = kwargs.get('pseudocount', 1e-20)

        # Storage for results
        self.phi_ = None
        self.eta_ = None
        self.theta_ = None
        self.delta_ = None
        self.log_likelihood_ = []
        self.n_iter_ = 0
        self.converged_ = False

    def initialize(self, counts: csc_matrix, z: np.ndarray, K: int):
        """Draw theta from Beta(delta, delta) and aggregate raw counts into Phi/Eta."""
        rng = np.random.default_rng(self.random_state)
        theta = rng.beta(self.delta, self.delta, size=counts.shape[1])
        # small delta puts draws exactly on 0 or 1
        theta = np.clip(theta, self.pseudocount, np.nextafter(1.0, 0.0))
        phi, eta = decontx_initialize(counts, z, K, self.pseudocount)
        return theta, phi, eta

    def em_step(
            self,
            counts: csc_matrix,
            theta: np.ndarray,
            phi: np.ndarray,
            eta: np.ndarray,
            z: np.ndarray,
            counts_colsums: Optional[np.ndarray] = None,
    ) -> Dict:
        """
        One E-step and M-step.

        Returns the updated ``theta``, ``phi``, ``eta`` and ``delta`` along with
        the E-step's expected native counts (``est_native``, aligned with
        ``counts.data``) and the resulting per-cell ``contamination``.
        """
        K = phi.shape[1]
        n_genes = counts.shape[0]
        if counts_colsums is None:
            counts_colsums = col_sums_sparse(counts.data, counts.indptr)

        # E-step
        est_native = decontx_e_step(
            counts.data, counts.indices, counts.indptr,
            theta, phi, eta, z, self.pseudocount
        )

        # M-step
        rn_g_by_k = col_sum_by_group_sparse_data(
            est_native, counts.indices, counts.indptr, z, K, n_genes
        )
        cn_g_by_k = rn_g_by_k.sum(axis=1)[:, None] - rn_g_by_k

        est_colsums = col_sums_sparse(est_native, counts.indptr)
        native_frac = _native_fraction(est_colsums, counts_colsums)
        new_delta = fit_dirichlet(np.column_stack([native_frac, 1.0 - native_frac]))

        new_theta = (est_colsums + new_delta[0]) / (counts_colsums + new_delta.sum())
        new_phi = fast_norm_prop(rn_g_by_k, self.pseudocount)
        new_eta = fast_norm_prop(cn_g_by_k, self.pseudocount)

        return {
            'theta': new_theta,
            'phi': new_phi,
            'eta': new_eta,
            'delta': new_delta,
            'est_native': est_native,
            'contamination': _contamination(est_colsums, counts_colsums),
        }

    def fit_transform(self, X, z) -> Dict:
        """
        Run EM to convergence on one batch.

        Parameters
        ----------
        X : array-like or sparse, shape (n_genes, n_cells)
            Raw counts.
        z : array-like, shape (n_cells,)
            Cluster label per cell; at least two distinct values.

        Returns
        -------
        dict
            ``decontaminated_counts`` (CSC, expected native counts),
            ``contamination``, ``theta``, ``phi``, ``eta``, ``delta``,
            ``log_likelihood``, ``iteration``, ``converged``, ``z`` (dense
            labels) and ``labels`` (original label per dense id).
        """
        counts = check_counts(X)
        z, labels = process_cell_labels(z, counts.shape[1])
        K = len(labels)

        theta, phi, eta = self.initialize(counts, z, K)
        counts_colsums = col_sums_sparse(counts.data, counts.indptr)
        delta = np.array([self.delta, self.delta])

        tracker = LogLikelihoodTracker(self.iter_loglik, self.pseudocount)
        tracker.record(counts, theta, phi, eta, z)

        logger.info(".... Estimating contamination")
        iteration = 1
        converged = False
        theta_previous = theta
        while iteration <= self.max_iter and not converged:
            step = self.em_step(counts, theta, phi, eta, z, counts_colsums)
            theta, phi, eta, delta = step['theta'], step['phi'], step['eta'], step['delta']

            max_divergence = np.max(np.abs(theta_previous - theta))
            if max_divergence < self.convergence_threshold:
                converged = True
            theta_previous = theta

            if tracker.is_due(iteration, converged):
                tracker.record(counts, theta, phi, eta, z)
                logger.info(
                    f"...... Completed iteration: {iteration} | converge: {max_divergence:.4g}"
                )

            iteration += 1

        # Final expected native counts from the converged parameters
        est_native = decontx_e_step(
            counts.data, counts.indices, counts.indptr,
            theta, phi, eta, z, self.pseudocount
        )
        decontaminated = csc_matrix(
            (est_native, counts.indices.copy(), counts.indptr.copy()),
            shape=counts.shape
        )
        contamination = _contamination(
            col_sums_sparse(est_native, counts.indptr), counts_colsums
        )

        self.phi_ = phi
        self.eta_ = eta
        self.theta_ = theta
        self.delta_ = delta
        self.log_likelihood_ = tracker.trace
        self.n_iter_ = iteration - 1
        self.converged_ = converged

        return {
            'decontaminated_counts': decontaminated,
            'contamination': contamination,
            'theta': theta,
            'phi': phi,
            'eta': eta,
            'delta': delta,
            'log_likelihood': tracker.trace,
            'iteration': iteration - 1,
            'converged': converged,
            'z': z,
            'labels': labels,
        }


def _native_fraction(est_colsums: np.ndarray, counts_colsums: np.ndarray) -> np.ndarray:
    # NaN for empty cells; fit_dirichlet drops those rows
    with np.errstate(invalid='ignore', divide='ignore'):
        return est_colsums / counts_colsums


def _contamination(est_colsums: np.ndarray, counts_colsums: np.ndarray) -> np.ndarray:
    native = np.divide(
        est_colsums, counts_colsums,
        out=np.ones_like(est_colsums), where=counts_colsums > 0
    )
    return np.clip(1.0 - native, 0.0, 1.0)
