"""
Fast operations for DecontX using Numba JIT compilation.
Equivalent to the Rcpp functions in the R version.

All kernels work on the raw arrays of a genes x cells ``csc_matrix``
(``data``, ``indices``, ``indptr``), so only non-zero counts are visited.
Cluster labels are dense and 1-indexed. Kernels run serially and release
the GIL, so batches can be processed from a thread pool with reproducible
results.
"""

import numpy as np
from numba import jit
from scipy.sparse import csc_matrix


@jit(nopython=True, nogil=True)
def col_sum_by_group_sparse_data(
        data: np.ndarray,
        indices: np.ndarray,
        indptr: np.ndarray,
        groups: np.ndarray,
        K: int,
        n_features: int
) -> np.ndarray:
    """
    Sum the columns (cells) of a sparse matrix within each group.
    Equivalent to R's colSumByGroupSparse.

    Returns
    -------
    array, shape (n_features, K)
    """
    result = np.zeros((n_features, K))
    n_samples = len(groups)

    for j in range(n_samples):
        group = groups[j] - 1
        if 0 <= group < K:
            for idx in range(indptr[j], indptr[j + 1]):
                result[indices[idx], group] += data[idx]

    return result


def col_sum_by_group_sparse(X: csc_matrix, groups: np.ndarray, K: int) -> np.ndarray:
    """Wrapper for sparse matrix group sums."""
    return col_sum_by_group_sparse_data(
        X.data, X.indices, X.indptr, groups, K, X.shape[0]
    )


@jit(nopython=True, nogil=True)
def col_sums_sparse(data: np.ndarray, indptr: np.ndarray) -> np.ndarray:
    """Per-column totals of a CSC matrix."""
    n_cols = len(indptr) - 1
    result = np.zeros(n_cols)
    for j in range(n_cols):
        total = 0.0
        for idx in range(indptr[j], indptr[j + 1]):
            total += data[idx]
        result[j] = total
    return result


@jit(nopython=True, nogil=True)
def fast_norm_prop(X: np.ndarray, alpha: float = 1e-20) -> np.ndarray:
    """
    Column-wise normalization to proportions after adding ``alpha``.
    Equivalent to R's fastNormProp.
    """
    n_rows, n_cols = X.shape
    result = np.zeros((n_rows, n_cols))

    for j in range(n_cols):
        col_sum = 0.0
        for i in range(n_rows):
            col_sum += X[i, j] + alpha

        for i in range(n_rows):
            result[i, j] = (X[i, j] + alpha) / col_sum

    return result


@jit(nopython=True, nogil=True)
def fast_norm_prop_sqrt(X: np.ndarray, alpha: float = 1e-10) -> np.ndarray:
    """
    Column-wise normalization to proportions with square root transformation.
    Equivalent to R's fastNormPropSqrt.
    """
    n_rows, n_cols = X.shape
    result = np.zeros((n_rows, n_cols))

    for j in range(n_cols):
        col_sum = 0.0
        for i in range(n_rows):
            col_sum += np.sqrt(X[i, j] + alpha)

        for i in range(n_rows):
            result[i, j] = np.sqrt(X[i, j] + alpha) / col_sum

    return result


@jit(nopython=True, nogil=True)
def decontx_e_step(
        data: np.ndarray,
        indices: np.ndarray,
        indptr: np.ndarray,
        theta: np.ndarray,
        phi: np.ndarray,
        eta: np.ndarray,
        z: np.ndarray,
        pseudocount: float = 1e-20
) -> np.ndarray:
    """
    Expected native counts for every non-zero entry.

    The responsibility of the native component for gene g in cell c is
    theta*phi / (theta*phi + (1-theta)*eta + pseudocount); the result holds
    responsibility * count, aligned with ``data``.
    """
    est = np.zeros(data.shape[0])
    n_cells = len(indptr) - 1

    for j in range(n_cells):
        k = z[j] - 1
        t = theta[j]
        for idx in range(indptr[j], indptr[j + 1]):
            g = indices[idx]
            native = t * phi[g, k]
            contam = (1.0 - t) * eta[g, k]
            est[idx] = data[idx] * native / (native + contam + pseudocount)

    return est


@jit(nopython=True, nogil=True)
def decontx_log_likelihood(
        data: np.ndarray,
        indices: np.ndarray,
        indptr: np.ndarray,
        theta: np.ndarray,
        phi: np.ndarray,
        eta: np.ndarray,
        z: np.ndarray,
        pseudocount: float = 1e-20
) -> float:
    """
    Mixture log-likelihood.
    Equivalent to R's decontXLogLik.
    """
    log_likelihood = 0.0
    n_cells = len(indptr) - 1

    for j in range(n_cells):
        k = z[j] - 1
        t = theta[j]
        for idx in range(indptr[j], indptr[j + 1]):
            g = indices[idx]
            mixture_prob = t * phi[g, k] + (1.0 - t) * eta[g, k] + pseudocount
            log_likelihood += data[idx] * np.log(mixture_prob)

    return log_likelihood


def decontx_initialize(
        counts: csc_matrix,
        z: np.ndarray,
        K: int,
        pseudocount: float = 1e-20
):
    """
    Starting Phi and Eta from raw counts.
    Equivalent to R's decontXInitialize.

    Phi is each cluster's own counts; Eta is the grand total minus the
    cluster's own counts, i.e. the counts of every other cluster.
    """
    n_by_g_k = col_sum_by_group_sparse(counts, z, K)
    c_by_g_k = n_by_g_k.sum(axis=1)[:, None] - n_by_g_k

    phi = fast_norm_prop(n_by_g_k, pseudocount)
    eta = fast_norm_prop(c_by_g_k, pseudocount)
    return phi, eta
