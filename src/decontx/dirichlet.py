"""
Maximum-likelihood Dirichlet fit used for the empirical-Bayes theta prior.

Python counterpart of MCMCprecision::fit_dirichlet as called by decontX:
a moment-matched start followed by Minka's fixed-point iteration.
"""

import numpy as np
from scipy.special import digamma, polygamma


def inv_digamma(y: np.ndarray, n_newton: int = 5) -> np.ndarray:
    """Inverse of the digamma function (Minka, 2000, appendix C)."""
    y = np.asarray(y, dtype=np.float64)
    x = np.where(
        y >= -2.22,
        np.exp(np.minimum(y, 700.0)) + 0.5,
        -1.0 / (y - digamma(1.0)),
    )
    for _ in range(n_newton):
        x = x - (digamma(x) - y) / polygamma(1, x)
        x = np.maximum(x, 1e-300)
    return x


def _moment_start(p: np.ndarray, max_alpha: float) -> np.ndarray:
    """Method-of-moments concentration estimate from the first component."""
    mean = p.mean(axis=0)
    m1 = mean[0]
    m2 = np.mean(p[:, 0] ** 2)
    var = m2 - m1 ** 2
    if var <= 0:
        return mean * max_alpha
    precision = (m1 - m2) / var
    if not np.isfinite(precision) or precision <= 0:
        precision = 1.0
    return mean * precision


def fit_dirichlet(
        x: np.ndarray,
        max_iter: int = 1000,
        tol: float = 1e-6,
        min_alpha: float = 1e-6,
        max_alpha: float = 1e6,
        eps: float = 1e-12,
) -> np.ndarray:
    """
    Fit Dirichlet concentration parameters to rows of proportions.

    Parameters
    ----------
    x : array, shape (n, p)
        One composition per row. Rows with non-finite values or a zero sum
        are dropped; the rest are renormalized and kept away from 0.
    max_iter : int
        Cap on fixed-point iterations.
    tol : float
        Stop when the largest relative change in alpha falls below this.
    min_alpha, max_alpha : float
        Bounds applied to every iterate. Rows with no spread at all have an
        unbounded MLE; they get ``mean * max_alpha`` instead.

    Returns
    -------
    array, shape (p,)
        Strictly positive, finite concentrations.
    """
    x = np.asarray(x, dtype=np.float64)
    if x.ndim != 2:
        raise ValueError("'x' must be a 2-dimensional array of proportions.")

    valid = np.all(np.isfinite(x), axis=1) & (x.sum(axis=1) > 0)
    p = x[valid]
    if p.shape[0] < 2:
        return np.ones(x.shape[1])

    p = p / p.sum(axis=1, keepdims=True)
    p = np.clip(p, eps, None)
    p = p / p.sum(axis=1, keepdims=True)

    if np.allclose(p, p[0], rtol=0.0, atol=eps):
        return np.clip(p.mean(axis=0) * max_alpha, min_alpha, max_alpha)

    log_p_bar = np.log(p).mean(axis=0)
    alpha = np.clip(_moment_start(p, max_alpha), min_alpha, max_alpha)

    for _ in range(max_iter):
        new_alpha = inv_digamma(digamma(alpha.sum()) + log_p_bar)
        new_alpha = np.clip(new_alpha, min_alpha, max_alpha)
        change = np.max(np.abs(new_alpha - alpha) / alpha)
        alpha = new_alpha
        if change < tol:
            break

    return alpha
