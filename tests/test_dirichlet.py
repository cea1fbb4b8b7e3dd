"""Tests for the Dirichlet fixed-point fit."""

import numpy as np
import pytest
from scipy.special import digamma

from decontx.dirichlet import fit_dirichlet, inv_digamma


def test_inv_digamma_inverts_digamma():
    y = np.array([-5.0, -1.0, 0.0, 2.0, 10.0])
    np.testing.assert_allclose(digamma(inv_digamma(y)), y, rtol=1e-8, atol=1e-8)


def test_fit_dirichlet_recovers_parameters():
    rng = np.random.default_rng(1)
    x = rng.dirichlet([2.0, 5.0], size=5000)
    alpha = fit_dirichlet(x)
    np.testing.assert_allclose(alpha, [2.0, 5.0], rtol=0.1)


def test_fit_dirichlet_degenerate_rows_are_finite():
    """Identical rows have no finite MLE; the fit is clamped instead."""
    x = np.tile([0.3, 0.7], (50, 1))
    alpha = fit_dirichlet(x)
    assert np.all(np.isfinite(alpha))
    assert np.all(alpha > 0)
    assert alpha.sum() > 1e3
    np.testing.assert_allclose(alpha / alpha.sum(), [0.3, 0.7], rtol=1e-6)


def test_fit_dirichlet_drops_invalid_rows():
    rng = np.random.default_rng(2)
    x = rng.dirichlet([3.0, 3.0], size=500)
    with_nan = np.vstack([x, [np.nan, np.nan], [0.0, 0.0]])
    np.testing.assert_allclose(fit_dirichlet(with_nan), fit_dirichlet(x))


def test_fit_dirichlet_handles_exact_zeros():
    x = np.array([[1.0, 0.0], [0.5, 0.5], [0.2, 0.8], [0.9, 0.1]])
    alpha = fit_dirichlet(x)
    assert np.all(np.isfinite(alpha)) and np.all(alpha > 0)


def test_fit_dirichlet_too_few_rows():
    np.testing.assert_array_equal(fit_dirichlet(np.array([[0.4, 0.6]])), [1.0, 1.0])


def test_fit_dirichlet_rejects_vectors():
    with pytest.raises(ValueError):
        fit_dirichlet(np.array([0.4, 0.6]))
