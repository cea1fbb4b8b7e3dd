"""Utility functions for DecontX: logging, input checks and seeding."""

import logging
import sys
import warnings
import zlib
from typing import Optional, Tuple

import numpy as np
import pandas as pd
from scipy.sparse import csc_matrix, issparse

from .errors import InvalidInput, InvalidParameter

LOGGER_NAME = "decontx"


def get_logger(verbose: bool = True, logfile: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    Messages go to stdout when ``verbose`` and are appended to ``logfile``
    when one is given. Module loggers (``decontx.model`` etc.) propagate here.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.INFO if (verbose or logfile) else logging.WARNING)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter("%(asctime)s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    if verbose:
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(formatter)
        logger.addHandler(sh)
    if logfile:
        fh = logging.FileHandler(logfile, mode="a", encoding="utf-8")
        fh.setFormatter(formatter)
        logger.addHandler(fh)
    # records handled here do not also reach the root handlers
    logger.propagate = not logger.handlers
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    return logger


def check_counts(counts) -> csc_matrix:
    """
    Validate a genes x cells count matrix and return it as float64 CSC.

    The input object is never modified; a new matrix is always returned.
    """
    if isinstance(counts, pd.DataFrame):
        counts = counts.to_numpy()

    if issparse(counts):
        if counts.ndim != 2:
            raise InvalidInput("'counts' must be a 2-dimensional matrix.")
        X = csc_matrix(counts, dtype=np.float64, copy=True)
        values = X.data
    else:
        try:
            arr = np.asarray(counts, dtype=np.float64)
        except (TypeError, ValueError) as exc:
            raise InvalidInput("'counts' must be a numeric matrix.") from exc
        if arr.ndim != 2:
            raise InvalidInput(
                f"'counts' must be 2-dimensional, got {arr.ndim} dimension(s)."
            )
        values = arr
        X = None

    if np.isnan(values).any():
        raise InvalidInput("Missing value in 'counts' matrix.")
    if values.size and values.min() < 0:
        raise InvalidInput("Count matrix contains negative values.")

    if X is None:
        X = csc_matrix(values)
    X.eliminate_zeros()
    X.sort_indices()
    return X


def check_delta(delta) -> float:
    """R's .checkParametersDecon: 'delta' must be one positive number."""
    if isinstance(delta, (bool, np.bool_)) or not isinstance(delta, (int, float, np.number)):
        raise InvalidParameter("'delta' should be a single positive value.")
    delta = float(delta)
    if not np.isfinite(delta) or delta <= 0:
        raise InvalidParameter("'delta' should be a single positive value.")
    return delta


def check_positive_int(value, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
        raise InvalidParameter(f"Parameter '{name}' must be a positive integer.")
    return int(value)


def check_n_jobs(n_jobs) -> int:
    """joblib semantics: positive counts or negative offsets from the CPU count, never 0."""
    if isinstance(n_jobs, bool) or not isinstance(n_jobs, (int, np.integer)) or n_jobs == 0:
        raise InvalidParameter("Parameter 'nJobs' must be a non-zero integer.")
    return int(n_jobs)


def check_positive_float(value, name: str) -> float:
    if isinstance(value, (bool, np.bool_)) or not isinstance(value, (int, float, np.number)):
        raise InvalidParameter(f"Parameter '{name}' must be a positive number.")
    value = float(value)
    if not np.isfinite(value) or value <= 0:
        raise InvalidParameter(f"Parameter '{name}' must be a positive number.")
    return value


def process_cell_labels(z, n_cells: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    R's .processCellLabels.

    Returns the dense labels 1..K (in order of first appearance) and the
    original label for each dense id, so ``labels[z - 1]`` gives back the input.
    """
    z = np.asarray(z)
    if z.ndim != 1 or len(z) != n_cells:
        raise InvalidParameter(
            "'z' must be of the same length as the number of cells in the "
            f"'counts' matrix ({len(z) if z.ndim == 1 else z.shape} != {n_cells})."
        )

    codes, labels = pd.factorize(z, sort=False)
    if np.any(codes < 0):
        raise InvalidParameter("'z' contains missing cluster labels.")
    if len(labels) < 2:
        raise InvalidParameter(
            "No need to decontaminate when only one cluster is in the dataset."
        )

    dense = codes.astype(np.int64) + 1
    ids, sizes = np.unique(dense, return_counts=True)
    small = [labels[i - 1] for i in ids[sizes < 3]]
    if small:
        warnings.warn(f"Clusters with < 3 cells: {small}")

    return dense, np.asarray(labels)


def process_var_genes(var_genes):
    """R's .processvarGenes"""
    if var_genes is None:
        return 5000
    if isinstance(var_genes, bool) or not isinstance(var_genes, (int, np.integer)) or var_genes < 2:
        raise InvalidParameter("Parameter 'varGenes' must be an integer larger than 1.")
    return int(var_genes)


def process_dbscan_eps(dbscan_eps):
    """R's .processdbscanEps"""
    if dbscan_eps is None:
        return 1.0
    if np.ndim(dbscan_eps) != 0 or dbscan_eps < 0:
        raise InvalidParameter("Parameter 'dbscanEps' needs to be non-negative.")
    return float(dbscan_eps)


def process_L(L):
    """R's .processL"""
    if L is None:
        return 50
    if isinstance(L, bool) or not isinstance(L, (int, np.integer)) or L < 2:
        raise InvalidParameter("Parameter 'L' must be an integer larger than 1.")
    return int(L)


def batch_seed_sequence(seed: Optional[int], batch) -> np.random.SeedSequence:
    """
    Seed stream for one batch, derived from the global seed and the batch id.

    The same (seed, batch) pair always yields the same stream, whatever the
    other batches are or the order they run in.
    """
    key = zlib.crc32(str(batch).encode("utf-8"))
    return np.random.SeedSequence(seed, spawn_key=(key,))
