"""
Core DecontX functionality: run the contamination model batch by batch.

This module works on plain genes x cells matrices. Binding to AnnData lives
in :mod:`decontx.adapter`.
"""

import logging
import warnings
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd
from joblib import Parallel, delayed
from scipy.sparse import csc_matrix, issparse
from tqdm import tqdm

from .clustering import initialize_z
from .errors import InvalidParameter
from .model import DecontXModel, add_log_likelihood
from .utils import (
    batch_seed_sequence,
    check_counts,
    check_delta,
    check_n_jobs,
    check_positive_float,
    check_positive_int,
    get_logger,
    process_dbscan_eps,
    process_L,
    process_var_genes,
)

logger = logging.getLogger(__name__)

DEFAULT_BATCH = "all_cells"


def run_decontx(
        counts,
        z: Optional[Sequence] = None,
        batch: Optional[Sequence] = None,
        max_iter: int = 500,
        convergence: float = 0.001,
        iter_loglik: int = 10,
        delta: float = 10.0,
        var_genes: int = 5000,
        L: int = 50,
        dbscan_eps: float = 1.0,
        seed: Optional[int] = 12345,
        n_jobs: int = 1,
        gene_names: Optional[Sequence] = None,
        cell_names: Optional[Sequence] = None,
        logfile: Optional[str] = None,
        verbose: bool = True,
) -> Dict:
    """
    Estimate and remove contamination from a genes x cells count matrix.

    Parameters
    ----------
    counts : ndarray, sparse matrix or DataFrame, shape (n_genes, n_cells)
        Raw counts. A DataFrame supplies gene (index) and cell (columns) names.
    z : array-like, optional
        Cluster label per cell. When omitted, labels are estimated per batch
        with :func:`decontx.clustering.initialize_z`.
    batch : array-like, optional
        Batch label per cell. Each batch is decontaminated independently.
    max_iter, convergence, iter_loglik, delta
        EM settings: iteration cap, threshold on the largest change in theta,
        log-likelihood cadence and the symmetric Beta prior used to draw the
        initial theta.
    var_genes, L, dbscan_eps
        Settings for the cluster initializer, used only when ``z`` is None.
    seed : int, optional
        Global seed. Each batch derives its own stream from (seed, batch id).
        None gives non-reproducible results and emits a warning.
    n_jobs : int
        Number of batches processed concurrently (threads).

    Returns
    -------
    dict
        ``decontaminated_counts`` (same kind of container as ``counts``),
        ``contamination``, ``z``, ``estimates`` (per batch), ``log_likelihood``
        (summed over batches), ``run_params``, ``gene_names``, ``cell_names``.
    """
    start_time = pd.Timestamp.now()
    log = get_logger(verbose, logfile)

    log.info("-" * 50)
    log.info("Starting DecontX")
    log.info("-" * 50)

    is_frame = isinstance(counts, pd.DataFrame)
    is_sparse = issparse(counts)
    if is_frame:
        gene_names = list(counts.index) if gene_names is None else list(gene_names)
        cell_names = list(counts.columns) if cell_names is None else list(cell_names)

    X = check_counts(counts)
    n_genes, n_cells = X.shape

    delta = check_delta(delta)
    max_iter = check_positive_int(max_iter, 'maxIter')
    iter_loglik = check_positive_int(iter_loglik, 'iterLogLik')
    convergence = check_positive_float(convergence, 'convergence')
    n_jobs = check_n_jobs(n_jobs)

    if z is None:
        var_genes = process_var_genes(var_genes)
        L = process_L(L)
        dbscan_eps = process_dbscan_eps(dbscan_eps)
    else:
        z = np.asarray(z)
        if z.ndim != 1 or len(z) != n_cells:
            raise InvalidParameter(
                "'z' must be of the same length as the number of cells in the 'counts' matrix."
            )

    if batch is None:
        batch = np.repeat(DEFAULT_BATCH, n_cells)
    else:
        batch = np.asarray(batch)
        if batch.ndim != 1 or len(batch) != n_cells:
            raise InvalidParameter(
                "'batch' must be of the same length as the number of cells in the 'counts' matrix."
            )
    batch_index = list(pd.unique(batch))
    multi_batch = len(batch_index) > 1

    if seed is None:
        warnings.warn(
            "No seed supplied to DecontX; results will not be reproducible."
        )
        log.info(".. No seed supplied, results are not reproducible")

    log.info(f".. Processing {n_cells} cells and {n_genes} genes")
    if multi_batch:
        log.info(f".. Found {len(batch_index)} batches: {batch_index}")

    model_params = {
        'max_iter': max_iter,
        'convergence_threshold': convergence,
        'iter_loglik': iter_loglik,
        'delta': delta,
    }
    init_params = {'var_genes': var_genes, 'L': L, 'dbscan_eps': dbscan_eps}

    batch_columns = {bat: np.flatnonzero(batch == bat) for bat in batch_index}
    jobs = (
        delayed(_decontx_one_batch)(
            X[:, batch_columns[bat]],
            None if z is None else z[batch_columns[bat]],
            bat,
            multi_batch,
            seed,
            model_params,
            init_params,
        )
        for bat in tqdm(batch_index, desc="DecontX batches",
                        disable=not verbose or not multi_batch)
    )
    if n_jobs == 1:
        results = [fn(*args, **kwargs) for fn, args, kwargs in jobs]
    else:
        results = Parallel(n_jobs=n_jobs, prefer="threads")(jobs)

    native, contamination, z_out, estimates, total_ll = _merge_batches(
        X.shape, batch_index, batch_columns, results, multi_batch
    )

    if is_frame:
        decontaminated = pd.DataFrame(native.toarray(), index=gene_names, columns=cell_names)
    elif is_sparse:
        decontaminated = native
    else:
        decontaminated = native.toarray()

    run_params = {
        'z': None if z is None else z,
        'batch': batch,
        'maxIter': max_iter,
        'delta': delta,
        'convergence': convergence,
        'iterLogLik': iter_loglik,
        'varGenes': var_genes,
        'L': L,
        'dbscanEps': dbscan_eps,
        'seed': seed,
        'nJobs': n_jobs,
        'logfile': logfile,
        'verbose': verbose,
    }

    log.info("-" * 50)
    log.info(f"Completed DecontX. Total time: {pd.Timestamp.now() - start_time}")
    log.info("-" * 50)

    return {
        'decontaminated_counts': decontaminated,
        'contamination': contamination,
        'z': z_out,
        'estimates': estimates,
        'log_likelihood': total_ll,
        'run_params': run_params,
        'gene_names': gene_names,
        'cell_names': cell_names,
    }


def _decontx_one_batch(
        counts: csc_matrix,
        z: Optional[np.ndarray],
        batch,
        multi_batch: bool,
        seed: Optional[int],
        model_params: Dict,
        init_params: Dict,
) -> Dict:
    """Initialize labels if needed and fit the model on one batch."""
    if multi_batch:
        logger.info(f".. Analyzing cells in batch '{batch}'")
    else:
        logger.info(".. Analyzing all cells")

    model_seed, init_seed = batch_seed_sequence(seed, batch).spawn(2)

    umap_coords = None
    if z is None:
        logger.info(".... Estimating cell types")
        z, umap_coords = initialize_z(
            counts,
            seed=int(init_seed.generate_state(1)[0]),
            **init_params,
        )

    model = DecontXModel(random_state=model_seed, **model_params)
    result = model.fit_transform(counts, z)
    result['UMAP'] = umap_coords

    contamination = result['contamination']
    logger.info(f"...... Mean contamination: {np.mean(contamination):.2%}")
    logger.info(f"...... Median contamination: {np.median(contamination):.2%}")
    logger.info(f"...... Range: {np.min(contamination):.2%} - {np.max(contamination):.2%}")
    logger.info(f"...... Cells >50% contaminated: {np.sum(contamination > 0.5)}")
    logger.info(
        f"...... {'Converged' if result['converged'] else 'Stopped'} after "
        f"{result['iteration']} iterations"
    )
    return result


def _merge_batches(shape, batch_index, batch_columns, results, multi_batch):
    """Place each batch's results into the columns its cells occupy."""
    n_cells = shape[1]
    rows, cols, data = [], [], []
    contamination = np.zeros(n_cells)
    z_out = np.empty(n_cells, dtype=object)
    estimates = {}
    total_ll = np.array([])

    for bat, result in zip(batch_index, results):
        columns = batch_columns[bat]

        block = result['decontaminated_counts'].tocoo()
        rows.append(block.row)
        cols.append(columns[block.col])
        data.append(block.data)

        contamination[columns] = result['contamination']
        labels = result['labels'][result['z'] - 1]
        if multi_batch:
            z_out[columns] = [f"{bat}-{label}" for label in labels]
        else:
            z_out[columns] = labels

        estimates[bat] = {
            'z': result['z'],
            'labels': result['labels'],
            'phi': result['phi'],
            'eta': result['eta'],
            'delta': result['delta'],
            'theta': result['theta'],
            'contamination': result['contamination'],
            'logLikelihood': result['log_likelihood'],
            'iteration': result['iteration'],
            'converged': result['converged'],
            'UMAP': result['UMAP'],
        }
        total_ll = add_log_likelihood(total_ll, result['log_likelihood'])

    native = csc_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=shape,
    )
    if not multi_batch:
        z_out = np.asarray(list(z_out))
    return native, contamination, z_out, estimates, total_ll
