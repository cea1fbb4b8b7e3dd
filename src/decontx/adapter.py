"""
AnnData binding for DecontX.

Reads counts (cells x genes) from an AnnData object, runs
:func:`decontx.core.run_decontx` on the transposed matrix and writes the
results back in the layout of R's SingleCellExperiment method.
"""

from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
from anndata import AnnData
from scipy.sparse import csr_matrix, issparse

from .core import run_decontx


def decontx(
        adata: AnnData,
        z: Optional[Union[str, Sequence]] = None,
        batch_key: Optional[str] = None,
        layer: Optional[str] = None,
        max_iter: int = 500,
        convergence_threshold: float = 0.001,
        iter_loglik: int = 10,
        delta: float = 10.0,
        var_genes: int = 5000,
        L: int = 50,
        dbscan_eps: float = 1.0,
        random_state: Optional[int] = 12345,
        n_jobs: int = 1,
        copy: bool = False,
        verbose: bool = True,
        logfile: Optional[str] = None,
) -> Optional[AnnData]:
    """
    Run DecontX on an AnnData object.

    Parameters
    ----------
    adata : AnnData
        Cells x genes counts in ``.X`` or in ``.layers[layer]``.
    z : str or array-like, optional
        Cluster labels, or the name of an ``.obs`` column holding them.
    batch_key : str, optional
        ``.obs`` column with batch labels.
    copy : bool
        Return a modified copy instead of updating ``adata`` in place.

    Stores ``layers['decontX_counts']``, ``obs['decontX_contamination']``,
    ``obs['decontX_clusters']``, the UMAP of auto-derived clusters in
    ``obsm`` and ``uns['decontX']`` with ``runParams`` and ``estimates``.
    """
    if copy:
        adata = adata.copy()

    if isinstance(z, str):
        if z not in adata.obs:
            raise KeyError(f"Cluster key '{z}' not found in adata.obs")
        z_labels = adata.obs[z].to_numpy()
    else:
        z_labels = z

    batch_labels = None
    if batch_key is not None:
        if batch_key not in adata.obs:
            raise KeyError(f"Batch key '{batch_key}' not found in adata.obs")
        batch_labels = adata.obs[batch_key].astype(str).to_numpy()

    X = adata.X if layer is None else adata.layers[layer]
    counts = X.T if issparse(X) else np.asarray(X).T

    result = run_decontx(
        counts,
        z=z_labels,
        batch=batch_labels,
        max_iter=max_iter,
        convergence=convergence_threshold,
        iter_loglik=iter_loglik,
        delta=delta,
        var_genes=var_genes,
        L=L,
        dbscan_eps=dbscan_eps,
        seed=random_state,
        n_jobs=n_jobs,
        gene_names=list(adata.var_names),
        cell_names=list(adata.obs_names),
        logfile=logfile,
        verbose=verbose,
    )

    _store_results(adata, result, sparse_output=issparse(X))

    if copy:
        return adata
    return None


def _store_results(adata: AnnData, result: dict, sparse_output: bool):
    """Result storage matching R's SingleCellExperiment layout."""
    native = result['decontaminated_counts']
    if sparse_output:
        adata.layers['decontX_counts'] = csr_matrix(native.T)
    else:
        adata.layers['decontX_counts'] = native.T.toarray() if issparse(native) else np.asarray(native).T

    adata.obs['decontX_contamination'] = result['contamination']
    adata.obs['decontX_clusters'] = pd.Categorical(result['z'])

    estimates = result['estimates']
    batches = result['run_params']['batch']
    if result['run_params']['z'] is None:
        if len(estimates) > 1:
            # Each UMAP covers one batch; other cells get NaN
            for bat, est in estimates.items():
                coords = np.full((adata.n_obs, 2), np.nan)
                coords[batches == bat] = est['UMAP']
                adata.obsm[f'X_decontX_{bat}_umap'] = coords
        else:
            adata.obsm['X_decontX_umap'] = next(iter(estimates.values()))['UMAP']

    run_params = {k: v for k, v in result['run_params'].items() if k not in ('z', 'batch')}
    adata.uns['decontX'] = {
        'runParams': run_params,
        'estimates': {str(bat): est for bat, est in estimates.items()},
    }


def get_decontx_counts(adata: AnnData):
    """Get decontaminated counts (equivalent to R's decontXcounts())."""
    if 'decontX_counts' not in adata.layers:
        raise KeyError("DecontX counts not found. Run decontx() first.")
    return adata.layers['decontX_counts']


def get_decontx_contamination(adata: AnnData) -> np.ndarray:
    """Get contamination estimates."""
    if 'decontX_contamination' not in adata.obs:
        raise KeyError("DecontX contamination not found. Run decontx() first.")
    return adata.obs['decontX_contamination'].to_numpy()


def get_decontx_clusters(adata: AnnData) -> np.ndarray:
    """Get cluster labels used by DecontX."""
    if 'decontX_clusters' not in adata.obs:
        raise KeyError("DecontX clusters not found. Run decontx() first.")
    return adata.obs['decontX_clusters'].to_numpy()
