"""
Cell cluster initialization for DecontX when no labels are supplied.

Genes are collapsed into modules, cells are embedded in 2D with UMAP on
their module proportions, and broad cell types are called with DBSCAN.
"""

import logging
from typing import Optional, Tuple

import numpy as np
import scanpy as sc
import umap
from anndata import AnnData
from scipy.sparse import csc_matrix, csr_matrix, diags
from sklearn.cluster import DBSCAN, KMeans
from sklearn.decomposition import TruncatedSVD

from .fast_ops import fast_norm_prop_sqrt
from .utils import check_counts, process_dbscan_eps, process_L, process_var_genes

logger = logging.getLogger(__name__)


def initialize_z(
        counts,
        var_genes: int = 5000,
        L: int = 50,
        dbscan_eps: float = 1.0,
        seed: Optional[int] = 12345,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Equivalent of R's .decontxInitializeZ.

    Parameters
    ----------
    counts : array-like or sparse, shape (n_genes, n_cells)
        Raw counts of one batch.
    var_genes : int
        Number of most variable genes kept for clustering.
    L : int
        Number of gene modules.
    dbscan_eps : float
        Starting DBSCAN resolution; reduced by 25% while at most one
        cluster is found.
    seed : int, optional
        Seed for module detection and UMAP.

    Returns
    -------
    z : array, shape (n_cells,)
        Cluster label per cell, starting at 1.
    umap_coords : array, shape (n_cells, 2)
    """
    var_genes = process_var_genes(var_genes)
    L = process_L(L)
    dbscan_eps = process_dbscan_eps(dbscan_eps)

    X = check_counts(counts)
    counts_filtered = _select_variable_genes(X, var_genes)
    n_genes, n_cells = counts_filtered.shape

    L = min(L, n_genes)
    logger.info(f"...... Collapsing features into {L} modules")
    module_counts = _collapse_modules(counts_filtered, L, seed)

    logger.info("...... Reducing dimensionality with UMAP")
    features = fast_norm_prop_sqrt(module_counts)
    reducer = umap.UMAP(
        n_neighbors=max(2, min(15, n_cells - 1)),
        min_dist=0.01,
        spread=1.0,
        n_components=2,
        random_state=seed,
        metric='euclidean'
    )
    umap_coords = reducer.fit_transform(features.T)

    logger.info(f"...... Determining cell clusters with DBSCAN (Eps={dbscan_eps})")
    cluster_labels = _dbscan_clusters(umap_coords, dbscan_eps, seed)

    # Noise points (-1) form their own cluster, as in R's dbscan
    cluster_labels = cluster_labels - cluster_labels.min() + 1

    return cluster_labels.astype(np.int64), umap_coords


def _select_variable_genes(X: csc_matrix, var_genes: int) -> csc_matrix:
    """Raw counts of the ``var_genes`` most variable genes, after log-normalization."""
    if X.shape[0] <= var_genes:
        return X

    adata = AnnData(csr_matrix(X.T))
    sc.pp.normalize_total(adata, target_sum=1e4)
    sc.pp.log1p(adata)
    sc.pp.highly_variable_genes(adata, n_top_genes=var_genes)
    keep = np.flatnonzero(adata.var['highly_variable'].to_numpy())
    return X[keep, :]


def _collapse_modules(counts: csc_matrix, L: int, seed: Optional[int]) -> np.ndarray:
    """Sum genes into ``L`` co-expression modules; returns modules x cells counts."""
    n_genes, n_cells = counts.shape
    if L >= n_genes:
        return counts.toarray()

    # Gene profiles across cells, normalized per cell and log transformed
    cell_totals = np.asarray(counts.sum(axis=0)).ravel()
    scale = np.divide(1e4, cell_totals, out=np.zeros_like(cell_totals), where=cell_totals > 0)
    profiles = csr_matrix(counts @ diags(scale))
    profiles.data = np.log1p(profiles.data)

    n_components = min(30, n_genes - 1, n_cells - 1)
    if n_components >= 2:
        embedding = TruncatedSVD(n_components=n_components, random_state=seed).fit_transform(profiles)
    else:
        embedding = profiles.toarray()

    modules = KMeans(n_clusters=L, random_state=seed, n_init=10).fit_predict(embedding)
    indicator = csr_matrix(
        (np.ones(n_genes), (modules, np.arange(n_genes))), shape=(L, n_genes)
    )
    return np.asarray((indicator @ counts).todense())


def _dbscan_clusters(umap_coords: np.ndarray, dbscan_eps: float, seed: Optional[int]) -> np.ndarray:
    n_clusters = 1
    eps = dbscan_eps
    max_tries = 10
    cluster_labels = np.zeros(umap_coords.shape[0], dtype=np.int64)

    while n_clusters <= 1 and eps > 0 and max_tries > 0:
        cluster_labels = DBSCAN(eps=eps, min_samples=5).fit_predict(umap_coords)
        n_clusters = len(np.unique(cluster_labels))
        eps *= 0.75
        max_tries -= 1

    # Fallback to k-means if DBSCAN fails
    if n_clusters <= 1:
        logger.info("...... DBSCAN found a single cluster, falling back to k-means")
        cluster_labels = KMeans(n_clusters=2, random_state=seed, n_init=10).fit_predict(umap_coords)

    return np.asarray(cluster_labels, dtype=np.int64)
