"""
DecontX plotting functions matching R implementation.
"""

from typing import Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.colors import LinearSegmentedColormap


def plot_contamination_umap(
        adata=None,
        result=None,
        umap_key='X_decontX_umap',
        contamination_key='decontX_contamination',
        batch=None,
        color_scale=None,
        size=1,
        figsize=(8, 6),
        title="DecontX Contamination",
        save: Optional[str] = None
):
    """
    Plot contamination on the UMAP used to derive DecontX clusters.
    Equivalent to R's plotDecontXContamination.

    Parameters
    ----------
    adata : AnnData, optional
        Annotated data object with DecontX results
    result : dict, optional
        Return value of :func:`decontx.run_decontx`
    umap_key : str
        Key for UMAP coordinates in adata.obsm
    contamination_key : str
        Key for contamination values in adata.obs
    batch : str, optional
        Batch to plot; defaults to the first batch of ``result``
    color_scale : list, optional
        Colors from low to high contamination
    save : str, optional
        Path to save figure
    """
    if color_scale is None:
        color_scale = ['blue', 'green', 'yellow', 'orange', 'red']

    if adata is not None:
        if umap_key not in adata.obsm:
            raise KeyError(f"UMAP coordinates '{umap_key}' not found in adata.obsm")
        if contamination_key not in adata.obs:
            raise KeyError(f"Contamination values '{contamination_key}' not found in adata.obs")

        umap_coords = np.asarray(adata.obsm[umap_key])
        contamination = adata.obs[contamination_key].to_numpy()

    elif result is not None:
        estimates = result['estimates']
        if batch is None:
            batch = next(iter(estimates))
        if batch not in estimates:
            raise KeyError(f"Batch '{batch}' not found")

        umap_coords = estimates[batch]['UMAP']
        contamination = estimates[batch]['contamination']
        if umap_coords is None:
            raise ValueError(
                "No UMAP stored for this batch; it is only computed when cluster labels are estimated"
            )
    else:
        raise ValueError("Either adata or result must be provided")

    # Cells from other batches carry NaN coordinates
    valid_mask = ~(np.isnan(umap_coords[:, 0]) | np.isnan(umap_coords[:, 1]) | np.isnan(contamination))
    umap_coords = umap_coords[valid_mask]
    contamination = contamination[valid_mask]

    fig, ax = plt.subplots(figsize=figsize)

    custom_cmap = LinearSegmentedColormap.from_list("contamination", color_scale)
    scatter = ax.scatter(
        umap_coords[:, 0],
        umap_coords[:, 1],
        c=contamination,
        s=size,
        cmap=custom_cmap,
        vmin=0,
        vmax=1
    )

    cbar = fig.colorbar(scatter, ax=ax)
    cbar.set_label('Contamination', rotation=270, labelpad=20)

    ax.set_xlabel('DecontX_UMAP_1')
    ax.set_ylabel('DecontX_UMAP_2')
    ax.set_title(title)
    ax.grid(False)
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)

    fig.tight_layout()

    if save:
        fig.savefig(save, dpi=300, bbox_inches='tight')

    return fig


def plot_contamination_comparison(
        adata,
        contamination_key='decontX_contamination',
        cluster_key='decontX_clusters',
        figsize=(12, 8),
        save: Optional[str] = None
):
    """
    Overview of contamination: histogram, per-cluster box plot, contamination
    against total counts and summary statistics.
    """
    contamination = adata.obs[contamination_key].to_numpy()
    clusters = adata.obs[cluster_key].to_numpy()

    fig, axes = plt.subplots(2, 2, figsize=figsize)

    axes[0, 0].hist(contamination, bins=50, alpha=0.7, edgecolor='black')
    axes[0, 0].set_xlabel('Contamination')
    axes[0, 0].set_ylabel('Frequency')
    axes[0, 0].set_title('Distribution of Contamination')
    axes[0, 0].axvline(np.median(contamination), color='red', linestyle='--',
                       label=f'Median: {np.median(contamination):.3f}')
    axes[0, 0].legend()

    df = pd.DataFrame({'contamination': contamination, 'cluster': clusters.astype(str)})
    sns.boxplot(data=df, x='cluster', y='contamination', ax=axes[0, 1])
    axes[0, 1].set_title('Contamination by Cluster')
    axes[0, 1].tick_params(axis='x', rotation=45)

    total_counts = np.asarray(adata.X.sum(axis=1)).ravel()
    axes[1, 0].scatter(total_counts, contamination, alpha=0.6, s=1)
    axes[1, 0].set_xlabel('Total UMI Counts')
    axes[1, 0].set_ylabel('Contamination')
    axes[1, 0].set_title('Contamination vs Total Counts')

    stats_text = (
        "Summary Statistics:\n\n"
        f"Mean: {np.mean(contamination):.3f}\n"
        f"Median: {np.median(contamination):.3f}\n"
        f"Std: {np.std(contamination):.3f}\n\n"
        f"Min: {np.min(contamination):.3f}\n"
        f"Max: {np.max(contamination):.3f}\n\n"
        f"Cells > 50% contamination: {np.sum(contamination > 0.5):,}\n"
        f"Cells > 70% contamination: {np.sum(contamination > 0.7):,}"
    )
    axes[1, 1].text(0.1, 0.9, stats_text, transform=axes[1, 1].transAxes,
                    verticalalignment='top', fontfamily='monospace')
    axes[1, 1].set_title('Summary Statistics')
    axes[1, 1].axis('off')

    fig.tight_layout()

    if save:
        fig.savefig(save, dpi=300, bbox_inches='tight')

    return fig
