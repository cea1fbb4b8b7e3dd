"""
DecontX: Decontamination of ambient RNA in single-cell RNA-seq data

Python implementation of the DecontX algorithm for estimating and removing
contamination in individual cells from ambient RNA.
"""

__version__ = "0.2.0"

from .errors import DecontXError, InvalidInput, InvalidParameter
from .dirichlet import fit_dirichlet
from .model import DecontXModel, LogLikelihoodTracker, add_log_likelihood
from .core import run_decontx
from .clustering import initialize_z
from .simulation import simulate_contamination
from .adapter import (
    decontx,
    get_decontx_counts,
    get_decontx_contamination,
    get_decontx_clusters,
)
from .plotting import plot_contamination_umap, plot_contamination_comparison

__all__ = [
    "decontx",
    "run_decontx",
    "simulate_contamination",
    "DecontXModel",
    "LogLikelihoodTracker",
    "add_log_likelihood",
    "fit_dirichlet",
    "initialize_z",
    "DecontXError",
    "InvalidInput",
    "InvalidParameter",
    "plot_contamination_umap",
    "plot_contamination_comparison",
    "get_decontx_counts",
    "get_decontx_contamination",
    "get_decontx_clusters",
]
