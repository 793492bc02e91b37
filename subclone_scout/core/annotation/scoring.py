"""Gene-set scoring for cell-type annotation.

Two scoring methods are supported:

- ``module``: mean expression of the set minus the mean of random
  control genes drawn from matching expression bins
  (``scanpy.tl.score_genes``).
- ``mean``: plain mean expression of the set genes.

Scores are computed per cell on the log-normalized layer.
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ConfigurationError, EmptyGeneSetError
from .marker_loading import MarkerSet

SCORE_PREFIX = "score_"


def score_column(label: str) -> str:
    """obs column name holding the score of a marker set."""
    return f"{SCORE_PREFIX}{label}"


def _expression_view(adata: Any, layer: Optional[str]) -> Any:
    """Lightweight AnnData exposing ``layer`` as X (obs/var names only)."""
    import anndata as ad

    if layer is None or layer == "X":
        matrix = adata.X
    elif layer in adata.layers:
        matrix = adata.layers[layer]
    else:
        raise ConfigurationError(
            f"Layer '{layer}' not found (available: {list(adata.layers.keys())})",
            source="annotation",
        )
    return ad.AnnData(
        X=matrix,
        obs=pd.DataFrame(index=adata.obs_names.copy()),
        var=pd.DataFrame(index=adata.var_names.copy()),
    )


def check_marker_sets(marker_sets: List[MarkerSet]) -> None:
    """Raise EmptyGeneSetError for the first set with no genes present."""
    if not marker_sets:
        raise ConfigurationError("No marker sets given", source="annotation")
    for ms in marker_sets:
        if not ms.resolved_markers:
            raise EmptyGeneSetError(
                f"Marker set '{ms.label}' has none of its genes in the container "
                f"(looked for: {list(ms.markers)})",
                source=ms.label,
            )


def score_gene_sets(
    adata: Any,
    marker_sets: List[MarkerSet],
    method: str = "module",
    layer: Optional[str] = "lognorm",
    ctrl_size: int = 50,
    n_bins: int = 25,
    random_seed: int = 0,
    logger: Optional[logging.Logger] = None,
) -> pd.DataFrame:
    """Score every cell against every marker set.

    Parameters
    ----------
    adata : AnnData
        Container with log-normalized expression (not modified)
    marker_sets : List[MarkerSet]
        Resolved marker sets
    method : str
        'module' (background-corrected) or 'mean'
    layer : str, optional
        Layer to score; None or 'X' uses adata.X
    ctrl_size : int
        Control genes per expression bin (module method)
    n_bins : int
        Expression bins for control gene sampling (module method)
    random_seed : int
        Seed for control gene sampling

    Returns
    -------
    pd.DataFrame
        Cells x marker-set labels

    Raises
    ------
    EmptyGeneSetError
        If a marker set has no genes present in the container
    """
    import scanpy as sc

    if logger is None:
        logger = logging.getLogger(__name__)
    if method not in ("module", "mean"):
        raise ConfigurationError(f"Unknown scoring method: {method}", source="annotation")
    check_marker_sets(marker_sets)

    view = _expression_view(adata, layer)
    scores = pd.DataFrame(index=adata.obs_names.copy())
    for ms in marker_sets:
        genes = list(ms.resolved_markers)
        if method == "module":
            sc.tl.score_genes(
                view,
                gene_list=genes,
                ctrl_size=ctrl_size,
                n_bins=n_bins,
                score_name="_score",
                random_state=random_seed,
                use_raw=False,
            )
            values = view.obs["_score"].to_numpy(dtype=float)
        else:
            idx = view.var_names.get_indexer(genes)
            block = view.X[:, idx]
            if sparse.issparse(block):
                values = np.asarray(block.mean(axis=1)).ravel()
            else:
                values = np.asarray(block).mean(axis=1)
        scores[ms.label] = values
        logger.debug("Scored '%s' with %d genes", ms.label, len(genes))

    logger.info("Scored %d cells against %d marker sets (%s)", adata.n_obs, len(marker_sets), method)
    return scores
