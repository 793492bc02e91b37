"""Dimensionality reduction and graph clustering.

Fixed order: PCA -> neighbor graph on the first ``n_pcs`` components ->
UMAP from that graph -> Leiden on the same graph.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from ...errors import ConfigurationError
from .config import ClusteringConfig


@dataclass
class ClusteringResult:
    """Result from clustering operation.

    Attributes
    ----------
    adata : AnnData
        New container with X_pca, X_umap, graph and cluster column
    n_clusters : int
        Number of clusters found
    cluster_key : str
        Key in adata.obs containing cluster assignments
    cluster_sizes : Dict[str, int]
        Map of cluster ID to cell count
    n_comps_used : int
        Principal components computed (after capping to data size)
    n_pcs_used : int
        Components used for the neighbor graph
    variance_ratio : List[float]
        Variance ratio per computed component
    """

    adata: Any = None
    n_clusters: int = 0
    cluster_key: str = "cluster"
    cluster_sizes: Dict[str, int] = field(default_factory=dict)
    n_comps_used: int = 0
    n_pcs_used: int = 0
    variance_ratio: List[float] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_clusters": self.n_clusters,
            "cluster_key": self.cluster_key,
            "cluster_sizes": dict(self.cluster_sizes),
            "n_comps_used": self.n_comps_used,
            "n_pcs_used": self.n_pcs_used,
            "variance_explained_used": float(np.sum(self.variance_ratio[: self.n_pcs_used])),
        }


class ClusteringEngine:
    """PCA / neighbors / UMAP / Leiden engine.

    Parameters
    ----------
    config : ClusteringConfig, optional
        Clustering configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from subclone_scout.core.clustering import ClusteringEngine, ClusteringConfig
    >>> engine = ClusteringEngine(ClusteringConfig(n_pcs=20, resolution=0.5))
    >>> result = engine.run_clustering(adata_norm)
    >>> result.adata.obs["cluster"].value_counts()
    """

    def __init__(
        self,
        config: Optional[ClusteringConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ClusteringConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def _pca_mask(self, adata: Any) -> Optional[np.ndarray]:
        if not self.config.use_highly_variable or "highly_variable" not in adata.var:
            return None
        mask = adata.var["highly_variable"].to_numpy(dtype=bool)
        if mask.sum() < 2:
            self.logger.warning(
                "Only %d highly variable genes flagged; using all genes for PCA",
                int(mask.sum()),
            )
            return None
        return mask

    def run_clustering(self, adata: Any) -> ClusteringResult:
        """Run the full clustering pipeline on a copy of ``adata``.

        Parameters
        ----------
        adata : AnnData
            Normalized container (not modified)

        Returns
        -------
        ClusteringResult
            Result holding the new container and cluster statistics
        """
        import scanpy as sc

        cfg = self.config
        if adata.n_obs < 3:
            raise ConfigurationError(
                f"Clustering needs at least 3 cells, got {adata.n_obs}", source="clustering"
            )
        out = adata.copy()

        if cfg.scale:
            sc.pp.scale(out, zero_center=True, max_value=cfg.scale_clip)

        mask = self._pca_mask(out)
        n_features = int(mask.sum()) if mask is not None else out.n_vars
        n_comps = min(cfg.n_comps, n_features - 1, out.n_obs - 1)
        n_pcs = min(cfg.n_pcs, n_comps)
        if n_comps < cfg.n_comps:
            self.logger.warning(
                "Capping n_comps %d -> %d (data has %d cells x %d features)",
                cfg.n_comps,
                n_comps,
                out.n_obs,
                n_features,
            )

        self.logger.info(
            "Running clustering: n_comps=%d, n_pcs=%d, neighbors_k=%d, resolution=%.3f, seed=%d",
            n_comps,
            n_pcs,
            cfg.neighbors_k,
            cfg.resolution,
            cfg.random_seed,
        )

        sc.tl.pca(
            out,
            n_comps=n_comps,
            mask_var=mask,
            svd_solver="arpack",
            random_state=cfg.random_seed,
        )
        sc.pp.neighbors(
            out,
            n_neighbors=min(cfg.neighbors_k, out.n_obs - 1),
            n_pcs=n_pcs,
            random_state=cfg.random_seed,
        )
        if cfg.compute_umap:
            sc.tl.umap(out, random_state=cfg.random_seed)
        sc.tl.leiden(
            out,
            resolution=cfg.resolution,
            random_state=cfg.random_seed,
            key_added=cfg.cluster_key,
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )

        out.uns["clustering"] = {
            "n_comps": n_comps,
            "n_pcs": n_pcs,
            "neighbors_k": cfg.neighbors_k,
            "resolution": cfg.resolution,
            "random_seed": cfg.random_seed,
            "cluster_key": cfg.cluster_key,
        }

        result = ClusteringResult(adata=out, cluster_key=cfg.cluster_key)
        result.n_clusters = out.obs[cfg.cluster_key].nunique()
        result.cluster_sizes = {
            str(k): int(v) for k, v in out.obs[cfg.cluster_key].value_counts().items()
        }
        result.n_comps_used = n_comps
        result.n_pcs_used = n_pcs
        result.variance_ratio = [float(v) for v in out.uns["pca"]["variance_ratio"]]

        self.logger.info(
            "Computed Leiden clustering with %d clusters (%.1f%% variance in %d PCs)",
            result.n_clusters,
            100 * sum(result.variance_ratio[:n_pcs]),
            n_pcs,
        )
        return result

    @staticmethod
    def variance_table(adata: Any) -> pd.DataFrame:
        """Variance-explained curve for choosing ``n_pcs``.

        Returns
        -------
        pd.DataFrame
            Columns: pc (1-based), variance_ratio, cumulative_variance_ratio

        Raises
        ------
        ConfigurationError
            If PCA has not been run on ``adata``
        """
        if "pca" not in adata.uns or "variance_ratio" not in adata.uns["pca"]:
            raise ConfigurationError("No PCA results in uns['pca']", source="clustering")
        ratio = np.asarray(adata.uns["pca"]["variance_ratio"], dtype=float)
        return pd.DataFrame(
            {
                "pc": np.arange(1, len(ratio) + 1),
                "variance_ratio": ratio,
                "cumulative_variance_ratio": np.cumsum(ratio),
            }
        )
