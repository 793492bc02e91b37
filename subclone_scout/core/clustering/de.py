"""Per-cluster marker ranking.

Wraps ``scanpy.tl.rank_genes_groups`` (one cluster vs rest) on the
log-normalized layer and exports the top genes per cluster.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import time

import pandas as pd

from ...errors import ConfigurationError
from .config import DEConfig


@dataclass
class DEResult:
    """Result from differential expression testing.

    Attributes
    ----------
    cluster_de_genes : Dict[str, List[str]]
        Map of cluster ID to list of top DE gene names
    table : pd.DataFrame
        Long table: cluster, rank, names, scores, logfoldchanges, pvals_adj
    key_added : str
        Key in adata.uns containing full DE results
    skipped_clusters : List[str]
        Clusters with fewer than two cells (not tested)
    elapsed_seconds : float
        Time taken for DE computation
    """

    cluster_de_genes: Dict[str, List[str]] = field(default_factory=dict)
    table: Optional[pd.DataFrame] = None
    key_added: str = ""
    skipped_clusters: List[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0


class DERunner:
    """Differential expression test runner.

    Parameters
    ----------
    config : DEConfig, optional
        DE configuration. If None, uses defaults.
    logger : logging.Logger, optional
        Logger instance. If None, creates default logger.

    Example
    -------
    >>> from subclone_scout.core.clustering import DERunner
    >>> result = DERunner().run_de_tests(adata, cluster_key="cluster")
    >>> result.cluster_de_genes["0"][:5]
    """

    def __init__(
        self,
        config: Optional[DEConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or DEConfig()
        self.logger = logger or logging.getLogger(__name__)

    def run_de_tests(
        self,
        adata: Any,  # AnnData
        cluster_key: str,
        output_path: Optional[Path] = None,
        key_added: Optional[str] = None,
    ) -> DEResult:
        """Rank marker genes for every cluster against the rest.

        Results are stored in ``adata.uns[key_added]`` (adata is modified).

        Parameters
        ----------
        adata : AnnData
            AnnData with expression data and cluster assignments
        cluster_key : str
            Column name in adata.obs with cluster labels
        output_path : Path, optional
            CSV path for the top-gene table
        key_added : str, optional
            Key to store results in adata.uns

        Returns
        -------
        DEResult
            DE result with per-cluster gene lists
        """
        import scanpy as sc

        if cluster_key not in adata.obs.columns:
            raise ConfigurationError(
                f"Cluster column '{cluster_key}' not found in obs", source="de"
            )
        cfg = self.config
        layer = cfg.layer
        if layer and layer not in adata.layers:
            self.logger.warning(
                "Layer '%s' not found in adata.layers (available: %s). Falling back to adata.X",
                layer,
                list(adata.layers.keys()),
            )
            layer = None
        key_added = key_added or f"de_{cfg.method}"

        sizes = adata.obs[cluster_key].astype(str).value_counts()
        testable = sorted(sizes[sizes >= 2].index.tolist())
        result = DEResult(key_added=key_added)
        result.skipped_clusters = sorted(sizes[sizes < 2].index.tolist())
        if result.skipped_clusters:
            self.logger.warning(
                "Skipping DE for single-cell clusters: %s", result.skipped_clusters
            )
        if len(testable) < 2:
            self.logger.warning("Fewer than two testable clusters; DE skipped")
            result.table = pd.DataFrame()
            return result

        self.logger.info(
            "Computing differential expression (method=%s, layer=%s, clusters=%d)",
            cfg.method,
            layer or "X",
            len(testable),
        )
        start = time.time()
        groupby = f"_{cluster_key}_de"
        adata.obs[groupby] = adata.obs[cluster_key].astype(str).astype("category")
        try:
            sc.tl.rank_genes_groups(
                adata,
                groupby=groupby,
                groups=testable,
                reference="rest",
                method=cfg.method,
                n_genes=cfg.n_genes,
                layer=layer,
                use_raw=False,
                tie_correct=cfg.tie_correct,
                key_added=key_added,
            )
        finally:
            del adata.obs[groupby]
        result.elapsed_seconds = time.time() - start

        frames = []
        for cluster in testable:
            df = sc.get.rank_genes_groups_df(adata, group=cluster, key=key_added)
            df = df.dropna(subset=["names"]).head(cfg.n_genes)
            result.cluster_de_genes[cluster] = df["names"].astype(str).tolist()
            df.insert(0, "rank", range(1, len(df) + 1))
            df.insert(0, "cluster", cluster)
            frames.append(df)
        result.table = pd.concat(frames, ignore_index=True)

        if output_path is not None:
            from ...io import atomic_write_dataframe

            atomic_write_dataframe(result.table, output_path, sep=",", index=False)
            self.logger.info("Saved marker ranking to %s", output_path)

        self.logger.info(
            "DE completed for %d clusters in %.1f seconds", len(testable), result.elapsed_seconds
        )
        return result
