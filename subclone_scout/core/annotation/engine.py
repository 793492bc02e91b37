"""Annotation engine for marker-score cell-type labeling.

Orchestrates marker resolution, per-cell gene-set scoring and label
assignment per cluster (or per cell).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd

from ...errors import ConfigurationError
from .assignment import annotate_obs, majority_labels, resolve_labels
from .config import AnnotationConfig
from .marker_loading import MarkerSet, load_marker_sets
from .markers import DEFAULT_MARKER_SETS
from .scoring import score_column, score_gene_sets


@dataclass
class AnnotationResult:
    """Result from the annotation stage.

    Attributes:
        adata: New AnnData with score and label columns in obs
        level: 'cluster' or 'cell'
        cell_scores: Cells x marker sets
        unit_scores: Scores used for labeling (cluster means or cell scores)
        label_table: One row per labeled unit
        ambiguous_ids: Units whose tie could not be resolved
        marker_sets: Resolved marker sets
    """

    adata: Any
    level: str
    cell_scores: pd.DataFrame
    unit_scores: pd.DataFrame
    label_table: pd.DataFrame
    ambiguous_ids: List[str] = field(default_factory=list)
    marker_sets: List[MarkerSet] = field(default_factory=list)

    @property
    def cluster_annotations(self) -> Optional[pd.DataFrame]:
        return self.label_table if self.level == "cluster" else None

    @property
    def ambiguous_clusters(self) -> List[str]:
        return list(self.ambiguous_ids) if self.level == "cluster" else []

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        table = self.label_table
        return {
            "level": self.level,
            "n_units": int(len(table)),
            "n_ties": int(table["is_tie"].sum()),
            "n_resolved_by_prior": int((table["resolution"] == "prior").sum()),
            "ambiguous": list(self.ambiguous_ids),
            "label_counts": table["assigned_label"].value_counts().to_dict(),
        }


class AnnotationEngine:
    """Marker-score annotator.

    Parameters
    ----------
    config : AnnotationConfig, optional
        Annotation configuration
    marker_sets : mapping or path, optional
        Label -> gene symbols, or a YAML/JSON file. Defaults to
        DEFAULT_MARKER_SETS.
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> engine = AnnotationEngine(marker_sets={"A": ["g1", "g2"], "B": ["g3", "g4"]})
    >>> result = engine.run(adata_clustered)
    >>> result.cluster_annotations[["cluster_id", "assigned_label"]]
    """

    def __init__(
        self,
        config: Optional[AnnotationConfig] = None,
        marker_sets: Optional[Union[Mapping[str, Sequence[str]], Path, str]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or AnnotationConfig()
        self.config.validate()
        self.marker_map = marker_sets if marker_sets is not None else DEFAULT_MARKER_SETS
        self.logger = logger or logging.getLogger(__name__)

    def resolve_marker_sets(self, adata: Any) -> List[MarkerSet]:
        symbols = adata.var["gene_symbol"].astype(str).tolist() if "gene_symbol" in adata.var else None
        return load_marker_sets(
            self.marker_map, adata.var_names.tolist(), symbols, logger=self.logger
        )

    def _prior_for_clusters(self, obs: pd.DataFrame) -> Dict[str, str]:
        cfg = self.config
        if cfg.prior_label_key not in obs.columns:
            self.logger.info(
                "No prior label column '%s'; ties become '%s'",
                cfg.prior_label_key,
                cfg.ambiguous_label,
            )
            return {}
        return majority_labels(obs, cfg.cluster_key, cfg.prior_label_key).to_dict()

    def run(self, adata: Any) -> AnnotationResult:
        """Score and label a clustered container, returning a new one.

        Raises
        ------
        ConfigurationError
            If the cluster column is missing (cluster level)
        EmptyGeneSetError
            If a marker set has no genes in the container
        """
        cfg = self.config
        if cfg.level == "cluster" and cfg.cluster_key not in adata.obs.columns:
            raise ConfigurationError(
                f"Cluster column '{cfg.cluster_key}' not found in obs; run clustering first",
                source="annotation",
            )

        marker_sets = self.resolve_marker_sets(adata)
        cell_scores = score_gene_sets(
            adata,
            marker_sets,
            method=cfg.method,
            layer=cfg.layer,
            ctrl_size=cfg.ctrl_size,
            n_bins=cfg.n_bins,
            random_seed=cfg.random_seed,
            logger=self.logger,
        )

        out = adata.copy()
        for label in cell_scores.columns:
            out.obs[score_column(label)] = cell_scores[label].to_numpy()

        if cfg.level == "cluster":
            clusters = out.obs[cfg.cluster_key].astype(str)
            unit_scores = cell_scores.groupby(clusters.to_numpy(), sort=True).mean()
            unit_scores.index = unit_scores.index.astype(str)
            prior = self._prior_for_clusters(out.obs)
            table = resolve_labels(unit_scores, prior, cfg.tie_tolerance, cfg.ambiguous_label)
            sizes = clusters.value_counts()
            table.insert(0, "cluster_id", table.index.astype(str))
            table["n_cells"] = [int(sizes.get(c, 0)) for c in table["cluster_id"]]
            table = table.reset_index(drop=True)
            annotate_obs(out, table, cfg.cluster_key, cfg.label_key, logger=self.logger)
            ambiguous = table.loc[table["resolution"] == "ambiguous", "cluster_id"].tolist()
        else:
            unit_scores = cell_scores
            prior = {}
            if cfg.prior_label_key in out.obs.columns:
                prior = out.obs[cfg.prior_label_key].astype(str).to_dict()
            table = resolve_labels(unit_scores, prior, cfg.tie_tolerance, cfg.ambiguous_label)
            table.insert(0, "cell_id", table.index.astype(str))
            out.obs[cfg.label_key] = table["assigned_label"].astype(str).to_numpy()
            out.obs[f"{cfg.label_key}_score"] = table["assigned_score"].to_numpy()
            table = table.reset_index(drop=True)
            ambiguous = table.loc[table["resolution"] == "ambiguous", "cell_id"].tolist()

        if ambiguous:
            self.logger.warning(
                "%d %s(s) with unresolved score ties labeled '%s': %s",
                len(ambiguous),
                cfg.level,
                cfg.ambiguous_label,
                ambiguous[:20],
            )
        out.uns["annotation"] = {
            "method": cfg.method,
            "level": cfg.level,
            "label_key": cfg.label_key,
            "marker_sets": {ms.label: list(ms.resolved_markers) for ms in marker_sets},
            "n_ambiguous": len(ambiguous),
        }

        return AnnotationResult(
            adata=out,
            level=cfg.level,
            cell_scores=cell_scores,
            unit_scores=unit_scores,
            label_table=table,
            ambiguous_ids=ambiguous,
            marker_sets=marker_sets,
        )
