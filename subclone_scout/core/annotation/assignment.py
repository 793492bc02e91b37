"""Label assignment from marker-set scores.

The label of a unit (cluster or cell) is the marker set with the
highest score. Candidates within ``tie_tolerance`` of the best score are
tied. A tie is resolved to the unit's prior label when that label is
among the tied candidates; otherwise the unit gets the ambiguous label
and is reported.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

import numpy as np
import pandas as pd

LABEL_TABLE_COLUMNS = [
    "assigned_label",
    "assigned_score",
    "runner_up",
    "margin",
    "is_tie",
    "resolution",
]


def resolve_labels(
    scores: pd.DataFrame,
    prior_labels: Optional[Mapping[str, Any]] = None,
    tie_tolerance: float = 1e-9,
    ambiguous_label: str = "Ambiguous",
) -> pd.DataFrame:
    """Pick one label per row of a score table.

    Args:
        scores: Units x candidate labels (higher is better)
        prior_labels: Optional unit -> previously assigned label
        tie_tolerance: Scores within this distance of the best are tied
        ambiguous_label: Label for ties the prior cannot resolve

    Returns:
        DataFrame indexed like ``scores`` with LABEL_TABLE_COLUMNS.
        ``resolution`` is 'score', 'prior' or 'ambiguous'.
    """
    labels = list(scores.columns)
    prior_labels = prior_labels or {}
    records = []
    for unit, row in scores.iterrows():
        values = row.to_numpy(dtype=float)
        order = np.argsort(-values, kind="stable")
        best = values[order[0]]
        tied = [labels[i] for i in order if values[i] >= best - tie_tolerance]
        others = [i for i in order if labels[i] not in tied]

        if len(tied) == 1:
            label, resolution = tied[0], "score"
        else:
            prior = prior_labels.get(unit)
            if prior is not None and prior in tied:
                label, resolution = prior, "prior"
            else:
                label, resolution = ambiguous_label, "ambiguous"

        if len(tied) > 1:
            runner_up = tied[1] if label == tied[0] else tied[0]
            margin = 0.0
        elif others:
            runner_up = labels[others[0]]
            margin = float(best - values[others[0]])
        else:
            runner_up, margin = "", float("nan")

        records.append(
            {
                "assigned_label": label,
                "assigned_score": float(best),
                "runner_up": runner_up,
                "margin": margin,
                "is_tie": len(tied) > 1,
                "resolution": resolution,
            }
        )
    return pd.DataFrame(records, index=scores.index, columns=LABEL_TABLE_COLUMNS)


def majority_labels(obs: pd.DataFrame, cluster_key: str, label_key: str) -> pd.Series:
    """Most frequent ``label_key`` value per cluster (alphabetical on equal counts)."""
    frame = obs[[cluster_key, label_key]].dropna().astype(str)
    counts = frame.groupby([cluster_key, label_key]).size().reset_index(name="n")
    counts = counts.sort_values(["n", label_key], ascending=[False, True], kind="stable")
    top = counts.drop_duplicates(subset=[cluster_key], keep="first")
    return pd.Series(top[label_key].to_numpy(), index=top[cluster_key].to_numpy())


def annotate_obs(
    adata: Any,
    cluster_annotations: pd.DataFrame,
    cluster_key: str,
    label_col: str,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Map cluster-level annotations to cells in adata.obs.

    Creates ``{label_col}`` and ``{label_col}_score`` in adata.obs
    (adata is modified in place).

    Args:
        adata: AnnData object to modify
        cluster_annotations: DataFrame with cluster_id, assigned_label,
            assigned_score columns
        cluster_key: Column in adata.obs with cluster assignments
        label_col: Name for the output label column
        logger: Optional logger instance
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    cluster_ids = cluster_annotations["cluster_id"].astype(str)
    mapping = dict(zip(cluster_ids, cluster_annotations["assigned_label"]))
    score_mapping = dict(zip(cluster_ids, cluster_annotations["assigned_score"]))

    clusters = adata.obs[cluster_key].astype(str)
    adata.obs[label_col] = clusters.map(mapping).fillna("Unknown").astype(str).to_numpy()
    adata.obs[f"{label_col}_score"] = clusters.map(score_mapping).fillna(0.0).astype(float).to_numpy()

    logger.info(
        "Annotated %d cells with %d unique labels",
        adata.n_obs,
        adata.obs[label_col].nunique(),
    )
