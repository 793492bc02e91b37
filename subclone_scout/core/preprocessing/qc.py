"""Cell-level quality control.

Computes per-cell detected-gene counts and mitochondrial count fraction
and removes cells outside strict bounds.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import sparse

from .config import QCConfig


# Reason columns for tracking removal causes
REASON_COLUMNS = [
    "low_genes",
    "high_genes",
    "high_mito",
]


@dataclass
class QCResult:
    """Result from QC filtering.

    Attributes
    ----------
    adata : AnnData
        Filtered container (new object, QC metrics in obs)
    cells_total : int
        Total cells before filtering
    cells_removed : int
        Number of cells removed
    removal_fraction : float
        Fraction of cells removed
    reason_counts : Dict[str, int]
        Counts per removal reason (a cell can have several)
    removal_records : List[Dict]
        One record per removed cell
    """

    adata: Any = None
    cells_total: int = 0
    cells_removed: int = 0
    removal_fraction: float = 0.0
    reason_counts: Dict[str, int] = field(default_factory=dict)
    removal_records: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        result = {
            "cells_total": self.cells_total,
            "cells_removed": self.cells_removed,
            "cells_retained": self.cells_total - self.cells_removed,
            "removal_fraction": round(self.removal_fraction, 4),
        }
        for reason in REASON_COLUMNS:
            result[f"removed_{reason}"] = self.reason_counts.get(reason, 0)
        return result

    def removal_table(self) -> pd.DataFrame:
        """Removed cells as a DataFrame (cell_id, reasons, metrics)."""
        columns = ["cell_id", "reasons", "n_genes_detected", "mito_fraction"]
        return pd.DataFrame(self.removal_records, columns=columns)


def _counts_matrix(adata: Any) -> Any:
    if "counts" in adata.layers:
        return adata.layers["counts"]
    return adata.X


class CellQC:
    """Cell-level quality control filter.

    Parameters
    ----------
    config : QCConfig
        QC configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from subclone_scout.core.preprocessing import CellQC, QCConfig
    >>> qc = CellQC(QCConfig(min_genes=200, max_genes=6000, max_mito_fraction=0.15))
    >>> result = qc.filter_cells(adata)
    >>> result.adata.n_obs <= adata.n_obs
    True
    """

    def __init__(
        self,
        config: Optional[QCConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or QCConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def mito_mask(self, adata: Any) -> np.ndarray:
        """Boolean mask of genes matching the mitochondrial pattern."""
        flags = 0 if self.config.mito_case_sensitive else re.IGNORECASE
        pattern = re.compile(self.config.mito_pattern, flags)
        if "gene_symbol" in adata.var.columns:
            names = adata.var["gene_symbol"].astype(str)
        else:
            names = pd.Series(adata.var_names, dtype=str)
        return np.array([bool(pattern.match(name)) for name in names], dtype=bool)

    def compute_metrics(self, adata: Any) -> pd.DataFrame:
        """Compute per-cell QC metrics.

        Returns
        -------
        pd.DataFrame
            Indexed by cell id with columns n_genes_detected,
            total_counts, mito_fraction
        """
        counts = _counts_matrix(adata)
        mito = self.mito_mask(adata)

        if sparse.issparse(counts):
            counts = counts.tocsr()
            n_genes = np.asarray((counts > 0).sum(axis=1)).ravel()
            total = np.asarray(counts.sum(axis=1)).ravel()
            mito_total = np.asarray(counts[:, mito].sum(axis=1)).ravel()
        else:
            counts = np.asarray(counts)
            n_genes = (counts > 0).sum(axis=1)
            total = counts.sum(axis=1)
            mito_total = counts[:, mito].sum(axis=1)

        mito_fraction = np.zeros(len(total), dtype=float)
        has_counts = total > 0
        mito_fraction[has_counts] = mito_total[has_counts] / total[has_counts]

        self.logger.debug("Matched %d mitochondrial genes", int(mito.sum()))
        return pd.DataFrame(
            {
                "n_genes_detected": n_genes.astype(int),
                "total_counts": total.astype(float),
                "mito_fraction": mito_fraction,
            },
            index=adata.obs_names,
        )

    def filter_cells(self, adata: Any) -> QCResult:
        """Filter cells on detected genes and mitochondrial fraction.

        Parameters
        ----------
        adata : AnnData
            Expression container with raw counts (not modified)

        Returns
        -------
        QCResult
            Filtering result holding a new, filtered container
        """
        cfg = self.config
        metrics = self.compute_metrics(adata)

        reasons = pd.DataFrame(index=metrics.index)
        reasons["low_genes"] = metrics["n_genes_detected"] <= cfg.min_genes
        reasons["high_genes"] = metrics["n_genes_detected"] >= cfg.max_genes
        reasons["high_mito"] = metrics["mito_fraction"] >= cfg.max_mito_fraction

        flagged = reasons.any(axis=1).to_numpy()
        keep = ~flagged

        filtered = adata[keep].copy()
        for col in metrics.columns:
            filtered.obs[col] = metrics[col].to_numpy()[keep]
        filtered.obs["qc_pass"] = True

        result = QCResult(cells_total=adata.n_obs)
        for cell_id in metrics.index[flagged]:
            cell_reasons = [name for name in REASON_COLUMNS if bool(reasons.at[cell_id, name])]
            result.removal_records.append(
                {
                    "cell_id": cell_id,
                    "reasons": ";".join(cell_reasons),
                    "n_genes_detected": int(metrics.at[cell_id, "n_genes_detected"]),
                    "mito_fraction": float(metrics.at[cell_id, "mito_fraction"]),
                }
            )
        for reason in REASON_COLUMNS:
            result.reason_counts[reason] = int(reasons[reason].sum())

        result.adata = filtered
        result.cells_removed = int(flagged.sum())
        result.removal_fraction = (
            result.cells_removed / result.cells_total if result.cells_total > 0 else 0.0
        )
        result.adata.uns["qc"] = {
            "min_genes": cfg.min_genes,
            "max_genes": cfg.max_genes,
            "max_mito_fraction": cfg.max_mito_fraction,
            "mito_pattern": cfg.mito_pattern,
            "cells_removed": result.cells_removed,
        }

        self.logger.info(
            "QC removed %d/%d cells (low_genes=%d, high_genes=%d, high_mito=%d)",
            result.cells_removed,
            result.cells_total,
            result.reason_counts["low_genes"],
            result.reason_counts["high_genes"],
            result.reason_counts["high_mito"],
        )
        return result
