"""Reference/observation partition and CNV input export.

The exported bundle is one-way: a genes x cells count table and a
two-column cell -> group table, joined on cell identifiers. Nothing is
read back into the expression container.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ConfigurationError, EmptyGroupError
from ...io import atomic_write_dataframe
from .config import CNVConfig

logger = logging.getLogger(__name__)

COUNTS_FILENAME = "counts.matrix"
ANNOTATIONS_FILENAME = "cell_annotations.txt"


@dataclass
class CellPartition:
    """Reference and observation cells.

    Attributes
    ----------
    reference : List[str]
        Reference cell ids (container order)
    observation : List[str]
        Observation cell ids (container order)
    groups : pd.Series
        Cell id -> group label for all partitioned cells
    reference_groups : List[str]
        Reference labels with at least one cell
    group_sizes : Dict[str, int]
        Cells per group label
    """

    reference: List[str] = field(default_factory=list)
    observation: List[str] = field(default_factory=list)
    groups: pd.Series = field(default_factory=lambda: pd.Series(dtype=str))
    reference_groups: List[str] = field(default_factory=list)
    group_sizes: Dict[str, int] = field(default_factory=dict)


@dataclass
class CNVInputBundle:
    """Inputs handed to the CNV backend.

    Attributes
    ----------
    counts : pd.DataFrame
        Genes x cells, rounded to ``decimals``
    annotations : pd.DataFrame
        Columns cell, group (one row per exported cell)
    reference_groups : List[str]
        Reference labels present in ``annotations``
    decimals : int
        Rounding precision applied to counts
    """

    counts: pd.DataFrame
    annotations: pd.DataFrame
    reference_groups: List[str]
    decimals: int = 3


def partition_cells(adata: Any, config: Optional[CNVConfig] = None) -> CellPartition:
    """Split cells into reference and observation groups by label.

    Raises
    ------
    ConfigurationError
        If the label column is missing
    EmptyGroupError
        If the reference or observation set is empty, or a named group
        has no cells (unless allow_missing_groups)
    """
    config = config or CNVConfig()
    if config.label_key not in adata.obs.columns:
        raise ConfigurationError(
            f"Label column '{config.label_key}' not found in obs", source="cnv"
        )

    labels = adata.obs[config.label_key].astype(object)
    labels = labels[labels.notna()].astype(str)
    sizes = labels.value_counts()

    reference_set = set(config.reference_groups)
    if config.observation_groups is not None:
        observation_set = set(config.observation_groups)
    else:
        observation_set = set(sizes.index) - reference_set

    named = list(config.reference_groups) + list(config.observation_groups or [])
    missing = [g for g in named if sizes.get(g, 0) == 0]
    if missing and not config.allow_missing_groups:
        raise EmptyGroupError(
            f"Groups with no cells in '{config.label_key}': {missing}", source="cnv"
        )

    is_ref = labels.isin(reference_set)
    is_obs = labels.isin(observation_set)
    if not is_ref.any():
        raise EmptyGroupError(
            f"Reference group is empty (labels {sorted(reference_set)})", source="cnv"
        )
    if not is_obs.any():
        raise EmptyGroupError("Observation group is empty", source="cnv")

    keep = is_ref | is_obs
    in_scope = sizes[sizes.index.isin(reference_set | observation_set)]
    partition = CellPartition(
        reference=labels.index[is_ref.to_numpy()].tolist(),
        observation=labels.index[is_obs.to_numpy()].tolist(),
        groups=labels[keep],
        reference_groups=[g for g in config.reference_groups if sizes.get(g, 0) > 0],
        group_sizes={str(k): int(v) for k, v in in_scope.items()},
    )
    logger.info(
        "Partitioned %d reference and %d observation cells (%d groups)",
        len(partition.reference),
        len(partition.observation),
        len(partition.group_sizes),
    )
    return partition


def round_counts(matrix: Any, decimals: int = 3) -> Any:
    """Round to ``decimals`` without changing which entries are zero.

    Non-zero values that would round to zero are set to
    ``sign(x) * 10**-decimals``. Works on dense arrays and sparse matrices.
    """
    if sparse.issparse(matrix):
        rounded = matrix.copy().astype(np.float64)
        rounded.data = round_counts(rounded.data, decimals)
        return rounded

    values = np.asarray(matrix, dtype=np.float64)
    rounded = np.round(values, decimals)
    vanished = (values != 0) & (rounded == 0)
    if np.any(vanished):
        rounded[vanished] = np.sign(values[vanished]) * 10.0 ** (-decimals)
    return rounded


def build_bundle(
    adata: Any,
    config: Optional[CNVConfig] = None,
    partition: Optional[CellPartition] = None,
) -> CNVInputBundle:
    """Build the genes x cells count table and the group annotation table."""
    config = config or CNVConfig()
    partition = partition or partition_cells(adata, config)

    if config.counts_layer in adata.layers:
        source = adata.layers[config.counts_layer]
    else:
        logger.warning("Layer '%s' not found; exporting adata.X", config.counts_layer)
        source = adata.X

    cells = [c for c in adata.obs_names if c in partition.groups.index]
    idx = adata.obs_names.get_indexer(cells)
    block = round_counts(source[idx, :], config.decimals)
    dense = block.toarray() if sparse.issparse(block) else np.asarray(block)

    counts = pd.DataFrame(dense.T, index=adata.var_names.copy(), columns=pd.Index(cells))
    annotations = pd.DataFrame({"cell": cells, "group": partition.groups.loc[cells].to_numpy()})
    return CNVInputBundle(
        counts=counts,
        annotations=annotations,
        reference_groups=list(partition.reference_groups),
        decimals=config.decimals,
    )


def export_bundle(bundle: CNVInputBundle, output_dir: Union[str, Path]) -> Dict[str, Path]:
    """Write counts.matrix and cell_annotations.txt atomically.

    Returns
    -------
    Dict[str, Path]
        Keys 'counts' and 'annotations'
    """
    output_dir = Path(output_dir)
    paths = {
        "counts": atomic_write_dataframe(bundle.counts, output_dir / COUNTS_FILENAME, sep="\t"),
        "annotations": atomic_write_dataframe(
            bundle.annotations, output_dir / ANNOTATIONS_FILENAME, sep="\t", header=False, index=False
        ),
    }
    logger.info(
        "Exported CNV inputs: %d genes x %d cells to %s",
        bundle.counts.shape[0],
        bundle.counts.shape[1],
        output_dir,
    )
    return paths


def load_gene_order(path: Union[str, Path]) -> pd.DataFrame:
    """Read a gene-order file (gene, chromosome, start, end; no header).

    Returns
    -------
    pd.DataFrame
        Indexed by gene with chromosome, start, end columns

    Raises
    ------
    ConfigurationError
        If the file is missing or malformed
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Gene order file not found: {path}", source="cnv")
    df = pd.read_csv(path, sep="\t", header=None, comment="#", dtype={0: str, 1: str})
    if df.shape[1] < 4:
        raise ConfigurationError(
            f"Gene order file needs 4 columns (gene, chromosome, start, end), got {df.shape[1]}",
            source=str(path),
        )
    df = df.iloc[:, :4]
    df.columns = ["gene", "chromosome", "start", "end"]
    try:
        df["start"] = df["start"].astype(int)
        df["end"] = df["end"].astype(int)
    except ValueError as exc:
        raise ConfigurationError(f"Non-integer gene positions: {exc}", source=str(path)) from exc
    df = df.drop_duplicates(subset="gene", keep="first").set_index("gene")
    return df
