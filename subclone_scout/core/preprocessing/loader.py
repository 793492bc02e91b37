"""Data loader for the expression container.

Reads a gene list, a cell metadata table, an optional cell list and a
Matrix Market count matrix (rows = genes, columns = cells) and builds
one cells x genes AnnData with raw counts in ``layers['counts']``.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import io as sio
from scipy import sparse

from ...errors import ConfigurationError, DimensionMismatch, InvalidCountsError
from .config import LoaderConfig

PathLike = Union[str, Path]


@dataclass
class LoadResult:
    """Result from loading one dataset.

    Attributes
    ----------
    adata : AnnData
        Cells x genes expression container
    n_cells : int
        Number of cells
    n_genes : int
        Number of genes
    n_duplicate_genes : int
        Gene identifiers that occurred more than once
    n_unused_metadata_rows : int
        Metadata rows without a matching column in the matrix
    sources : Dict[str, str]
        Paths the container was built from
    """

    adata: Any = None
    n_cells: int = 0
    n_genes: int = 0
    n_duplicate_genes: int = 0
    n_unused_metadata_rows: int = 0
    sources: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "n_cells": self.n_cells,
            "n_genes": self.n_genes,
            "n_duplicate_genes": self.n_duplicate_genes,
            "n_unused_metadata_rows": self.n_unused_metadata_rows,
            **self.sources,
        }


def _separator_for(path: Path) -> str:
    suffixes = [s.lower() for s in path.suffixes if s.lower() != ".gz"]
    if suffixes and suffixes[-1] in (".tsv", ".txt", ".tab"):
        return "\t"
    return ","


class DataLoader:
    """Expression container loader with shape validation.

    Parameters
    ----------
    config : LoaderConfig
        Loader configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> from subclone_scout.core.preprocessing import DataLoader
    >>> loader = DataLoader()
    >>> result = loader.load("genes.txt", "metadata.tsv", "counts.mtx")
    >>> result.adata.shape
    (6000, 21000)
    """

    def __init__(
        self,
        config: Optional[LoaderConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or LoaderConfig()
        self.logger = logger or logging.getLogger(__name__)

    def read_gene_list(self, path: PathLike) -> List[str]:
        """Read gene identifiers, one per line (first tab-separated field)."""
        path = Path(path)
        genes = []
        with open(path, "r", encoding="utf-8") as handle:
            for line in handle:
                line = line.rstrip("\r\n")
                if not line.strip():
                    continue
                genes.append(line.split("\t")[0].strip())
        if not genes:
            raise ConfigurationError("Gene list is empty", source=str(path))
        return genes

    def read_cell_metadata(self, path: PathLike) -> pd.DataFrame:
        """Load the cell metadata table and check required columns.

        Raises
        ------
        ConfigurationError
            If a required column is missing
        """
        path = Path(path)
        df = pd.read_csv(path, sep=_separator_for(path), dtype={self.config.cell_id_col: str})

        missing = [c for c in self.config.required_metadata_cols if c not in df.columns]
        if missing:
            raise ConfigurationError(
                f"Metadata table missing required columns: {missing}",
                source=str(path),
            )

        df[self.config.cell_id_col] = df[self.config.cell_id_col].astype(str)
        return df

    def read_cell_list(self, path: PathLike) -> List[str]:
        """Load an ordered cell list (delimited, header row)."""
        path = Path(path)
        df = pd.read_csv(path, sep=_separator_for(path), dtype={self.config.cell_id_col: str})
        cell_id_col = self.config.cell_id_col
        if cell_id_col not in df.columns:
            raise ConfigurationError(
                f"Cell list missing column '{cell_id_col}'", source=str(path)
            )
        return df[cell_id_col].astype(str).tolist()

    def read_count_matrix(self, path: PathLike) -> sparse.csr_matrix:
        """Load a genes x cells Matrix Market file as CSR.

        Raises
        ------
        InvalidCountsError
            If the matrix holds negative or non-integer values
        """
        path = Path(path)
        matrix = sparse.csr_matrix(sio.mmread(str(path)))

        data = matrix.data
        if data.size:
            if np.any(data < 0):
                raise InvalidCountsError("Count matrix has negative values", source=str(path))
            if np.any(np.mod(data, 1) != 0):
                raise InvalidCountsError("Count matrix has non-integer values", source=str(path))
        return matrix

    def load(
        self,
        genes_path: PathLike,
        metadata_path: PathLike,
        matrix_path: PathLike,
        cell_list_path: Optional[PathLike] = None,
    ) -> LoadResult:
        """Load and validate one dataset.

        Parameters
        ----------
        genes_path : PathLike
            Gene list (one identifier per line, matrix row order)
        metadata_path : PathLike
            Cell metadata table
        matrix_path : PathLike
            Matrix Market count matrix, rows = genes, columns = cells
        cell_list_path : PathLike, optional
            Ordered cell list (matrix column order). Defaults to the
            metadata row order.

        Returns
        -------
        LoadResult
            Result holding the cells x genes AnnData

        Raises
        ------
        DimensionMismatch
            If matrix rows/columns disagree with gene/cell counts, cell ids
            repeat, or cells lack metadata
        """
        import anndata as ad

        cell_id_col = self.config.cell_id_col
        genes = self.read_gene_list(genes_path)
        metadata = self.read_cell_metadata(metadata_path)

        if cell_list_path is not None:
            cells = self.read_cell_list(cell_list_path)
            cell_source = str(cell_list_path)
        else:
            cells = metadata[cell_id_col].tolist()
            cell_source = str(metadata_path)

        dup_cells = pd.Index(cells)[pd.Index(cells).duplicated()].unique().tolist()
        if dup_cells:
            raise DimensionMismatch(
                f"{len(dup_cells)} duplicated cell identifiers (e.g. {dup_cells[:3]})",
                source=cell_source,
            )

        matrix = self.read_count_matrix(matrix_path)
        n_rows, n_cols = matrix.shape
        if n_rows != len(genes) or n_cols != len(cells):
            raise DimensionMismatch(
                f"Matrix shape {n_rows} x {n_cols} does not match "
                f"{len(genes)} genes x {len(cells)} cells",
                source=str(matrix_path),
            )

        meta_ids = metadata[cell_id_col]
        if meta_ids.duplicated().any():
            raise DimensionMismatch(
                f"{int(meta_ids.duplicated().sum())} duplicated rows in metadata",
                source=str(metadata_path),
            )
        metadata = metadata.set_index(cell_id_col)
        missing = pd.Index(cells).difference(metadata.index)
        if len(missing) > 0:
            raise DimensionMismatch(
                f"{len(missing)} cells have no metadata row (e.g. {missing[:3].tolist()})",
                source=str(metadata_path),
            )

        obs = metadata.reindex(cells)
        obs.index = pd.Index(cells, name=None)
        n_unused = len(metadata) - len(cells)
        if n_unused > 0:
            self.logger.warning(
                "Ignoring %d metadata rows not present in the count matrix", n_unused
            )

        var = pd.DataFrame({"gene_symbol": genes}, index=pd.Index(genes))
        counts = matrix.T.tocsr().astype(np.float32)

        adata = ad.AnnData(X=counts, obs=obs, var=var)
        n_dup_genes = int(pd.Index(genes).duplicated().sum())
        if n_dup_genes and self.config.make_var_names_unique:
            adata.var_names_make_unique()
            self.logger.info("Made %d duplicated gene identifiers unique", n_dup_genes)
        adata.layers["counts"] = adata.X.copy()

        result = LoadResult(
            adata=adata,
            n_cells=adata.n_obs,
            n_genes=adata.n_vars,
            n_duplicate_genes=n_dup_genes,
            n_unused_metadata_rows=max(n_unused, 0),
            sources={
                "genes_path": str(genes_path),
                "metadata_path": str(metadata_path),
                "matrix_path": str(matrix_path),
                "cell_list_path": str(cell_list_path) if cell_list_path else "",
            },
        )
        self.logger.info(
            "Loaded expression container: %d cells x %d genes", result.n_cells, result.n_genes
        )
        return result
