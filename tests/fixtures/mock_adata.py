"""Synthetic count data generators for testing.

Provides functions to create small single-cell count containers and
the on-disk inputs of the load stage without requiring real data.
"""

from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from scipy import io as sio
from scipy import sparse

# Group -> genes expressed highly by that group
GROUP_MARKERS: Dict[str, List[str]] = {
    "T cells": ["CD3D", "CD3E", "CD2"],
    "B cells": ["CD79A", "MS4A1"],
    "Epithelial": ["EPCAM", "KRT8", "KRT18"],
}
MITO_GENES = ["MT-CO1", "MT-ND1", "MT-ATP6"]


def create_count_adata(
    n_cells: int = 240,
    n_filler_genes: int = 40,
    groups: Optional[List[str]] = None,
    seed: int = 42,
) -> "AnnData":
    """Create a cells x genes count container with group-specific markers.

    Parameters
    ----------
    n_cells : int
        Number of cells (split evenly across groups)
    n_filler_genes : int
        Background genes (``GENE_0`` ...) with low Poisson counts
    groups : List[str], optional
        Group labels; defaults to the keys of GROUP_MARKERS
    seed : int
        Random seed for reproducibility

    Returns
    -------
    AnnData
        Raw counts in X and layers['counts'], obs columns cell_type and
        mito_fraction, var column gene_symbol
    """
    import anndata as ad

    rng = np.random.default_rng(seed)
    groups = groups or list(GROUP_MARKERS)

    markers = [g for group in groups for g in GROUP_MARKERS.get(group, [])]
    genes = markers + MITO_GENES + [f"GENE_{i}" for i in range(n_filler_genes)]
    labels = np.array([groups[i % len(groups)] for i in range(n_cells)])

    counts = rng.poisson(1.0, size=(n_cells, len(genes))).astype(np.float32)
    for group in groups:
        rows = labels == group
        for gene in GROUP_MARKERS.get(group, []):
            counts[rows, genes.index(gene)] += rng.poisson(20.0, size=int(rows.sum()))

    obs = pd.DataFrame(
        {"cell_type": labels},
        index=pd.Index([f"cell_{i}" for i in range(n_cells)]),
    )
    var = pd.DataFrame({"gene_symbol": genes}, index=pd.Index(genes))
    adata = ad.AnnData(X=sparse.csr_matrix(counts), obs=obs, var=var)
    adata.layers["counts"] = adata.X.copy()

    mito = np.isin(genes, MITO_GENES)
    total = counts.sum(axis=1)
    adata.obs["mito_fraction"] = counts[:, mito].sum(axis=1) / np.maximum(total, 1)
    return adata


def create_normalized_adata(n_cells: int = 240, seed: int = 42) -> "AnnData":
    """Create a container that looks like normalize-stage output.

    X and layers['lognorm'] hold log1p library-normalized values and every
    gene is flagged highly variable.
    """
    adata = create_count_adata(n_cells=n_cells, seed=seed)
    counts = adata.layers["counts"].toarray()
    library = counts.sum(axis=1, keepdims=True)
    lognorm = np.log1p(counts / np.maximum(library, 1) * 1e4).astype(np.float32)
    adata.X = lognorm
    adata.layers["lognorm"] = sparse.csr_matrix(lognorm)
    adata.var["highly_variable"] = True
    return adata


def create_clustered_adata(n_cells: int = 240, seed: int = 42) -> "AnnData":
    """Normalized container with one cluster per cell_type label."""
    adata = create_normalized_adata(n_cells=n_cells, seed=seed)
    codes = {label: str(i) for i, label in enumerate(sorted(adata.obs["cell_type"].unique()))}
    adata.obs["cluster"] = pd.Categorical(adata.obs["cell_type"].map(codes))
    return adata


def write_load_inputs(
    adata: "AnnData",
    directory: Path,
    cell_list: bool = False,
) -> Dict[str, Path]:
    """Write genes.txt, metadata.tsv and counts.mtx (genes x cells).

    Returns
    -------
    Dict[str, Path]
        Keys genes, metadata, matrix (and cells when ``cell_list``)
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    paths = {
        "genes": directory / "genes.txt",
        "metadata": directory / "metadata.tsv",
        "matrix": directory / "counts.mtx",
    }

    paths["genes"].write_text("\n".join(adata.var_names) + "\n")
    metadata = pd.DataFrame(
        {"cell_name": adata.obs_names, "cell_type": adata.obs["cell_type"].to_numpy()}
    )
    metadata.to_csv(paths["metadata"], sep="\t", index=False)

    counts = sparse.csr_matrix(adata.layers["counts"]).astype(np.int64)
    sio.mmwrite(str(paths["matrix"]), counts.T.tocoo())

    if cell_list:
        paths["cells"] = directory / "cells.csv"
        pd.DataFrame({"cell_name": adata.obs_names}).to_csv(paths["cells"], index=False)
    return paths


def write_gene_order(genes: List[str], path: Path, n_chromosomes: int = 2) -> Path:
    """Write a gene order file spreading genes over chr1..chrN."""
    per_chrom = int(np.ceil(len(genes) / n_chromosomes))
    rows = []
    for i, gene in enumerate(genes):
        chrom = f"chr{i // per_chrom + 1}"
        start = (i % per_chrom) * 10_000 + 1
        rows.append((gene, chrom, start, start + 5_000))
    pd.DataFrame(rows).to_csv(path, sep="\t", header=False, index=False)
    return Path(path)
