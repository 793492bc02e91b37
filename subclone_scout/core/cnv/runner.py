"""CNV inference runner.

Partitions cells, exports the backend inputs and runs the CNV
inference as an opaque batch job. Malformed input (missing label
column, empty groups, missing gene order) fails before any export or
backend call.
"""

import json
import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import numpy as np
import pandas as pd
from scipy import sparse

from ...errors import ConfigurationError
from ...io import atomic_write, atomic_write_dataframe
from .config import CNVConfig
from .export import (
    CNVInputBundle,
    build_bundle,
    export_bundle,
    load_gene_order,
    partition_cells,
)

PathLike = Union[str, Path]


@dataclass
class CNVResult:
    """Result from a CNV inference run.

    Attributes
    ----------
    backend : str
        Backend that produced the results
    output_dir : Path
        Directory holding exported inputs and backend outputs
    bundle : CNVInputBundle
        Exported inputs
    files : Dict[str, Path]
        Written files by role
    cnv_adata : AnnData, optional
        CNV-annotated container (infercnvpy backend)
    cnv_scores : pd.DataFrame, optional
        Per-cell group, CNV cluster, subclone and score (infercnvpy backend)
    n_genes_used : int
        Genes passing the position join and reference cutoff
    """

    backend: str
    output_dir: Path
    bundle: CNVInputBundle
    files: Dict[str, Path] = field(default_factory=dict)
    cnv_adata: Any = None
    cnv_scores: Optional[pd.DataFrame] = None
    n_genes_used: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        record = {
            "backend": self.backend,
            "output_dir": str(self.output_dir),
            "n_cells": int(self.bundle.counts.shape[1]),
            "n_genes_exported": int(self.bundle.counts.shape[0]),
            "n_genes_used": self.n_genes_used,
            "reference_groups": list(self.bundle.reference_groups),
            "files": {k: str(v) for k, v in self.files.items()},
        }
        if self.cnv_scores is not None and "subclone" in self.cnv_scores:
            record["n_subclones"] = int(self.cnv_scores["subclone"].nunique())
        return record


def _r_string(value: str) -> str:
    return json.dumps(str(value))


def _r_bool(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def build_infercnv_r_script(
    counts_path: PathLike,
    annotations_path: PathLike,
    gene_order_path: PathLike,
    output_dir: PathLike,
    reference_groups: List[str],
    config: CNVConfig,
) -> str:
    """R code creating and running an infercnv object."""
    ref_names = ", ".join(_r_string(g) for g in reference_groups)
    lines = [
        "suppressPackageStartupMessages(library(infercnv))",
        "obj <- infercnv::CreateInfercnvObject(",
        f"  raw_counts_matrix = {_r_string(counts_path)},",
        f"  annotations_file = {_r_string(annotations_path)},",
        '  delim = "\\t",',
        f"  gene_order_file = {_r_string(gene_order_path)},",
        f"  ref_group_names = c({ref_names})",
        ")",
        "obj <- infercnv::run(",
        "  obj,",
        f"  cutoff = {config.cutoff},",
        f"  out_dir = {_r_string(output_dir)},",
        f"  cluster_by_groups = {_r_bool(config.cluster_by_groups)},",
        f"  denoise = {_r_bool(config.denoise)},",
        f"  HMM = {_r_bool(config.hmm)},",
        f"  num_threads = {int(config.n_threads)}",
        ")",
    ]
    return "\n".join(lines)


def region_labels(chr_pos: Dict[str, int], n_columns: int) -> List[str]:
    """Column labels ``<chromosome>:<window>`` for an X_cnv matrix."""
    starts = sorted(((int(start), str(chrom)) for chrom, start in chr_pos.items()))
    labels: List[str] = []
    for i, (start, chrom) in enumerate(starts):
        end = starts[i + 1][0] if i + 1 < len(starts) else n_columns
        labels.extend(f"{chrom}:{j}" for j in range(end - start))
    return labels


class CNVRunner:
    """Reference-vs-observation CNV inference.

    Parameters
    ----------
    config : CNVConfig, optional
        CNV configuration
    logger : logging.Logger, optional
        Logger instance

    Example
    -------
    >>> runner = CNVRunner(CNVConfig(gene_order_file="gene_order.txt"))
    >>> result = runner.run(adata_annotated, "out/cnv")
    >>> result.cnv_scores["subclone"].value_counts()
    """

    def __init__(
        self,
        config: Optional[CNVConfig] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or CNVConfig()
        self.config.validate()
        self.logger = logger or logging.getLogger(__name__)

    def _gene_order_path(self) -> Path:
        if not self.config.gene_order_file:
            raise ConfigurationError("gene_order_file is required for CNV inference", source="cnv")
        path = Path(self.config.gene_order_file)
        if not path.exists():
            raise ConfigurationError(f"Gene order file not found: {path}", source="cnv")
        return path

    def prepare(self, adata: Any, output_dir: PathLike) -> CNVResult:
        """Validate groups and export backend inputs (no inference)."""
        partition = partition_cells(adata, self.config)
        gene_order_path = self._gene_order_path()
        bundle = build_bundle(adata, self.config, partition)

        output_dir = Path(output_dir)
        files = export_bundle(bundle, output_dir)
        files["gene_order"] = gene_order_path
        return CNVResult(
            backend=self.config.backend, output_dir=output_dir, bundle=bundle, files=files
        )

    def run(self, adata: Any, output_dir: PathLike) -> CNVResult:
        """Export inputs and run the configured backend.

        Raises
        ------
        ConfigurationError
            Missing label column or gene-order file
        EmptyGroupError
            Empty reference or observation group
        subprocess.CalledProcessError
            The R backend exited with an error
        """
        result = self.prepare(adata, output_dir)
        self.logger.info("Running CNV inference with backend '%s'", self.config.backend)
        if self.config.backend == "infercnv_r":
            self._run_infercnv_r(result)
        else:
            self._run_infercnvpy(result)
        self.logger.info("CNV inference finished; outputs in %s", result.output_dir)
        return result

    def _run_infercnv_r(self, result: CNVResult) -> None:
        script = build_infercnv_r_script(
            result.files["counts"],
            result.files["annotations"],
            result.files["gene_order"],
            result.output_dir,
            result.bundle.reference_groups,
            self.config,
        )
        script_path = result.output_dir / "run_infercnv.R"
        atomic_write(script_path, lambda tmp: tmp.write_text(script + "\n", encoding="utf-8"))
        result.files["script"] = script_path

        completed = subprocess.run(
            [self.config.rscript, str(script_path)],
            check=True,
            capture_output=True,
            text=True,
        )
        for line in (completed.stdout or "").splitlines()[-20:]:
            self.logger.debug("infercnv: %s", line)
        result.n_genes_used = int(result.bundle.counts.shape[0])

    def _run_infercnvpy(self, result: CNVResult) -> None:
        import anndata as ad
        import infercnvpy as cnv
        import scanpy as sc

        cfg = self.config
        bundle = result.bundle
        gene_order = load_gene_order(result.files["gene_order"])

        genes = [g for g in bundle.counts.index if g in gene_order.index]
        dropped = bundle.counts.shape[0] - len(genes)
        if dropped:
            self.logger.info("%d genes have no genomic position and are skipped", dropped)
        if not genes:
            raise ConfigurationError(
                "No exported gene has a position in the gene order file", source="cnv"
            )

        obs = bundle.annotations.set_index("cell")
        obs["group"] = obs["group"].astype("category")
        cnv_adata = ad.AnnData(
            X=sparse.csr_matrix(bundle.counts.loc[genes].to_numpy(dtype=np.float32).T),
            obs=obs,
            var=gene_order.loc[genes, ["chromosome", "start", "end"]].copy(),
        )

        is_ref = cnv_adata.obs["group"].isin(bundle.reference_groups).to_numpy()
        ref_mean = np.asarray(cnv_adata.X[is_ref].mean(axis=0)).ravel()
        keep = ref_mean >= cfg.cutoff
        self.logger.info(
            "Keeping %d/%d genes with mean reference count >= %.3g",
            int(keep.sum()),
            len(keep),
            cfg.cutoff,
        )
        if not keep.any():
            raise ConfigurationError(
                f"No gene passes cutoff={cfg.cutoff} in the reference cells", source="cnv"
            )
        cnv_adata = cnv_adata[:, keep].copy()

        sc.pp.normalize_total(cnv_adata, target_sum=1e4)
        sc.pp.log1p(cnv_adata)
        cnv.tl.infercnv(
            cnv_adata,
            reference_key="group",
            reference_cat=list(bundle.reference_groups),
            window_size=cfg.window_size,
            dynamic_threshold=1.5 if cfg.denoise else None,
            exclude_chromosomes=tuple(cfg.exclude_chromosomes) or None,
        )
        if cfg.hmm:
            self.logger.warning(
                "HMM segmentation is only available with the infercnv_r backend; "
                "reporting smoothed CNV profiles"
            )

        n_cells, n_windows = cnv_adata.obsm["X_cnv"].shape
        n_comps = max(1, min(50, n_cells - 1, n_windows - 1))
        cnv.tl.pca(cnv_adata, n_comps=n_comps)
        cnv.pp.neighbors(cnv_adata, n_neighbors=max(2, min(15, n_cells - 1)))
        cnv.tl.leiden(
            cnv_adata,
            random_state=cfg.random_seed,
            flavor="igraph",
            n_iterations=2,
            directed=False,
        )
        cnv.tl.cnv_score(cnv_adata)

        clusters = cnv_adata.obs["cnv_leiden"].astype(str)
        if cfg.cluster_by_groups:
            subclone = cnv_adata.obs["group"].astype(str) + "_" + clusters
        else:
            subclone = clusters
        cnv_adata.obs["subclone"] = subclone.astype("category")

        out = result.output_dir
        x_cnv = cnv_adata.obsm["X_cnv"]
        x_cnv = x_cnv.toarray() if sparse.issparse(x_cnv) else np.asarray(x_cnv)
        regions = pd.DataFrame(
            x_cnv,
            index=cnv_adata.obs_names,
            columns=region_labels(cnv_adata.uns["cnv"]["chr_pos"], x_cnv.shape[1]),
        )
        scores = cnv_adata.obs[["group", "cnv_leiden", "subclone", "cnv_score"]].copy()
        result.files["cnv_by_region"] = atomic_write_dataframe(regions, out / "cnv_by_region.tsv")
        result.files["cnv_scores"] = atomic_write_dataframe(scores, out / "cnv_scores.tsv")
        result.files["heatmap"] = self._save_heatmap(cnv_adata, out / "chromosome_heatmap.png")

        result.cnv_adata = cnv_adata
        result.cnv_scores = scores
        result.n_genes_used = int(cnv_adata.n_vars)
        self.logger.info(
            "Found %d CNV subclones across %d cells",
            scores["subclone"].nunique(),
            n_cells,
        )

    def _save_heatmap(self, cnv_adata: Any, path: Path) -> Path:
        import infercnvpy as cnv
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        cnv.pl.chromosome_heatmap(cnv_adata, groupby="group", show=False)
        plt.savefig(path, dpi=150, bbox_inches="tight")
        plt.close("all")
        return path
