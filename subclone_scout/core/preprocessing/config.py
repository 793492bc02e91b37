"""Configuration classes for preprocessing stages.

All preprocessing parameters are configurable via YAML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ...errors import ConfigurationError


@dataclass
class LoaderConfig:
    """Configuration for data loading.

    Attributes
    ----------
    cell_id_col : str
        Column holding cell identifiers in the metadata table and cell list
    cell_type_col : str
        Column holding the curated cell-type label
    required_metadata_cols : List[str]
        Columns that must be present in the metadata table
    make_var_names_unique : bool
        Suffix duplicated gene identifiers (original kept in var['gene_symbol'])
    """

    cell_id_col: str = "cell_name"
    cell_type_col: str = "cell_type"
    required_metadata_cols: List[str] = field(
        default_factory=lambda: ["cell_name", "cell_type"]
    )
    make_var_names_unique: bool = True


@dataclass
class QCConfig:
    """Configuration for cell QC.

    Bounds are strict: a cell is kept only when
    ``min_genes < n_genes_detected < max_genes`` and
    ``mito_fraction < max_mito_fraction``.

    Attributes
    ----------
    min_genes : int
        Exclusive lower bound on detected genes
    max_genes : int
        Exclusive upper bound on detected genes
    max_mito_fraction : float
        Exclusive upper bound on the fraction of mitochondrial counts (0-1)
    mito_pattern : str
        Regular expression matched at the start of gene symbols
    mito_case_sensitive : bool
        Match mito_pattern case-sensitively
    """

    min_genes: int = 200
    max_genes: int = 6000
    max_mito_fraction: float = 0.15
    mito_pattern: str = "^MT-"
    mito_case_sensitive: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError for inconsistent bounds."""
        if self.min_genes >= self.max_genes:
            raise ConfigurationError(
                f"min_genes ({self.min_genes}) must be below max_genes ({self.max_genes})",
                source="qc",
            )
        if not 0.0 < self.max_mito_fraction <= 1.0:
            raise ConfigurationError(
                f"max_mito_fraction must be in (0, 1], got {self.max_mito_fraction}",
                source="qc",
            )


@dataclass
class NormalizationConfig:
    """Configuration for normalization and variance stabilization.

    Attributes
    ----------
    method : str
        'glm_residuals' (per-gene GLM Pearson residuals) or 'log1p'
    regress_out : List[str]
        Continuous obs columns regressed out per gene
    family : str
        GLM family: 'negative_binomial' or 'poisson'
    nb_alpha : float
        Fixed negative binomial overdispersion (variance = mu + alpha * mu^2)
    min_cells : int
        Genes detected in fewer cells are not fitted (residual 0)
    clip : float, optional
        Residual clipping bound; defaults to sqrt(n_cells)
    n_top_genes : int, optional
        Number of highly variable genes to flag (None flags all fitted genes)
    target_sum : float
        Library size used for the lognorm layer
    n_jobs : int
        Parallel workers for per-gene fits (1 = sequential)
    """

    method: str = "glm_residuals"
    regress_out: List[str] = field(default_factory=lambda: ["mito_fraction"])
    family: str = "negative_binomial"
    nb_alpha: float = 0.01
    min_cells: int = 5
    clip: Optional[float] = None
    n_top_genes: Optional[int] = 3000
    target_sum: float = 1e4
    n_jobs: int = 1

    def validate(self) -> None:
        """Raise ConfigurationError for unknown methods or families."""
        if self.method not in ("glm_residuals", "log1p"):
            raise ConfigurationError(
                f"Unknown normalization method: {self.method}", source="normalization"
            )
        if self.family not in ("negative_binomial", "poisson"):
            raise ConfigurationError(
                f"Unknown GLM family: {self.family}", source="normalization"
            )
        if self.nb_alpha < 0:
            raise ConfigurationError("nb_alpha must be non-negative", source="normalization")


@dataclass
class PreprocessingConfig:
    """Master configuration for the load, QC and normalization stages.

    Attributes
    ----------
    loader : LoaderConfig
        Loading configuration
    qc : QCConfig
        QC configuration
    normalization : NormalizationConfig
        Normalization configuration
    """

    loader: LoaderConfig = field(default_factory=LoaderConfig)
    qc: QCConfig = field(default_factory=QCConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PreprocessingConfig":
        """Build configuration from a (possibly partial) dictionary."""
        try:
            return cls(
                loader=LoaderConfig(**data.get("loader", {})),
                qc=QCConfig(**data.get("qc", {})),
                normalization=NormalizationConfig(**data.get("normalization", {})),
            )
        except TypeError as exc:
            raise ConfigurationError(
                f"Invalid configuration key: {exc}", source="preprocessing"
            ) from exc

    @classmethod
    def from_yaml(cls, path: Path) -> "PreprocessingConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        data = data.get("analysis", data) or {}
        if "preprocessing" in data:
            data = data["preprocessing"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "PreprocessingConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "loader": {
                "cell_id_col": self.loader.cell_id_col,
                "cell_type_col": self.loader.cell_type_col,
                "required_metadata_cols": list(self.loader.required_metadata_cols),
                "make_var_names_unique": self.loader.make_var_names_unique,
            },
            "qc": {
                "min_genes": self.qc.min_genes,
                "max_genes": self.qc.max_genes,
                "max_mito_fraction": self.qc.max_mito_fraction,
                "mito_pattern": self.qc.mito_pattern,
                "mito_case_sensitive": self.qc.mito_case_sensitive,
            },
            "normalization": {
                "method": self.normalization.method,
                "regress_out": list(self.normalization.regress_out),
                "family": self.normalization.family,
                "nb_alpha": self.normalization.nb_alpha,
                "min_cells": self.normalization.min_cells,
                "clip": self.normalization.clip,
                "n_top_genes": self.normalization.n_top_genes,
                "target_sum": self.normalization.target_sum,
                "n_jobs": self.normalization.n_jobs,
            },
        }
