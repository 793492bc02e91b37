"""Configuration for the CNV inference adapter."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ...errors import ConfigurationError

BACKENDS = ("infercnvpy", "infercnv_r")


@dataclass
class CNVConfig:
    """Configuration for reference/observation export and CNV inference.

    Attributes
    ----------
    label_key : str
        obs column with cell-type labels used to partition cells
    reference_groups : List[str]
        Labels of presumed copy-number-normal cells
    observation_groups : List[str], optional
        Labels of candidate malignant cells (None = all non-reference)
    allow_missing_groups : bool
        Tolerate named groups with no cells as long as the reference
        and observation sets are non-empty
    counts_layer : str
        Layer with raw counts exported to the backend
    decimals : int
        Decimal precision of exported counts
    cutoff : float
        Minimum mean count across reference cells for a gene to be used
    denoise : bool
        Denoise the CNV signal
    cluster_by_groups : bool
        Cluster CNV profiles within each annotation group
    hmm : bool
        Run HMM segmentation (infercnv_r backend)
    window_size : int
        Genes per smoothing window (infercnvpy backend)
    exclude_chromosomes : List[str]
        Chromosomes left out of the inference
    gene_order_file : str, optional
        Tab-delimited gene, chromosome, start, end (no header)
    backend : str
        'infercnvpy' (in-process) or 'infercnv_r' (Rscript subprocess)
    rscript : str
        Rscript executable for the infercnv_r backend
    n_threads : int
        Threads passed to the R backend
    random_seed : int
        Seed for CNV-profile clustering
    """

    label_key: str = "cell_type"
    reference_groups: List[str] = field(default_factory=lambda: ["T cells", "B cells"])
    observation_groups: Optional[List[str]] = None
    allow_missing_groups: bool = False
    counts_layer: str = "counts"
    decimals: int = 3
    cutoff: float = 0.1
    denoise: bool = True
    cluster_by_groups: bool = True
    hmm: bool = True
    window_size: int = 101
    exclude_chromosomes: List[str] = field(default_factory=lambda: ["chrX", "chrY"])
    gene_order_file: Optional[str] = None
    backend: str = "infercnvpy"
    rscript: str = "Rscript"
    n_threads: int = 1
    random_seed: int = 0

    def validate(self) -> None:
        """Raise ConfigurationError for invalid parameters."""
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown CNV backend '{self.backend}' (expected one of {BACKENDS})", source="cnv"
            )
        if not self.reference_groups:
            raise ConfigurationError("reference_groups must name at least one label", source="cnv")
        if self.decimals < 0:
            raise ConfigurationError("decimals must be non-negative", source="cnv")
        if self.cutoff < 0:
            raise ConfigurationError("cutoff must be non-negative", source="cnv")
        overlap = set(self.reference_groups) & set(self.observation_groups or [])
        if overlap:
            raise ConfigurationError(
                f"Groups cannot be both reference and observation: {sorted(overlap)}",
                source="cnv",
            )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
