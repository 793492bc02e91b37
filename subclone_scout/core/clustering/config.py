"""Configuration classes for the clustering module.

``n_pcs`` is chosen by the analyst from the variance-explained curve
(see ``ClusteringEngine.variance_table``); it is never inferred.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from ...errors import ConfigurationError


@dataclass
class ClusteringConfig:
    """Configuration for PCA, neighbor graph, UMAP and Leiden clustering.

    Attributes
    ----------
    n_comps : int
        Principal components computed
    n_pcs : int
        Leading components used for the neighbor graph (manual choice)
    neighbors_k : int
        k for the neighborhood graph
    resolution : float
        Leiden resolution
    random_seed : int
        Seed passed to PCA, UMAP and Leiden. A fixed seed gives
        reproducible embeddings and cluster labels on the same input.
    use_highly_variable : bool
        Restrict PCA to var['highly_variable'] when present
    scale : bool
        Z-score genes before PCA (residuals are already standardized)
    scale_clip : float
        Value clipping during scaling
    compute_umap : bool
        Compute the UMAP embedding
    cluster_key : str
        obs column receiving cluster assignments
    """

    n_comps: int = 50
    n_pcs: int = 20
    neighbors_k: int = 20
    resolution: float = 0.5
    random_seed: int = 0
    use_highly_variable: bool = True
    scale: bool = False
    scale_clip: float = 10.0
    compute_umap: bool = True
    cluster_key: str = "cluster"

    def validate(self) -> None:
        """Raise ConfigurationError for inconsistent parameters."""
        if self.n_pcs > self.n_comps:
            raise ConfigurationError(
                f"n_pcs ({self.n_pcs}) cannot exceed n_comps ({self.n_comps})",
                source="clustering",
            )
        if self.n_pcs < 1 or self.neighbors_k < 2:
            raise ConfigurationError(
                "n_pcs must be >= 1 and neighbors_k >= 2", source="clustering"
            )
        if self.resolution <= 0:
            raise ConfigurationError("resolution must be positive", source="clustering")


@dataclass
class DEConfig:
    """Configuration for per-cluster marker ranking.

    Attributes
    ----------
    method : str
        scanpy rank_genes_groups method (wilcoxon, t-test, ...)
    n_genes : int
        Top genes reported per cluster
    layer : str
        Layer tested (log-normalized expression)
    tie_correct : bool
        Apply tie correction for the Wilcoxon test
    """

    method: str = "wilcoxon"
    n_genes: int = 25
    layer: str = "lognorm"
    tie_correct: bool = False


@dataclass
class ClusterStageConfig:
    """Master configuration for the cluster stage.

    Attributes
    ----------
    clustering : ClusteringConfig
        Clustering configuration
    de : DEConfig
        Marker ranking configuration
    run_de : bool
        Rank cluster markers after clustering
    """

    clustering: ClusteringConfig = field(default_factory=ClusteringConfig)
    de: DEConfig = field(default_factory=DEConfig)
    run_de: bool = True

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterStageConfig":
        try:
            return cls(
                clustering=ClusteringConfig(**data.get("clustering", {})),
                de=DEConfig(**data.get("de", {})),
                run_de=data.get("run_de", True),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid configuration key: {exc}", source="cluster") from exc

    @classmethod
    def from_yaml(cls, path: Path) -> "ClusterStageConfig":
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}

        data = data.get("analysis", data) or {}
        if "cluster" in data:
            data = data["cluster"]

        return cls.from_dict(data)

    @classmethod
    def default(cls) -> "ClusterStageConfig":
        """Create default configuration."""
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "clustering": asdict(self.clustering),
            "de": asdict(self.de),
            "run_de": self.run_de,
        }
