"""Configuration for marker-score annotation."""

from dataclasses import asdict, dataclass
from typing import Any, Dict

from ...errors import ConfigurationError


@dataclass
class AnnotationConfig:
    """Configuration for marker-score annotation.

    Attributes
    ----------
    method : str
        'module' (control-gene corrected, scanpy score_genes) or 'mean'
    ctrl_size : int
        Control genes per expression bin (module method)
    n_bins : int
        Expression bins for control gene sampling
    layer : str
        Layer holding log-normalized expression
    cluster_key : str
        obs column with cluster assignments
    prior_label_key : str
        obs column with existing labels used to resolve ties
    label_key : str
        obs column receiving the assigned label
    level : str
        'cluster' (label by cluster-mean score) or 'cell'
    tie_tolerance : float
        Scores within this distance of the best are tied
    ambiguous_label : str
        Label for ties the prior label cannot resolve
    random_seed : int
        Seed for control gene sampling
    """

    method: str = "module"
    ctrl_size: int = 50
    n_bins: int = 25
    layer: str = "lognorm"
    cluster_key: str = "cluster"
    prior_label_key: str = "cell_type"
    label_key: str = "cell_type_auto"
    level: str = "cluster"
    tie_tolerance: float = 1e-9
    ambiguous_label: str = "Ambiguous"
    random_seed: int = 0

    def validate(self) -> None:
        """Raise ConfigurationError for unknown options."""
        if self.method not in ("module", "mean"):
            raise ConfigurationError(f"Unknown scoring method: {self.method}", source="annotation")
        if self.level not in ("cluster", "cell"):
            raise ConfigurationError(f"Unknown annotation level: {self.level}", source="annotation")
        if self.tie_tolerance < 0:
            raise ConfigurationError("tie_tolerance must be non-negative", source="annotation")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
