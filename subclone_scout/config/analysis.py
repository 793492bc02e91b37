"""Master analysis configuration.

One YAML file drives the whole workflow. Every stage section is
optional and falls back to documented defaults::

    analysis:
      input:
        genes: data/genes.txt
        metadata: data/cells.tsv
        matrix: data/counts.mtx
      output_dir: results/tumor
      snapshot_prefix: tumor
      qc: {min_genes: 200, max_genes: 6000, max_mito_fraction: 0.15}
      normalization: {regress_out: [mito_fraction]}
      clustering: {n_pcs: 20, resolution: 0.5, random_seed: 0}
      annotation: {method: module}
      marker_sets: markers.yaml
      cnv: {reference_groups: [T cells, B cells], gene_order_file: gene_order.txt}
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from ..core.annotation.config import AnnotationConfig
from ..core.clustering.config import ClusterStageConfig
from ..core.cnv.config import CNVConfig
from ..core.preprocessing.config import PreprocessingConfig
from ..errors import ConfigurationError

STAGE_ORDER: List[str] = ["load", "qc", "normalize", "cluster", "annotate", "cnv"]


@dataclass
class InputConfig:
    """Input file locations.

    Attributes
    ----------
    genes : str
        Gene list, one identifier per line
    metadata : str
        Cell metadata table
    matrix : str
        Matrix Market counts (genes x cells)
    cells : str, optional
        Ordered cell list
    """

    genes: Optional[str] = None
    metadata: Optional[str] = None
    matrix: Optional[str] = None
    cells: Optional[str] = None

    def validate(self) -> None:
        missing = [name for name in ("genes", "metadata", "matrix") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Input paths not configured: {missing}", source="input")


@dataclass
class AnalysisConfig:
    """Configuration for a complete analysis run.

    Attributes
    ----------
    input : InputConfig
        Input file locations
    preprocessing : PreprocessingConfig
        Loader, QC and normalization settings
    cluster : ClusterStageConfig
        Clustering and marker ranking settings
    annotation : AnnotationConfig
        Marker-score annotation settings
    marker_sets : mapping or str, optional
        Inline label -> genes mapping or path to a YAML/JSON file
        (None = built-in defaults)
    cnv : CNVConfig
        CNV inference settings
    run_cnv : bool
        Include the CNV stage in full runs
    output_dir : str
        Directory for reports and CNV outputs
    snapshot_dir : str, optional
        Snapshot directory (default: <output_dir>/snapshots)
    snapshot_prefix : str
        Filename prefix of stage snapshots
    """

    input: InputConfig = field(default_factory=InputConfig)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    cluster: ClusterStageConfig = field(default_factory=ClusterStageConfig)
    annotation: AnnotationConfig = field(default_factory=AnnotationConfig)
    marker_sets: Optional[Union[Mapping[str, List[str]], str]] = None
    cnv: CNVConfig = field(default_factory=CNVConfig)
    run_cnv: bool = True
    output_dir: str = "results"
    snapshot_dir: Optional[str] = None
    snapshot_prefix: str = "scout"

    @property
    def snapshot_path(self) -> Path:
        return Path(self.snapshot_dir) if self.snapshot_dir else Path(self.output_dir) / "snapshots"

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base_dir: Optional[Path] = None) -> "AnalysisConfig":
        """Build configuration from a (possibly partial) dictionary.

        Relative paths are resolved against ``base_dir`` when given.
        """
        data = dict(data or {})
        if "analysis" in data:
            data = dict(data["analysis"] or {})

        pre = data.get("preprocessing") or {
            key: data[key] for key in ("loader", "qc", "normalization") if key in data
        }
        cluster = data.get("cluster") or {}
        if "clustering" in data or "de" in data:
            cluster = {
                "clustering": data.get("clustering", {}),
                "de": data.get("de", {}),
                "run_de": data.get("run_de", True),
            }

        try:
            config = cls(
                input=InputConfig(**data.get("input", {})),
                preprocessing=PreprocessingConfig.from_dict(pre),
                cluster=ClusterStageConfig.from_dict(cluster),
                annotation=AnnotationConfig(**data.get("annotation", {})),
                marker_sets=data.get("marker_sets"),
                cnv=CNVConfig(**data.get("cnv", {})),
                run_cnv=bool(data.get("run_cnv", True)),
                output_dir=str(data.get("output_dir", "results")),
                snapshot_dir=data.get("snapshot_dir"),
                snapshot_prefix=str(data.get("snapshot_prefix", "scout")),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid configuration key: {exc}", source="analysis") from exc

        if base_dir is not None:
            config._resolve_paths(Path(base_dir))
        return config

    def _resolve_paths(self, base_dir: Path) -> None:
        def resolve(value: Optional[str]) -> Optional[str]:
            if value is None or Path(value).is_absolute():
                return value
            return str(base_dir / value)

        for name in ("genes", "metadata", "matrix", "cells"):
            setattr(self.input, name, resolve(getattr(self.input, name)))
        self.output_dir = resolve(self.output_dir)
        self.snapshot_dir = resolve(self.snapshot_dir)
        self.cnv.gene_order_file = resolve(self.cnv.gene_order_file)
        if isinstance(self.marker_sets, str):
            self.marker_sets = resolve(self.marker_sets)

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "AnalysisConfig":
        """Load configuration from YAML; relative paths are file-relative."""
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}", source=str(path))
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data, base_dir=path.parent)

    @classmethod
    def default(cls) -> "AnalysisConfig":
        """Create default configuration."""
        return cls()

    def validate(self) -> None:
        """Validate every stage section (raises ConfigurationError)."""
        self.preprocessing.qc.validate()
        self.preprocessing.normalization.validate()
        self.cluster.clustering.validate()
        self.annotation.validate()
        if self.run_cnv:
            self.cnv.validate()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        marker_sets = self.marker_sets
        if isinstance(marker_sets, Mapping):
            marker_sets = {k: list(v) for k, v in marker_sets.items()}
        return {
            "input": asdict(self.input),
            "preprocessing": self.preprocessing.to_dict(),
            "cluster": self.cluster.to_dict(),
            "annotation": self.annotation.to_dict(),
            "marker_sets": marker_sets,
            "cnv": self.cnv.to_dict(),
            "run_cnv": self.run_cnv,
            "output_dir": self.output_dir,
            "snapshot_dir": self.snapshot_dir,
            "snapshot_prefix": self.snapshot_prefix,
        }

    def to_yaml(self, path: Union[str, Path]) -> Path:
        """Write the configuration as YAML (atomic)."""
        from ..io import atomic_write

        text = yaml.safe_dump({"analysis": self.to_dict()}, sort_keys=False)
        return atomic_write(path, lambda tmp: tmp.write_text(text))
