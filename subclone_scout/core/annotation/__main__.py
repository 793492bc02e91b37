"""Annotation module CLI runner.

Usage:
    python -m subclone_scout.core.annotation --input out/snapshots/scout_cluster.h5ad \
        --output out/snapshots [--markers markers.yaml]

Writes ``<prefix>_annotate.h5ad`` and ``cluster_annotations.csv``.
"""

import argparse
import sys
from pathlib import Path
from typing import List, Mapping, Optional, Tuple, Union

from ...errors import SubcloneScoutError
from ...io import SnapshotStore, atomic_write_dataframe, log_json, setup_logging
from .config import AnnotationConfig
from .engine import AnnotationEngine

MarkerSource = Union[Mapping[str, List[str]], Path, str]


def load_config(path: Path) -> Tuple[AnnotationConfig, Optional[MarkerSource]]:
    """Read annotation settings and marker sets from an analysis YAML."""
    from ...config import AnalysisConfig

    analysis = AnalysisConfig.from_yaml(path)
    return analysis.annotation, analysis.marker_sets


def run_annotate(
    input_path: Path,
    output_dir: Path,
    config: Optional[AnnotationConfig] = None,
    marker_sets: Optional[MarkerSource] = None,
    prefix: str = "scout",
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """Annotate a clustered container and save its snapshot."""
    import anndata as ad

    logger = setup_logging("subclone_scout.annotation", verbose, log_dir, "annotate.log")
    output_dir = Path(output_dir)

    engine = AnnotationEngine(config, marker_sets=marker_sets, logger=logger)
    result = engine.run(ad.read_h5ad(input_path))
    table_name = "cluster_annotations.csv" if result.level == "cluster" else "cell_annotations.csv"
    atomic_write_dataframe(result.label_table, output_dir / table_name, sep=",", index=False)

    path = SnapshotStore(output_dir, prefix).save(result.adata, "annotate")
    log_json(output_dir / "stage_summary.jsonl", "annotate", result.to_dict())
    return path


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="subclone-scout annotation stage")
    parser.add_argument("--input", "-i", type=Path, required=True, help="Clustered .h5ad")
    parser.add_argument("--output", "-o", type=Path, required=True, help="Output directory")
    parser.add_argument("--markers", "-m", type=Path, default=None, help="Marker sets YAML/JSON")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Analysis config YAML")
    parser.add_argument("--prefix", type=str, default="scout", help="Snapshot filename prefix")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-dir", "-l", type=Path, default=None, help="Directory for log file")

    args = parser.parse_args()

    try:
        config, markers = load_config(args.config) if args.config else (None, None)
        if args.markers is not None:
            markers = args.markers
        run_annotate(
            args.input, args.output, config, markers, args.prefix, args.verbose, args.log_dir
        )
    except SubcloneScoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
