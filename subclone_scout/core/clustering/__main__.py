"""Clustering module CLI runner.

Usage:
    python -m subclone_scout.core.clustering --input out/snapshots/scout_normalize.h5ad \
        --output out/snapshots --n-pcs 20 --resolution 0.5

Writes ``<prefix>_cluster.h5ad``, ``pca_variance.csv`` (variance-explained
curve for choosing --n-pcs) and ``cluster_markers.csv``.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from ...errors import SubcloneScoutError
from ...io import SnapshotStore, atomic_write_dataframe, log_json, setup_logging
from .config import ClusterStageConfig
from .de import DERunner
from .engine import ClusteringEngine


def load_config(path: Path) -> ClusterStageConfig:
    """Read the cluster settings of an analysis YAML."""
    from ...config import AnalysisConfig

    return AnalysisConfig.from_yaml(path).cluster


def run_cluster(
    input_path: Path,
    output_dir: Path,
    config: Optional[ClusterStageConfig] = None,
    prefix: str = "scout",
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """Cluster a normalized container and save its snapshot."""
    import anndata as ad

    config = config or ClusterStageConfig.default()
    logger = setup_logging("subclone_scout.clustering", verbose, log_dir, "cluster.log")
    output_dir = Path(output_dir)

    engine = ClusteringEngine(config.clustering, logger)
    result = engine.run_clustering(ad.read_h5ad(input_path))
    atomic_write_dataframe(
        engine.variance_table(result.adata), output_dir / "pca_variance.csv", sep=",", index=False
    )
    if config.run_de:
        DERunner(config.de, logger).run_de_tests(
            result.adata,
            cluster_key=config.clustering.cluster_key,
            output_path=output_dir / "cluster_markers.csv",
        )

    path = SnapshotStore(output_dir, prefix).save(result.adata, "cluster")
    log_json(output_dir / "stage_summary.jsonl", "cluster", result.to_dict())
    return path


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="subclone-scout clustering stage")
    parser.add_argument("--input", "-i", type=Path, required=True, help="Normalized .h5ad")
    parser.add_argument("--output", "-o", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Analysis config YAML (optional)")
    parser.add_argument("--n-pcs", type=int, default=None, help="Components for the neighbor graph")
    parser.add_argument("--resolution", type=float, default=None, help="Leiden resolution")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--no-de", action="store_true", help="Skip marker ranking")
    parser.add_argument("--prefix", type=str, default="scout", help="Snapshot filename prefix")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-dir", "-l", type=Path, default=None, help="Directory for log file")

    args = parser.parse_args()

    try:
        config = load_config(args.config) if args.config else ClusterStageConfig()
        if args.n_pcs is not None:
            config.clustering.n_pcs = args.n_pcs
        if args.resolution is not None:
            config.clustering.resolution = args.resolution
        if args.seed is not None:
            config.clustering.random_seed = args.seed
        if args.no_de:
            config.run_de = False
        run_cluster(args.input, args.output, config, args.prefix, args.verbose, args.log_dir)
    except SubcloneScoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
