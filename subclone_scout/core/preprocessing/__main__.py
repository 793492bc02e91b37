"""Preprocessing module CLI runner.

Enables running preprocessing stages as:
    python -m subclone_scout.core.preprocessing --stage load --genes <path> \
        --metadata <path> --matrix <path> --output <dir>
    python -m subclone_scout.core.preprocessing --stage qc --input <h5ad> --output <dir>
    python -m subclone_scout.core.preprocessing --stage normalize --input <h5ad> --output <dir>

Each stage writes ``<prefix>_<stage>.h5ad`` to the output directory and a
JSON-lines summary to ``stage_summary.jsonl``.
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from ...errors import SubcloneScoutError
from ...io import SnapshotStore, atomic_write_dataframe, log_json, setup_logging
from .config import PreprocessingConfig
from .loader import DataLoader
from .normalization import Normalizer
from .qc import CellQC


def load_config(path: Path) -> PreprocessingConfig:
    """Read the preprocessing settings of an analysis YAML."""
    from ...config import AnalysisConfig

    return AnalysisConfig.from_yaml(path).preprocessing


def _read_input(path: Path):
    import anndata as ad

    return ad.read_h5ad(path)


def run_load(
    genes_path: Path,
    metadata_path: Path,
    matrix_path: Path,
    output_dir: Path,
    cell_list_path: Optional[Path] = None,
    config: Optional[PreprocessingConfig] = None,
    prefix: str = "scout",
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """Run the load stage and save its snapshot."""
    config = config or PreprocessingConfig.default()
    logger = setup_logging("subclone_scout.preprocessing", verbose, log_dir, "load.log")

    result = DataLoader(config.loader, logger).load(
        genes_path, metadata_path, matrix_path, cell_list_path
    )
    path = SnapshotStore(output_dir, prefix).save(result.adata, "load")
    log_json(Path(output_dir) / "stage_summary.jsonl", "load", result.to_dict())
    return path


def run_qc(
    input_path: Path,
    output_dir: Path,
    config: Optional[PreprocessingConfig] = None,
    prefix: str = "scout",
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """Run cell QC on a loaded container and save its snapshot."""
    config = config or PreprocessingConfig.default()
    logger = setup_logging("subclone_scout.preprocessing", verbose, log_dir, "qc.log")

    result = CellQC(config.qc, logger).filter_cells(_read_input(input_path))
    output_dir = Path(output_dir)
    path = SnapshotStore(output_dir, prefix).save(result.adata, "qc")
    atomic_write_dataframe(result.removal_table(), output_dir / "qc_removed_cells.csv", sep=",", index=False)
    log_json(output_dir / "stage_summary.jsonl", "qc", result.to_dict())
    return path


def run_normalize(
    input_path: Path,
    output_dir: Path,
    config: Optional[PreprocessingConfig] = None,
    prefix: str = "scout",
    verbose: bool = False,
    log_dir: Optional[Path] = None,
) -> Path:
    """Normalize a QC-filtered container and save its snapshot."""
    config = config or PreprocessingConfig.default()
    logger = setup_logging("subclone_scout.preprocessing", verbose, log_dir, "normalize.log")

    result = Normalizer(config.normalization, logger).normalize(_read_input(input_path))
    output_dir = Path(output_dir)
    path = SnapshotStore(output_dir, prefix).save(result.adata, "normalize")
    log_json(output_dir / "stage_summary.jsonl", "normalize", result.to_dict())
    return path


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="subclone-scout preprocessing stages",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m subclone_scout.core.preprocessing --stage load \\
      --genes data/genes.txt --metadata data/cells.tsv --matrix data/counts.mtx \\
      --output out/snapshots

  python -m subclone_scout.core.preprocessing --stage qc \\
      --input out/snapshots/scout_load.h5ad --output out/snapshots
        """,
    )
    parser.add_argument(
        "--stage", "-s",
        type=str,
        choices=["load", "qc", "normalize"],
        default="load",
        help="Stage to run",
    )
    parser.add_argument("--genes", type=Path, default=None, help="Gene list (load)")
    parser.add_argument("--metadata", "-m", type=Path, default=None, help="Cell metadata table (load)")
    parser.add_argument("--matrix", type=Path, default=None, help="Matrix Market counts (load)")
    parser.add_argument("--cells", type=Path, default=None, help="Optional ordered cell list (load)")
    parser.add_argument(
        "--input", "-i",
        type=Path,
        default=None,
        help="Input .h5ad snapshot (qc, normalize)",
    )
    parser.add_argument("--output", "-o", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Analysis config YAML (optional)")
    parser.add_argument("--prefix", type=str, default="scout", help="Snapshot filename prefix")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--log-dir", "-l",
        type=Path,
        default=None,
        help="Directory for log file (default: console only)",
    )

    args = parser.parse_args()

    try:
        config = load_config(args.config) if args.config else None
        common = dict(config=config, prefix=args.prefix, verbose=args.verbose, log_dir=args.log_dir)
        if args.stage == "load":
            if args.genes is None or args.metadata is None or args.matrix is None:
                parser.error("Stage load requires --genes, --metadata and --matrix")
            run_load(args.genes, args.metadata, args.matrix, args.output, args.cells, **common)
        else:
            if args.input is None:
                parser.error(f"Stage {args.stage} requires --input")
            runner = run_qc if args.stage == "qc" else run_normalize
            runner(args.input, args.output, **common)
    except SubcloneScoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
