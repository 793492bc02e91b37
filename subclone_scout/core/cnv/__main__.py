"""CNV module CLI runner.

Usage:
    python -m subclone_scout.core.cnv --input out/snapshots/scout_annotate.h5ad \
        --output out/cnv --gene-order gene_order.txt \
        --reference "T cells" --reference "B cells"
"""

import argparse
import sys
from pathlib import Path
from typing import Optional

from ...errors import SubcloneScoutError
from ...io import log_json, setup_logging
from .config import CNVConfig
from .runner import CNVRunner


def load_config(path: Path) -> CNVConfig:
    """Read the CNV settings of an analysis YAML."""
    from ...config import AnalysisConfig

    return AnalysisConfig.from_yaml(path).cnv


def run_cnv(
    input_path: Path,
    output_dir: Path,
    config: Optional[CNVConfig] = None,
    export_only: bool = False,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
):
    """Run CNV export and inference on an annotated container."""
    import anndata as ad

    logger = setup_logging("subclone_scout.cnv", verbose, log_dir, "cnv.log")
    runner = CNVRunner(config, logger)
    adata = ad.read_h5ad(input_path)
    result = runner.prepare(adata, output_dir) if export_only else runner.run(adata, output_dir)
    log_json(Path(output_dir) / "stage_summary.jsonl", "cnv", result.to_dict())
    return result


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="subclone-scout CNV stage")
    parser.add_argument("--input", "-i", type=Path, required=True, help="Annotated .h5ad")
    parser.add_argument("--output", "-o", type=Path, required=True, help="Output directory")
    parser.add_argument("--config", "-c", type=Path, default=None, help="Analysis config YAML")
    parser.add_argument("--gene-order", type=str, default=None, help="Gene order file")
    parser.add_argument(
        "--reference",
        action="append",
        default=None,
        help="Reference group label (repeatable)",
    )
    parser.add_argument("--label-key", type=str, default=None, help="obs column with labels")
    parser.add_argument("--backend", choices=["infercnvpy", "infercnv_r"], default=None)
    parser.add_argument("--export-only", action="store_true", help="Write inputs, skip inference")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging")
    parser.add_argument("--log-dir", "-l", type=Path, default=None, help="Directory for log file")

    args = parser.parse_args()

    try:
        config = load_config(args.config) if args.config else CNVConfig()
        if args.gene_order:
            config.gene_order_file = args.gene_order
        if args.reference:
            config.reference_groups = args.reference
        if args.label_key:
            config.label_key = args.label_key
        if args.backend:
            config.backend = args.backend
        run_cnv(args.input, args.output, config, args.export_only, args.verbose, args.log_dir)
    except SubcloneScoutError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
