"""Command-line interface for subclone-scout.

Provides CLI commands for running the analysis stages one at a time,
end to end from one analysis YAML, or as a subprocess stage DAG.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .. import __version__
from ..errors import SubcloneScoutError


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("subclone_scout")


def _analysis_config(config: Optional[str]):
    from ..config import AnalysisConfig

    return AnalysisConfig.from_yaml(config) if config else AnalysisConfig.default()


def _fail(error: Exception) -> None:
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="subclone-scout")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """subclone-scout: single-cell tumor subclone analysis.

    Loads a count matrix, filters and normalizes cells, clusters and
    annotates them, and runs copy-number inference against reference
    cell types.

    Examples:

        # Load and QC
        subclone-scout load --genes genes.txt --metadata cells.tsv --matrix counts.mtx --out out/
        subclone-scout qc --input out/scout_load.h5ad --out out/

        # Everything from one config, reusing existing snapshots
        subclone-scout run --config analysis.yaml --resume

        # Subprocess stage DAG
        subclone-scout pipeline --config pipeline.yaml --dry-run
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--genes", required=True, type=click.Path(exists=True), help="Gene list")
@click.option("--metadata", "-m", required=True, type=click.Path(exists=True),
              help="Cell metadata table")
@click.option("--matrix", required=True, type=click.Path(exists=True),
              help="Matrix Market counts (genes x cells)")
@click.option("--cells", type=click.Path(exists=True), help="Ordered cell list")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True), help="Analysis configuration (YAML)")
@click.option("--prefix", default="scout", help="Snapshot filename prefix")
@click.pass_context
def load(
    ctx: click.Context,
    genes: str,
    metadata: str,
    matrix: str,
    cells: Optional[str],
    output_path: str,
    config: Optional[str],
    prefix: str,
) -> None:
    """Load a count matrix and cell metadata into a snapshot."""
    from ..core.preprocessing.__main__ import run_load

    try:
        cfg = _analysis_config(config)
        path = run_load(
            Path(genes), Path(metadata), Path(matrix), Path(output_path),
            Path(cells) if cells else None, cfg.preprocessing, prefix, ctx.obj["verbose"],
        )
    except SubcloneScoutError as e:
        _fail(e)
    click.echo(f"Output saved to: {path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Loaded snapshot (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True), help="Analysis configuration (YAML)")
@click.option("--min-genes", type=int, help="Exclusive lower bound on detected genes")
@click.option("--max-genes", type=int, help="Exclusive upper bound on detected genes")
@click.option("--max-mito", type=float, help="Exclusive upper bound on mitochondrial fraction")
@click.option("--prefix", default="scout", help="Snapshot filename prefix")
@click.pass_context
def qc(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    min_genes: Optional[int],
    max_genes: Optional[int],
    max_mito: Optional[float],
    prefix: str,
) -> None:
    """Remove cells outside the detected-gene and mitochondrial bounds."""
    from ..core.preprocessing.__main__ import run_qc

    try:
        cfg = _analysis_config(config).preprocessing
        if min_genes is not None:
            cfg.qc.min_genes = min_genes
        if max_genes is not None:
            cfg.qc.max_genes = max_genes
        if max_mito is not None:
            cfg.qc.max_mito_fraction = max_mito
        path = run_qc(Path(input_path), Path(output_path), cfg, prefix, ctx.obj["verbose"])
    except SubcloneScoutError as e:
        _fail(e)
    click.echo(f"Output saved to: {path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="QC-filtered snapshot (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True), help="Analysis configuration (YAML)")
@click.option("--regress-out", multiple=True, help="Covariate to regress out (repeatable)")
@click.option("--method", type=click.Choice(["glm_residuals", "log1p"]), help="Normalization method")
@click.option("--n-jobs", type=int, help="Parallel workers for per-gene fits")
@click.option("--prefix", default="scout", help="Snapshot filename prefix")
@click.pass_context
def normalize(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    regress_out: Tuple[str, ...],
    method: Optional[str],
    n_jobs: Optional[int],
    prefix: str,
) -> None:
    """Normalize counts and regress out covariates."""
    from ..core.preprocessing.__main__ import run_normalize

    try:
        cfg = _analysis_config(config).preprocessing
        if regress_out:
            cfg.normalization.regress_out = list(regress_out)
        if method:
            cfg.normalization.method = method
        if n_jobs is not None:
            cfg.normalization.n_jobs = n_jobs
        path = run_normalize(Path(input_path), Path(output_path), cfg, prefix, ctx.obj["verbose"])
    except SubcloneScoutError as e:
        _fail(e)
    click.echo(f"Output saved to: {path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Normalized snapshot (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True), help="Analysis configuration (YAML)")
@click.option("--resolution", type=float, help="Leiden clustering resolution")
@click.option("--n-pcs", type=int, help="Number of principal components")
@click.option("--seed", type=int, help="Random seed")
@click.option("--no-de", is_flag=True, help="Skip marker ranking")
@click.option("--prefix", default="scout", help="Snapshot filename prefix")
@click.pass_context
def cluster(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    resolution: Optional[float],
    n_pcs: Optional[int],
    seed: Optional[int],
    no_de: bool,
    prefix: str,
) -> None:
    """Run PCA, neighbor graph and Leiden clustering.

    Also writes the PCA variance curve and per-cluster marker genes.
    """
    from ..core.clustering.__main__ import run_cluster

    try:
        cfg = _analysis_config(config).cluster
        if resolution is not None:
            cfg.clustering.resolution = resolution
        if n_pcs is not None:
            cfg.clustering.n_pcs = n_pcs
        if seed is not None:
            cfg.clustering.random_seed = seed
        if no_de:
            cfg.run_de = False
        path = run_cluster(Path(input_path), Path(output_path), cfg, prefix, ctx.obj["verbose"])
    except SubcloneScoutError as e:
        _fail(e)
    click.echo(f"Output saved to: {path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Clustered snapshot (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--marker-map", "-m", type=click.Path(exists=True),
              help="Marker sets (YAML or JSON); built-in sets if omitted")
@click.option("--config", "-c", type=click.Path(exists=True), help="Analysis configuration (YAML)")
@click.option("--level", type=click.Choice(["cluster", "cell"]), help="Annotate clusters or cells")
@click.option("--cluster-key", help="Cluster column name")
@click.option("--prefix", default="scout", help="Snapshot filename prefix")
@click.pass_context
def annotate(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    marker_map: Optional[str],
    config: Optional[str],
    level: Optional[str],
    cluster_key: Optional[str],
    prefix: str,
) -> None:
    """Score marker sets and assign cell-type labels."""
    from ..core.annotation.__main__ import run_annotate

    try:
        analysis = _analysis_config(config)
        cfg = analysis.annotation
        if level:
            cfg.level = level
        if cluster_key:
            cfg.cluster_key = cluster_key
        markers = Path(marker_map) if marker_map else analysis.marker_sets
        path = run_annotate(
            Path(input_path), Path(output_path), cfg, markers, prefix, ctx.obj["verbose"]
        )
    except SubcloneScoutError as e:
        _fail(e)
    click.echo(f"Output saved to: {path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Annotated snapshot (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True), help="Analysis configuration (YAML)")
@click.option("--gene-order", type=click.Path(exists=True), help="Gene positions file")
@click.option("--reference", multiple=True, help="Reference group label (repeatable)")
@click.option("--label-key", help="obs column holding group labels")
@click.option("--backend", type=click.Choice(["infercnvpy", "infercnv_r"]), help="CNV backend")
@click.option("--export-only", is_flag=True, help="Write CNV inputs without running inference")
@click.pass_context
def cnv(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    gene_order: Optional[str],
    reference: Tuple[str, ...],
    label_key: Optional[str],
    backend: Optional[str],
    export_only: bool,
) -> None:
    """Export CNV inputs and run copy-number inference."""
    from ..core.cnv.__main__ import run_cnv

    try:
        cfg = _analysis_config(config).cnv
        if gene_order:
            cfg.gene_order_file = gene_order
        if reference:
            cfg.reference_groups = list(reference)
        if label_key:
            cfg.label_key = label_key
        if backend:
            cfg.backend = backend
        cfg.validate()
        result = run_cnv(Path(input_path), Path(output_path), cfg, export_only, ctx.obj["verbose"])
    except SubcloneScoutError as e:
        _fail(e)
    for name, path in sorted(result.files.items()):
        click.echo(f"  {name}: {path}")
    click.echo(f"CNV {'export' if export_only else 'inference'} complete ({result.backend})")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Analysis configuration (YAML)")
@click.option("--resume", is_flag=True, help="Start from the latest stage snapshot")
@click.option("--start-from", type=click.Choice(["load", "qc", "normalize", "cluster", "annotate", "cnv"]),
              help="First stage to compute")
@click.option("--stop-after", type=click.Choice(["load", "qc", "normalize", "cluster", "annotate", "cnv"]),
              help="Last stage to run")
@click.pass_context
def run(
    ctx: click.Context,
    config: str,
    resume: bool,
    start_from: Optional[str],
    stop_after: Optional[str],
) -> None:
    """Run the analysis stages in process from one configuration."""
    from ..pipeline import AnalysisWorkflow, PipelineLogger

    try:
        cfg = _analysis_config(config)
        pipeline_logger = PipelineLogger(
            str(Path(cfg.output_dir) / "logs"),
            log_level="DEBUG" if ctx.obj["debug"] else "INFO",
        ).setup()
        outcomes = AnalysisWorkflow(cfg, pipeline_logger).run(
            resume=resume, start_from=start_from, stop_after=stop_after
        )
    except (SubcloneScoutError, FileNotFoundError, ValueError) as e:
        _fail(e)

    for stage, outcome in outcomes.items():
        if outcome is None:
            continue
        source = "snapshot" if outcome.from_snapshot else "computed"
        click.echo(f"  {stage}: {outcome.adata.n_obs} cells x {outcome.adata.n_vars} genes ({source})")
    click.echo(f"Output saved to: {cfg.output_dir}")


@cli.command()
@click.option("--config", "-c", required=True, type=click.Path(exists=True),
              help="Pipeline configuration file (YAML)")
@click.option("--start-stage", help="Stage to start from")
@click.option("--end-stage", help="Stage to end at")
@click.option("--dry-run", is_flag=True, help="Show execution plan without running")
@click.option("--force", is_flag=True, help="Ignore checkpoint and re-run all stages")
@click.pass_context
def pipeline(
    ctx: click.Context,
    config: str,
    start_stage: Optional[str],
    end_stage: Optional[str],
    dry_run: bool,
    force: bool,
) -> None:
    """Run a stage DAG from configuration.

    Executes stages as subprocesses in dependency order with
    checkpoint support and detailed logging.
    """
    logger = ctx.obj["logger"]
    verbose = ctx.obj["verbose"]

    from ..pipeline import PipelineConfig, PipelineExecutor, PipelineLogger

    logger.info(f"Loading pipeline config: {config}")
    try:
        pipeline_config = PipelineConfig.from_yaml(config)
        valid, errors = pipeline_config.validate_dependencies()
        if not valid:
            for error in errors:
                click.echo(f"Error: {error}", err=True)
            sys.exit(1)
        order = pipeline_config.get_execution_order()
    except SubcloneScoutError as e:
        _fail(e)
    click.echo(f"Pipeline stages: {' -> '.join(order)}")

    if dry_run:
        click.echo("Dry run - no stages will be executed")
        for stage_id in order:
            cmd = " ".join(pipeline_config.stages[stage_id].get_command())
            click.echo(f"  {stage_id}: {cmd}")
        return

    log_dir = Path(config).parent / "logs"
    pipeline_logger = PipelineLogger(str(log_dir), log_level="DEBUG" if verbose else "INFO").setup()
    executor = PipelineExecutor(
        pipeline_config, pipeline_logger, state_file=str(log_dir / "pipeline_state.json")
    )
    exit_code = executor.run(
        start_stage=start_stage,
        end_stage=end_stage,
        dry_run=dry_run,
        force=force,
    )

    if exit_code == 0:
        click.echo("Pipeline completed successfully")
    else:
        click.echo(f"Pipeline failed with exit code {exit_code}", err=True)
        sys.exit(exit_code)


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
