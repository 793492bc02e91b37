"""End-to-end analysis workflow.

Runs load -> qc -> normalize -> cluster -> annotate -> cnv in process.
Every stage receives the previous stage's container and returns a new
one, which is saved as ``<prefix>_<stage>.h5ad``. With ``resume=True``
the workflow starts from the latest existing snapshot instead of
recomputing earlier stages.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..config import STAGE_ORDER, AnalysisConfig
from ..core.annotation import AnnotationEngine
from ..core.clustering import ClusteringEngine, DERunner
from ..core.cnv import CNVRunner
from ..core.preprocessing import CellQC, DataLoader, Normalizer
from ..io import SnapshotStore, atomic_write_dataframe, log_json
from .executor import InMemoryExecutor
from .logger import PipelineLogger

SNAPSHOT_STAGES = ["load", "qc", "normalize", "cluster", "annotate"]


@dataclass
class StageOutcome:
    """Outcome of one workflow stage.

    Attributes
    ----------
    stage : str
        Stage name
    adata : AnnData
        Container produced (or loaded) by the stage
    summary : Dict[str, Any]
        Stage report (also appended to stage_summary.jsonl)
    from_snapshot : bool
        True when the container was loaded instead of computed
    result : Any
        Full stage result object (None when loaded from a snapshot)
    """

    stage: str
    adata: Any
    summary: Dict[str, Any] = field(default_factory=dict)
    from_snapshot: bool = False
    result: Any = None


class AnalysisWorkflow:
    """In-process workflow over the six analysis stages.

    Parameters
    ----------
    config : AnalysisConfig
        Analysis configuration
    logger : PipelineLogger, optional
        Pipeline logger (console only if None)

    Example
    -------
    >>> workflow = AnalysisWorkflow(AnalysisConfig.from_yaml("analysis.yaml"))
    >>> outcomes = workflow.run(resume=True, stop_after="annotate")
    >>> outcomes["annotate"].adata.obs["cell_type_auto"].value_counts()
    """

    def __init__(self, config: AnalysisConfig, logger: Optional[PipelineLogger] = None):
        self.config = config
        self.config.validate()
        self.pipeline_logger = logger or PipelineLogger().setup()
        self.logger = logging.getLogger("subclone_scout.workflow")
        self.output_dir = Path(config.output_dir)
        self.store = SnapshotStore(config.snapshot_path, config.snapshot_prefix)

    @property
    def stages(self) -> List[str]:
        return list(STAGE_ORDER) if self.config.run_cnv else list(SNAPSHOT_STAGES)

    def _summary(self, stage: str, record: Dict[str, Any]) -> None:
        log_json(self.output_dir / "stage_summary.jsonl", stage, record)

    # Stage bodies: previous container -> (new container, summary, result)

    def _load(self, _: Any) -> Tuple[Any, Dict[str, Any], Any]:
        paths = self.config.input
        paths.validate()
        result = DataLoader(self.config.preprocessing.loader, self.logger).load(
            paths.genes, paths.metadata, paths.matrix, paths.cells
        )
        return result.adata, result.to_dict(), result

    def _qc(self, adata: Any) -> Tuple[Any, Dict[str, Any], Any]:
        result = CellQC(self.config.preprocessing.qc, self.logger).filter_cells(adata)
        atomic_write_dataframe(
            result.removal_table(), self.output_dir / "qc_removed_cells.csv", sep=",", index=False
        )
        return result.adata, result.to_dict(), result

    def _normalize(self, adata: Any) -> Tuple[Any, Dict[str, Any], Any]:
        result = Normalizer(self.config.preprocessing.normalization, self.logger).normalize(adata)
        return result.adata, result.to_dict(), result

    def _cluster(self, adata: Any) -> Tuple[Any, Dict[str, Any], Any]:
        cfg = self.config.cluster
        engine = ClusteringEngine(cfg.clustering, self.logger)
        result = engine.run_clustering(adata)
        atomic_write_dataframe(
            engine.variance_table(result.adata), self.output_dir / "pca_variance.csv", sep=",", index=False
        )
        if cfg.run_de:
            DERunner(cfg.de, self.logger).run_de_tests(
                result.adata,
                cluster_key=cfg.clustering.cluster_key,
                output_path=self.output_dir / "cluster_markers.csv",
            )
        return result.adata, result.to_dict(), result

    def _annotate(self, adata: Any) -> Tuple[Any, Dict[str, Any], Any]:
        engine = AnnotationEngine(self.config.annotation, self.config.marker_sets, self.logger)
        result = engine.run(adata)
        atomic_write_dataframe(
            result.label_table, self.output_dir / f"{result.level}_annotations.csv", sep=",", index=False
        )
        return result.adata, result.to_dict(), result

    def _cnv(self, adata: Any) -> Tuple[Any, Dict[str, Any], Any]:
        result = CNVRunner(self.config.cnv, self.logger).run(adata, self.output_dir / "cnv")
        return adata, result.to_dict(), result

    def _bodies(self) -> Dict[str, Callable[[Any], Tuple[Any, Dict[str, Any], Any]]]:
        return {
            "load": self._load,
            "qc": self._qc,
            "normalize": self._normalize,
            "cluster": self._cluster,
            "annotate": self._annotate,
            "cnv": self._cnv,
        }

    def _make_stage(self, stage: str, previous: Optional[str], start: str, resume: bool):
        body = self._bodies()[stage]
        index, start_index = self.stages.index(stage), self.stages.index(start)

        def run_stage(stage_results: Dict[str, Optional[StageOutcome]]) -> Optional[StageOutcome]:
            if index < start_index:
                self.pipeline_logger.log_stage_skipped(stage, "covered by a later snapshot")
                return None
            if resume and stage in SNAPSHOT_STAGES and self.store.exists(stage):
                self.pipeline_logger.log_stage_skipped(stage, "loaded from snapshot")
                return StageOutcome(stage, self.store.load(stage), from_snapshot=True)

            prior = stage_results.get(previous) if previous else None
            if previous and prior is None:
                prev_adata = self.store.load(previous)
            else:
                prev_adata = prior.adata if prior else None

            adata, summary, result = body(prev_adata)
            if stage in SNAPSHOT_STAGES:
                self.store.save(adata, stage)
            self._summary(stage, summary)
            return StageOutcome(stage, adata, summary, False, result)

        return run_stage

    def run(
        self,
        resume: bool = False,
        start_from: Optional[str] = None,
        stop_after: Optional[str] = None,
    ) -> Dict[str, Optional[StageOutcome]]:
        """Run the workflow.

        Parameters
        ----------
        resume : bool
            Start from the latest existing snapshot
        start_from : str, optional
            First stage to compute; earlier stages are taken from the
            snapshot of the preceding stage
        stop_after : str, optional
            Last stage to run

        Returns
        -------
        Dict[str, Optional[StageOutcome]]
            Outcome per stage (None for stages that were not needed)
        """
        stages = self.stages
        for name in (start_from, stop_after):
            if name is not None and name not in stages:
                raise ValueError(f"Unknown stage '{name}' (expected one of {stages})")

        last = stages.index(stop_after) if stop_after else len(stages) - 1
        start = start_from or stages[0]
        if resume and start_from is None:
            candidates = [s for s in SNAPSHOT_STAGES if stages.index(s) <= last]
            start = self.store.latest(candidates) or stages[0]
        self.pipeline_logger.log_info(
            f"Workflow: {' -> '.join(stages[: last + 1])} (starting at '{start}')"
        )

        executor = InMemoryExecutor(self.pipeline_logger)
        previous = None
        for stage in stages[: last + 1]:
            executor.register_stage(
                stage,
                self._make_stage(stage, previous, start, resume),
                depends_on=[previous] if previous else None,
            )
            previous = stage
        return executor.run(stop_after=stop_after)
