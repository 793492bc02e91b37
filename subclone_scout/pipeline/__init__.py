"""Pipeline orchestration for subclone-scout.

Two ways to run the stages:

- :class:`AnalysisWorkflow` runs every stage in process from one
  analysis YAML, resuming from stage snapshots.
- :class:`PipelineExecutor` runs a YAML stage DAG as subprocesses
  (``python -m <module>``), with a state file for checkpointing.

Example Usage
-------------
>>> from subclone_scout.config import AnalysisConfig
>>> from subclone_scout.pipeline import AnalysisWorkflow
>>> outcomes = AnalysisWorkflow(AnalysisConfig.from_yaml("analysis.yaml")).run(resume=True)
"""

from .stage import Stage
from .config import PipelineConfig
from .logger import ColoredFormatter, PipelineLogger
from .executor import InMemoryExecutor, PipelineExecutor
from .workflow import SNAPSHOT_STAGES, AnalysisWorkflow, StageOutcome

__all__ = [
    "Stage",
    "PipelineConfig",
    "ColoredFormatter",
    "PipelineLogger",
    "InMemoryExecutor",
    "PipelineExecutor",
    "SNAPSHOT_STAGES",
    "AnalysisWorkflow",
    "StageOutcome",
]
