"""Pipeline execution with checkpoint support."""

import json
import subprocess
import time
from datetime import datetime
from graphlib import TopologicalSorter
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from ..io import atomic_write
from .config import PipelineConfig
from .logger import PipelineLogger
from .stage import Stage


class PipelineExecutor:
    """Runs YAML-defined stages as subprocesses with checkpointing.

    Completed stage IDs are recorded in a JSON state file (written
    atomically) so an interrupted run resumes after the last completed
    stage.

    Parameters
    ----------
    config : PipelineConfig
        Loaded pipeline configuration
    logger : PipelineLogger
        Initialized logger
    state_file : str, optional
        Checkpoint path (default: .pipeline_state.json)

    Example
    -------
    >>> config = PipelineConfig.from_yaml("pipeline.yaml")
    >>> executor = PipelineExecutor(config, PipelineLogger("logs/").setup())
    >>> exit_code = executor.run(end_stage="annotate")
    """

    def __init__(
        self,
        config: PipelineConfig,
        logger: PipelineLogger,
        state_file: Optional[str] = None,
    ):
        self.config = config
        self.logger = logger
        self.state_file = Path(state_file) if state_file else Path(".pipeline_state.json")
        self.completed_stages: List[str] = []

    def load_state(self) -> None:
        """Load completed stages from the checkpoint file, if any."""
        if not self.state_file.exists():
            self.logger.log_debug("No checkpoint file found, starting fresh")
            return
        try:
            with open(self.state_file, "r") as f:
                state = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.log_warning(f"Ignoring unreadable checkpoint {self.state_file}: {e}")
            self.completed_stages = []
            return
        self.completed_stages = list(state.get("completed_stages", []))
        self.logger.log_info(f"Loaded checkpoint: {len(self.completed_stages)} stages completed")

    def save_state(self) -> None:
        """Write the checkpoint file atomically."""
        state = {
            "completed_stages": self.completed_stages,
            "timestamp": datetime.now().isoformat(),
        }
        atomic_write(self.state_file, lambda tmp: tmp.write_text(json.dumps(state, indent=2)))

    def clear_state(self) -> None:
        """Remove the checkpoint (fresh run)."""
        if self.state_file.exists():
            self.state_file.unlink()
            self.logger.log_info("Cleared checkpoint state")
        self.completed_stages = []

    def execute_stage(self, stage: Stage, dry_run: bool = False) -> int:
        """Execute one stage and return its exit code."""
        cmd = stage.get_command()
        if dry_run:
            self.logger.log_info(f"[DRY RUN] Would execute: {' '.join(cmd)}")
            return 0

        valid, errors = stage.validate_inputs()
        if not valid:
            if stage.optional:
                self.logger.log_stage_skipped(stage.stage_id, "optional stage inputs missing")
                return 0
            self.logger.log_error(f"Input validation failed for stage {stage.stage_id}:")
            for error in errors:
                self.logger.log_error(f"  - {error}")
            return 1

        self.logger.log_stage_start(stage.stage_id, stage.name)
        start_time = time.time()
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, check=False)
        except OSError as e:
            self.logger.log_stage_error(stage.stage_id, str(e))
            return 1

        if result.returncode != 0:
            self.logger.log_stage_error(stage.stage_id, f"exit code {result.returncode}")
            self.logger.log_error(f"STDERR: {result.stderr[-1000:]}")
            return result.returncode

        valid, errors = stage.validate_outputs()
        if not valid:
            self.logger.log_error(f"Output validation failed for stage {stage.stage_id}:")
            for error in errors:
                self.logger.log_error(f"  - {error}")
            return 1

        self.logger.log_stage_complete(stage.stage_id, time.time() - start_time)
        self.completed_stages.append(stage.stage_id)
        self.save_state()
        return 0

    def plan(self, start_stage: Optional[str] = None, end_stage: Optional[str] = None) -> List[str]:
        """Execution order restricted to [start_stage, end_stage].

        Raises
        ------
        KeyError
            If start_stage or end_stage is not a known stage
        """
        order = self.config.get_execution_order()
        for bound in (start_stage, end_stage):
            if bound is not None and bound not in order:
                raise KeyError(f"Unknown stage '{bound}'")
        lo = order.index(start_stage) if start_stage else 0
        hi = order.index(end_stage) + 1 if end_stage else len(order)
        return order[lo:hi]

    def run(
        self,
        start_stage: Optional[str] = None,
        end_stage: Optional[str] = None,
        dry_run: bool = False,
        force: bool = False,
    ) -> int:
        """Execute the pipeline; returns 0 on success."""
        try:
            order = self.plan(start_stage, end_stage)
        except KeyError as e:
            self.logger.log_error(str(e))
            return 1

        if force:
            self.clear_state()
        else:
            self.load_state()

        self.logger.log_info(f"Pipeline execution plan: {' -> '.join(order)}")
        for stage_id in order:
            if stage_id in self.completed_stages:
                self.logger.log_stage_skipped(stage_id, "already completed")
                continue
            exit_code = self.execute_stage(self.config.stages[stage_id], dry_run)
            if exit_code != 0:
                self.logger.log_error(f"Pipeline failed at stage {stage_id}")
                return exit_code

        self.logger.log_info("Pipeline completed successfully")
        return 0


class InMemoryExecutor:
    """Runs registered Python callables in dependency order.

    Each callable receives ``stage_results`` (results of earlier stages)
    plus the keyword arguments given to :meth:`run`.

    Parameters
    ----------
    logger : PipelineLogger, optional
        Logger instance

    Example
    -------
    >>> executor = InMemoryExecutor()
    >>> executor.register_stage("qc", run_qc)
    >>> executor.register_stage("normalize", run_normalize, depends_on=["qc"])
    >>> results = executor.run()
    """

    def __init__(self, logger: Optional[PipelineLogger] = None):
        self.logger = logger
        self.stages: Dict[str, Dict[str, Any]] = {}
        self.completed_stages: List[str] = []

    def register_stage(
        self,
        stage_id: str,
        func: Callable,
        depends_on: Optional[List[str]] = None,
        name: Optional[str] = None,
    ) -> None:
        """Register a stage function."""
        self.stages[stage_id] = {
            "func": func,
            "depends_on": list(depends_on or []),
            "name": name or stage_id,
        }

    def execution_order(self) -> List[str]:
        """Topological order of registered stages (raises graphlib.CycleError)."""
        graph = {sid: stage["depends_on"] for sid, stage in self.stages.items()}
        return list(TopologicalSorter(graph).static_order())

    def run(self, stop_after: Optional[str] = None, **kwargs) -> Dict[str, Any]:
        """Execute registered stages in order.

        Parameters
        ----------
        stop_after : str, optional
            Last stage to run
        **kwargs
            Passed to every stage function

        Returns
        -------
        Dict[str, Any]
            Map of stage_id to stage result
        """
        results: Dict[str, Any] = {}
        for stage_id in self.execution_order():
            stage = self.stages[stage_id]
            if self.logger:
                self.logger.log_stage_start(stage_id, stage["name"])
            start_time = time.time()
            try:
                results[stage_id] = stage["func"](**kwargs, stage_results=results)
            except Exception as e:
                if self.logger:
                    self.logger.log_stage_error(stage_id, str(e))
                raise
            self.completed_stages.append(stage_id)
            if self.logger:
                self.logger.log_stage_complete(stage_id, time.time() - start_time)
            if stage_id == stop_after:
                break
        return results
