"""Pipeline configuration: YAML stage DAG with path templates.

Example YAML::

    global:
      out: results/tumor
    stages:
      qc:
        script_module: subclone_scout.core.preprocessing
        inputs: {snapshot: "{global.out}/scout_load.h5ad"}
        outputs: {snapshot: "{global.out}/scout_qc.h5ad"}
        args: {stage: qc, input: "{stages.qc.inputs.snapshot}", output: "{global.out}"}
      normalize:
        script_module: subclone_scout.core.preprocessing
        depends_on: [qc]
        args: {stage: normalize, input: "{stages.qc.outputs.snapshot}", output: "{global.out}"}
"""

import re
from graphlib import CycleError, TopologicalSorter
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from ..errors import ConfigurationError
from .stage import Stage

_TEMPLATE = re.compile(r"\{([A-Za-z0-9_.\-]+)\}")
_MAX_TEMPLATE_DEPTH = 10


class PipelineConfig:
    """Stage DAG loaded from a YAML mapping.

    Parameters
    ----------
    raw_config : Dict[str, Any]
        Parsed YAML with ``stages`` and optional ``global`` sections
    source : str
        Where the configuration came from (for error messages)

    Example
    -------
    >>> config = PipelineConfig.from_yaml("pipeline.yaml")
    >>> ok, errors = config.validate_dependencies()
    >>> config.get_execution_order()
    ['load', 'qc', 'normalize', 'cluster', 'annotate', 'cnv']
    """

    def __init__(self, raw_config: Dict[str, Any], source: str = "<dict>"):
        self.raw_config = raw_config or {}
        self.source = source
        self.global_settings: Dict[str, Any] = dict(self.raw_config.get("global", {}))
        self.stages: Dict[str, Stage] = {}
        self.parse_stages()

    @classmethod
    def from_yaml(cls, path: str) -> "PipelineConfig":
        """Load a pipeline YAML file.

        Raises
        ------
        FileNotFoundError
            If the file does not exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path, "r") as f:
            return cls(yaml.safe_load(f) or {}, source=str(path))

    @classmethod
    def from_dict(cls, config_dict: Dict[str, Any]) -> "PipelineConfig":
        return cls(config_dict)

    def parse_stages(self) -> None:
        """Build Stage objects with templates resolved."""
        stages = self.raw_config.get("stages")
        if not stages:
            raise ConfigurationError("No 'stages' section in pipeline configuration", source=self.source)

        for stage_id, stage_def in stages.items():
            if "script_module" not in stage_def:
                raise ConfigurationError(
                    f"Stage '{stage_id}' missing required field 'script_module'", source=self.source
                )
            resolved = dict(stage_def)
            for section in ("inputs", "outputs", "args"):
                resolved[section] = {
                    key: self.resolve(value) for key, value in stage_def.get(section, {}).items()
                }
            self.stages[stage_id] = Stage.from_dict(resolved, stage_id)

    def _lookup(self, ref: str) -> Any:
        value: Any = self.raw_config
        for part in ref.split("."):
            if not isinstance(value, dict) or part not in value:
                raise ConfigurationError(f"Unresolved template '{{{ref}}}'", source=self.source)
            value = value[part]
        if isinstance(value, (dict, list)):
            raise ConfigurationError(f"Template '{{{ref}}}' does not name a scalar", source=self.source)
        return value

    def resolve(self, value: Any) -> Any:
        """Resolve ``{global.x}`` and ``{stages.ID.outputs.y}`` templates.

        Non-string values are returned unchanged; lists are resolved
        element-wise.
        """
        if isinstance(value, list):
            return [self.resolve(v) for v in value]
        if not isinstance(value, str):
            return value
        for _ in range(_MAX_TEMPLATE_DEPTH):
            if not _TEMPLATE.search(value):
                return value
            value = _TEMPLATE.sub(lambda m: str(self._lookup(m.group(1))), value)
        raise ConfigurationError(f"Template nesting too deep in '{value}'", source=self.source)

    def validate_dependencies(self) -> Tuple[bool, List[str]]:
        """Check for unknown dependencies and cycles.

        Returns
        -------
        Tuple[bool, List[str]]
            (valid, errors)
        """
        errors = [
            f"Stage '{sid}' depends on unknown stage '{dep}'"
            for sid, stage in self.stages.items()
            for dep in stage.depends_on
            if dep not in self.stages
        ]
        if not errors:
            try:
                self.get_execution_order()
            except ConfigurationError as exc:
                errors.append(exc.message)
        return (not errors, errors)

    def get_execution_order(self) -> List[str]:
        """Topological order of stage IDs (YAML order among independent stages)."""
        sorter = TopologicalSorter()
        for sid, stage in self.stages.items():
            sorter.add(sid, *[d for d in stage.depends_on if d in self.stages])
        try:
            sorter.prepare()
        except CycleError as exc:
            raise ConfigurationError(
                f"Circular dependency detected: {' -> '.join(exc.args[1])}", source=self.source
            ) from exc

        position = {sid: i for i, sid in enumerate(self.stages)}
        order: List[str] = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready(), key=position.get)
            order.extend(ready)
            sorter.done(*ready)
        return order

    def get_stage(self, stage_id: str) -> Optional[Stage]:
        return self.stages.get(stage_id)

    def list_stages(self) -> List[str]:
        return list(self.stages)

    def to_dict(self) -> Dict[str, Any]:
        """Convert resolved configuration to a dictionary."""
        return {
            "pipeline": self.raw_config.get("pipeline", {}),
            "global": self.global_settings,
            "stages": {sid: stage.to_dict() for sid, stage in self.stages.items()},
        }
