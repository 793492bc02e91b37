"""Stage representation for subprocess pipeline execution."""

import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple


@dataclass
class Stage:
    """One runnable stage of a YAML-defined pipeline.

    Attributes
    ----------
    stage_id : str
        Short identifier used in ``depends_on`` (e.g. "qc")
    name : str
        Human-readable stage name
    script_module : str
        Module run as ``python -m`` (e.g. "subclone_scout.core.clustering")
    depends_on : List[str]
        Stage IDs that must complete first
    inputs : Dict[str, str]
        Files that must exist before the stage runs
    outputs : Dict[str, str]
        Files the stage must produce
    args : Dict[str, Any]
        Command-line arguments; True -> flag, False/None -> omitted,
        list -> repeated option
    optional : bool
        Skip instead of failing when inputs are missing

    Example
    -------
    >>> stage = Stage(
    ...     stage_id="cluster",
    ...     name="Clustering",
    ...     script_module="subclone_scout.core.clustering",
    ...     args={"input": "out/scout_normalize.h5ad", "output": "out", "n_pcs": 20},
    ... )
    >>> stage.get_command()[-4:]
    ['--output', 'out', '--n-pcs', '20']
    """

    stage_id: str
    name: str
    script_module: str
    depends_on: List[str] = field(default_factory=list)
    inputs: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    args: Dict[str, Any] = field(default_factory=dict)
    optional: bool = False

    @staticmethod
    def _missing(paths: Dict[str, str], kind: str) -> List[str]:
        return [
            f"{kind} '{name}' not found: {path}"
            for name, path in paths.items()
            if not Path(path).exists()
        ]

    def validate_inputs(self) -> Tuple[bool, List[str]]:
        """Return (ok, errors) for missing input files."""
        errors = self._missing(self.inputs, "Input")
        return (not errors, errors)

    def validate_outputs(self) -> Tuple[bool, List[str]]:
        """Return (ok, errors) for outputs missing after execution."""
        errors = self._missing(self.outputs, "Output")
        return (not errors, errors)

    def get_command(self) -> List[str]:
        """Build the subprocess command with the current interpreter."""
        cmd = [sys.executable, "-m", self.script_module]
        for key, value in self.args.items():
            flag = f"--{key.replace('_', '-')}"
            if value is True:
                cmd.append(flag)
            elif value is False or value is None:
                continue
            elif isinstance(value, (list, tuple)):
                for item in value:
                    cmd.extend([flag, str(item)])
            else:
                cmd.extend([flag, str(value)])
        return cmd

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], stage_id: str) -> "Stage":
        """Create a Stage from its YAML mapping."""
        return cls(
            stage_id=stage_id,
            name=data.get("name", stage_id),
            script_module=data["script_module"],
            depends_on=list(data.get("depends_on", [])),
            inputs=dict(data.get("inputs", {})),
            outputs=dict(data.get("outputs", {})),
            args=dict(data.get("args", {})),
            optional=bool(data.get("optional", False)),
        )
