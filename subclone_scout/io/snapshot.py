"""Stage snapshots and atomic file writes.

Every cost-bearing stage persists a full copy of its expression
container as ``<prefix>_<stage>.h5ad`` so that later stages can resume
without recomputation. Files are first written to a temporary path in
the destination directory and then moved into place with
``os.replace()``, so a reader sees either the old or the new snapshot,
never a partial one.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

import pandas as pd

PathLike = Union[str, Path]

logger = logging.getLogger(__name__)

_STAGE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


def atomic_write(path: PathLike, writer: Callable[[Path], None], suffix: str = ".tmp") -> Path:
    """Write a file atomically via temp-file + rename.

    Parameters
    ----------
    path : PathLike
        Destination file path.
    writer : Callable[[Path], None]
        Function that writes the full content to the temporary path it
        receives.
    suffix : str
        Suffix of the temporary file (some writers infer format from it).

    Returns
    -------
    Path
        The destination path.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=suffix)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        writer(tmp_path)
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path.exists():
            tmp_path.unlink()
        raise
    return path


def atomic_write_dataframe(
    df: pd.DataFrame,
    path: PathLike,
    sep: str = "\t",
    **to_csv_kwargs: Any,
) -> Path:
    """Write a DataFrame as delimited text atomically."""
    return atomic_write(path, lambda tmp: df.to_csv(tmp, sep=sep, **to_csv_kwargs))


def write_h5ad_atomic(adata: Any, path: PathLike) -> Path:
    """Write an AnnData to ``path`` atomically."""
    return atomic_write(path, lambda tmp: adata.write_h5ad(tmp), suffix=".h5ad")


class SnapshotStore:
    """Directory of per-stage AnnData snapshots.

    Parameters
    ----------
    root : PathLike
        Snapshot directory (created on first save)
    prefix : str
        Filename prefix shared by all snapshots of one analysis

    Example
    -------
    >>> store = SnapshotStore("out/snapshots", prefix="tumor")
    >>> store.save(adata_qc, "qc")
    PosixPath('out/snapshots/tumor_qc.h5ad')
    >>> store.exists("qc")
    True
    >>> adata_qc = store.load("qc")
    """

    def __init__(self, root: PathLike, prefix: str = "scout"):
        self.root = Path(root)
        self.prefix = prefix

    def path_for(self, stage: str) -> Path:
        """Return the snapshot path for a stage name."""
        if not _STAGE_NAME.match(stage):
            raise ValueError(f"Invalid stage name for snapshot: {stage!r}")
        return self.root / f"{self.prefix}_{stage}.h5ad"

    def exists(self, stage: str) -> bool:
        return self.path_for(stage).exists()

    def save(self, adata: Any, stage: str) -> Path:
        """Persist a full copy of ``adata`` under ``stage``."""
        path = self.path_for(stage)
        write_h5ad_atomic(adata, path)
        logger.info(
            "Saved snapshot '%s' (%d cells x %d genes) to %s",
            stage,
            adata.n_obs,
            adata.n_vars,
            path,
        )
        return path

    def load(self, stage: str) -> Any:
        """Load the snapshot saved under ``stage``.

        Raises
        ------
        FileNotFoundError
            If no snapshot exists for the stage
        """
        import anndata as ad

        path = self.path_for(stage)
        if not path.exists():
            raise FileNotFoundError(f"No snapshot for stage '{stage}': {path}")
        adata = ad.read_h5ad(path)
        logger.info("Loaded snapshot '%s' from %s", stage, path)
        return adata

    def list_stages(self) -> List[str]:
        """List stage names with a snapshot on disk, oldest first."""
        if not self.root.exists():
            return []
        head = f"{self.prefix}_"
        paths = sorted(
            (p for p in self.root.glob(f"{head}*.h5ad") if not p.name.startswith(".")),
            key=lambda p: p.stat().st_mtime,
        )
        return [p.stem[len(head):] for p in paths]

    def latest(self, stages: List[str]) -> Optional[str]:
        """Return the last stage of ``stages`` that has a snapshot."""
        for stage in reversed(stages):
            if self.exists(stage):
                return stage
        return None
