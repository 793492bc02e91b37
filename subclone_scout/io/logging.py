"""Logging utilities for subclone-scout stage runners.

Provides timestamped per-stage file logging and structured stage
summaries (JSON lines).
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Tuple, Union

PathLike = Union[str, Path]


def get_timestamped_log_path(log_path: PathLike) -> Path:
    """Generate a timestamped log path from the base log path.

    Example: qc.log -> qc_20261018_080530.log
    """
    log_path = Path(log_path)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    suffix = log_path.suffix or ".log"
    return log_path.parent / f"{log_path.stem}_{timestamp}{suffix}"


def get_logger(
    name: str,
    log_path: PathLike,
    level: int = logging.INFO,
    timestamped: bool = True,
    console: bool = True,
) -> Tuple[logging.Logger, Path]:
    """Return a logger writing to a stage log file (and optionally stderr).

    Parameters
    ----------
    name : str
        Logger name (typically the stage module name).
    log_path : PathLike
        Base path for the log file.
    level : int
        Logging level (default: INFO).
    timestamped : bool
        If True, add a timestamp to the filename so earlier runs are kept.
        If False, overwrite any existing log file.
    console : bool
        Also echo records to stderr.

    Returns
    -------
    Tuple[logging.Logger, Path]
        Logger and the log file actually written.
    """
    log_path = Path(log_path)

    if timestamped:
        actual_log_path = get_timestamped_log_path(log_path)
    else:
        actual_log_path = log_path
        actual_log_path.unlink(missing_ok=True)

    actual_log_path.parent.mkdir(parents=True, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    file_handler = logging.FileHandler(actual_log_path, mode="a", encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    return logger, actual_log_path


def _prepare_log_destination(log_path: PathLike) -> Path:
    path = Path(log_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def log_json(log_path: PathLike, stage: str, record: dict[str, Any]) -> None:
    """Append a stage summary as one JSON line.

    The line carries ``stage`` and ``timestamp`` keys in addition to
    the fields of ``record``.
    """
    path = _prepare_log_destination(log_path)
    line = {"stage": stage, "timestamp": datetime.now().isoformat(), **record}
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(line, default=str))
        handle.write("\n")


def setup_logging(
    name: str,
    verbose: bool = False,
    log_dir: PathLike | None = None,
    log_filename: str = "stage.log",
) -> logging.Logger:
    """Configure a stage-runner logger.

    Console only when ``log_dir`` is None, otherwise console plus a
    timestamped log file under ``log_dir``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    if log_dir is not None:
        logger, log_path = get_logger(name, Path(log_dir) / log_filename, level=level)
        logger.info("Log file: %s", log_path)
        return logger

    logger = logging.getLogger(name)
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s | %(levelname)s | %(message)s", "%Y-%m-%d %H:%M:%S")
    )
    logger.addHandler(handler)
    return logger
