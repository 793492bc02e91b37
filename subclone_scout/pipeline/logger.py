"""Structured logging for pipeline execution."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name for terminal output."""

    def __init__(self, fmt: str, datefmt: str, colors: dict):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.colors = colors

    def format(self, record):
        original = record.levelname
        color = self.colors.get(original, self.colors["RESET"])
        record.levelname = f"{color}{original}{self.colors['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


class PipelineLogger:
    """Console and file logging with stage start/complete/error events.

    Parameters
    ----------
    log_dir : str, optional
        Directory for ``pipeline_<timestamp>.log``; console only if None
    log_level : str
        Logging level name (DEBUG, INFO, WARNING, ERROR)
    log_name : str
        Logger name

    Example
    -------
    >>> logger = PipelineLogger("logs/", log_level="INFO")
    >>> logger.setup()
    >>> logger.log_stage_start("qc", "Cell QC")
    >>> logger.log_stage_complete("qc", 12.4)
    """

    COLORS = {
        "DEBUG": "\033[0;36m",
        "INFO": "\033[0;34m",
        "WARNING": "\033[1;33m",
        "ERROR": "\033[0;31m",
        "CRITICAL": "\033[1;31m",
        "RESET": "\033[0m",
    }

    def __init__(
        self,
        log_dir: Optional[str] = None,
        log_level: str = "INFO",
        log_name: str = "subclone_scout.pipeline",
    ):
        self.log_dir = Path(log_dir) if log_dir else None
        self.log_file: Optional[Path] = None
        if self.log_dir is not None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.log_file = self.log_dir / f"pipeline_{timestamp}.log"

        self.log_level = getattr(logging, log_level.upper())
        self.logger = logging.getLogger(log_name)
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False
        self.logger.handlers = []

    def setup(self) -> "PipelineLogger":
        """Attach the file (plain) and console (colored) handlers."""
        if self.log_file is not None:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_file, mode="w")
            file_handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s - %(name)s - %(levelname)s - %(message)s", "%Y-%m-%d %H:%M:%S"
                )
            )
            self.logger.addHandler(file_handler)

        console = logging.StreamHandler(sys.stdout)
        if console.stream.isatty():
            console.setFormatter(
                ColoredFormatter("%(asctime)s - %(levelname)s - %(message)s", "%H:%M:%S", self.COLORS)
            )
        else:
            console.setFormatter(
                logging.Formatter("%(asctime)s - %(levelname)s - %(message)s", "%H:%M:%S")
            )
        self.logger.addHandler(console)
        return self

    def log_stage_start(self, stage_id: str, stage_name: str) -> None:
        self.logger.info("=" * 72)
        self.logger.info("Starting stage %s: %s", stage_id, stage_name)
        self.logger.info("=" * 72)

    def log_stage_complete(self, stage_id: str, duration: float) -> None:
        self.logger.info("Stage %s completed in %s", stage_id, self.format_duration(duration))

    def log_stage_skipped(self, stage_id: str, reason: str) -> None:
        self.logger.info("[SKIP] Stage %s: %s", stage_id, reason)

    def log_stage_error(self, stage_id: str, error: str) -> None:
        self.logger.error("Stage %s failed: %s", stage_id, error)

    def log_info(self, message: str) -> None:
        self.logger.info(message)

    def log_warning(self, message: str) -> None:
        self.logger.warning(message)

    def log_error(self, message: str) -> None:
        self.logger.error(message)

    def log_debug(self, message: str) -> None:
        self.logger.debug(message)

    @staticmethod
    def format_duration(seconds: float) -> str:
        """Format seconds as "45.2s", "1m 23s" or "2h 15m"."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        if seconds < 3600:
            return f"{int(seconds // 60)}m {int(seconds % 60)}s"
        return f"{int(seconds // 3600)}h {int((seconds % 3600) // 60)}m"
