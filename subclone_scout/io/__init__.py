"""I/O utilities for subclone-scout.

Provides stage logging, atomic writes and per-stage snapshot storage.
"""

from .logging import (
    get_logger,
    get_timestamped_log_path,
    log_json,
    setup_logging,
)
from .snapshot import (
    SnapshotStore,
    atomic_write,
    atomic_write_dataframe,
    write_h5ad_atomic,
)

__all__ = [
    # Logging
    "get_logger",
    "get_timestamped_log_path",
    "log_json",
    "setup_logging",
    # Snapshots
    "SnapshotStore",
    "atomic_write",
    "atomic_write_dataframe",
    "write_h5ad_atomic",
]
