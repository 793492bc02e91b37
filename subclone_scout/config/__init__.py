"""Centralized analysis configuration for subclone-scout.

Example
-------
>>> from subclone_scout.config import AnalysisConfig
>>> config = AnalysisConfig.from_yaml("analysis.yaml")
>>> config.cluster.clustering.n_pcs
20
"""

from .analysis import STAGE_ORDER, AnalysisConfig, InputConfig

__all__ = [
    "STAGE_ORDER",
    "AnalysisConfig",
    "InputConfig",
]
