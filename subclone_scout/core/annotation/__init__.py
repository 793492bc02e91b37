"""Annotation module for marker-score cell-type labeling.

Scores every cell against curated marker gene sets and assigns the
best-scoring cell type per cluster, with an explicit tie policy.

Example Usage
-------------
>>> from subclone_scout.core.annotation import AnnotationEngine, AnnotationConfig
>>> engine = AnnotationEngine(AnnotationConfig(method="module"))
>>> result = engine.run(adata_clustered)
>>> result.ambiguous_clusters
[]
"""

__version__ = "1.0.0"

from .config import AnnotationConfig
from .markers import DEFAULT_MARKER_SETS
from .marker_loading import (
    MarkerSet,
    canonicalize_marker,
    load_marker_sets,
    read_marker_map,
)
from .scoring import score_column, score_gene_sets
from .assignment import annotate_obs, majority_labels, resolve_labels
from .engine import AnnotationEngine, AnnotationResult

__all__ = [
    # Version
    "__version__",
    # Config
    "AnnotationConfig",
    "DEFAULT_MARKER_SETS",
    # Marker loading
    "MarkerSet",
    "canonicalize_marker",
    "load_marker_sets",
    "read_marker_map",
    # Scoring
    "score_column",
    "score_gene_sets",
    # Assignment
    "annotate_obs",
    "majority_labels",
    "resolve_labels",
    # Engine
    "AnnotationEngine",
    "AnnotationResult",
]
