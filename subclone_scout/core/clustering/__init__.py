"""Clustering module for cell population identification.

Provides PCA, neighbor graph, UMAP and Leiden clustering with an
explicit random seed, plus per-cluster marker ranking.

Example Usage
-------------
>>> from subclone_scout.core.clustering import (
...     ClusteringEngine, DERunner, ClusterStageConfig,
... )
>>> config = ClusterStageConfig()
>>> result = ClusteringEngine(config.clustering).run_clustering(adata_norm)
>>> ClusteringEngine.variance_table(result.adata).head()
>>> de_result = DERunner(config.de).run_de_tests(result.adata, cluster_key="cluster")
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    ClusteringConfig,
    DEConfig,
    ClusterStageConfig,
)

# Clustering engine
from .engine import (
    ClusteringEngine,
    ClusteringResult,
)

# Differential expression
from .de import (
    DERunner,
    DEResult,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "ClusteringConfig",
    "DEConfig",
    "ClusterStageConfig",
    # Engine
    "ClusteringEngine",
    "ClusteringResult",
    # DE
    "DERunner",
    "DEResult",
]
