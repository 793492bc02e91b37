"""subclone-scout: single-cell RNA-seq analysis for tumor subclone discovery.

This package provides tools for:
- Loading Matrix Market counts with gene and cell metadata
- Cell quality control and GLM-based variance stabilization
- PCA, neighbor graph, UMAP and Leiden clustering
- Marker-score cell-type annotation with an explicit tie policy
- Reference-vs-observation CNV inference for subclone detection

Each stage returns a new AnnData and can be persisted as a snapshot so
that later stages resume without recomputation.

Example usage:
    >>> from subclone_scout.config import AnalysisConfig
    >>> from subclone_scout.pipeline import AnalysisWorkflow
    >>>
    >>> config = AnalysisConfig.from_yaml("analysis.yaml")
    >>> workflow = AnalysisWorkflow(config)
    >>> results = workflow.run(resume=True)
"""

__version__ = "1.0.0"
