"""Core computational modules for subclone-scout.

This package contains the analysis stages:
- preprocessing: Data loading, cell QC, normalization
- clustering: PCA, neighbors, UMAP, Leiden and marker ranking
- annotation: Marker-score cell-type labeling
- cnv: Reference/observation export and CNV inference
"""
