"""Test fixtures for subclone-scout.

Provides synthetic count data generators and input-file writers.
"""

from .mock_adata import (
    GROUP_MARKERS,
    MITO_GENES,
    create_count_adata,
    create_normalized_adata,
    create_clustered_adata,
    write_load_inputs,
    write_gene_order,
)

__all__ = [
    "GROUP_MARKERS",
    "MITO_GENES",
    "create_count_adata",
    "create_normalized_adata",
    "create_clustered_adata",
    "write_load_inputs",
    "write_gene_order",
]
