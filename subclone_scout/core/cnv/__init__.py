"""CNV inference adapter.

Partitions cells into reference (presumed normal) and observation
(candidate malignant) groups, exports a rounded count table and a group
table, and runs copy-number inference to detect subclones.

Example Usage
-------------
>>> from subclone_scout.core.cnv import CNVRunner, CNVConfig
>>> config = CNVConfig(reference_groups=["T cells", "B cells"],
...                    gene_order_file="gene_order.txt")
>>> result = CNVRunner(config).run(adata_annotated, "out/cnv")
"""

__version__ = "1.0.0"

from .config import BACKENDS, CNVConfig
from .export import (
    ANNOTATIONS_FILENAME,
    COUNTS_FILENAME,
    CellPartition,
    CNVInputBundle,
    build_bundle,
    export_bundle,
    load_gene_order,
    partition_cells,
    round_counts,
)
from .runner import CNVResult, CNVRunner, build_infercnv_r_script, region_labels

__all__ = [
    # Version
    "__version__",
    # Config
    "BACKENDS",
    "CNVConfig",
    # Export
    "ANNOTATIONS_FILENAME",
    "COUNTS_FILENAME",
    "CellPartition",
    "CNVInputBundle",
    "build_bundle",
    "export_bundle",
    "load_gene_order",
    "partition_cells",
    "round_counts",
    # Runner
    "CNVResult",
    "CNVRunner",
    "build_infercnv_r_script",
    "region_labels",
]
