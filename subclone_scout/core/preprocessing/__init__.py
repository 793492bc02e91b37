"""Preprocessing module for loading, quality control and normalization.

Pipeline Stages
---------------
- load: Matrix Market counts + gene list + cell metadata -> AnnData
- qc: Cell-level filtering on detected genes and mitochondrial fraction
- normalize: Per-gene GLM residuals (or log1p) with covariate regression

Example Usage
-------------
>>> from subclone_scout.core.preprocessing import (
...     DataLoader, CellQC, QCConfig, Normalizer,
... )
>>> loaded = DataLoader().load("genes.txt", "metadata.tsv", "counts.mtx")
>>> qc_result = CellQC(QCConfig()).filter_cells(loaded.adata)
>>> norm_result = Normalizer().normalize(qc_result.adata)
"""

__version__ = "1.0.0"

# Configuration classes
from .config import (
    LoaderConfig,
    QCConfig,
    NormalizationConfig,
    PreprocessingConfig,
)

# Data loading
from .loader import (
    DataLoader,
    LoadResult,
)

# Cell QC
from .qc import (
    CellQC,
    QCResult,
    REASON_COLUMNS,
)

# Normalization
from .normalization import (
    Normalizer,
    NormalizationResult,
)

__all__ = [
    # Version
    "__version__",
    # Config
    "LoaderConfig",
    "QCConfig",
    "NormalizationConfig",
    "PreprocessingConfig",
    # Loader
    "DataLoader",
    "LoadResult",
    # QC
    "CellQC",
    "QCResult",
    "REASON_COLUMNS",
    # Normalization
    "Normalizer",
    "NormalizationResult",
]
