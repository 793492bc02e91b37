"""Pytest configuration and shared fixtures for subclone-scout tests."""

import os
import sys
from pathlib import Path

# numba's TBB threading layer (picked up from a system libtbb) deadlocks at
# interpreter exit; use the built-in workqueue layer for the test run.
os.environ.setdefault("NUMBA_THREADING_LAYER", "workqueue")

import pytest

# Add package to path
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tests.fixtures import (
    create_count_adata,
    create_normalized_adata,
    create_clustered_adata,
    write_load_inputs,
    write_gene_order,
)


# ============================================================================
# AnnData Fixtures
# ============================================================================


@pytest.fixture
def count_adata():
    """Raw count container with three labeled groups."""
    return create_count_adata()


@pytest.fixture
def normalized_adata():
    """Container that looks like normalize-stage output."""
    return create_normalized_adata()


@pytest.fixture
def clustered_adata():
    """Normalized container with one cluster per group."""
    return create_clustered_adata()


# ============================================================================
# File Fixtures
# ============================================================================


@pytest.fixture
def load_inputs(count_adata, tmp_path: Path) -> dict:
    """Gene list, metadata table and Matrix Market file for count_adata."""
    return write_load_inputs(count_adata, tmp_path / "inputs")


@pytest.fixture
def gene_order_file(count_adata, tmp_path: Path) -> Path:
    """Gene order file covering every gene of count_adata."""
    return write_gene_order(list(count_adata.var_names), tmp_path / "gene_order.txt")


@pytest.fixture
def marker_map() -> dict:
    """Marker sets matching the synthetic groups."""
    return {
        "T cells": ["CD3D", "CD3E", "CD2"],
        "B cells": ["CD79A", "MS4A1"],
        "Epithelial": ["EPCAM", "KRT8", "KRT18"],
    }


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def sample_pipeline_config(tmp_path) -> Path:
    """Create sample pipeline configuration file."""
    import yaml

    config = {
        "pipeline": {"name": "Test Pipeline", "version": "1.0"},
        "global": {"out": str(tmp_path / "output")},
        "stages": {
            "qc": {
                "name": "Cell QC",
                "script_module": "subclone_scout.core.preprocessing",
                "inputs": {"snapshot": "{global.out}/scout_load.h5ad"},
                "outputs": {"snapshot": "{global.out}/scout_qc.h5ad"},
                "args": {"stage": "qc", "input": "{stages.qc.inputs.snapshot}", "output": "{global.out}"},
            },
            "normalize": {
                "name": "Normalization",
                "script_module": "subclone_scout.core.preprocessing",
                "depends_on": ["qc"],
                "args": {"stage": "normalize", "input": "{stages.qc.outputs.snapshot}"},
            },
        },
    }

    path = tmp_path / "pipeline.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f, sort_keys=False)

    return path


@pytest.fixture
def analysis_config_file(tmp_path, load_inputs, gene_order_file) -> Path:
    """Analysis YAML with relative input paths."""
    import yaml

    config = {
        "analysis": {
            "input": {
                "genes": "inputs/genes.txt",
                "metadata": "inputs/metadata.tsv",
                "matrix": "inputs/counts.mtx",
            },
            "output_dir": "results",
            "qc": {"min_genes": 5, "max_genes": 1000, "max_mito_fraction": 0.9},
            "normalization": {"method": "log1p", "regress_out": [], "n_top_genes": None},
            "clustering": {"n_comps": 10, "n_pcs": 5, "neighbors_k": 10, "compute_umap": False},
            "run_de": False,
            "annotation": {"method": "mean"},
            "marker_sets": {
                "T cells": ["CD3D", "CD3E", "CD2"],
                "B cells": ["CD79A", "MS4A1"],
                "Epithelial": ["EPCAM", "KRT8", "KRT18"],
            },
            "cnv": {"reference_groups": ["T cells"], "gene_order_file": "gene_order.txt"},
            "run_cnv": False,
        }
    }

    path = tmp_path / "analysis.yaml"
    with open(path, "w") as f:
        yaml.dump(config, f, sort_keys=False)
    return path
