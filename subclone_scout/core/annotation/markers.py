"""Built-in marker gene sets for tumor microenvironment compartments."""

from typing import Dict, List

DEFAULT_MARKER_SETS: Dict[str, List[str]] = {
    "T cells": ["CD3D", "CD3E", "CD2"],
    "B cells": ["CD79A", "MS4A1"],
    "Myeloid": ["CD68", "LYZ", "CD14"],
    "Fibroblasts": ["COL1A1", "DCN"],
    "Endothelial": ["PECAM1", "VWF"],
    "Epithelial": ["EPCAM", "KRT8", "KRT18"],
}
