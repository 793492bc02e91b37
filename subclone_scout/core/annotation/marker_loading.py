"""Marker set loading and resolution for cell-type annotation.

Marker maps are flat mappings from cell-type label to gene symbols,
given inline or as a YAML/JSON file. Values may be a list of symbols or
a ``{"markers": [...]}`` node. Symbols resolve case-insensitively
against var_names and var['gene_symbol'].
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import yaml

from ...errors import ConfigurationError

MarkerMap = Mapping[str, Union[Sequence[str], Mapping[str, Sequence[str]]]]


@dataclass(frozen=True)
class MarkerSet:
    """A set of marker genes defining a cell type.

    Attributes:
        label: Cell type name (e.g., "T cells")
        markers: Original symbols from the marker map
        resolved_markers: var_names matched by those symbols
        missing_markers: Symbols not found in the container
    """
    label: str
    markers: Tuple[str, ...]
    resolved_markers: Tuple[str, ...]
    missing_markers: Tuple[str, ...]


def canonicalize_marker(marker: str) -> str:
    """Normalize marker name for case-insensitive lookup."""
    return marker.strip().lower()


def read_marker_map(path: Union[str, Path]) -> Dict[str, List[str]]:
    """Read a marker map from a YAML or JSON file.

    Raises:
        FileNotFoundError: If the file does not exist
        ConfigurationError: If the content is not a label -> genes mapping
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Marker map not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        if path.suffix.lower() == ".json":
            data = json.load(f)
        else:
            data = yaml.safe_load(f)
    if isinstance(data, dict) and isinstance(data.get("marker_sets"), dict):
        data = data["marker_sets"]
    if not isinstance(data, dict):
        raise ConfigurationError("Marker map must be a mapping of label -> genes", source=str(path))
    return _normalize_marker_map(data, source=str(path))


def _normalize_marker_map(marker_map: MarkerMap, source: str = "marker_sets") -> Dict[str, List[str]]:
    normalized: Dict[str, List[str]] = {}
    for label, node in marker_map.items():
        if str(label).startswith("_"):
            continue
        genes = node.get("markers", []) if isinstance(node, Mapping) else node
        if isinstance(genes, str) or not isinstance(genes, Sequence):
            raise ConfigurationError(
                f"Marker set '{label}' must be a list of gene symbols", source=source
            )
        normalized[str(label)] = [str(g) for g in genes]
    if not normalized:
        raise ConfigurationError("Marker map defines no gene sets", source=source)
    return normalized


def build_symbol_lookup(
    var_names: Sequence[str],
    gene_symbols: Optional[Sequence[str]] = None,
) -> Dict[str, str]:
    """Map canonical symbol -> var_name (first occurrence wins)."""
    lookup: Dict[str, str] = {}
    for name in var_names:
        lookup.setdefault(canonicalize_marker(str(name)), str(name))
    if gene_symbols is not None:
        for name, symbol in zip(var_names, gene_symbols):
            lookup.setdefault(canonicalize_marker(str(symbol)), str(name))
    return lookup


def load_marker_sets(
    marker_map: Union[MarkerMap, Path, str],
    var_names: Sequence[str],
    gene_symbols: Optional[Sequence[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> List[MarkerSet]:
    """Load and resolve marker sets against the container's genes.

    Args:
        marker_map: Mapping label -> genes, or path to a YAML/JSON file
        var_names: Gene identifiers of the container
        gene_symbols: Optional original symbols aligned with var_names
        logger: Optional logger instance

    Returns:
        One MarkerSet per label, in marker map order. Sets may have no
        resolved markers; scoring rejects them.
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    if isinstance(marker_map, (str, Path)):
        marker_map = read_marker_map(marker_map)
    else:
        marker_map = _normalize_marker_map(marker_map)

    lookup = build_symbol_lookup(var_names, gene_symbols)
    result: List[MarkerSet] = []
    for label, genes in marker_map.items():
        resolved: List[str] = []
        missing: List[str] = []
        for gene in genes:
            matched = lookup.get(canonicalize_marker(gene))
            if matched is None:
                missing.append(gene)
            elif matched not in resolved:
                resolved.append(matched)

        if missing:
            logger.warning(
                "Marker set '%s': missing %d/%d genes: %s",
                label,
                len(missing),
                len(genes),
                missing,
            )
        result.append(
            MarkerSet(
                label=label,
                markers=tuple(genes),
                resolved_markers=tuple(resolved),
                missing_markers=tuple(missing),
            )
        )

    logger.info(
        "Loaded %d marker sets (%d with resolved genes)",
        len(result),
        sum(1 for ms in result if ms.resolved_markers),
    )
    return result
