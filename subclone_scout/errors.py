"""Error types for subclone-scout.

Error Codes:
    E001_DIMENSION_MISMATCH: Matrix shape disagrees with identifier lists
    E002_CONFIGURATION: Missing metadata column or invalid parameter
    E003_EMPTY_GENE_SET: No gene of a marker set is present in the container
    E004_EMPTY_GROUP: Reference or observation cell group is empty
    E005_CONVERGENCE: Per-gene regression failed (recorded, never raised)
    E006_INVALID_COUNTS: Count matrix holds negative or non-integer values
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class SubcloneScoutError(Exception):
    """Base class for errors raised by subclone-scout.

    Parameters
    ----------
    message : str
        Human-readable error description
    source : str, optional
        File, column or group that triggered the error
    """

    error_code = "E000_UNKNOWN"

    def __init__(self, message: str, source: Optional[str] = None):
        self.message = message
        self.source = source
        super().__init__(str(self))

    def __str__(self) -> str:
        text = f"[{self.error_code}] {self.message}"
        if self.source:
            text += f" (source: {self.source})"
        return text


class DimensionMismatch(SubcloneScoutError):
    """Matrix rows/columns disagree with gene or cell identifier counts."""

    error_code = "E001_DIMENSION_MISMATCH"


class ConfigurationError(SubcloneScoutError):
    """A required column is missing or a parameter is out of range."""

    error_code = "E002_CONFIGURATION"


class EmptyGeneSetError(ConfigurationError):
    """None of the genes of a marker set exist in the expression container."""

    error_code = "E003_EMPTY_GENE_SET"


class InvalidCountsError(ConfigurationError):
    """Count matrix contains negative or non-integer entries."""

    error_code = "E006_INVALID_COUNTS"


class EmptyGroupError(SubcloneScoutError):
    """A reference or observation group has no cells at CNV export time."""

    error_code = "E004_EMPTY_GROUP"


@dataclass
class ConvergenceFailure:
    """Per-gene regression failure collected during normalization.

    Attributes
    ----------
    gene : str
        Gene identifier (var_name)
    reason : str
        Short description of what went wrong
    """

    gene: str
    reason: str
    error_code: str = "E005_CONVERGENCE"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for reporting."""
        return {
            "gene": self.gene,
            "reason": self.reason,
            "error_code": self.error_code,
        }
