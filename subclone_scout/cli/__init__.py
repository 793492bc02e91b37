"""Command-line interface for subclone-scout.

Example Usage
-------------
    subclone-scout --help
    subclone-scout load --genes genes.txt --metadata cells.tsv --matrix counts.mtx --out results/
    subclone-scout run --config analysis.yaml --resume
    subclone-scout pipeline --config pipeline.yaml --dry-run
"""

from .main import cli, main

__all__ = [
    "cli",
    "main",
]
