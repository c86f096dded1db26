"""Incremental cross-region catalog crawler."""

__version__ = "0.1.0"
