"""Top-level package for book assignment scoring and balancing.

This module provides convenient imports for commonly used functionality
while keeping the main implementation in submodules under ``src/bookops``.
"""

from . import rules, scoring, allocation, metrics, thresholds, schema, validation, data_access  # noqa: F401

__all__ = [
    "rules",
    "scoring",
    "allocation",
    "metrics",
    "thresholds",
    "schema",
    "validation",
    "data_access",
]
