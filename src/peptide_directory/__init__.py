"""
Peptide vendor directory package.

Shared utilities (config, logging, paths) plus the catalog store, the
vendor-price pipeline, AI-backed content functions and the HTTP API.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]
