"""Catalog records and pure helpers: matching, currency, reconstitution math."""

from .matching import AliasIndex, MatchResult, calculate_discounted_price, resolve

__all__ = ["AliasIndex", "MatchResult", "calculate_discounted_price", "resolve"]
