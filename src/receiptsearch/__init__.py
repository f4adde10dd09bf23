"""Semantic receipt search service."""

__version__ = "0.1.0"
