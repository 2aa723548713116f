"""Ingestion and hybrid retrieval for Stanford Encyclopedia of Philosophy entries."""

__version__ = "0.1.0"
