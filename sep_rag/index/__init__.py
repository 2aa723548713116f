"""Vector index backends."""

from .chroma import ChromaVectorIndex

__all__ = ["ChromaVectorIndex"]
