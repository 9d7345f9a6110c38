"""Auxiliary context captured from open documents."""

from .window import ContextWindowManager, jaccard_similarity

__all__ = ["ContextWindowManager", "jaccard_similarity"]
