"""
Embeddings package
Text-to-vector conversion (OpenAI) and the Qdrant index of curated items
"""

from .generator import EmbeddingGenerator
from .qdrant_manager import QdrantManager

__all__ = [
    "EmbeddingGenerator",
    "QdrantManager",
]
