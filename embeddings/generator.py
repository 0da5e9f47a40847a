"""
Embedding Generator
Converts corpus items and retrieval queries to vectors using OpenAI embeddings.

Architecture:
- Model: text-embedding-3-small (override with EMBEDDING_MODEL)
- Dimensions: 1536
- Used by corpus retrieval (query vectors) and corpus indexing (item vectors)
"""

import logging
from typing import List, Optional

from openai import OpenAI

from item_generation.errors import ConfigurationError, UpstreamServiceError

log = logging.getLogger("embeddings")


class EmbeddingGenerator:
    """
    Generate embeddings for text using the OpenAI embeddings endpoint.

    Failures are raised as UpstreamServiceError, never returned as a zero vector.
    """

    DEFAULT_MODEL = "text-embedding-3-small"

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = 60.0,
        client: Optional[OpenAI] = None,
    ):
        """
        Args:
            model_name: OpenAI embedding model name
            api_key:    OpenAI API key
            base_url:   Optional OpenAI-compatible endpoint
            timeout:    Per-request timeout in seconds
            client:     Pre-built client (tests)
        """
        self.model_name = model_name
        if client is not None:
            self.client = client
        else:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set; cannot create embedding client.")
            self.client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        log.info(f"Embedding model: {model_name}")

    def generate_embedding(self, text: str) -> List[float]:
        """
        Generate embedding for a single text.

        Raises:
            UpstreamServiceError: the request failed or returned no vector
        """
        if not text or not text.strip():
            raise UpstreamServiceError("Refusing to embed empty text")

        try:
            response = self.client.embeddings.create(input=text, model=self.model_name)
        except Exception as e:
            raise UpstreamServiceError(f"Embedding request failed: {e}") from e

        embedding = response.data[0].embedding if response.data else []
        if not embedding:
            raise UpstreamServiceError("Embedding response contained no vector")
        return list(embedding)

    def generate_embeddings_batch(self, texts: List[str], batch_size: int = 100) -> List[List[float]]:
        """
        Generate embeddings for multiple texts, batched.

        Used when indexing curated items in bulk.
        """
        if not texts:
            return []

        processed = [t if t and t.strip() else " " for t in texts]
        all_embeddings: List[List[float]] = []
        for i in range(0, len(processed), batch_size):
            batch = processed[i:i + batch_size]
            try:
                response = self.client.embeddings.create(input=batch, model=self.model_name)
            except Exception as e:
                raise UpstreamServiceError(f"Batch embedding failed: {e}") from e
            all_embeddings.extend(list(item.embedding) for item in response.data)
        return all_embeddings
