"""
Qdrant Vector Database Manager
Holds one point per curated corpus item and serves filtered similarity search.

Point payload: item_id, subject, chapter, difficulty, topics[], tags[]
"""

import logging
from typing import Any, Dict, List, Optional

from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance, VectorParams, PointStruct,
    Filter, FieldCondition, MatchValue, MatchAny,
)

from item_generation.errors import UpstreamServiceError

log = logging.getLogger("embeddings")


class QdrantManager:
    """
    Manages the curated-items collection.

    Filters passed to search_items() are a flat dict: a scalar value means an
    exact match on that payload field, a list means set membership (MatchAny).
    """

    DEFAULT_COLLECTION = "curated_items"
    EMBEDDING_DIM = 1536
    PAYLOAD_INDEXES = [
        ("subject", "keyword"),
        ("chapter", "keyword"),
        ("difficulty", "keyword"),
        ("topics", "keyword"),
        ("tags", "keyword"),
    ]

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        collection_name: str = DEFAULT_COLLECTION,
        timeout: Optional[int] = None,
        client: Optional[QdrantClient] = None,
    ):
        """
        Args:
            host:            Qdrant host (default: localhost)
            port:            Qdrant port (default: 6333)
            url:             Full URL (overrides host/port)
            api_key:         Qdrant Cloud API key
            collection_name: Collection holding curated items
            client:          Pre-built client (tests use QdrantClient(":memory:"))
        """
        self.collection_name = collection_name
        if client is not None:
            self.client = client
        elif url:
            self.client = QdrantClient(url=url, api_key=api_key, timeout=timeout)
            log.info(f"Connected to Qdrant at {url}")
        else:
            host = host or "localhost"
            port = port or 6333
            self.client = QdrantClient(host=host, port=port, api_key=api_key, timeout=timeout)
            log.info(f"Connected to Qdrant at {host}:{port}")

    def create_collection(self, recreate: bool = False, dim: int = EMBEDDING_DIM):
        """Create the curated-items collection and its payload indexes."""
        names = [c.name for c in self.client.get_collections().collections]
        if self.collection_name in names:
            if not recreate:
                return
            self.client.delete_collection(self.collection_name)
            log.info(f"Deleted existing collection: {self.collection_name}")
        self.client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=dim, distance=Distance.COSINE),
        )
        for field, schema in self.PAYLOAD_INDEXES:
            self.client.create_payload_index(
                collection_name=self.collection_name,
                field_name=field,
                field_schema=schema,
            )
        log.info(f"Created collection: {self.collection_name}")

    def index_item(self, item_id: int, embedding: List[float], payload: Dict[str, Any]) -> str:
        """Upsert one curated item. Point id = item_id."""
        point = PointStruct(id=item_id, vector=embedding, payload={**payload, "item_id": item_id})
        try:
            self.client.upsert(collection_name=self.collection_name, points=[point])
        except Exception as e:
            raise UpstreamServiceError(f"Qdrant upsert failed: {e}") from e
        return str(item_id)

    @staticmethod
    def build_filter(filters: Optional[Dict[str, Any]]) -> Optional[Filter]:
        must = []
        for key, value in (filters or {}).items():
            if value is None or value == "" or value == []:
                continue
            if isinstance(value, (list, tuple, set)):
                must.append(FieldCondition(key=key, match=MatchAny(any=list(value))))
            else:
                must.append(FieldCondition(key=key, match=MatchValue(value=value)))
        return Filter(must=must) if must else None

    def search_items(
        self,
        query_vector: List[float],
        limit: int = 50,
        filters: Optional[Dict[str, Any]] = None,
        score_threshold: Optional[float] = None,
    ) -> List[Dict[str, Any]]:
        """
        Similarity search over curated items.

        Returns:
            Ranked list of {"id", "score", "metadata"}

        Raises:
            UpstreamServiceError: the search call failed
        """
        try:
            response = self.client.query_points(
                collection_name=self.collection_name,
                query=query_vector,
                query_filter=self.build_filter(filters),
                limit=limit,
                score_threshold=score_threshold,
                with_payload=True,
            )
        except Exception as e:
            raise UpstreamServiceError(f"Qdrant search failed: {e}") from e

        results = []
        for point in response.points:
            payload = point.payload or {}
            results.append({
                "id": payload.get("item_id", point.id),
                "score": point.score,
                "metadata": payload,
            })
        return results
