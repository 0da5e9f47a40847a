"""
Collaborator wiring.

GenerationServices bundles the shared, stateless collaborators (chat chain,
corpus access, corpus indexer). One bundle can serve many concurrent
requests; per-request state lives on GenerationRun.
"""

import logging
from typing import Optional

from item_generation.config import GenerationSettings
from item_generation.corpus import CorpusAccess, CorpusIndexer
from item_generation.errors import ConfigurationError
from item_generation.gpt_client import FallbackChatClient, build_openai_chat_client

log = logging.getLogger("generation.pipeline")


class GenerationServices:
    def __init__(
        self,
        chat: FallbackChatClient,
        corpus: CorpusAccess,
        indexer: Optional[CorpusIndexer] = None,
    ):
        self.chat = chat
        self.corpus = corpus
        self.indexer = indexer

    def ensure_ready(self) -> None:
        """Preconditions checked before any external call."""
        if self.chat is None:
            raise ConfigurationError("No text-generation client configured.")
        self.chat.ensure_ready()
        if self.corpus is None:
            raise ConfigurationError("No corpus access configured.")


def build_default_services(settings: Optional[GenerationSettings] = None) -> GenerationServices:
    """
    OpenAI chat + embeddings, Qdrant vector search, Postgres document store.

    Raises:
        ConfigurationError: credentials are missing
    """
    settings = settings or GenerationSettings.from_env()
    settings.require_credentials()

    from database import SqlDocumentStore, create_session_factory
    from embeddings import EmbeddingGenerator, QdrantManager

    chat = build_openai_chat_client(
        api_key=settings.openai_api_key,
        models=settings.generation_models,
        base_url=settings.openai_base_url,
        timeout=settings.llm_timeout_seconds,
    )
    embedder = EmbeddingGenerator(
        model_name=settings.embedding_model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.llm_timeout_seconds,
    )
    vector_search = QdrantManager(
        url=settings.qdrant_url,
        host=settings.qdrant_host,
        port=settings.qdrant_port,
        api_key=settings.qdrant_api_key,
        collection_name=settings.qdrant_collection,
        timeout=int(settings.llm_timeout_seconds),
    )
    document_store = SqlDocumentStore(create_session_factory(settings.database_url))

    log.info(f"[SERVICES] models={settings.generation_models}, collection={settings.qdrant_collection}")
    return GenerationServices(
        chat=chat,
        corpus=CorpusAccess(embedder, vector_search, document_store),
        indexer=CorpusIndexer(embedder, vector_search, document_store),
    )
