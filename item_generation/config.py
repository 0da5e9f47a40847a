"""
Settings for the generation engine, read from the environment (.env supported).

    OPENAI_API_KEY        required for the default services
    OPENAI_BASE_URL       optional OpenAI-compatible endpoint (e.g. OpenRouter)
    GENERATION_MODELS     comma list, tried in order (default "gpt-4o-mini,gpt-4o")
    EMBEDDING_MODEL       default "text-embedding-3-small"
    QDRANT_URL            full URL; else QDRANT_HOST / QDRANT_PORT
    QDRANT_API_KEY        optional
    QDRANT_COLLECTION     default "curated_items"
    DATABASE_URL          else assembled from POSTGRES_*
    LLM_TIMEOUT_SECONDS   per-call timeout for chat/embedding requests
"""

import logging
import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from item_generation.errors import ConfigurationError

LOG_FORMAT = "%(asctime)s  %(levelname)s  %(message)s"

DEFAULT_MODELS = ["gpt-4o-mini", "gpt-4o"]


def _split_csv(raw: Optional[str]) -> List[str]:
    return [p.strip() for p in (raw or "").split(",") if p.strip()]


class GenerationSettings(BaseModel):
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    generation_models: List[str] = Field(default_factory=lambda: list(DEFAULT_MODELS))
    embedding_model: str = "text-embedding-3-small"
    qdrant_url: Optional[str] = None
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_api_key: Optional[str] = None
    qdrant_collection: str = "curated_items"
    database_url: Optional[str] = None
    llm_timeout_seconds: float = 60.0

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "GenerationSettings":
        if dotenv:
            load_dotenv()
        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL") or None,
            generation_models=_split_csv(os.getenv("GENERATION_MODELS")) or list(DEFAULT_MODELS),
            embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
            qdrant_url=os.getenv("QDRANT_URL") or None,
            qdrant_host=os.getenv("QDRANT_HOST", "localhost"),
            qdrant_port=int(os.getenv("QDRANT_PORT", "6333")),
            qdrant_api_key=os.getenv("QDRANT_API_KEY") or None,
            qdrant_collection=os.getenv("QDRANT_COLLECTION", "curated_items"),
            database_url=os.getenv("DATABASE_URL") or None,
            llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
        )

    def require_credentials(self) -> None:
        """Raise ConfigurationError naming every missing setting."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.generation_models:
            missing.append("GENERATION_MODELS")
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")


def configure_logging(level: int = logging.INFO) -> None:
    """Console logging for scripts and the hosting service. Never called on import."""
    logging.basicConfig(level=level, format=LOG_FORMAT)
