"""
Database package
Curated corpus bodies (Postgres via SQLAlchemy)
"""

from .database import Base, create_session_factory, default_database_url
from .models import CuratedItem
from .crud import SqlDocumentStore

__all__ = [
    "Base",
    "create_session_factory",
    "default_database_url",
    "CuratedItem",
    "SqlDocumentStore",
]
