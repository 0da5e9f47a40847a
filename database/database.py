"""
Database connection and session management
Postgres holds the curated item bodies that the vector index points at
"""

import os
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

# Base class for declarative models
Base = declarative_base()


def default_database_url() -> str:
    """DATABASE_URL if set, else assembled from the POSTGRES_* variables."""
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("POSTGRES_USER", "exam_user")
    password = os.getenv("POSTGRES_PASSWORD", "exam_pass")
    host = os.getenv("POSTGRES_HOST", "localhost")
    port = os.getenv("POSTGRES_PORT", "5432")
    db = os.getenv("POSTGRES_DB", "exam_corpus")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"


def create_session_factory(database_url: Optional[str] = None, create_tables: bool = False) -> sessionmaker:
    """
    Build an engine + session factory.

    SQLite URLs (tests) skip the pool sizing that Postgres uses.
    """
    url = database_url or default_database_url()
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(url, pool_pre_ping=True, pool_size=5, max_overflow=10)
    if create_tables:
        Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
