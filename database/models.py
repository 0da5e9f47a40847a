"""
SQLAlchemy models for the curated corpus.

A CuratedItem is an approved exam question usable as retrieval inspiration.
Its primary key is also the Qdrant point id.
"""

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON
from sqlalchemy.sql import func

from database.database import Base


class CuratedItem(Base):
    """
    Approved multiple-choice item.

    content_hash is the item fingerprint (subject + stem + options) and is
    unique, so the same question can never be curated twice.
    """
    __tablename__ = "curated_items"

    id = Column(Integer, primary_key=True, index=True)
    text = Column(Text, nullable=False)
    options = Column(JSON, nullable=False, default=list)
    correct_index = Column(Integer, nullable=True)
    subject = Column(String(255), nullable=False, index=True)
    chapter = Column(String(255), nullable=True, index=True)
    difficulty = Column(String(16), nullable=True, index=True)  # easy | medium | hard
    topics = Column(JSON, nullable=False, default=list)
    tags = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    content_hash = Column(String(64), unique=True, nullable=False, index=True)
    vector_id = Column(String(64), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "text": self.text,
            "options": list(self.options or []),
            "correct_index": self.correct_index,
            "subject": self.subject,
            "chapter": self.chapter,
            "difficulty": self.difficulty,
            "topics": list(self.topics or []),
            "tags": list(self.tags or []),
        }

    def __repr__(self):
        return f"<CuratedItem(id={self.id}, subject='{self.subject}', difficulty='{self.difficulty}')>"
