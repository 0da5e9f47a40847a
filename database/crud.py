"""
CRUD operations for the curated corpus.
The generation engine only reads; add_item() is used by corpus indexing.
"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database.models import CuratedItem
from item_generation.errors import DuplicateItemError, UpstreamServiceError

log = logging.getLogger("embeddings")


def get_items_by_ids(db: Session, ids: List[int]) -> List[CuratedItem]:
    if not ids:
        return []
    return db.query(CuratedItem).filter(CuratedItem.id.in_(ids)).all()


def get_item_by_hash(db: Session, content_hash: str) -> Optional[CuratedItem]:
    return db.query(CuratedItem).filter(CuratedItem.content_hash == content_hash).first()


def get_sample_items(db: Session, subject: str, chapter: Optional[str] = None, limit: int = 200) -> List[CuratedItem]:
    """Most recent curated items for a subject (and chapter, when given)."""
    query = db.query(CuratedItem).filter(CuratedItem.subject == subject)
    if chapter:
        query = query.filter(CuratedItem.chapter == chapter)
    return query.order_by(CuratedItem.id.desc()).limit(limit).all()


class SqlDocumentStore:
    """
    Document store over the curated_items table.

    Opens a short-lived session per call so one store can serve many
    concurrent generation requests.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def fetch_by_ids(self, ids: List) -> List[Dict]:
        int_ids = []
        for raw in ids:
            try:
                int_ids.append(int(raw))
            except (TypeError, ValueError):
                log.warning(f"[DocumentStore] Ignoring non-integer item id {raw!r}")
        db = self.session_factory()
        try:
            return [row.to_record() for row in get_items_by_ids(db, int_ids)]
        except SQLAlchemyError as e:
            raise UpstreamServiceError(f"Document fetch failed: {e}") from e
        finally:
            db.close()

    def sample_facets(self, subject: str, chapter: Optional[str] = None, limit: int = 200) -> Tuple[List[str], List[str]]:
        """Distinct topics and tags (first-seen order) across a sample of items."""
        db = self.session_factory()
        try:
            rows = get_sample_items(db, subject, chapter, limit)
        except SQLAlchemyError as e:
            raise UpstreamServiceError(f"Facet sampling failed: {e}") from e
        finally:
            db.close()

        topics: List[str] = []
        tags: List[str] = []
        for row in rows:
            for t in row.topics or []:
                if t and t not in topics:
                    topics.append(t)
            for t in row.tags or []:
                if t and t not in tags:
                    tags.append(t)
        return topics, tags

    def add_item(self, record: Dict, content_hash: str) -> int:
        """
        Insert a curated item and return its id.

        Raises:
            DuplicateItemError: an item with the same content hash exists
        """
        db = self.session_factory()
        try:
            if get_item_by_hash(db, content_hash) is not None:
                raise DuplicateItemError(f"Curated item already exists (hash {content_hash[:12]})")
            row = CuratedItem(
                text=record["text"],
                options=list(record.get("options") or []),
                correct_index=record.get("correct_index"),
                subject=record["subject"],
                chapter=record.get("chapter"),
                difficulty=record.get("difficulty"),
                topics=list(record.get("topics") or []),
                tags=list(record.get("tags") or []),
                description=record.get("description"),
                content_hash=content_hash,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        except IntegrityError as e:
            db.rollback()
            raise DuplicateItemError(f"Curated item already exists (hash {content_hash[:12]})") from e
        finally:
            db.close()

    def set_vector_id(self, item_id: int, vector_id: str) -> None:
        db = self.session_factory()
        try:
            row = db.get(CuratedItem, item_id)
            if row is not None:
                row.vector_id = vector_id
                db.commit()
        finally:
            db.close()

    def delete_item(self, item_id: int) -> None:
        db = self.session_factory()
        try:
            row = db.get(CuratedItem, item_id)
            if row is not None:
                db.delete(row)
                db.commit()
        finally:
            db.close()
