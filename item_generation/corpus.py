"""
Corpus Access — read-only facade over the embedding service, the vector
index and the document store, plus the indexer that adds curated items.

retrieve(context):
  1. build an embedding query from subject/chapter/tier/topics/tags/keyword/notes
  2. embed it
  3. vector search with subject/chapter/difficulty filter (+ topic/tag MatchAny)
  4. batch-fetch bodies from the document store
  5. drop records without text or options; keep search rank order

All collaborator SDKs are blocking, so they run in worker threads.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from item_generation.errors import DuplicateItemError, UpstreamServiceError
from item_generation.fingerprint import fingerprint
from item_generation.run_state import GenerationRun
from item_generation.schemas import InspirationRecord, RetrievalContext

log = logging.getLogger("generation.pipeline")

DEFAULT_TOP_K = 50
PERMUTATION_TOP_K = 300
FACET_SAMPLE_SIZE = 200
INDEX_BATCH_SIZE = 100


def build_query_text(context: RetrievalContext) -> str:
    """Embedding input for one context. Subject is always present."""
    parts = [f"Subject: {context.subject}"]
    if context.chapter:
        parts.append(f"Chapter: {context.chapter}")
    parts.append(f"Difficulty: {context.tier}")
    if context.topics:
        parts.append("Topics: " + ", ".join(context.topics))
    if context.tags:
        parts.append("Tags: " + ", ".join(context.tags))
    if context.keyword:
        parts.append(f"Focus: {context.keyword}")
    if context.notes:
        parts.append(f"Notes: {context.notes}")
    return "\n".join(parts)


def build_search_filter(context: RetrievalContext, with_facets: bool = True) -> Dict[str, Any]:
    filters: Dict[str, Any] = {"subject": context.subject, "difficulty": context.tier}
    if context.chapter:
        filters["chapter"] = context.chapter
    if with_facets and context.topics:
        filters["topics"] = list(context.topics)
    if with_facets and context.tags:
        filters["tags"] = list(context.tags)
    return filters


def _to_record(raw: Dict[str, Any], score: float) -> Optional[InspirationRecord]:
    text = str(raw.get("text") or "").strip()
    options = [str(o).strip() for o in (raw.get("options") or []) if str(o).strip()]
    if not text or not options:
        return None
    correct = raw.get("correct_index", raw.get("correctIndex"))
    if not isinstance(correct, int) or not 0 <= correct < len(options):
        correct = None
    return InspirationRecord(
        id=str(raw.get("id")),
        text=text,
        options=options,
        correct_index=correct,
        chapter=raw.get("chapter") or None,
        topics=list(raw.get("topics") or []),
        tags=list(raw.get("tags") or []),
        difficulty=raw.get("difficulty") or None,
        score=float(score or 0.0),
    )


class CorpusAccess:
    def __init__(self, embedder, vector_search, document_store, top_k: int = DEFAULT_TOP_K):
        self.embedder = embedder
        self.vector_search = vector_search
        self.document_store = document_store
        self.top_k = top_k

    async def _search(self, vector: List[float], top_k: int, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        try:
            return await asyncio.to_thread(self.vector_search.search_items, vector, top_k, filters)
        except UpstreamServiceError:
            raise
        except Exception as e:
            raise UpstreamServiceError(f"Vector search failed: {e}") from e

    async def retrieve(
        self,
        context: RetrievalContext,
        run: Optional[GenerationRun] = None,
        top_k: Optional[int] = None,
    ) -> List[InspirationRecord]:
        """
        Inspiration records for one context, cached on the run by context id.

        A facet-filtered search that matches nothing is retried once without
        the topic/tag filter.

        Raises:
            UpstreamServiceError: embedding, search or fetch failed
        """
        if run is not None and context.id in run.retrieval_cache:
            return run.retrieval_cache[context.id]

        top_k = top_k or self.top_k
        query = build_query_text(context)
        try:
            vector = await asyncio.to_thread(self.embedder.generate_embedding, query)
        except UpstreamServiceError:
            raise
        except Exception as e:
            raise UpstreamServiceError(f"Embedding failed: {e}") from e

        matches = await self._search(vector, top_k, build_search_filter(context))
        if not matches and (context.topics or context.tags):
            log.info(f"[RETRIEVE] {context.id}: no facet matches, retrying without topic/tag filter")
            matches = await self._search(vector, top_k, build_search_filter(context, with_facets=False))

        ids = [str(m["id"]) for m in matches if m.get("id") is not None]
        bodies: List[Dict[str, Any]] = []
        if ids:
            try:
                bodies = await asyncio.to_thread(self.document_store.fetch_by_ids, ids)
            except UpstreamServiceError:
                raise
            except Exception as e:
                raise UpstreamServiceError(f"Document fetch failed: {e}") from e

        by_id = {str(b.get("id")): b for b in bodies}
        records: List[InspirationRecord] = []
        for m in matches:
            body = by_id.get(str(m.get("id")))
            if body is None:
                continue
            record = _to_record(body, m.get("score", 0.0))
            if record is not None:
                records.append(record)

        log.info(f"[RETRIEVE] {context.id}: {len(matches)} matches, {len(records)} usable")
        if run is not None:
            run.retrieval_cache[context.id] = records
        return records

    async def sample_facets(self, subject: str, chapter: Optional[str] = None) -> Tuple[List[str], List[str]]:
        """Distinct (topics, tags) present in a sample of the corpus."""
        try:
            topics, tags = await asyncio.to_thread(
                self.document_store.sample_facets, subject, chapter, FACET_SAMPLE_SIZE
            )
        except UpstreamServiceError:
            raise
        except Exception as e:
            raise UpstreamServiceError(f"Facet sampling failed: {e}") from e
        return list(topics), list(tags)


class CorpusIndexer:
    """
    Adds curated items to the corpus: document store row (unique content
    hash) + vector point with filterable metadata.
    """

    def __init__(self, embedder, vector_search, document_store):
        self.embedder = embedder
        self.vector_search = vector_search
        self.document_store = document_store

    @staticmethod
    def _prepare(record: Dict[str, Any]) -> Tuple[Dict[str, Any], str, str, Dict[str, Any]]:
        """Returns (clean record, content hash, embedding text, vector payload)."""
        subject = str(record.get("subject") or "").strip()
        text = str(record.get("text") or "").strip()
        options = [str(o).strip() for o in (record.get("options") or []) if str(o).strip()]
        if not subject or not text or not options:
            raise ValueError("Curated items need subject, text and options")

        clean = {
            **record,
            "subject": subject,
            "text": text,
            "options": options,
            "topics": list(record.get("topics") or []),
            "tags": list(record.get("tags") or []),
        }
        embed_text = "\n".join([text, *options, ", ".join(clean["topics"]), ", ".join(clean["tags"])])
        payload = {
            "subject": subject,
            "chapter": clean.get("chapter"),
            "difficulty": clean.get("difficulty"),
            "topics": clean["topics"],
            "tags": clean["tags"],
        }
        return clean, fingerprint(subject, text, options), embed_text, payload

    async def index_item(self, record: Dict[str, Any]) -> int:
        """
        Register one curated item and return its id.

        Raises:
            ValueError:          missing subject, text or options
            DuplicateItemError:  same content already curated
            UpstreamServiceError: embedding or vector upsert failed (row is removed again)
        """
        clean, content_hash, embed_text, payload = self._prepare(record)
        item_id = await asyncio.to_thread(self.document_store.add_item, clean, content_hash)

        try:
            vector = await asyncio.to_thread(self.embedder.generate_embedding, embed_text)
            vector_id = await asyncio.to_thread(self.vector_search.index_item, item_id, vector, payload)
        except Exception as e:
            log.error(f"[INDEX] Item {item_id} could not be embedded/indexed: {e}")
            await asyncio.to_thread(self.document_store.delete_item, item_id)
            if isinstance(e, UpstreamServiceError):
                raise
            raise UpstreamServiceError(f"Indexing failed: {e}") from e

        await asyncio.to_thread(self.document_store.set_vector_id, item_id, vector_id)
        log.info(f"[INDEX] Curated item {item_id} indexed (hash {content_hash[:12]})")
        return item_id

    async def index_items(self, records: List[Dict[str, Any]], batch_size: int = INDEX_BATCH_SIZE) -> Dict[str, Any]:
        """
        Bulk registration. Invalid and duplicate records are skipped; a batch
        whose embedding or upsert fails is rolled back and counted as failed.

        Returns:
            {"indexed": [ids], "invalid": n, "duplicates": n, "failed": n}
        """
        summary: Dict[str, Any] = {"indexed": [], "invalid": 0, "duplicates": 0, "failed": 0}
        total_batches = (len(records) + batch_size - 1) // batch_size

        for start in range(0, len(records), batch_size):
            batch_num = start // batch_size + 1
            rows: List[Tuple[int, str, Dict[str, Any]]] = []
            for record in records[start:start + batch_size]:
                try:
                    clean, content_hash, embed_text, payload = self._prepare(record)
                except ValueError as e:
                    summary["invalid"] += 1
                    log.warning(f"[INDEX] Skipping invalid record: {e}")
                    continue
                try:
                    item_id = await asyncio.to_thread(self.document_store.add_item, clean, content_hash)
                except DuplicateItemError:
                    summary["duplicates"] += 1
                    continue
                rows.append((item_id, embed_text, payload))

            if not rows:
                continue
            try:
                vectors = await asyncio.to_thread(
                    self.embedder.generate_embeddings_batch, [r[1] for r in rows], batch_size
                )
                vector_ids = []
                for (item_id, _, payload), vector in zip(rows, vectors):
                    vector_ids.append(
                        await asyncio.to_thread(self.vector_search.index_item, item_id, vector, payload)
                    )
            except Exception as e:
                log.error(f"[INDEX] Batch {batch_num}/{total_batches} failed: {e}")
                for item_id, _, _ in rows:
                    await asyncio.to_thread(self.document_store.delete_item, item_id)
                summary["failed"] += len(rows)
                continue

            for (item_id, _, _), vector_id in zip(rows, vector_ids):
                await asyncio.to_thread(self.document_store.set_vector_id, item_id, vector_id)
                summary["indexed"].append(item_id)
            log.info(f"[INDEX] Batch {batch_num}/{total_batches}: {len(rows)} items indexed")

        log.info(
            f"[INDEX] Done: {len(summary['indexed'])} indexed, {summary['duplicates']} duplicates, "
            f"{summary['invalid']} invalid, {summary['failed']} failed"
        )
        return summary
