import pytest

from conftest import FakeEmbedder, FakeVectorSearch
from database import SqlDocumentStore, create_session_factory
from item_generation.corpus import CorpusIndexer
from item_generation.errors import DuplicateItemError, UpstreamServiceError
from item_generation.fingerprint import fingerprint


@pytest.fixture
def store(tmp_path):
    factory = create_session_factory(f"sqlite:///{tmp_path / 'corpus.db'}", create_tables=True)
    return SqlDocumentStore(factory)


def _record(text="What is the SI unit of force?", **extra):
    record = {
        "text": text,
        "options": ["Newton", "Joule", "Watt", "Pascal"],
        "correct_index": 0,
        "subject": "Physics",
        "chapter": "Laws of Motion",
        "difficulty": "easy",
        "topics": ["Force"],
        "tags": ["units"],
    }
    record.update(extra)
    return record


def test_add_and_fetch(store):
    rec = _record()
    item_id = store.add_item(rec, fingerprint("Physics", rec["text"], rec["options"]))

    fetched = store.fetch_by_ids([str(item_id), "not-a-number"])

    assert len(fetched) == 1
    assert fetched[0]["id"] == item_id
    assert fetched[0]["options"] == ["Newton", "Joule", "Watt", "Pascal"]
    assert fetched[0]["topics"] == ["Force"]


def test_duplicate_hash_rejected(store):
    rec = _record()
    content_hash = fingerprint("Physics", rec["text"], rec["options"])
    store.add_item(rec, content_hash)
    with pytest.raises(DuplicateItemError):
        store.add_item(rec, content_hash)


def test_sample_facets_distinct_in_order(store):
    store.add_item(_record("Q1", topics=["Force", "Friction"], tags=["units"]), "h1")
    store.add_item(_record("Q2", topics=["Force", "Momentum"], tags=["jee", "units"]), "h2")
    store.add_item(_record("Q3", subject="Chemistry", topics=["Moles"]), "h3")

    topics, tags = store.sample_facets("Physics")

    assert set(topics) == {"Force", "Friction", "Momentum"}
    assert set(tags) == {"units", "jee"}
    assert "Moles" not in topics


def test_sample_facets_by_chapter(store):
    store.add_item(_record("Q1", chapter="Optics", topics=["Lenses"]), "h1")
    store.add_item(_record("Q2", topics=["Force"]), "h2")
    topics, _ = store.sample_facets("Physics", "Optics")
    assert topics == ["Lenses"]


async def test_indexer_stores_row_and_vector(store):
    search = FakeVectorSearch()
    indexer = CorpusIndexer(FakeEmbedder(), search, store)

    item_id = await indexer.index_item(_record())

    assert search.indexed[item_id]["payload"]["subject"] == "Physics"
    assert search.indexed[item_id]["payload"]["difficulty"] == "easy"
    assert store.fetch_by_ids([item_id])[0]["text"] == "What is the SI unit of force?"


async def test_indexer_rejects_duplicate_content(store):
    indexer = CorpusIndexer(FakeEmbedder(), FakeVectorSearch(), store)
    await indexer.index_item(_record())
    with pytest.raises(DuplicateItemError):
        await indexer.index_item(_record(text="  what is the SI unit of   FORCE? "))


async def test_indexer_removes_row_when_embedding_fails(store):
    indexer = CorpusIndexer(FakeEmbedder(fail=True), FakeVectorSearch(), store)
    with pytest.raises(UpstreamServiceError):
        await indexer.index_item(_record())

    # content can be indexed again once the embedding service is back
    indexer = CorpusIndexer(FakeEmbedder(), FakeVectorSearch(), store)
    assert await indexer.index_item(_record())


async def test_indexer_requires_content(store):
    indexer = CorpusIndexer(FakeEmbedder(), FakeVectorSearch(), store)
    with pytest.raises(ValueError):
        await indexer.index_item(_record(options=[]))


async def test_bulk_indexing_skips_duplicates_and_invalid_records(store):
    search = FakeVectorSearch()
    embedder = FakeEmbedder()
    indexer = CorpusIndexer(embedder, search, store)
    records = [
        _record("Q1?"),
        _record("Q2?"),
        _record("  q1? "),
        _record("Q3?", options=[]),
        _record("Q4?"),
    ]

    summary = await indexer.index_items(records, batch_size=2)

    assert len(summary["indexed"]) == 3
    assert (summary["duplicates"], summary["invalid"], summary["failed"]) == (1, 1, 0)
    assert set(search.indexed) == set(summary["indexed"])
    assert len(embedder.calls) == 3
    texts = [r["text"] for r in store.fetch_by_ids(summary["indexed"])]
    assert sorted(texts) == ["Q1?", "Q2?", "Q4?"]


async def test_bulk_indexing_rolls_back_failed_batch(store):
    indexer = CorpusIndexer(FakeEmbedder(fail=True), FakeVectorSearch(), store)

    summary = await indexer.index_items([_record("Q1?"), _record("Q2?")])

    assert summary["indexed"] == []
    assert summary["failed"] == 2
    # rows were removed, so the same content can be indexed later
    retry = await CorpusIndexer(FakeEmbedder(), FakeVectorSearch(), store).index_items([_record("Q1?")])
    assert len(retry["indexed"]) == 1
