import json
import random

import pytest

from item_generation.corpus import CorpusAccess
from item_generation.errors import UpstreamServiceError
from item_generation.gpt_client import ChatProvider, FallbackChatClient
from item_generation.services import GenerationServices


def item_json(text, options=None, correct=0, **extra):
    payload = {
        "text": text,
        "options": options or [f"{text} option {c}" for c in "ABCD"],
        "correctIndex": correct,
    }
    payload.update(extra)
    return json.dumps(payload)


class FakeEmbedder:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def generate_embedding(self, text):
        self.calls.append(text)
        if self.fail:
            raise UpstreamServiceError("embedding down")
        return [float(len(text) % 7), 1.0, 0.5]

    def generate_embeddings_batch(self, texts, batch_size=100):
        return [self.generate_embedding(t) for t in texts]


class FakeVectorSearch:
    def __init__(self, matches=None, fail=False):
        self.matches = list(matches or [])
        self.fail = fail
        self.calls = []
        self.indexed = {}

    def search_items(self, query_vector, limit=50, filters=None):
        self.calls.append({"vector": query_vector, "limit": limit, "filters": dict(filters or {})})
        if self.fail:
            raise UpstreamServiceError("search down")
        return list(self.matches)

    def index_item(self, item_id, embedding, payload):
        self.indexed[item_id] = {"vector": embedding, "payload": payload}
        return str(item_id)


class FakeDocumentStore:
    def __init__(self, records=None, topics=None, tags=None, facets_fail=False):
        self.records = {str(r["id"]): r for r in (records or [])}
        self.topics = list(topics or [])
        self.tags = list(tags or [])
        self.facets_fail = facets_fail
        self.fetch_calls = []

    def fetch_by_ids(self, ids):
        self.fetch_calls.append(list(ids))
        return [self.records[i] for i in ids if i in self.records]

    def sample_facets(self, subject, chapter=None, limit=200):
        if self.facets_fail:
            raise UpstreamServiceError("store down")
        return list(self.topics), list(self.tags)


class ScriptedProvider(ChatProvider):
    """Replays scripted responses. A callable script receives the prompt."""

    def __init__(self, script, name="fake-model"):
        self.script = script if callable(script) else list(script)
        self.name = name
        self.prompts = []

    async def complete(self, system, prompt, temperature=0.4):
        self.prompts.append(prompt)
        if callable(self.script):
            response = self.script(prompt)
        elif self.script:
            response = self.script.pop(0)
        else:
            response = ""
        if isinstance(response, Exception):
            raise response
        return response


def corpus_record(i, text=None, difficulty="easy", topics=None, tags=None):
    return {
        "id": i,
        "text": text or f"Curated question number {i} about motion?",
        "options": ["one", "two", "three", "four"],
        "correct_index": 1,
        "subject": "Physics",
        "chapter": None,
        "difficulty": difficulty,
        "topics": topics or [],
        "tags": tags or [],
    }


def make_services(provider, records=None, matches=None, **store_kwargs):
    records = records if records is not None else []
    if matches is None:
        matches = [{"id": r["id"], "score": 0.9 - 0.01 * n} for n, r in enumerate(records)]
    store = FakeDocumentStore(records, **store_kwargs)
    corpus = CorpusAccess(FakeEmbedder(), FakeVectorSearch(matches), store)
    providers = provider if isinstance(provider, list) else [provider]
    return GenerationServices(chat=FallbackChatClient(providers), corpus=corpus)


@pytest.fixture
def rng():
    return random.Random(7)
