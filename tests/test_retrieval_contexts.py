import json
import random

import pytest

from conftest import FakeDocumentStore, FakeEmbedder, FakeVectorSearch, ScriptedProvider
from item_generation.corpus import PERMUTATION_TOP_K, CorpusAccess
from item_generation.gpt_client import FallbackChatClient
from item_generation.retrieval_contexts import (
    ContextBuilder, KeywordContextBuilder, PermutationContextBuilder, PlainContextBuilder,
    build_context_builder, enumerate_permutations, extract_keywords, format_feedback,
)
from item_generation.run_state import GenerationRun
from item_generation.schemas import EvaluationReport, GenerationRequest


def _corpus(topics=None, tags=None, facets_fail=False):
    store = FakeDocumentStore(topics=topics, tags=tags, facets_fail=facets_fail)
    return CorpusAccess(FakeEmbedder(), FakeVectorSearch(), store)


def _run(seed=7, **kwargs):
    params = dict(subject="Physics", easy_count=2)
    params.update(kwargs)
    return GenerationRun(GenerationRequest(**params), random.Random(seed))


# ─── Plain ────────────────────────────────────────────────────────────────────

async def test_plain_context_uses_request_fields():
    run = _run(chapter="Optics", topics=["Lenses"], tags=["jee"], description="no numericals")
    builder = PlainContextBuilder()
    await builder.refresh(run, 1)

    ctx = builder.next_context("easy", run)

    assert ctx.label == "plain"
    assert (ctx.subject, ctx.chapter, ctx.tier) == ("Physics", "Optics", "easy")
    assert ctx.topics == ["Lenses"] and ctx.tags == ["jee"]
    assert ctx.notes == "no numericals"
    assert builder.next_context("easy", run) is ctx


# ─── Permutation ──────────────────────────────────────────────────────────────

def test_enumerate_permutations_shapes():
    request = GenerationRequest(subject="Physics", easy_count=1)
    contexts = enumerate_permutations(request, "easy", ["A", "B", "C", "D"], ["x", "y"])
    labels = [c.label for c in contexts]

    assert labels.count("broad") == 1
    assert labels.count("topic") == 4
    assert labels.count("tag") == 2
    assert labels.count("topic+tag") == 3 * 2
    assert labels.count("topic-pair") == 3
    assert len({c.id for c in contexts}) == len(contexts)


def test_enumerate_permutations_without_facets_is_broad_only():
    request = GenerationRequest(subject="Physics", easy_count=1)
    assert [c.label for c in enumerate_permutations(request, "easy", [], [])] == ["broad"]


async def test_permutation_merges_request_and_corpus_facets():
    run = _run(topics=["Optics"], tags=["jee"])
    builder = PermutationContextBuilder(_corpus(topics=["optics", "Waves"], tags=["neet", "JEE"]))

    await builder.refresh(run, 1)

    assert builder.topics == ["Optics", "Waves"]
    assert builder.tags == ["jee", "neet"]
    assert builder.top_k == PERMUTATION_TOP_K


async def test_permutation_cycles_pool_round_robin():
    run = _run(topics=["Optics"], tags=[])
    builder = PermutationContextBuilder(_corpus())
    await builder.refresh(run, 1)

    # broad + one topic context
    first = [builder.next_context("easy", run).id for _ in range(2)]
    again = [builder.next_context("easy", run).id for _ in range(2)]

    assert len(set(first)) == 2
    assert again == first


async def test_permutation_order_is_seeded():
    def ids(seed):
        run = _run(seed=seed, topics=["A", "B", "C"], tags=["x", "y"])
        builder = PermutationContextBuilder(_corpus())
        return run, builder

    run1, b1 = ids(3)
    run2, b2 = ids(3)
    await b1.refresh(run1, 1)
    await b2.refresh(run2, 1)

    seq1 = [b1.next_context("easy", run1).id for _ in range(6)]
    seq2 = [b2.next_context("easy", run2).id for _ in range(6)]
    assert seq1 == seq2


async def test_permutation_refresh_samples_facets_once():
    class CountingStore(FakeDocumentStore):
        samples = 0

        def sample_facets(self, subject, chapter=None, limit=200):
            CountingStore.samples += 1
            return super().sample_facets(subject, chapter, limit)

    builder = PermutationContextBuilder(CorpusAccess(FakeEmbedder(), FakeVectorSearch(), CountingStore()))
    run = _run()
    await builder.refresh(run, 1)
    await builder.refresh(run, 2)
    assert CountingStore.samples == 1


async def test_permutation_survives_facet_failure():
    run = _run(topics=["Optics"])
    builder = PermutationContextBuilder(_corpus(facets_fail=True))

    await builder.refresh(run, 1)

    assert builder.topics == ["Optics"]
    assert builder.next_context("easy", run).tier == "easy"


async def test_permutation_only_builds_pools_for_requested_tiers():
    run = _run(easy_count=0, hard_count=1)
    builder = PermutationContextBuilder(_corpus(topics=["Optics"]))
    await builder.refresh(run, 1)

    assert builder.next_context("hard", run).label in {"broad", "topic"}
    assert builder.next_context("easy", run).label == "plain"


# ─── Feedback keywords ────────────────────────────────────────────────────────

def test_extract_keywords_shapes():
    assert extract_keywords({"keywords": ["a  b", "", {"keyword": "c"}]}) == ["a b", "c"]
    assert extract_keywords(["x", "y"]) == ["x", "y"]
    assert extract_keywords({"keywords": "not a list"}) == []
    assert extract_keywords(None) == []
    assert extract_keywords(["k" * 200]) == []


def test_format_feedback():
    assert "no feedback" in format_feedback(None)
    text = format_feedback(EvaluationReport(overall_score=6, weak_areas=["optics"], missing_topics=["waves"]))
    assert "overall 6" in text
    assert "optics" in text and "waves" in text


async def test_keyword_builder_one_context_per_keyword():
    provider = ScriptedProvider([json.dumps({"keywords": ["lens formula", "total internal reflection"]})])
    builder = KeywordContextBuilder(FallbackChatClient([provider]))
    run = _run(medium_count=1)

    await builder.refresh(run, 1)

    easy = [builder.next_context("easy", run) for _ in range(2)]
    assert [c.keyword for c in easy] == ["lens formula", "total internal reflection"]
    assert all(c.label == "keyword" for c in easy)
    assert builder.next_context("medium", run).keyword == "lens formula"
    assert run.keywords_used == ["lens formula", "total internal reflection"]


async def test_keyword_builder_drops_used_keywords_and_sends_feedback():
    provider = ScriptedProvider([
        json.dumps({"keywords": ["lens formula"]}),
        json.dumps({"keywords": ["Lens  Formula", "snell's law"]}),
    ])
    builder = KeywordContextBuilder(FallbackChatClient([provider]))
    run = _run()

    await builder.refresh(run, 1)
    run.report = EvaluationReport(overall_score=4, weak_areas=["refraction"])
    await builder.refresh(run, 2)

    assert run.keywords_used == ["lens formula", "snell's law"]
    assert builder.next_context("easy", run).keyword == "snell's law"
    assert "refraction" in provider.prompts[1]
    assert "lens formula" in provider.prompts[1]


async def test_keyword_builder_falls_back_to_plain():
    provider = ScriptedProvider([RuntimeError("down"), "not json at all"])
    builder = KeywordContextBuilder(FallbackChatClient([provider]))
    run = _run()

    await builder.refresh(run, 1)
    assert builder.next_context("easy", run).label == "plain"

    await builder.refresh(run, 2)
    assert builder.next_context("easy", run).label == "plain"
    assert run.keywords_used == []


def test_build_context_builder_by_strategy():
    chat = FallbackChatClient([ScriptedProvider([])])
    corpus = _corpus()
    assert isinstance(build_context_builder("plain", corpus, chat), PlainContextBuilder)
    assert isinstance(build_context_builder("permutation", corpus, chat), PermutationContextBuilder)
    assert isinstance(build_context_builder("feedback", corpus, chat), KeywordContextBuilder)


def test_context_builder_is_abstract():
    with pytest.raises(TypeError):
        ContextBuilder()
