"""
Retrieval Context Builder

Produces the RetrievalContexts that drive corpus retrieval. Three strategies:

  plain        one context per tier from the request's own subject/chapter/topics/tags
  permutation  facets discovered in the corpus ∪ request facets, enumerated as
               broad / per-topic / per-tag / topic×tag / adjacent topic pairs,
               shuffled once, consumed round-robin per tier across rounds
  feedback     each round the LLM proposes 8–12 fresh search phrases conditioned
               on the previous EvaluationReport; one context per keyword per tier

Usage per round:  await builder.refresh(run, round_no)  then  builder.next_context(tier, run)
"""

import logging
from abc import ABC, abstractmethod
from itertools import product
from typing import Dict, List, Optional

from item_generation.corpus import DEFAULT_TOP_K, PERMUTATION_TOP_K, CorpusAccess
from item_generation.errors import UpstreamServiceError
from item_generation.fingerprint import normalize
from item_generation.gpt_client import FallbackChatClient
from item_generation.json_parsing import parse_json_response
from item_generation.run_state import GenerationRun
from item_generation.schemas import TIERS, GenerationRequest, RetrievalContext

log = logging.getLogger("generation.pipeline")

MAX_FACETS = 12
CROSS_TOPICS = 3
CROSS_TAGS = 3
MAX_TOPIC_PAIRS = 3
MIN_KEYWORDS = 8
MAX_KEYWORDS = 12
MAX_KEYWORD_LEN = 80


def plain_context(request: GenerationRequest, tier: str) -> RetrievalContext:
    return RetrievalContext.build(
        tier=tier,
        subject=request.subject,
        label="plain",
        chapter=request.chapter,
        topics=request.topics,
        tags=request.tags,
        notes=request.description,
    )


def _merge_facets(primary: List[str], extra: List[str], limit: int = MAX_FACETS) -> List[str]:
    out: List[str] = []
    seen = set()
    for value in list(primary) + list(extra):
        key = normalize(value)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(value.strip())
    return out[:limit]


class ContextBuilder(ABC):
    name = "plain"
    top_k = DEFAULT_TOP_K

    @abstractmethod
    async def refresh(self, run: GenerationRun, round_no: int) -> None:
        raise NotImplementedError

    @abstractmethod
    def next_context(self, tier: str, run: GenerationRun) -> RetrievalContext:
        raise NotImplementedError


# ─── Plain ────────────────────────────────────────────────────────────────────

class PlainContextBuilder(ContextBuilder):
    name = "plain"

    def __init__(self):
        self._contexts: Dict[str, RetrievalContext] = {}

    async def refresh(self, run: GenerationRun, round_no: int) -> None:
        if not self._contexts:
            self._contexts = {
                tier: plain_context(run.request, tier)
                for tier in TIERS if run.request.count_for(tier) > 0
            }

    def next_context(self, tier: str, run: GenerationRun) -> RetrievalContext:
        if tier not in self._contexts:
            self._contexts[tier] = plain_context(run.request, tier)
        return self._contexts[tier]


# ─── Permutation ──────────────────────────────────────────────────────────────

def enumerate_permutations(
    request: GenerationRequest,
    tier: str,
    topics: List[str],
    tags: List[str],
) -> List[RetrievalContext]:
    """broad, per topic, per tag, topic×tag (bounded), adjacent topic pairs (bounded)."""
    def ctx(label, t=None, g=None):
        return RetrievalContext.build(
            tier=tier, subject=request.subject, label=label, chapter=request.chapter,
            topics=t, tags=g, notes=request.description,
        )

    contexts = [ctx("broad")]
    contexts += [ctx("topic", t=[t]) for t in topics]
    contexts += [ctx("tag", g=[g]) for g in tags]
    contexts += [
        ctx("topic+tag", t=[t], g=[g])
        for t, g in product(topics[:CROSS_TOPICS], tags[:CROSS_TAGS])
    ]
    pairs = list(zip(topics, topics[1:]))[:MAX_TOPIC_PAIRS]
    contexts += [ctx("topic-pair", t=[a, b]) for a, b in pairs]
    return contexts


class PermutationContextBuilder(ContextBuilder):
    name = "permutation"
    top_k = PERMUTATION_TOP_K

    def __init__(self, corpus: CorpusAccess):
        self.corpus = corpus
        self._pools: Dict[str, List[RetrievalContext]] = {}
        self._cursor: Dict[str, int] = {}
        self.topics: List[str] = []
        self.tags: List[str] = []

    async def refresh(self, run: GenerationRun, round_no: int) -> None:
        if self._pools:
            return
        request = run.request
        corpus_topics: List[str] = []
        corpus_tags: List[str] = []
        try:
            corpus_topics, corpus_tags = await self.corpus.sample_facets(request.subject, request.chapter)
        except UpstreamServiceError as e:
            log.warning(f"[PERMUTATIONS] Facet discovery failed, using request facets only: {e}")

        self.topics = _merge_facets(request.topics, corpus_topics)
        self.tags = _merge_facets(request.tags, corpus_tags)

        enumerated: List[RetrievalContext] = []
        for tier in TIERS:
            if request.count_for(tier) > 0:
                enumerated.extend(enumerate_permutations(request, tier, self.topics, self.tags))
        run.rng.shuffle(enumerated)

        for context in enumerated:
            self._pools.setdefault(context.tier, []).append(context)
        self._cursor = {tier: 0 for tier in self._pools}
        log.info(
            f"[PERMUTATIONS] {len(self.topics)} topics, {len(self.tags)} tags → "
            f"{len(enumerated)} contexts"
        )

    def next_context(self, tier: str, run: GenerationRun) -> RetrievalContext:
        pool = self._pools.get(tier)
        if not pool:
            return plain_context(run.request, tier)
        context = pool[self._cursor[tier] % len(pool)]
        self._cursor[tier] += 1
        return context


# ─── Feedback-driven keywords ─────────────────────────────────────────────────

KEYWORD_PROMPT = """You are helping build an exam question bank search.

Propose {min_k}-{max_k} short search phrases (2-6 words each) that would retrieve
diverse, exam-relevant multiple-choice questions for:

SUBJECT: {subject}
CHAPTER: {chapter}
TOPICS: {topics}
TAGS: {tags}
NOTES: {notes}

FEEDBACK ON THE QUESTIONS GENERATED SO FAR:
{feedback}

KEYWORDS ALREADY USED (do NOT repeat or trivially rephrase any of these):
{used}

RULES:
1. Each phrase targets a distinct concept, skill or question type
2. Prefer areas named as weak or missing in the feedback
3. No numbering, no explanations

Respond with ONLY a JSON object: {{"keywords": ["<phrase>", ...]}}
"""


def format_feedback(report) -> str:
    """Opaque prompt text from an EvaluationReport; nothing beyond the scores is interpreted."""
    if report is None:
        return "(first round — no feedback yet)"
    lines = [
        f"Scores (1-10): overall {report.overall_score:g}, coverage {report.coverage_score:g}, "
        f"diversity {report.diversity_score:g}, difficulty balance {report.difficulty_balance_score:g}",
    ]
    if report.weak_areas:
        lines.append("Weak areas: " + "; ".join(report.weak_areas))
    if report.missing_topics:
        lines.append("Missing topics: " + "; ".join(report.missing_topics))
    if report.suggestions:
        lines.append("Suggestions: " + "; ".join(report.suggestions))
    return "\n".join(lines)


def extract_keywords(data) -> List[str]:
    if isinstance(data, dict):
        data = data.get("keywords") or data.get("phrases") or data.get("queries") or []
    if not isinstance(data, list):
        return []
    out = []
    for kw in data:
        if isinstance(kw, dict):
            kw = kw.get("keyword") or kw.get("phrase") or ""
        kw = " ".join(str(kw).split())
        if kw and len(kw) <= MAX_KEYWORD_LEN:
            out.append(kw)
    return out


class KeywordContextBuilder(ContextBuilder):
    name = "feedback"

    def __init__(self, chat: FallbackChatClient):
        self.chat = chat
        self._round_contexts: Dict[str, List[RetrievalContext]] = {}
        self._cursor: Dict[str, int] = {}

    async def _propose_keywords(self, run: GenerationRun) -> List[str]:
        request = run.request
        prompt = KEYWORD_PROMPT.format(
            min_k=MIN_KEYWORDS,
            max_k=MAX_KEYWORDS,
            subject=request.subject,
            chapter=request.chapter or "(any)",
            topics=", ".join(request.topics) or "(any)",
            tags=", ".join(request.tags) or "(any)",
            notes=request.description or "(none)",
            feedback=format_feedback(run.report),
            used=", ".join(run.keywords_used) or "(none)",
        )
        raw = await self.chat.complete(prompt, temperature=0.7)
        proposed = extract_keywords(parse_json_response(raw))

        used = {normalize(k) for k in run.keywords_used}
        fresh: List[str] = []
        for kw in proposed:
            key = normalize(kw)
            if key in used:
                continue
            used.add(key)
            fresh.append(kw)
        return fresh[:MAX_KEYWORDS]

    async def refresh(self, run: GenerationRun, round_no: int) -> None:
        request = run.request
        tiers = run.open_tiers()
        try:
            keywords = await self._propose_keywords(run)
        except UpstreamServiceError as e:
            log.warning(f"[KEYWORDS] Round {round_no}: keyword synthesis failed: {e}")
            keywords = []

        if not keywords:
            log.warning(f"[KEYWORDS] Round {round_no}: no new keywords, using plain contexts")
            self._round_contexts = {tier: [plain_context(request, tier)] for tier in tiers}
        else:
            run.note_keywords(keywords)
            log.info(f"[KEYWORDS] Round {round_no}: {keywords}")
            self._round_contexts = {
                tier: [
                    RetrievalContext.build(
                        tier=tier, subject=request.subject, label="keyword",
                        chapter=request.chapter, keyword=kw, notes=request.description,
                    )
                    for kw in keywords
                ]
                for tier in tiers
            }
        self._cursor = {tier: 0 for tier in self._round_contexts}

    def next_context(self, tier: str, run: GenerationRun) -> RetrievalContext:
        pool = self._round_contexts.get(tier)
        if not pool:
            return plain_context(run.request, tier)
        context = pool[self._cursor[tier] % len(pool)]
        self._cursor[tier] += 1
        return context


def build_context_builder(strategy: str, corpus: CorpusAccess, chat: FallbackChatClient) -> ContextBuilder:
    if strategy == "permutation":
        return PermutationContextBuilder(corpus)
    if strategy == "feedback":
        return KeywordContextBuilder(chat)
    return PlainContextBuilder()
