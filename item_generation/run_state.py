"""
Per-request state for one generation run.

Everything mutable that the engine accumulates (seen fingerprints, used
inspirations, retrieval cache, accepted items, counters) lives on a
GenerationRun created by the scheduler and passed explicitly. Nothing is
shared between requests.
"""

import enum
import random
from typing import Dict, List, Optional, Set

from item_generation.fingerprint import normalize
from item_generation.schemas import (
    TIERS, EvaluationReport, GeneratedItem, GenerationRequest, InspirationRecord,
)


class SlotState(str, enum.Enum):
    """Lifecycle of one slot attempt (logged, not stored)."""
    PENDING = "pending"
    RETRIEVING = "retrieving"
    SYNTHESIZING = "synthesizing"
    VALIDATING = "validating"
    ACCEPTED = "accepted"
    RETRY = "retry"
    ABANDONED = "abandoned"


class GenerationRun:
    def __init__(self, request: GenerationRequest, rng: Optional[random.Random] = None):
        self.request = request
        self.rng = rng or random.Random()
        self.remaining: Dict[str, int] = request.requested_counts()
        self.accepted: List[GeneratedItem] = []

        self.seen_fingerprints: Set[str] = set()
        self.seen_stems: Set[str] = set()
        self.used_inspiration_ids: Set[str] = set()
        self.retrieval_cache: Dict[str, List[InspirationRecord]] = {}

        self.contexts_used: List[str] = []
        self.keywords_used: List[str] = []
        self.report: Optional[EvaluationReport] = None
        self.rounds_used = 0

        self.duplicates_rejected = 0
        self.invalid_rejected = 0
        self.upstream_failures = 0
        self.abandoned_slots = 0

    # ── Quota ────────────────────────────────────────────────────────────────

    def quotas_met(self) -> bool:
        return all(n <= 0 for n in self.remaining.values())

    def open_slots(self) -> List[str]:
        """One entry per still-needed item, tiers in fixed priority order."""
        slots: List[str] = []
        for tier in TIERS:
            slots.extend([tier] * max(0, self.remaining[tier]))
        return slots

    def open_tiers(self) -> List[str]:
        return [tier for tier in TIERS if self.remaining[tier] > 0]

    def generated_counts(self) -> Dict[str, int]:
        counts = {tier: 0 for tier in TIERS}
        for item in self.accepted:
            counts[item.difficulty] += 1
        return counts

    # ── Dedup ────────────────────────────────────────────────────────────────

    def is_duplicate(self, fingerprint: str, stem: str) -> bool:
        return fingerprint in self.seen_fingerprints or normalize(stem) in self.seen_stems

    def accept(self, item: GeneratedItem, inspiration_ids: List[str]) -> bool:
        """
        Register an item. Returns False (and changes nothing) if its tier has
        no open quota or its content was already accepted.
        """
        if self.remaining.get(item.difficulty, 0) <= 0:
            return False
        if self.is_duplicate(item.fingerprint, item.text):
            return False
        self.accepted.append(item)
        self.remaining[item.difficulty] -= 1
        self.seen_fingerprints.add(item.fingerprint)
        self.seen_stems.add(normalize(item.text))
        self.used_inspiration_ids.update(inspiration_ids)
        return True

    def avoid_list(self, limit: int = 12, max_chars: int = 200) -> List[str]:
        """Tail of accepted stems, newest last."""
        return [item.text[:max_chars] for item in self.accepted[-limit:]] if limit > 0 else []

    # ── Diagnostics ──────────────────────────────────────────────────────────

    def note_context(self, context_id: str) -> None:
        if context_id not in self.contexts_used:
            self.contexts_used.append(context_id)

    def note_keywords(self, keywords: List[str]) -> None:
        known = {normalize(k) for k in self.keywords_used}
        for kw in keywords:
            if normalize(kw) not in known:
                self.keywords_used.append(kw)
                known.add(normalize(kw))
