"""
Pydantic schemas for the item generation engine.

Request  → GenerationRequest
Internal → RetrievalContext, InspirationRecord, CandidateItem
Output   → GeneratedItem, EvaluationReport, GenerationMeta, GenerationResult
Draft    → PaperDraft (unsaved question paper built from a result)

Wire format is camelCase (easyCount, correctIndex, ...); both camelCase and
snake_case are accepted on input.
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


Tier = Literal["easy", "medium", "hard"]
Strategy = Literal["plain", "permutation", "feedback"]

# Fixed slot priority when several tiers have open quota
TIERS: List[str] = ["easy", "medium", "hard"]

STRATEGY_ALIASES: Dict[str, str] = {
    "plain": "plain",
    "v1": "plain",
    "permutation": "permutation",
    "permutations": "permutation",
    "v1.5": "permutation",
    "v1_5": "permutation",
    "feedback": "feedback",
    "keyword": "feedback",
    "keywords": "feedback",
    "v2": "feedback",
}

MIN_ITERATIONS = 1
MAX_ITERATIONS = 10
DEFAULT_ITERATIONS = 3

MIN_OPTIONS = 4
MAX_OPTIONS = 5

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_CAMEL_FROZEN = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _clean_list(values: Any) -> List[str]:
    """Strip entries, drop blanks, de-duplicate case-insensitively (first wins)."""
    if isinstance(values, str):
        values = [values]
    if not isinstance(values, (list, tuple, set)):
        return []
    out: List[str] = []
    seen = set()
    for v in values:
        if v is None:
            continue
        s = str(v).strip()
        if not s or s.lower() in seen:
            continue
        seen.add(s.lower())
        out.append(s)
    return out


def _blank_to_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


# ─── Request ──────────────────────────────────────────────────────────────────

class GenerationRequest(BaseModel):
    """One generation run. Immutable once built."""
    model_config = _CAMEL_FROZEN

    subject: str
    chapter: Optional[str] = None
    overall_difficulty: Optional[Tier] = None
    easy_count: int = Field(0, ge=0)
    medium_count: int = Field(0, ge=0)
    hard_count: int = Field(0, ge=0)
    tags: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    max_iterations: int = DEFAULT_ITERATIONS
    strategy: Strategy = "plain"
    use_evaluator: Optional[bool] = None

    @field_validator("subject", mode="before")
    @classmethod
    def _subject_required(cls, v):
        s = str(v or "").strip()
        if not s:
            raise ValueError("subject is required")
        return s

    @field_validator("chapter", "description", mode="before")
    @classmethod
    def _optional_text(cls, v):
        return _blank_to_none(v)

    @field_validator("overall_difficulty", mode="before")
    @classmethod
    def _difficulty(cls, v):
        v = _blank_to_none(v)
        return v.lower() if v else None

    @field_validator("tags", "topics", mode="before")
    @classmethod
    def _lists(cls, v):
        return _clean_list(v)

    @field_validator("max_iterations", mode="before")
    @classmethod
    def _clamp_iterations(cls, v):
        if v is None or v == "":
            return DEFAULT_ITERATIONS
        return max(MIN_ITERATIONS, min(MAX_ITERATIONS, int(v)))

    @field_validator("strategy", mode="before")
    @classmethod
    def _strategy(cls, v):
        if v is None or v == "":
            return "plain"
        key = str(v).strip().lower()
        if key not in STRATEGY_ALIASES:
            raise ValueError(f"unknown strategy {v!r}")
        return STRATEGY_ALIASES[key]

    @model_validator(mode="after")
    def _needs_items(self):
        if self.easy_count + self.medium_count + self.hard_count <= 0:
            raise ValueError("at least one of easyCount/mediumCount/hardCount must be > 0")
        return self

    def count_for(self, tier: str) -> int:
        return {"easy": self.easy_count, "medium": self.medium_count, "hard": self.hard_count}[tier]

    def requested_counts(self) -> Dict[str, int]:
        return {tier: self.count_for(tier) for tier in TIERS}

    @property
    def total_requested(self) -> int:
        return self.easy_count + self.medium_count + self.hard_count

    @property
    def evaluator_enabled(self) -> bool:
        if self.use_evaluator is not None:
            return self.use_evaluator
        return self.strategy == "feedback"


# ─── Retrieval ────────────────────────────────────────────────────────────────

class RetrievalContext(BaseModel):
    """Tier + topic/tag/keyword constraints for one similarity search."""
    model_config = _CAMEL_FROZEN

    id: str
    tier: Tier
    subject: str
    label: str = "plain"
    chapter: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    keyword: Optional[str] = None
    notes: Optional[str] = None

    @classmethod
    def build(
        cls,
        tier: str,
        subject: str,
        label: str,
        chapter: Optional[str] = None,
        topics: Optional[List[str]] = None,
        tags: Optional[List[str]] = None,
        keyword: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> "RetrievalContext":
        topics = list(topics or [])
        tags = list(tags or [])
        parts = [f"t={t}" for t in topics] + [f"g={g}" for g in tags]
        if keyword:
            parts.append(f"k={keyword}")
        ctx_id = f"{tier}:{label}" + (":" + ";".join(parts) if parts else "")
        return cls(
            id=ctx_id, tier=tier, subject=subject, label=label, chapter=chapter,
            topics=topics, tags=tags, keyword=keyword, notes=notes,
        )


class InspirationRecord(BaseModel):
    """A curated corpus item surfaced by retrieval. Never mutated."""
    model_config = _CAMEL_FROZEN

    id: str
    text: str
    options: List[str]
    correct_index: Optional[int] = None
    chapter: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    difficulty: Optional[str] = None
    score: float = 0.0


# ─── Synthesis ────────────────────────────────────────────────────────────────

_LETTER = re.compile(r"^\(?([A-Ea-e])[\).:]?$")


class CandidateItem(BaseModel):
    """Raw synthesizer output before validation. May be malformed."""
    text: str = ""
    options: List[str] = Field(default_factory=list)
    correct_index: Any = None
    chapter: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)

    @classmethod
    def from_payload(cls, data: Any) -> "CandidateItem":
        """Tolerant mapping from whatever JSON shape the model produced."""
        if isinstance(data, list) and data and isinstance(data[0], dict):
            data = data[0]
        if not isinstance(data, dict):
            return cls()
        if isinstance(data.get("question"), dict):
            data = data["question"]

        text = data.get("text") or data.get("question") or data.get("question_text") or data.get("stem") or ""

        raw_options = data.get("options") or []
        if isinstance(raw_options, dict):
            # {"A": "...", "B": "..."}
            raw_options = list(raw_options.values())
        if not isinstance(raw_options, list):
            return cls()

        options: List[str] = []
        for opt in raw_options:
            if isinstance(opt, dict):
                opt = opt.get("text") or opt.get("value") or ""
            options.append(str(opt).strip())

        correct = data.get("correctIndex")
        if correct is None:
            for key in ("correct_index", "answerIndex", "answer_index", "answer_key", "answer", "correct"):
                if data.get(key) is not None:
                    correct = data[key]
                    break

        return cls(
            text=str(text).strip(),
            options=options,
            correct_index=correct,
            chapter=_blank_to_none(data.get("chapter")),
            topics=_clean_list(data.get("topics")),
            tags=_clean_list(data.get("tags")),
        )

    def resolve_correct_index(self) -> Optional[int]:
        """Accepts an int, a digit string, an option letter (A–E) or the option text."""
        raw = self.correct_index
        if raw is None or isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float):
            return int(raw) if raw.is_integer() else None
        s = str(raw).strip()
        if s in self.options:
            return self.options.index(s)
        if re.fullmatch(r"-?\d+", s):
            return int(s)
        m = _LETTER.match(s)
        if m:
            return ord(m.group(1).upper()) - ord("A")
        for i, opt in enumerate(self.options):
            if opt.strip().lower() == s.lower():
                return i
        return None


class Provenance(BaseModel):
    model_config = _CAMEL_FROZEN

    context_id: str
    context_label: str
    keyword: Optional[str] = None
    inspiration_ids: List[str] = Field(default_factory=list)


class GeneratedItem(BaseModel):
    """A validated, de-duplicated item. Immutable once accepted."""
    model_config = _CAMEL_FROZEN

    text: str = Field(min_length=1)
    options: List[str] = Field(min_length=MIN_OPTIONS, max_length=MAX_OPTIONS)
    correct_index: int
    subject: str
    chapter: Optional[str] = None
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    difficulty: Tier
    fingerprint: str
    provenance: Provenance

    @model_validator(mode="after")
    def _index_in_range(self):
        if not 0 <= self.correct_index < len(self.options):
            raise ValueError(f"correctIndex {self.correct_index} out of range for {len(self.options)} options")
        return self


# ─── Evaluation ───────────────────────────────────────────────────────────────

NEUTRAL_SCORE = 5.0
MAX_FEEDBACK_ENTRIES = 10


class EvaluationReport(BaseModel):
    """Per-round critique of the accumulated set. Only the scores are interpreted."""
    model_config = _CAMEL

    overall_score: float = NEUTRAL_SCORE
    coverage_score: float = NEUTRAL_SCORE
    diversity_score: float = NEUTRAL_SCORE
    difficulty_balance_score: float = NEUTRAL_SCORE
    suggestions: List[str] = Field(default_factory=list)
    weak_areas: List[str] = Field(default_factory=list)
    missing_topics: List[str] = Field(default_factory=list)

    @field_validator(
        "overall_score", "coverage_score", "diversity_score", "difficulty_balance_score",
        mode="before",
    )
    @classmethod
    def _clamp_score(cls, v):
        try:
            score = float(v)
        except (TypeError, ValueError):
            return NEUTRAL_SCORE
        if score != score:  # NaN
            return NEUTRAL_SCORE
        return max(1.0, min(10.0, score))

    @field_validator("suggestions", "weak_areas", "missing_topics", mode="before")
    @classmethod
    def _feedback_list(cls, v):
        return _clean_list(v)[:MAX_FEEDBACK_ENTRIES]

    @classmethod
    def neutral(cls) -> "EvaluationReport":
        return cls()

    def clears_bar(self, min_overall: float = 7.0, min_diversity: float = 6.0) -> bool:
        return self.overall_score >= min_overall and self.diversity_score >= min_diversity


# ─── Result ───────────────────────────────────────────────────────────────────

class TierCounts(BaseModel):
    model_config = _CAMEL

    easy: int = 0
    medium: int = 0
    hard: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: Dict[str, int]) -> "TierCounts":
        values = {tier: int(counts.get(tier, 0)) for tier in TIERS}
        return cls(**values, total=sum(values.values()))


class GenerationMeta(BaseModel):
    model_config = _CAMEL

    requested: TierCounts
    generated: TierCounts
    rounds_used: int
    strategy: Strategy
    complete: bool
    keywords_used: List[str] = Field(default_factory=list)
    contexts_used: List[str] = Field(default_factory=list)
    evaluation: Optional[EvaluationReport] = None
    quality_bar_met: Optional[bool] = None
    duplicates_rejected: int = 0
    invalid_rejected: int = 0
    upstream_failures: int = 0
    abandoned_slots: int = 0


class GenerationResult(BaseModel):
    model_config = _CAMEL

    items: List[GeneratedItem]
    meta: GenerationMeta


# ─── Paper draft ──────────────────────────────────────────────────────────────

class PaperQuestionSource(BaseModel):
    model_config = _CAMEL

    keyword: Optional[str] = None
    permutation: Optional[str] = None
    curated_ids: List[str] = Field(default_factory=list)


class PaperQuestion(BaseModel):
    model_config = _CAMEL

    text: str
    options: List[str]
    correct_index: int
    subject: str
    chapter: Optional[str] = None
    difficulty: Tier
    topics: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    source: PaperQuestionSource


class PaperGenerationMeta(BaseModel):
    model_config = _CAMEL

    iterations: int
    keywords_used: List[str] = Field(default_factory=list)
    evaluation: Optional[EvaluationReport] = None


class PaperDraft(BaseModel):
    """Unsaved question paper. Persisting it is the caller's concern."""
    model_config = _CAMEL

    title: str
    description: Optional[str] = None
    subject: str
    chapter: Optional[str] = None
    overall_difficulty: Optional[Tier] = None
    tags: List[str] = Field(default_factory=list)
    topics: List[str] = Field(default_factory=list)
    model_version: str
    requested_counts: TierCounts
    questions: List[PaperQuestion]
    status: Literal["draft"] = "draft"
    generation_meta: PaperGenerationMeta
    created_at: datetime
