"""
Paper Assembly

Turns a GenerationResult into an unsaved question-paper draft: generation
parameters, requested counts, questions with their inspiration source, and
the generation meta (rounds, keywords, final evaluation).
"""

from datetime import datetime, timezone
from typing import Optional

from item_generation.schemas import (
    GeneratedItem, GenerationRequest, GenerationResult,
    PaperDraft, PaperGenerationMeta, PaperQuestion, PaperQuestionSource, TierCounts,
)

MODEL_VERSIONS = {
    "plain": "v1",
    "permutation": "v1.5",
    "feedback": "v2",
}


def default_title(request: GenerationRequest, now: datetime) -> str:
    parts = [request.subject]
    if request.chapter:
        parts.append(request.chapter)
    return f"{' - '.join(parts)} ({now.strftime('%Y-%m-%d %H:%M')})"


def _question_from_item(item: GeneratedItem) -> PaperQuestion:
    prov = item.provenance
    permutation = prov.context_id if prov.context_label not in ("plain", "keyword") else None
    return PaperQuestion(
        text=item.text,
        options=list(item.options),
        correct_index=item.correct_index,
        subject=item.subject,
        chapter=item.chapter,
        difficulty=item.difficulty,
        topics=list(item.topics),
        tags=list(item.tags),
        source=PaperQuestionSource(
            keyword=prov.keyword,
            permutation=permutation,
            curated_ids=list(prov.inspiration_ids),
        ),
    )


def assemble_paper_draft(
    request: GenerationRequest,
    result: GenerationResult,
    title: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaperDraft:
    now = now or datetime.now(timezone.utc)
    title = (title or "").strip() or default_title(request, now)
    return PaperDraft(
        title=title,
        description=request.description,
        subject=request.subject,
        chapter=request.chapter,
        overall_difficulty=request.overall_difficulty,
        tags=list(request.tags),
        topics=list(request.topics),
        model_version=MODEL_VERSIONS[request.strategy],
        requested_counts=TierCounts.from_counts(request.requested_counts()),
        questions=[_question_from_item(item) for item in result.items],
        generation_meta=PaperGenerationMeta(
            iterations=result.meta.rounds_used,
            keywords_used=list(result.meta.keywords_used),
            evaluation=result.meta.evaluation,
        ),
        created_at=now,
    )
