"""
Item Synthesizer

Generates ONE multiple-choice item for a tier from a retrieval context:
  1. pick up to 8 inspirations, fresh ones first (fall back to reused ones)
  2. build the prompt: tier, constraints, inspirations ("do not copy"),
     tail of already-accepted stems (avoid-list)
  3. call the model chain (first model that answers wins)
  4. tolerant JSON parse
  5. validate + fingerprint; reject duplicates of accepted items and
     copies of the inspirations shown
  6. on rejection retry with a stricter prompt naming the reason (3 attempts)
  7. on success register the item on the run (fingerprint, stem, inspirations, quota)

Returns None when the slot could not be filled; that is never fatal.
"""

import logging
from typing import List, Optional, Set, Tuple

from item_generation.errors import DuplicateItemError, ItemValidationError, UpstreamServiceError
from item_generation.fingerprint import fingerprint, normalize
from item_generation.gpt_client import FallbackChatClient
from item_generation.json_parsing import parse_json_response
from item_generation.run_state import GenerationRun, SlotState
from item_generation.schemas import (
    MAX_OPTIONS, MIN_OPTIONS,
    CandidateItem, GeneratedItem, InspirationRecord, Provenance, RetrievalContext,
)

log = logging.getLogger("generation.pipeline")

MAX_INSPIRATIONS = 8
AVOID_LIST_SIZE = 12
AVOID_ITEM_CHARS = 200
MAX_ATTEMPTS = 3

SYSTEM_PROMPT = "You are an expert exam question setter. Output only valid JSON."

TIER_GUIDANCE = {
    "easy": "single-step recall or direct application of one concept",
    "medium": "two-step reasoning or application of a concept in a new setting",
    "hard": "multi-step reasoning, combining concepts, or careful analysis of a scenario",
}


ITEM_PROMPT = """Generate exactly ONE new multiple-choice exam question.

SPECIFICATIONS:
- Difficulty: {tier} ({tier_guidance})
- Subject: {subject}
- Chapter: {chapter}
- Topics: {topics}
- Tags: {tags}
- Focus: {focus}
{notes}
INSPIRATION QUESTIONS (for style and level only — DO NOT COPY, DO NOT PARAPHRASE CLOSELY):
---
{inspirations}
---

ALREADY GENERATED (your question must be clearly different from all of these):
{avoid}

OUTPUT FORMAT — respond with ONLY a valid JSON object, no markdown, no explanation:
{{
  "text": "<complete, self-contained question stem>",
  "options": ["<option 1>", "<option 2>", "<option 3>", "<option 4>"],
  "correctIndex": <0-based index of the correct option>,
  "topics": ["<topic>", ...],
  "tags": ["<tag>", ...]
}}

RULES:
1. 4 options (5 at most), all plausible, exactly ONE correct
2. Do NOT use "All of the above" or "None of the above"
3. correctIndex must point at the correct option
4. Return ONLY the JSON object
"""

STRICT_SUFFIX = """
YOUR PREVIOUS ATTEMPT WAS REJECTED: {reason}
Fix this. Produce a DIFFERENT question that follows every rule above exactly.
"""


# ─── Inspiration selection ────────────────────────────────────────────────────

def select_inspirations(
    inspirations: List[InspirationRecord],
    used_ids: Set[str],
    limit: int = MAX_INSPIRATIONS,
) -> List[InspirationRecord]:
    """Fresh records in rank order; only if none are fresh, reuse used ones."""
    fresh = [r for r in inspirations if r.id not in used_ids]
    return (fresh or list(inspirations))[:limit]


def _format_inspirations(records: List[InspirationRecord]) -> str:
    if not records:
        return "(none available — rely on the specifications)"
    parts = []
    for i, r in enumerate(records, start=1):
        options = "\n".join(f"   {chr(65 + j)}. {o}" for j, o in enumerate(r.options))
        parts.append(f"[{i}] {r.text}\n{options}")
    return "\n\n".join(parts)


def build_item_prompt(
    tier: str,
    context: RetrievalContext,
    inspirations: List[InspirationRecord],
    avoid: List[str],
    rejection: Optional[str] = None,
) -> str:
    prompt = ITEM_PROMPT.format(
        tier=tier,
        tier_guidance=TIER_GUIDANCE.get(tier, ""),
        subject=context.subject,
        chapter=context.chapter or "(any)",
        topics=", ".join(context.topics) or "(any)",
        tags=", ".join(context.tags) or "(any)",
        focus=context.keyword or "(none)",
        notes=f"- Notes: {context.notes}\n" if context.notes else "",
        inspirations=_format_inspirations(inspirations),
        avoid="\n".join(f"- {a}" for a in avoid) or "(nothing yet)",
    )
    if rejection:
        prompt += STRICT_SUFFIX.format(reason=rejection)
    return prompt


# ─── Validation ───────────────────────────────────────────────────────────────

def validate_candidate(candidate: CandidateItem) -> Tuple[str, List[str], int]:
    """
    Returns (stem, options, correct_index).

    Raises:
        ItemValidationError
    """
    stem = candidate.text.strip()
    if not stem:
        raise ItemValidationError("question text is empty")

    options = [o.strip() for o in candidate.options]
    if any(not o for o in options):
        raise ItemValidationError("an option is empty")
    if not MIN_OPTIONS <= len(options) <= MAX_OPTIONS:
        raise ItemValidationError(f"expected {MIN_OPTIONS}-{MAX_OPTIONS} options, got {len(options)}")
    if len({normalize(o) for o in options}) != len(options):
        raise ItemValidationError("options are not distinct")

    index = candidate.resolve_correct_index()
    if index is None or not 0 <= index < len(options):
        raise ItemValidationError(f"correctIndex {candidate.correct_index!r} is not a valid option index")
    return stem, options, index


# ─── Synthesizer ──────────────────────────────────────────────────────────────

class ItemSynthesizer:
    def __init__(
        self,
        chat: FallbackChatClient,
        max_attempts: int = MAX_ATTEMPTS,
        max_inspirations: int = MAX_INSPIRATIONS,
        avoid_list_size: int = AVOID_LIST_SIZE,
    ):
        self.chat = chat
        self.max_attempts = max(1, max_attempts)
        self.max_inspirations = max_inspirations
        self.avoid_list_size = avoid_list_size

    def _build_item(
        self,
        data,
        tier: str,
        context: RetrievalContext,
        chosen: List[InspirationRecord],
        run: GenerationRun,
    ) -> GeneratedItem:
        if data is None:
            raise ItemValidationError("response was not valid JSON")
        try:
            candidate = CandidateItem.from_payload(data)
        except (TypeError, AttributeError) as e:
            raise ItemValidationError(f"response has an unexpected shape: {e}") from e
        stem, options, index = validate_candidate(candidate)

        request = run.request
        fp = fingerprint(request.subject, stem, options)
        if run.is_duplicate(fp, stem):
            raise DuplicateItemError("the question duplicates one that was already generated")
        for record in chosen:
            if normalize(record.text) == normalize(stem) or fingerprint(request.subject, record.text, record.options) == fp:
                raise DuplicateItemError("the question copies an inspiration question")

        return GeneratedItem(
            text=stem,
            options=options,
            correct_index=index,
            subject=request.subject,
            chapter=request.chapter or candidate.chapter,
            topics=candidate.topics or list(context.topics) or list(request.topics),
            tags=candidate.tags or list(context.tags) or list(request.tags),
            difficulty=tier,
            fingerprint=fp,
            provenance=Provenance(
                context_id=context.id,
                context_label=context.label,
                keyword=context.keyword,
                inspiration_ids=[r.id for r in chosen],
            ),
        )

    async def synthesize(
        self,
        tier: str,
        context: RetrievalContext,
        inspirations: List[InspirationRecord],
        run: GenerationRun,
        slot_label: str = "",
    ) -> Optional[GeneratedItem]:
        chosen = select_inspirations(inspirations, run.used_inspiration_ids, self.max_inspirations)
        avoid = run.avoid_list(self.avoid_list_size, AVOID_ITEM_CHARS)
        tag = f"[SLOT {slot_label or tier}]"
        rejection: Optional[str] = None

        for attempt in range(1, self.max_attempts + 1):
            log.debug(f"{tag} {SlotState.SYNTHESIZING.value} attempt {attempt} ({len(chosen)} inspirations)")
            prompt = build_item_prompt(tier, context, chosen, avoid, rejection)
            try:
                raw = await self.chat.complete(
                    prompt, system=SYSTEM_PROMPT, temperature=0.7 if attempt == 1 else 0.5
                )
            except UpstreamServiceError as e:
                run.upstream_failures += 1
                log.warning(f"{tag} {SlotState.ABANDONED.value}: {e}")
                return None

            log.debug(f"{tag} {SlotState.VALIDATING.value}")
            try:
                item = self._build_item(parse_json_response(raw), tier, context, chosen, run)
            except ItemValidationError as e:
                run.invalid_rejected += 1
                rejection = str(e)
                log.info(f"{tag} {SlotState.RETRY.value}: invalid ({e})")
                continue
            except DuplicateItemError as e:
                run.duplicates_rejected += 1
                rejection = str(e)
                log.info(f"{tag} {SlotState.RETRY.value}: duplicate ({e})")
                continue
            except ValueError as e:
                # pydantic rejected the assembled item
                run.invalid_rejected += 1
                rejection = str(e).splitlines()[0]
                log.info(f"{tag} {SlotState.RETRY.value}: invalid ({rejection})")
                continue

            if not run.accept(item, [r.id for r in chosen]):
                log.info(f"{tag} {SlotState.ABANDONED.value}: tier quota already filled")
                return None
            log.info(f"{tag} {SlotState.ACCEPTED.value}: {item.text[:80]!r}")
            return item

        log.info(f"{tag} {SlotState.ABANDONED.value} after {self.max_attempts} attempts")
        return None
