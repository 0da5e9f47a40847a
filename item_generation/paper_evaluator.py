"""
Paper Evaluator

Scores the accumulated item set against the requested distribution with a
fixed rubric. The four scores steer termination reporting; the free-text
feedback is handed to the next round's keyword synthesis as-is.

Never raises: any upstream or parse failure yields EvaluationReport.neutral().
"""

import logging
from typing import List

from item_generation.gpt_client import FallbackChatClient
from item_generation.json_parsing import parse_json_response
from item_generation.schemas import TIERS, EvaluationReport, GeneratedItem, GenerationRequest

log = logging.getLogger("generation.pipeline")

SUMMARY_TEXT_CHARS = 160

EVALUATION_PROMPT = """You are an exam paper quality reviewer.

TARGET:
- Subject: {subject}
- Chapter: {chapter}
- Requested topics: {topics}
- Requested distribution: easy {easy}, medium {medium}, hard {hard}

QUESTIONS GENERATED SO FAR ({count}):
{summary}

Score the set from 1 (poor) to 10 (excellent) on:
- overallScore:            overall exam quality
- coverageScore:           coverage of the subject/chapter/topics
- diversityScore:          variety of concepts and question styles (penalise near-repeats)
- difficultyBalanceScore:  match with the requested distribution

Respond with ONLY a JSON object:
{{
  "overallScore": <1-10>,
  "coverageScore": <1-10>,
  "diversityScore": <1-10>,
  "difficultyBalanceScore": <1-10>,
  "suggestions": ["<short actionable suggestion>", ...],
  "weakAreas": ["<area>", ...],
  "missingTopics": ["<topic>", ...]
}}"""


def summarize_items(items: List[GeneratedItem]) -> str:
    lines = []
    for i, item in enumerate(items, start=1):
        text = " ".join(item.text.split())
        if len(text) > SUMMARY_TEXT_CHARS:
            text = text[:SUMMARY_TEXT_CHARS] + "…"
        meta = [item.difficulty]
        if item.chapter:
            meta.append(f"chapter: {item.chapter}")
        if item.topics:
            meta.append("topics: " + ", ".join(item.topics))
        lines.append(f"{i}. [{' | '.join(meta)}] {text}")
    return "\n".join(lines)


class PaperEvaluator:
    def __init__(self, chat: FallbackChatClient):
        self.chat = chat

    async def evaluate(self, items: List[GeneratedItem], request: GenerationRequest) -> EvaluationReport:
        counts = request.requested_counts()
        prompt = EVALUATION_PROMPT.format(
            subject=request.subject,
            chapter=request.chapter or "(any)",
            topics=", ".join(request.topics) or "(any)",
            count=len(items),
            summary=summarize_items(items),
            **{tier: counts[tier] for tier in TIERS},
        )
        try:
            raw = await self.chat.complete(prompt, temperature=0.2)
        except Exception as e:
            log.warning(f"[EVAL] Evaluation call failed, using neutral report: {e}")
            return EvaluationReport.neutral()

        data = parse_json_response(raw)
        if not isinstance(data, dict):
            log.warning("[EVAL] Unparseable evaluation, using neutral report")
            return EvaluationReport.neutral()
        try:
            report = EvaluationReport.model_validate(data)
        except ValueError as e:
            log.warning(f"[EVAL] Invalid evaluation payload, using neutral report: {e}")
            return EvaluationReport.neutral()

        log.info(
            f"[EVAL] overall={report.overall_score:g} coverage={report.coverage_score:g} "
            f"diversity={report.diversity_score:g} balance={report.difficulty_balance_score:g}"
        )
        return report
