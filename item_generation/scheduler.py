"""
Generation Scheduler

Orchestrates one generation run:

  preflight   services.ensure_ready()  → ConfigurationError before any external call
  schedule    one slot per requested item, tiers in fixed order easy → medium → hard
  round N     refresh contexts → for each open slot:
                  next context → retrieve inspirations → synthesize → accept | abandon
              → evaluate accumulated set (when the evaluator is active)
  stop        all quotas filled, or max_iterations rounds done

A slot that fails is not retried in the same round; it stays open for the
next one. Partial results are a normal outcome and are reported in the meta.
"""

import logging
import random
from typing import Any, Dict, Optional, Union

from item_generation.errors import ConfigurationError, UpstreamServiceError
from item_generation.item_synthesizer import ItemSynthesizer
from item_generation.paper_evaluator import PaperEvaluator
from item_generation.retrieval_contexts import ContextBuilder, build_context_builder
from item_generation.run_state import GenerationRun, SlotState
from item_generation.schemas import (
    GenerationMeta, GenerationRequest, GenerationResult, TierCounts,
)
from item_generation.services import GenerationServices

log = logging.getLogger("generation.pipeline")


async def _fill_slot(
    tier: str,
    slot_label: str,
    builder: ContextBuilder,
    services: GenerationServices,
    synthesizer: ItemSynthesizer,
    run: GenerationRun,
) -> bool:
    tag = f"[SLOT {slot_label}]"
    context = builder.next_context(tier, run)
    run.note_context(context.id)

    log.debug(f"{tag} {SlotState.RETRIEVING.value} via {context.id}")
    try:
        inspirations = await services.corpus.retrieve(context, run, top_k=builder.top_k)
    except UpstreamServiceError as e:
        run.upstream_failures += 1
        run.abandoned_slots += 1
        log.warning(f"{tag} {SlotState.ABANDONED.value}: retrieval failed: {e}")
        return False

    item = await synthesizer.synthesize(tier, context, inspirations, run, slot_label=slot_label)
    if item is None:
        run.abandoned_slots += 1
        return False
    return True


def _build_meta(run: GenerationRun, evaluator_active: bool) -> GenerationMeta:
    request = run.request
    generated = run.generated_counts()
    report = run.report if evaluator_active else None
    return GenerationMeta(
        requested=TierCounts.from_counts(request.requested_counts()),
        generated=TierCounts.from_counts(generated),
        rounds_used=run.rounds_used,
        strategy=request.strategy,
        complete=run.quotas_met(),
        keywords_used=list(run.keywords_used),
        contexts_used=list(run.contexts_used),
        evaluation=report,
        quality_bar_met=report.clears_bar() if report is not None else None,
        duplicates_rejected=run.duplicates_rejected,
        invalid_rejected=run.invalid_rejected,
        upstream_failures=run.upstream_failures,
        abandoned_slots=run.abandoned_slots,
    )


async def generate_items(
    request: Union[GenerationRequest, Dict[str, Any]],
    services: GenerationServices,
    rng: Optional[random.Random] = None,
    synthesizer: Optional[ItemSynthesizer] = None,
    evaluator: Optional[PaperEvaluator] = None,
) -> GenerationResult:
    """
    Run the iterative retrieval-augmented generation loop for one request.

    Args:
        request:     GenerationRequest (or its dict/camelCase form)
        services:    shared collaborators (chat chain, corpus access)
        rng:         randomness for permutation shuffling (seed it for reproducible runs)
        synthesizer: override the default ItemSynthesizer
        evaluator:   override the default PaperEvaluator (only used when the request enables evaluation)

    Returns:
        GenerationResult — items in acceptance order + meta (possibly partial)

    Raises:
        ConfigurationError: collaborators are not configured
    """
    if not isinstance(request, GenerationRequest):
        request = GenerationRequest.model_validate(request)
    services.ensure_ready()

    run = GenerationRun(request, rng)
    builder = build_context_builder(request.strategy, services.corpus, services.chat)
    synthesizer = synthesizer or ItemSynthesizer(services.chat)
    evaluator_active = request.evaluator_enabled
    if evaluator_active:
        evaluator = evaluator or PaperEvaluator(services.chat)

    log.info("=" * 60)
    log.info(
        f"[GENERATE START] subject={request.subject!r} chapter={request.chapter!r} "
        f"strategy={request.strategy} requested={request.requested_counts()} "
        f"max_rounds={request.max_iterations}"
    )

    evaluated_count = 0
    for round_no in range(1, request.max_iterations + 1):
        run.rounds_used = round_no
        try:
            await builder.refresh(run, round_no)
        except ConfigurationError:
            raise
        except Exception as e:
            log.error(f"[ROUND {round_no}] Context refresh failed: {e}")

        slots = run.open_slots()
        log.info(f"[ROUND {round_no}] {len(slots)} open slots")
        for n, tier in enumerate(slots, start=1):
            if run.remaining[tier] <= 0:
                continue
            try:
                await _fill_slot(tier, f"{tier}#{n}", builder, services, synthesizer, run)
            except ConfigurationError:
                raise
            except Exception as e:
                run.abandoned_slots += 1
                log.exception(f"[SLOT {tier}#{n}] Unexpected failure: {e}")

        if evaluator_active and run.accepted and len(run.accepted) != evaluated_count:
            run.report = await evaluator.evaluate(list(run.accepted), request)
            evaluated_count = len(run.accepted)

        generated = run.generated_counts()
        log.info(f"[ROUND {round_no}] generated={generated} remaining={run.remaining}")

        if run.quotas_met():
            if run.report is not None and not run.report.clears_bar():
                log.info(f"[ROUND {round_no}] Quotas filled; evaluation below target bar")
            break

    meta = _build_meta(run, evaluator_active)
    log.info(
        f"[GENERATE DONE] {meta.generated.total}/{meta.requested.total} items in "
        f"{meta.rounds_used} round(s) (dupes={meta.duplicates_rejected}, "
        f"invalid={meta.invalid_rejected}, upstream={meta.upstream_failures})"
    )
    return GenerationResult(items=list(run.accepted), meta=meta)
