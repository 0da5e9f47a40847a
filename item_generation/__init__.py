"""
Exam Item Generation Engine
item_generation/

Steps:
1. Retrieval Contexts — plain / permutation / feedback-keyword search contexts
2. Corpus Access      — embed → Qdrant search → document fetch (cached per run)
3. Item Synthesizer   — LLM generation with model fallback, tolerant parsing, retries
4. Fingerprint gate   — normalized content hash, no duplicates per run
5. Paper Evaluator    — optional per-round critique steering the next round
6. Scheduler          — tier quotas, bounded rounds, partial results
7. Paper Assembler    — unsaved question-paper draft from a result
"""

from item_generation.errors import (
    ConfigurationError,
    DuplicateItemError,
    GenerationError,
    ItemValidationError,
    UpstreamServiceError,
)
from item_generation.fingerprint import fingerprint, normalize
from item_generation.scheduler import generate_items
from item_generation.schemas import (
    EvaluationReport,
    GeneratedItem,
    GenerationRequest,
    GenerationResult,
)

__all__ = [
    "generate_items",
    "fingerprint",
    "normalize",
    "GenerationRequest",
    "GenerationResult",
    "GeneratedItem",
    "EvaluationReport",
    "GenerationError",
    "ConfigurationError",
    "UpstreamServiceError",
    "ItemValidationError",
    "DuplicateItemError",
]
