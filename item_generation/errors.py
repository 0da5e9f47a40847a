"""
Error taxonomy for the item generation engine.

Only ConfigurationError leaves generate_items(); everything else is
recovered inside the engine and shows up in the result meta counters.
"""


class GenerationError(Exception):
    """Base class for engine errors."""


class ConfigurationError(GenerationError):
    """Required service credentials/settings are missing. Fatal, raised before any external call."""


class UpstreamServiceError(GenerationError):
    """An embedding, vector search, document store or chat call failed."""


class ItemValidationError(GenerationError):
    """Synthesizer output is malformed or incomplete."""


class DuplicateItemError(GenerationError):
    """Content collides with an accepted item, an inspiration, or a curated item."""
