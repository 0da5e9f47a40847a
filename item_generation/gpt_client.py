"""
Chat completion helpers for the generation engine.

Used by:
  - item_synthesizer.py    (item generation)
  - retrieval_contexts.py  (keyword synthesis)
  - paper_evaluator.py     (set critique)

A FallbackChatClient tries an ordered list of providers (one per model
identifier) and returns the first non-empty response.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from openai import AsyncOpenAI

from item_generation.errors import ConfigurationError, UpstreamServiceError

log = logging.getLogger("generation.pipeline")

DEFAULT_SYSTEM = "You are a helpful academic assistant. Output only what is asked."


class ChatProvider(ABC):
    """One model behind one endpoint."""

    name: str = "provider"

    @abstractmethod
    async def complete(self, system: str, prompt: str, temperature: float = 0.4) -> str:
        raise NotImplementedError


class OpenAIChatProvider(ChatProvider):
    """Chat Completions on an OpenAI-compatible endpoint (OpenAI, OpenRouter, ...)."""

    def __init__(self, client: AsyncOpenAI, model: str, max_tokens: int = 1200):
        self.client = client
        self.model = model
        self.name = model
        self.max_tokens = max_tokens

    async def complete(self, system: str, prompt: str, temperature: float = 0.4) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            temperature=temperature,
            max_tokens=self.max_tokens,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class FallbackChatClient:
    """
    Ordered provider chain. First non-empty response wins.

    Raises:
        UpstreamServiceError: every provider failed or returned nothing
    """

    def __init__(self, providers: Sequence[ChatProvider]):
        self.providers: List[ChatProvider] = list(providers)

    def ensure_ready(self) -> None:
        if not self.providers:
            raise ConfigurationError("No text-generation models configured.")

    async def complete(
        self,
        prompt: str,
        system: str = DEFAULT_SYSTEM,
        temperature: float = 0.4,
    ) -> str:
        errors = []
        for provider in self.providers:
            try:
                text = await provider.complete(system, prompt, temperature)
            except Exception as e:
                log.warning(f"[LLM] {provider.name} failed: {e}")
                errors.append(f"{provider.name}: {e}")
                continue
            if text and text.strip():
                return text
            log.warning(f"[LLM] {provider.name} returned an empty response")
            errors.append(f"{provider.name}: empty response")
        raise UpstreamServiceError("All text-generation models failed: " + "; ".join(errors))


def build_openai_chat_client(
    api_key: Optional[str],
    models: Sequence[str],
    base_url: Optional[str] = None,
    timeout: float = 60.0,
    max_tokens: int = 1200,
) -> FallbackChatClient:
    """One shared AsyncOpenAI client, one provider per model identifier."""
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY is not set. Add it to your .env file.")
    client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
    return FallbackChatClient([OpenAIChatProvider(client, m, max_tokens=max_tokens) for m in models])
