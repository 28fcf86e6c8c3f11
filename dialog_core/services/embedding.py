"""Embedding providers: text to fixed-length vectors.

- hash: deterministic pseudo-vector derived from a 32-bit string hash.
  Stable across processes and needs no network, but carries no semantic
  meaning; similarity search over it only matches identical text.
- openai: any OpenAI-compatible embeddings endpoint via AsyncOpenAI.
"""

from __future__ import annotations

import math
from typing import Protocol

from openai import AsyncOpenAI, OpenAIError

from dialog_core.config import Settings, get_settings
from dialog_core.core.errors import DependencyUnavailableError, MalformedInputError
from dialog_core.core.logging import get_logger

logger = get_logger(__name__)


class EmbeddingProvider(Protocol):
    name: str
    dimensions: int

    async def embed(self, text: str) -> list[float]: ...


def string_hash(text: str) -> int:
    """Signed 32-bit rolling hash (h * 31 + code unit) over UTF-16 code units."""
    h = 0
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        h = (h * 31 + unit) & 0xFFFFFFFF
    return h - 0x100000000 if h & 0x80000000 else h


class HashEmbeddingProvider:
    name = "hash"

    def __init__(self, dimensions: int = 384) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        h = string_hash(text)
        return [math.sin(h * (i + 1)) * 0.5 for i in range(self.dimensions)]


class OpenAIEmbeddingProvider:
    name = "openai"

    def __init__(
        self,
        client: AsyncOpenAI,
        *,
        model: str = "text-embedding-3-small",
        dimensions: int = 384,
    ) -> None:
        self.client = client
        self.model = model
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        try:
            resp = await self.client.embeddings.create(
                model=self.model,
                input=text,
                dimensions=self.dimensions,
            )
        except OpenAIError as e:
            raise DependencyUnavailableError("embeddings", str(e)) from e
        return list(resp.data[0].embedding)


def build_embedding_provider(settings: Settings) -> EmbeddingProvider:
    provider = settings.embedding_provider.lower()
    if provider == "hash":
        return HashEmbeddingProvider(settings.embedding_dimensions)
    if provider == "openai":
        client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout=settings.embedding_timeout_seconds,
            max_retries=1,
        )
        return OpenAIEmbeddingProvider(
            client,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
        )
    raise MalformedInputError("embedding_provider", f"unknown provider {provider!r}")


# ── Singleton ────────────────────────────────────────────────────────

_provider: EmbeddingProvider | None = None


def get_embedding_provider() -> EmbeddingProvider:
    """Get or lazily build the process-wide provider from settings."""
    global _provider
    if _provider is None:
        _provider = build_embedding_provider(get_settings())
        logger.info("embedding_provider_ready", provider=_provider.name, dimensions=_provider.dimensions)
    return _provider


def reset_embedding_provider() -> None:
    global _provider
    _provider = None
