"""Qdrant client and collection management."""

from __future__ import annotations

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse
from qdrant_client.models import Distance, PayloadSchemaType, VectorParams

from dialog_core.config import get_settings
from dialog_core.core.logging import get_logger

logger = get_logger(__name__)

# Exceptions that mean "Qdrant is unreachable or refused the call".
QDRANT_ERRORS: tuple[type[BaseException], ...] = (
    UnexpectedResponse,
    ResponseHandlingException,
    httpx.HTTPError,
    OSError,
    TimeoutError,
)

_client: AsyncQdrantClient | None = None


def get_qdrant() -> AsyncQdrantClient:
    """Get or create the shared async Qdrant client."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncQdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key,
            timeout=settings.qdrant_timeout_seconds,
        )
        logger.debug("qdrant_client_created", url=settings.qdrant_url)
    return _client


async def close_qdrant() -> None:
    global _client
    if _client is not None:
        await _client.close()
        _client = None


async def ensure_collection(
    client: AsyncQdrantClient,
    name: str,
    *,
    vector_size: int,
    keyword_fields: tuple[str, ...] = ("tenant_id",),
) -> None:
    """Create the collection and its payload indexes if missing. No-op otherwise."""
    if await client.collection_exists(name):
        return

    await client.create_collection(
        collection_name=name,
        vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
    )
    for field_name in keyword_fields:
        await client.create_payload_index(
            collection_name=name,
            field_name=field_name,
            field_schema=PayloadSchemaType.KEYWORD,
        )
    logger.info(
        "qdrant_collection_created",
        collection=name,
        vector_size=vector_size,
        indexed_fields=list(keyword_fields),
    )
