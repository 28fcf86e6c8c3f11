"""Knowledge sources behind the router.

- PublicKnowledgeBase: hosted RAG index over non-sensitive documents (HTTP)
- SecureVectorKnowledge: tenant vector store of tier-tagged confidential records

Both raise DependencyUnavailableError on transport failure; the router
turns that into an empty contribution.
"""

from __future__ import annotations

import time
from typing import Protocol

import httpx
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchAny, MatchValue

from dialog_core.config import Settings, get_settings
from dialog_core.core.errors import DependencyUnavailableError
from dialog_core.core.logging import get_logger
from dialog_core.core.qdrant import QDRANT_ERRORS
from dialog_core.schemas.knowledge import (
    ConfidentialityTier,
    KnowledgeResult,
    KnowledgeSourceName,
)
from dialog_core.services.embedding import EmbeddingProvider

logger = get_logger(__name__)


class KnowledgeSource(Protocol):
    name: KnowledgeSourceName

    async def search(
        self,
        query: str,
        max_results: int,
        tiers: frozenset[ConfidentialityTier] = frozenset(),
    ) -> list[KnowledgeResult]: ...


# ── Public source ────────────────────────────────────────────────────


class PublicKnowledgeBase:
    """Query a hosted knowledge-base index. Ignores tiers: everything here is public."""

    name = KnowledgeSourceName.PUBLIC

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client

    async def _post(self, url: str, headers: dict, body: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, headers=headers, json=body)
        async with httpx.AsyncClient(timeout=self._settings.knowledge_timeout_seconds) as client:
            return await client.post(url, headers=headers, json=body)

    async def search(
        self,
        query: str,
        max_results: int,
        tiers: frozenset[ConfidentialityTier] = frozenset(),
    ) -> list[KnowledgeResult]:
        s = self._settings
        if not s.public_kb_api_key or not s.public_kb_index_id:
            logger.warning("public_kb_not_configured")
            return []

        url = f"{s.public_kb_url.rstrip('/')}/v1/knowledge-base/{s.public_kb_index_id}/query"
        t0 = time.perf_counter()
        try:
            resp = await self._post(
                url,
                headers={"Content-Type": "application/json", "xi-api-key": s.public_kb_api_key},
                body={"query": query, "top_k": max_results, "model": s.public_kb_model},
            )
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise DependencyUnavailableError("public_kb", str(e)) from e
        latency_ms = (time.perf_counter() - t0) * 1000

        results = []
        for i, item in enumerate((data.get("results") or [])[:max_results]):
            content = item.get("content") or item.get("text") or ""
            if not content:
                continue
            score = item.get("score")
            results.append(KnowledgeResult(
                source=self.name,
                content=content,
                confidence=float(score) if score is not None else 1.0 - i * 0.1,  # rank-based estimate
                latency_ms=latency_ms,
                metadata={
                    "chunk_id": item.get("id"),
                    "embedding_model": s.public_kb_model,
                    "source_document": item.get("document") or item.get("source"),
                },
            ))
        return results


# ── Secure source ────────────────────────────────────────────────────


class SecureVectorKnowledge:
    """Confidential records in Qdrant, filtered by tenant and permitted tiers."""

    name = KnowledgeSourceName.SECURE

    def __init__(
        self,
        client: AsyncQdrantClient,
        embedder: EmbeddingProvider,
        tenant_id: str,
        *,
        collection: str = "secure_knowledge",
    ) -> None:
        self._client = client
        self._embedder = embedder
        self.tenant_id = tenant_id
        self.collection = collection

    async def search(
        self,
        query: str,
        max_results: int,
        tiers: frozenset[ConfidentialityTier] = frozenset(),
    ) -> list[KnowledgeResult]:
        if not tiers:
            return []

        t0 = time.perf_counter()
        vector = await self._embedder.embed(query)
        query_filter = Filter(must=[
            FieldCondition(key="tenant_id", match=MatchValue(value=self.tenant_id)),
            FieldCondition(
                key="confidentiality",
                match=MatchAny(any=sorted(t.value for t in tiers)),
            ),
        ])
        try:
            response = await self._client.query_points(
                collection_name=self.collection,
                query=vector,
                query_filter=query_filter,
                limit=max_results,
                with_payload=True,
            )
        except QDRANT_ERRORS as e:
            raise DependencyUnavailableError("secure_knowledge", repr(e)) from e
        latency_ms = (time.perf_counter() - t0) * 1000

        results = []
        for point in response.points:
            payload = point.payload or {}
            if payload.get("tenant_id") != self.tenant_id:
                continue
            try:
                tier = ConfidentialityTier(payload.get("confidentiality"))
            except ValueError:
                continue  # untagged records are never served
            results.append(KnowledgeResult(
                source=self.name,
                content=payload.get("content") or "Sensitive content available",
                confidence=point.score or 0.0,
                latency_ms=latency_ms,
                confidentiality=tier,
                metadata={
                    "vector_id": str(point.id),
                    "document": payload.get("document"),
                    "access_roles": payload.get("access_roles"),
                },
            ))
        return results
