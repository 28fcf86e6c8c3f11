"""Semantic index: vector recall over past user messages.

One point per qualifying user message, keyed by tenant + session + message.
Points are written once, never updated, and are not tied to the session
TTL, so they stay searchable after the session ends. Every query is
filtered on tenant_id.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from uuid import NAMESPACE_URL, uuid5

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchValue, PointStruct

from dialog_core.core.errors import DependencyUnavailableError
from dialog_core.core.logging import get_logger
from dialog_core.core.qdrant import QDRANT_ERRORS, ensure_collection
from dialog_core.schemas.session import ConversationSnippet, Message
from dialog_core.services.embedding import EmbeddingProvider

logger = get_logger(__name__)


def composite_id(tenant_id: str, session_id: str, message_id: str) -> str:
    return f"{tenant_id}:{session_id}:{message_id}"


def point_id(composite: str) -> str:
    """Qdrant only accepts UUID/int ids; derive a stable UUID from the composite key."""
    return str(uuid5(NAMESPACE_URL, composite))


class SemanticIndex:
    def __init__(
        self,
        client: AsyncQdrantClient,
        embedder: EmbeddingProvider,
        tenant_id: str,
        *,
        collection: str = "conversation_embeddings",
        timeout_seconds: float = 5.0,
    ) -> None:
        self._client = client
        self._embedder = embedder
        self.tenant_id = tenant_id
        self.collection = collection
        self._timeout = timeout_seconds
        self._ready = False

    async def _guard(self, op: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except QDRANT_ERRORS as e:
            raise DependencyUnavailableError("semantic_index", f"{op}: {e!r}") from e

    async def _ensure_ready(self) -> None:
        if self._ready:
            return
        await self._guard(
            "ensure_collection",
            ensure_collection(
                self._client,
                self.collection,
                vector_size=self._embedder.dimensions,
                keyword_fields=("tenant_id", "session_id"),
            ),
        )
        self._ready = True

    def _tenant_filter(self, session_id: str | None = None) -> Filter:
        must = [FieldCondition(key="tenant_id", match=MatchValue(value=self.tenant_id))]
        if session_id:
            must.append(FieldCondition(key="session_id", match=MatchValue(value=session_id)))
        return Filter(must=must)

    async def add_message(self, session_id: str, message: Message) -> str:
        """Embed and store one user message. Returns its composite id."""
        await self._ensure_ready()
        cid = composite_id(self.tenant_id, session_id, message.id)
        vector = await self._guard("embed", self._embedder.embed(message.content))
        point = PointStruct(
            id=point_id(cid),
            vector=vector,
            payload={
                "composite_id": cid,
                "tenant_id": self.tenant_id,
                "session_id": session_id,
                "message_id": message.id,
                "content": message.content,
                "intent": message.intent or "unknown",
                "type": message.type.value,
                "timestamp": message.timestamp.isoformat(),
            },
        )
        await self._guard("upsert", self._client.upsert(collection_name=self.collection, points=[point]))
        logger.debug("message_embedded", session_id=session_id, message_id=message.id)
        return cid

    async def search(
        self,
        query: str,
        limit: int = 5,
        *,
        session_id: str | None = None,
    ) -> list[ConversationSnippet]:
        """Most similar past messages in this tenant, best match first."""
        await self._ensure_ready()
        vector = await self._guard("embed", self._embedder.embed(query))
        response = await self._guard(
            "query",
            self._client.query_points(
                collection_name=self.collection,
                query=vector,
                query_filter=self._tenant_filter(session_id),
                limit=limit,
                with_payload=True,
            ),
        )

        snippets: list[ConversationSnippet] = []
        for point in response.points:
            payload = point.payload or {}
            # Never return another tenant's point.
            if payload.get("tenant_id") != self.tenant_id:
                continue
            snippets.append(
                ConversationSnippet(
                    composite_id=payload.get("composite_id", ""),
                    session_id=payload.get("session_id", ""),
                    message_id=payload.get("message_id", ""),
                    content=payload.get("content", ""),
                    intent=payload.get("intent", "unknown"),
                    timestamp=datetime.fromisoformat(payload["timestamp"]),
                    score=point.score or 0.0,
                )
            )
        return sorted(snippets, key=lambda s: s.score, reverse=True)

    async def ping(self) -> bool:
        try:
            await self._guard("get_collections", self._client.get_collections())
        except DependencyUnavailableError as e:
            logger.warning("semantic_index_unhealthy", error=str(e))
            return False
        return True
