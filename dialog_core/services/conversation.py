"""Conversation log: append-only message history per session."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError

from dialog_core.config import Settings, get_settings
from dialog_core.core.errors import MalformedInputError
from dialog_core.core.logging import get_logger
from dialog_core.schemas.session import Message, MessageMetadata, MessageType, Session
from dialog_core.services.semantic_index import SemanticIndex
from dialog_core.services.session_store import SessionStore

logger = get_logger(__name__)

_metadata_adapter = TypeAdapter(MessageMetadata | None)


class ConversationLog:
    """Appends messages through the session store and feeds the semantic index.

    Message ids and timestamps are assigned here. Timestamps never go
    backwards within a session, even if the clock does.
    """

    def __init__(
        self,
        store: SessionStore,
        index: SemanticIndex | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.index = index
        self._settings = settings or get_settings()

    async def append(
        self,
        session_id: str,
        *,
        type: MessageType | str,
        content: str,
        intent: str | None = None,
        context: dict[str, Any] | None = None,
        metadata: Any = None,
    ) -> Message:
        if not content or not content.strip():
            raise MalformedInputError("content", "must not be empty")
        try:
            message_type = MessageType(type)
        except ValueError as e:
            raise MalformedInputError("type", f"unknown message type {type!r}") from e
        try:
            metadata = _metadata_adapter.validate_python(metadata)
        except ValidationError as e:
            err = e.errors()[0]
            raise MalformedInputError("metadata", err["msg"]) from e

        appended: list[Message] = []

        def _append(session: Session) -> None:
            flow = session.conversation_flow
            timestamp = self.store.now()
            if flow.messages and flow.messages[-1].timestamp > timestamp:
                timestamp = flow.messages[-1].timestamp
            message = Message.model_validate({
                "id": f"msg_{uuid4().hex[:16]}",
                "timestamp": timestamp,
                "type": message_type,
                "content": content,
                "intent": intent,
                "context": context,
                "metadata": metadata,
            })
            flow.messages.append(message)
            flow.awaiting_response = message_type == MessageType.USER
            session.analytics.total_messages += 1
            if intent:
                queries = session.analytics.common_queries
                queries[intent] = queries.get(intent, 0) + 1
            appended.append(message)

        session = await self.store.mutate(session_id, _append)
        message = appended[0]

        if (
            message_type == MessageType.USER
            and len(content) > self._settings.min_embedding_length
        ):
            await self._index_best_effort(session, message)

        return message

    async def _index_best_effort(self, session: Session, message: Message) -> None:
        if self.index is None:
            return
        try:
            await self.index.add_message(session.session_id, message)
        except Exception as e:
            # Recall is optional; the append already succeeded.
            logger.warning(
                "message_embedding_failed",
                session_id=session.session_id,
                message_id=message.id,
                error=str(e),
            )

    async def read(self, session_id: str) -> list[Message]:
        """Full message history in append order."""
        session = await self.store.get(session_id)
        return list(session.conversation_flow.messages)
