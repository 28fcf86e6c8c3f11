"""Context tracker: current focus, scenario, actions and conversation state."""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError

from dialog_core.core.errors import MalformedInputError
from dialog_core.core.logging import get_logger
from dialog_core.schemas.session import ConversationState, Scenario, Session, SessionContext
from dialog_core.services.session_store import SessionStore

logger = get_logger(__name__)

_CONTEXT_FIELDS = frozenset(SessionContext.model_fields)


class ContextTracker:
    def __init__(self, store: SessionStore) -> None:
        self.store = store

    async def get(self, session_id: str) -> SessionContext:
        session = await self.store.get(session_id)
        return session.context

    async def update(self, session_id: str, patch: dict[str, Any]) -> SessionContext:
        """Field-level merge into the session context."""
        unknown = set(patch) - _CONTEXT_FIELDS
        if unknown:
            raise MalformedInputError(sorted(unknown)[0], "unknown context field")
        try:
            validated = SessionContext.model_validate({**SessionContext().model_dump(), **patch})
        except ValidationError as e:
            err = e.errors()[0]
            raise MalformedInputError(".".join(str(p) for p in err["loc"]), err["msg"]) from e

        def _apply(session: Session) -> None:
            for name in patch:
                setattr(session.context, name, getattr(validated, name))

        session = await self.store.mutate(session_id, _apply)
        return session.context

    async def set_highlighted(self, session_id: str, name: str | None) -> SessionContext:
        """Highlight one entity, or clear the highlight with None."""
        return await self.update(session_id, {"highlighted_entity": name or None})

    async def set_scenario(self, session_id: str, scenario: Scenario | str) -> SessionContext:
        return await self.update(session_id, {"active_scenario": scenario})

    async def record_action(self, session_id: str, label: str) -> SessionContext:
        if not label:
            raise MalformedInputError("label", "must not be empty")

        def _apply(session: Session) -> None:
            session.context.last_action = label
            actions = session.analytics.successful_actions
            actions[label] = actions.get(label, 0) + 1

        session = await self.store.mutate(session_id, _apply)
        logger.debug("action_recorded", session_id=session_id, action=label)
        return session.context

    async def update_conversation_state(
        self,
        session_id: str,
        state: ConversationState | str,
        topic: str | None = None,
    ) -> Session:
        try:
            new_state = ConversationState(state)
        except ValueError as e:
            raise MalformedInputError("state", f"unknown conversation state {state!r}") from e
        if new_state == ConversationState.ENDED:
            raise MalformedInputError("state", "use end_session to end a conversation")

        def _apply(session: Session) -> None:
            flow = session.conversation_flow
            flow.conversation_state = new_state
            if topic:
                flow.current_topic = topic
                topics = session.analytics.preferred_topics
                topics[topic] = topics.get(topic, 0) + 1

        return await self.store.mutate(session_id, _apply)
