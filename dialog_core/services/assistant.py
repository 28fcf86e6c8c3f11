"""Assistant service: the action surface over sessions, memory and knowledge.

One instance is bound to one tenant. Methods raise typed errors from
dialog_core.core.errors; dispatch() converts everything into an
ActionResponse so nothing escapes to the endpoint layer.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from dialog_core.config import Settings, get_settings
from dialog_core.core.errors import (
    DependencyUnavailableError,
    DialogCoreError,
    MalformedInputError,
    NotFoundError,
)
from dialog_core.core.knowledge.router import NO_RESULTS_NOTICE, KnowledgeRouter
from dialog_core.core.knowledge.sources import PublicKnowledgeBase, SecureVectorKnowledge
from dialog_core.core.logging import get_logger, log_context
from dialog_core.core.qdrant import get_qdrant
from dialog_core.schemas.actions import (
    ActionResponse,
    AddMessageParams,
    CreateSessionParams,
    EndSessionParams,
    GetAnalyticsParams,
    GetSessionParams,
    HealthCheckParams,
    HighlightEntityParams,
    QueryKnowledgeParams,
    RecordActionParams,
    SearchSimilarParams,
    SetScenarioParams,
    UpdateContextParams,
    UpdateConversationStateParams,
)
from dialog_core.schemas.knowledge import KnowledgeResponse
from dialog_core.schemas.session import (
    ConversationSnippet,
    ConversationState,
    KnowledgeMetadata,
    Message,
    MessageType,
    PreferencesOverride,
    Scenario,
    Session,
    SessionContext,
    UserAnalytics,
)
from dialog_core.services.analytics import AnalyticsAggregator
from dialog_core.services.context import ContextTracker
from dialog_core.services.conversation import ConversationLog
from dialog_core.services.embedding import get_embedding_provider
from dialog_core.services.semantic_index import SemanticIndex
from dialog_core.services.session_store import SessionStore, get_session_store

logger = get_logger(__name__)

# Recall hint thresholds
RECALL_MIN_SCORE = 0.8
RECALL_WINDOW = timedelta(hours=24)


class SimilarConversations(BaseModel):
    results: list[ConversationSnippet]
    index_available: bool = True


@dataclass
class TurnResult:
    session: Session
    knowledge: KnowledgeResponse
    user_message: Message
    assistant_message: Message


class AssistantService:
    def __init__(
        self,
        store: SessionStore,
        router: KnowledgeRouter,
        *,
        index: SemanticIndex | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.store = store
        self.index = index
        self.router = router
        self.log = ConversationLog(store, index, settings=self._settings)
        self.context = ContextTracker(store)
        self.analytics = AnalyticsAggregator(store)

    @property
    def tenant_id(self) -> str:
        return self.store.tenant_id

    # ── Sessions ─────────────────────────────────────────────────

    async def create_session(
        self,
        user_id: str,
        club_id: str | None = None,
        preferences: PreferencesOverride | dict | None = None,
    ) -> Session:
        if club_id and club_id != self.tenant_id:
            raise MalformedInputError("club_id", "does not match the service tenant")
        return await self.store.create(user_id, preferences)

    async def get_session(self, session_id: str) -> Session:
        return await self.store.get(session_id)

    async def end_session(self, session_id: str) -> Session:
        return await self.store.end(session_id)

    # ── Conversation ─────────────────────────────────────────────

    async def add_message(
        self,
        session_id: str,
        type: MessageType | str,
        content: str,
        intent: str | None = None,
        context: dict[str, Any] | None = None,
        metadata: Any = None,
    ) -> Message:
        return await self.log.append(
            session_id,
            type=type,
            content=content,
            intent=intent,
            context=context,
            metadata=metadata,
        )

    async def update_context(self, session_id: str, patch: dict[str, Any]) -> SessionContext:
        return await self.context.update(session_id, patch)

    async def highlight_entity(self, session_id: str, name: str | None) -> SessionContext:
        return await self.context.set_highlighted(session_id, name)

    async def set_scenario(self, session_id: str, scenario: Scenario | str) -> SessionContext:
        return await self.context.set_scenario(session_id, scenario)

    async def record_action(self, session_id: str, label: str) -> SessionContext:
        return await self.context.record_action(session_id, label)

    async def update_conversation_state(
        self,
        session_id: str,
        state: ConversationState | str,
        topic: str | None = None,
    ) -> Session:
        return await self.context.update_conversation_state(session_id, state, topic)

    # ── Recall & analytics ───────────────────────────────────────

    async def search_similar(self, query: str, limit: int = 5) -> SimilarConversations:
        if not query or not query.strip():
            raise MalformedInputError("query", "must not be empty")
        if self.index is None:
            return SimilarConversations(results=[], index_available=False)
        try:
            results = await self.index.search(query, limit)
        except DependencyUnavailableError as e:
            logger.warning("semantic_search_unavailable", error=str(e))
            return SimilarConversations(results=[], index_available=False)
        return SimilarConversations(results=results)

    async def enhance_response(self, base_response: str, query: str) -> str:
        """Append a pointer to a closely matching discussion from the last 24h."""
        similar = await self.search_similar(query, 3)
        now = self.store.now()
        for snippet in similar.results:
            if snippet.score > RECALL_MIN_SCORE and now - snippet.timestamp < RECALL_WINDOW:
                topic = snippet.intent.lower().replace("_", " ")
                return f"{base_response} (This relates to our earlier discussion about {topic})"
        return base_response

    async def get_analytics(self, user_id: str) -> UserAnalytics:
        return await self.analytics.for_user(user_id)

    # ── Knowledge ────────────────────────────────────────────────

    async def query_knowledge(
        self,
        query: str,
        caller_role: str = "general",
        max_results: int = 5,
    ) -> KnowledgeResponse:
        return await self.router.query(query, caller_role, max_results)

    # ── Turn orchestration ───────────────────────────────────────

    async def process_turn(
        self,
        user_id: str,
        text: str,
        *,
        session_id: str | None = None,
        caller_role: str = "general",
        intent: str | None = None,
        max_results: int = 5,
        response_text: str | None = None,
    ) -> TurnResult:
        """Run one conversational turn end to end.

        Loads the session (creating it if absent), federates the query,
        logs both sides of the exchange and moves the conversation into the
        query state with the intent as topic.
        """
        if not text or not text.strip():
            raise MalformedInputError("text", "must not be empty")
        session: Session | None = None
        if session_id:
            try:
                session = await self.store.get(session_id)
            except NotFoundError:
                logger.info("turn_session_missing", session_id=session_id)
        if session is None or session.is_ended:
            session = await self.store.create(user_id)

        with log_context(tenant_id=self.tenant_id, session_id=session.session_id, user_id=user_id):
            knowledge = await self.router.query(text, caller_role, max_results)

            user_message = await self.log.append(
                session.session_id, type=MessageType.USER, content=text, intent=intent
            )
            reply = response_text or (
                knowledge.results[0].content if knowledge.results else NO_RESULTS_NOTICE
            )
            assistant_message = await self.log.append(
                session.session_id,
                type=MessageType.ASSISTANT,
                content=reply,
                metadata=KnowledgeMetadata(
                    sources=sorted({r.source.value for r in knowledge.results}),
                    primary_source=knowledge.primary_source,
                    latency_ms=knowledge.total_latency_ms,
                    sensitivity_detected=knowledge.sensitivity_detected,
                ),
            )
            session = await self.context.update_conversation_state(
                session.session_id, ConversationState.QUERY, intent
            )
            logger.info("turn_completed", intent=intent, primary_source=knowledge.primary_source)
        return TurnResult(
            session=session,
            knowledge=knowledge,
            user_message=user_message,
            assistant_message=assistant_message,
        )

    # ── Health ───────────────────────────────────────────────────

    async def health_check(self) -> dict[str, bool]:
        store_health = await self.store.health()
        index_healthy = await self.index.ping() if self.index is not None else False
        return {
            "primary_store_healthy": store_health["primary"],
            "semantic_index_healthy": index_healthy,
            "fallback_store_healthy": store_health["fallback"],
        }

    # ── Action dispatch ──────────────────────────────────────────

    async def dispatch(self, action: str, params: dict[str, Any] | None = None) -> ActionResponse:
        """Run a named action and wrap the outcome in an ActionResponse."""
        entry = self._actions().get(action)
        if entry is None:
            return ActionResponse(
                success=False,
                message=f"Unknown action: {action}",
                error=MalformedInputError.code,
                field="action",
            )
        model, handler = entry

        params = params or {}
        session_id = params.get("session_id") or params.get("sessionId")
        with (
            log_context(tenant_id=self.tenant_id, session_id=session_id),
            structlog.contextvars.bound_contextvars(action=action),
        ):
            try:
                parsed = model.model_validate(params)
            except ValidationError as e:
                err = e.errors()[0]
                field = ".".join(str(p) for p in err["loc"]) or "params"
                return ActionResponse(
                    success=False,
                    message=f"Invalid {field}: {err['msg']}",
                    error=MalformedInputError.code,
                    field=field,
                )

            try:
                message, data = await handler(parsed)
            except MalformedInputError as e:
                return ActionResponse(
                    success=False, message=str(e), error=e.code, field=e.field
                )
            except DialogCoreError as e:
                logger.info("action_failed", error=e.code, detail=str(e))
                return ActionResponse(success=False, message=str(e), error=e.code)
            except Exception:
                logger.exception("action_crashed")
                return ActionResponse(
                    success=False,
                    message="Internal error",
                    error=DialogCoreError.code,
                )

        return ActionResponse(success=True, message=message, data=data)

    def _actions(
        self,
    ) -> dict[str, tuple[type[BaseModel], Callable[[Any], Awaitable[tuple[str, dict | None]]]]]:
        return {
            "create_session": (CreateSessionParams, self._do_create_session),
            "get_session": (GetSessionParams, self._do_get_session),
            "add_message": (AddMessageParams, self._do_add_message),
            "update_context": (UpdateContextParams, self._do_update_context),
            "highlight_entity": (HighlightEntityParams, self._do_highlight_entity),
            "set_scenario": (SetScenarioParams, self._do_set_scenario),
            "record_action": (RecordActionParams, self._do_record_action),
            "update_conversation_state": (
                UpdateConversationStateParams,
                self._do_update_conversation_state,
            ),
            "search_similar": (SearchSimilarParams, self._do_search_similar),
            "get_analytics": (GetAnalyticsParams, self._do_get_analytics),
            "end_session": (EndSessionParams, self._do_end_session),
            "health_check": (HealthCheckParams, self._do_health_check),
            "query_knowledge": (QueryKnowledgeParams, self._do_query_knowledge),
        }

    async def _do_create_session(self, p: CreateSessionParams):
        session = await self.create_session(p.user_id, p.club_id, p.preferences)
        return "Session created", {
            "session_id": session.session_id,
            "session": session.model_dump(mode="json"),
        }

    async def _do_get_session(self, p: GetSessionParams):
        session = await self.get_session(p.session_id)
        return "Session retrieved", {"session": session.model_dump(mode="json")}

    async def _do_add_message(self, p: AddMessageParams):
        message = await self.add_message(
            p.session_id, p.type, p.content, p.intent, p.context, p.metadata
        )
        return "Message added", {"message": message.model_dump(mode="json")}

    async def _do_update_context(self, p: UpdateContextParams):
        ctx = await self.update_context(p.session_id, p.context)
        return "Context updated", {"context": ctx.model_dump(mode="json")}

    async def _do_highlight_entity(self, p: HighlightEntityParams):
        ctx = await self.highlight_entity(p.session_id, p.entity_name)
        verb = "set" if ctx.highlighted_entity else "cleared"
        return f"Highlight {verb}", {"highlighted_entity": ctx.highlighted_entity}

    async def _do_set_scenario(self, p: SetScenarioParams):
        ctx = await self.set_scenario(p.session_id, p.scenario)
        return f"Scenario set to {ctx.active_scenario.value}", {
            "active_scenario": ctx.active_scenario.value
        }

    async def _do_record_action(self, p: RecordActionParams):
        await self.record_action(p.session_id, p.label)
        return f'Action "{p.label}" recorded', None

    async def _do_update_conversation_state(self, p: UpdateConversationStateParams):
        session = await self.update_conversation_state(p.session_id, p.state, p.topic)
        flow = session.conversation_flow
        return f"Conversation state updated to {flow.conversation_state.value}", {
            "conversation_state": flow.conversation_state.value,
            "current_topic": flow.current_topic,
        }

    async def _do_search_similar(self, p: SearchSimilarParams):
        similar = await self.search_similar(p.query, p.limit)
        return f"Found {len(similar.results)} similar conversations", similar.model_dump(mode="json")

    async def _do_get_analytics(self, p: GetAnalyticsParams):
        analytics = await self.get_analytics(p.user_id)
        return "Analytics computed", {"analytics": analytics.model_dump(mode="json")}

    async def _do_end_session(self, p: EndSessionParams):
        session = await self.end_session(p.session_id)
        return "Session ended", {
            "session_id": session.session_id,
            "duration_ms": session.analytics.avg_session_duration_ms,
        }

    async def _do_health_check(self, _p: HealthCheckParams):
        health = await self.health_check()
        healthy = all(health.values())
        return ("All systems healthy" if healthy else "Degraded"), health

    async def _do_query_knowledge(self, p: QueryKnowledgeParams):
        response = await self.query_knowledge(p.query, p.caller_role, p.max_results)
        return f"{len(response.results)} results", response.model_dump(mode="json")


# ── Factory ──────────────────────────────────────────────────────────


async def build_assistant_service(
    tenant_id: str | None = None,
    settings: Settings | None = None,
) -> AssistantService:
    """Wire the shared Redis, Qdrant and embedding handles into a tenant-bound service."""
    settings = settings or get_settings()
    tenant = tenant_id or settings.default_tenant_id
    store = await get_session_store(tenant)
    qdrant = get_qdrant()
    embedder = get_embedding_provider()

    index = SemanticIndex(
        qdrant,
        embedder,
        tenant,
        collection=settings.conversation_collection,
        timeout_seconds=settings.qdrant_timeout_seconds,
    )
    router = KnowledgeRouter(
        PublicKnowledgeBase(settings=settings),
        SecureVectorKnowledge(
            qdrant,
            embedder,
            tenant,
            collection=settings.knowledge_collection,
        ),
        settings=settings,
    )
    return AssistantService(store, router, index=index, settings=settings)
