"""Session schemas: conversation flow, context, preferences, analytics."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

# ── Enums ────────────────────────────────────────────────────────────


class MessageType(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationState(StrEnum):
    """Conversation flow states. ENDED is terminal and only set by end_session."""

    GREETING = "greeting"
    ANALYSIS = "analysis"
    QUERY = "query"
    ACTION = "action"
    SUMMARIZING = "summarizing"
    ENDED = "ended"


class Scenario(StrEnum):
    """Dashboard scenario currently in focus."""

    OVERVIEW = "overview"
    ATTACK = "attack"
    DEFENSE = "defense"
    INJURIES = "injuries"
    FIXTURES = "fixtures"


class ResponseStyle(StrEnum):
    BRIEF = "brief"
    DETAILED = "detailed"
    TECHNICAL = "technical"


class AnalysisDepth(StrEnum):
    SUMMARY = "summary"
    DETAILED = "detailed"
    COMPREHENSIVE = "comprehensive"


# ── Message metadata (tagged union) ──────────────────────────────────


class KnowledgeMetadata(BaseModel):
    """Attached to assistant messages answered from the knowledge router."""

    kind: Literal["knowledge"] = "knowledge"
    sources: list[str] = Field(default_factory=list)
    primary_source: str | None = None
    latency_ms: float | None = None
    sensitivity_detected: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)


class ActionMetadata(BaseModel):
    """Attached to messages that triggered a dashboard action."""

    kind: Literal["action"] = "action"
    action: str
    target: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class IntentMetadata(BaseModel):
    """Attached to user messages classified by an upstream intent model."""

    kind: Literal["intent"] = "intent"
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    classifier: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


MessageMetadata = Annotated[
    KnowledgeMetadata | ActionMetadata | IntentMetadata,
    Field(discriminator="kind"),
]


# ── Conversation ─────────────────────────────────────────────────────


class Message(BaseModel):
    """A single conversation entry. Immutable once appended."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    type: MessageType
    content: str
    intent: str | None = None
    context: dict[str, Any] | None = None  # opaque caller snapshot
    metadata: MessageMetadata | None = None


class ConversationFlow(BaseModel):
    messages: list[Message] = Field(default_factory=list)
    current_topic: str | None = None
    intent: str | None = None
    awaiting_response: bool = False
    conversation_state: ConversationState = ConversationState.GREETING


class SessionContext(BaseModel):
    """Current focus of the conversation, drives dashboard highlighting."""

    current_season: str = ""
    focus_team: str = ""
    active_scenario: Scenario = Scenario.OVERVIEW
    highlighted_entity: str | None = None  # display hint only, at most one
    last_action: str | None = None
    dashboard_state: dict[str, Any] = Field(default_factory=dict)


class Preferences(BaseModel):
    """Set at creation, never mutated automatically."""

    response_style: ResponseStyle = ResponseStyle.DETAILED
    analysis_depth: AnalysisDepth = AnalysisDepth.DETAILED
    voice_enabled: bool = True
    preferred_metrics: list[str] = Field(default_factory=lambda: ["goals", "assists", "minutes"])
    alert_thresholds: dict[str, float] = Field(default_factory=dict)
    extensions: dict[str, Any] = Field(default_factory=dict)


class PreferencesOverride(BaseModel):
    """Caller-supplied preference overrides applied over the defaults."""

    response_style: ResponseStyle | None = None
    analysis_depth: AnalysisDepth | None = None
    voice_enabled: bool | None = None
    preferred_metrics: list[str] | None = None
    alert_thresholds: dict[str, float] | None = None
    extensions: dict[str, Any] | None = None

    def apply(self, base: Preferences) -> Preferences:
        return base.model_copy(update=self.model_dump(exclude_none=True))


class SessionAnalytics(BaseModel):
    """Per-session counters. Counters only ever grow."""

    total_sessions: int = 1
    total_messages: int = 0
    avg_session_duration_ms: float = 0.0
    common_queries: dict[str, int] = Field(default_factory=dict)
    successful_actions: dict[str, int] = Field(default_factory=dict)
    preferred_topics: dict[str, int] = Field(default_factory=dict)
    last_learning_update: datetime | None = None


class Session(BaseModel):
    session_id: str
    tenant_id: str
    user_id: str
    created_at: datetime
    last_active_at: datetime
    conversation_flow: ConversationFlow = Field(default_factory=ConversationFlow)
    context: SessionContext = Field(default_factory=SessionContext)
    preferences: Preferences = Field(default_factory=Preferences)
    analytics: SessionAnalytics = Field(default_factory=SessionAnalytics)

    @property
    def is_ended(self) -> bool:
        return self.conversation_flow.conversation_state == ConversationState.ENDED

    @property
    def duration_ms(self) -> float:
        return (self.last_active_at - self.created_at).total_seconds() * 1000


# ── Aggregates ───────────────────────────────────────────────────────


class UserAnalytics(BaseModel):
    """Lifetime statistics for one user, recomputed from their live sessions."""

    tenant_id: str
    user_id: str
    total_sessions: int
    total_messages: int
    avg_session_duration_ms: float
    common_queries: dict[str, int] = Field(default_factory=dict)
    successful_actions: dict[str, int] = Field(default_factory=dict)
    preferred_topics: dict[str, int] = Field(default_factory=dict)
    computed_at: datetime


class ConversationSnippet(BaseModel):
    """A past user message recalled from the semantic index."""

    composite_id: str
    session_id: str
    message_id: str
    content: str
    intent: str
    timestamp: datetime
    score: float = 0.0
