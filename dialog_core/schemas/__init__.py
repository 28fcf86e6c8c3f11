"""Pydantic schemas for sessions, knowledge federation and actions."""

from dialog_core.schemas.actions import ActionResponse
from dialog_core.schemas.knowledge import (
    ConfidentialityTier,
    KnowledgeResponse,
    KnowledgeResult,
    KnowledgeSourceName,
    SensitivityAssessment,
    SensitivityLevel,
)
from dialog_core.schemas.session import (
    ActionMetadata,
    AnalysisDepth,
    ConversationFlow,
    ConversationSnippet,
    ConversationState,
    IntentMetadata,
    KnowledgeMetadata,
    Message,
    MessageType,
    Preferences,
    PreferencesOverride,
    ResponseStyle,
    Scenario,
    Session,
    SessionAnalytics,
    SessionContext,
    UserAnalytics,
)

__all__ = [
    "ActionResponse",
    "ConfidentialityTier",
    "KnowledgeResponse",
    "KnowledgeResult",
    "KnowledgeSourceName",
    "SensitivityAssessment",
    "SensitivityLevel",
    "ActionMetadata",
    "AnalysisDepth",
    "ConversationFlow",
    "ConversationSnippet",
    "ConversationState",
    "IntentMetadata",
    "KnowledgeMetadata",
    "Message",
    "MessageType",
    "Preferences",
    "PreferencesOverride",
    "ResponseStyle",
    "Scenario",
    "Session",
    "SessionAnalytics",
    "SessionContext",
    "UserAnalytics",
]
