"""Request/response models for the action surface.

Params accept snake_case or camelCase keys so the same payloads work
from the dashboard client and from Python callers.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from dialog_core.schemas.session import (
    ConversationState,
    MessageMetadata,
    MessageType,
    PreferencesOverride,
    Scenario,
)


class _ActionParams(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class _SessionParams(_ActionParams):
    session_id: str = Field(min_length=1)


class CreateSessionParams(_ActionParams):
    user_id: str = Field(min_length=1)
    club_id: str | None = None
    preferences: PreferencesOverride | None = None


class GetSessionParams(_SessionParams):
    pass


class AddMessageParams(_SessionParams):
    type: MessageType
    content: str = Field(min_length=1)
    intent: str | None = None
    context: dict[str, Any] | None = None
    metadata: MessageMetadata | None = None


class UpdateContextParams(_SessionParams):
    context: dict[str, Any]


class HighlightEntityParams(_SessionParams):
    entity_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("entity_name", "entityName", "name", "playerName"),
    )


class SetScenarioParams(_SessionParams):
    scenario: Scenario


class RecordActionParams(_SessionParams):
    label: str = Field(
        min_length=1,
        validation_alias=AliasChoices("label", "action_name", "actionName"),
    )


class UpdateConversationStateParams(_SessionParams):
    state: ConversationState
    topic: str | None = None


class EndSessionParams(_SessionParams):
    pass


class HealthCheckParams(_ActionParams):
    pass


class SearchSimilarParams(_ActionParams):
    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=50)


class GetAnalyticsParams(_ActionParams):
    user_id: str = Field(min_length=1)


class QueryKnowledgeParams(_ActionParams):
    query: str = Field(min_length=1)
    caller_role: str = Field(
        default="general",
        validation_alias=AliasChoices("caller_role", "callerRole", "user_role", "userRole"),
    )
    max_results: int = Field(default=5, ge=1, le=20)


class ActionResponse(BaseModel):
    """Uniform envelope for every action, success or failure."""

    success: bool
    message: str
    data: dict[str, Any] | None = None
    error: str | None = None
    field: str | None = None  # offending parameter on malformed input
