"""Analytics aggregator: per-user rollups recomputed from live sessions."""

from __future__ import annotations

from datetime import datetime

from dialog_core.core.errors import NotFoundError
from dialog_core.schemas.session import Session, UserAnalytics
from dialog_core.services.session_store import SessionStore


def _sum_counts(target: dict[str, int], source: dict[str, int]) -> None:
    for key, count in source.items():
        target[key] = target.get(key, 0) + count


def aggregate_sessions(
    tenant_id: str,
    user_id: str,
    sessions: list[Session],
    computed_at: datetime,
) -> UserAnalytics:
    """Sum counters and average durations over the given sessions."""
    common: dict[str, int] = {}
    actions: dict[str, int] = {}
    topics: dict[str, int] = {}
    total_messages = 0
    total_duration = 0.0

    for session in sessions:
        total_messages += session.analytics.total_messages
        _sum_counts(common, session.analytics.common_queries)
        _sum_counts(actions, session.analytics.successful_actions)
        _sum_counts(topics, session.analytics.preferred_topics)
        total_duration += session.duration_ms

    return UserAnalytics(
        tenant_id=tenant_id,
        user_id=user_id,
        total_sessions=len(sessions),
        total_messages=total_messages,
        avg_session_duration_ms=total_duration / len(sessions) if sessions else 0.0,
        common_queries=common,
        successful_actions=actions,
        preferred_topics=topics,
        computed_at=computed_at,
    )


class AnalyticsAggregator:
    """Nothing is cached: every call is a fresh pass over the user's sessions."""

    def __init__(self, store: SessionStore) -> None:
        self.store = store

    async def for_user(self, user_id: str) -> UserAnalytics:
        sessions = await self.store.list_user_sessions(user_id)
        if not sessions:
            raise NotFoundError("user", user_id)
        return aggregate_sessions(self.store.tenant_id, user_id, sessions, self.store.now())
