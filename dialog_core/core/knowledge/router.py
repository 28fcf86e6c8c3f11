"""Knowledge router: public source always, secure source when sensitive and authorized.

Steps:
1) Classify query sensitivity
2) Resolve the caller's permitted tiers
3) Query the public source, plus the secure source if (1) needs it and (2) allows it
4) Drop any secure result outside the permitted tiers
5) Rank and truncate, then attach recommendations

A failing or slow source contributes nothing; the caller always gets a
KnowledgeResponse.
"""

from __future__ import annotations

import asyncio
import time

from dialog_core.config import Settings, get_settings
from dialog_core.core.errors import MalformedInputError
from dialog_core.core.knowledge.ranker import rank_results
from dialog_core.core.knowledge.sources import KnowledgeSource
from dialog_core.core.logging import get_logger
from dialog_core.core.security.authorization import filter_permitted, permitted_tiers
from dialog_core.core.security.sensitivity import classify
from dialog_core.schemas.knowledge import (
    ConfidentialityTier,
    KnowledgeResponse,
    KnowledgeResult,
    KnowledgeSourceName,
    SensitivityAssessment,
)

logger = get_logger(__name__)

ACCESS_RESTRICTED_NOTICE = (
    "Sensitive data detected but access restricted - consider upgrading user permissions"
)
NO_RESULTS_NOTICE = "No relevant information found in knowledge base"
HIGH_LATENCY_NOTICE = "High latency detected - consider optimizing vector queries"


class KnowledgeRouter:
    def __init__(
        self,
        public: KnowledgeSource,
        secure: KnowledgeSource | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        self.public = public
        self.secure = secure
        self._settings = settings or get_settings()

    async def _guarded_search(
        self,
        source: KnowledgeSource,
        query: str,
        max_results: int,
        tiers: frozenset[ConfidentialityTier],
    ) -> list[KnowledgeResult]:
        try:
            return await asyncio.wait_for(
                source.search(query, max_results, tiers),
                timeout=self._settings.knowledge_timeout_seconds,
            )
        except TimeoutError:
            logger.warning("knowledge_source_timeout", source=str(source.name))
        except Exception as e:
            logger.warning("knowledge_source_failed", source=str(source.name), error=str(e))
        return []

    async def query(
        self,
        text: str,
        caller_role: str = "general",
        max_results: int = 5,
    ) -> KnowledgeResponse:
        if not text or not text.strip():
            raise MalformedInputError("query", "must not be empty")
        if max_results < 1:
            raise MalformedInputError("max_results", "must be at least 1")

        t0 = time.perf_counter()
        sensitivity = classify(text)
        tiers = permitted_tiers(caller_role)
        use_secure = sensitivity.requires_secure_data and bool(tiers) and self.secure is not None

        if sensitivity.requires_secure_data and not tiers:
            # Fail closed: the secure source is never contacted for this role.
            logger.info(
                "secure_source_skipped",
                role=caller_role,
                level=sensitivity.level.value,
                matched=list(sensitivity.matched_keywords),
            )

        tasks = [self._guarded_search(self.public, text, max_results, frozenset())]
        if use_secure:
            tasks.append(self._guarded_search(self.secure, text, max_results, tiers))
        gathered = await asyncio.gather(*tasks)

        public_results = gathered[0]
        secure_results = filter_permitted(gathered[1], caller_role) if use_secure else []

        ranked = rank_results(
            public_results,
            secure_results,
            max_results=min(max_results, self._settings.ranker_max_results),
            tie_epsilon=self._settings.ranker_tie_epsilon,
        )
        total_latency_ms = (time.perf_counter() - t0) * 1000

        logger.info(
            "knowledge_query_completed",
            role=caller_role,
            public_count=len(public_results),
            secure_count=len(secure_results),
            returned=len(ranked),
            latency_ms=round(total_latency_ms, 1),
        )

        return KnowledgeResponse(
            results=ranked,
            primary_source=ranked[0].source.value if ranked else "none",
            total_latency_ms=total_latency_ms,
            sensitivity_detected=sensitivity.requires_secure_data,
            sensitivity_level=sensitivity.level,
            recommendations=self._recommendations(ranked, sensitivity),
        )

    def _recommendations(
        self,
        results: list[KnowledgeResult],
        sensitivity: SensitivityAssessment,
    ) -> list[str]:
        recommendations: list[str] = []
        if not results:
            recommendations.append(NO_RESULTS_NOTICE)
        if sensitivity.requires_secure_data and not any(
            r.source == KnowledgeSourceName.SECURE for r in results
        ):
            recommendations.append(ACCESS_RESTRICTED_NOTICE)
        if any(r.latency_ms > self._settings.high_latency_threshold_ms for r in results):
            recommendations.append(HIGH_LATENCY_NOTICE)

        public_count = sum(1 for r in results if r.source == KnowledgeSourceName.PUBLIC)
        secure_count = sum(1 for r in results if r.source == KnowledgeSourceName.SECURE)
        recommendations.append(
            f"Data sources: {public_count} from public knowledge base, "
            f"{secure_count} from secure vector store"
        )
        return recommendations
