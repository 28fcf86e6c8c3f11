"""Knowledge federation schemas: sensitivity, tiers, results."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SensitivityLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ConfidentialityTier(StrEnum):
    RESTRICTED = "restricted"
    CONFIDENTIAL = "confidential"
    SECRET = "secret"


class KnowledgeSourceName(StrEnum):
    PUBLIC = "public-kb"          # hosted RAG, fast, non-sensitive
    SECURE = "secure-vector"      # tenant vector store, tier-tagged records


@dataclass(frozen=True)
class SensitivityAssessment:
    """Result of scanning a query for sensitive financial/contract terms."""

    requires_secure_data: bool
    level: SensitivityLevel
    matched_keywords: tuple[str, ...] = field(default_factory=tuple)


class KnowledgeResult(BaseModel):
    source: KnowledgeSourceName
    content: str
    confidence: float = 0.0
    latency_ms: float = 0.0
    confidentiality: ConfidentialityTier | None = None  # set on secure records only
    metadata: dict[str, Any] = Field(default_factory=dict)


class KnowledgeResponse(BaseModel):
    """Envelope returned for every knowledge query, even on total failure."""

    results: list[KnowledgeResult] = Field(default_factory=list)
    primary_source: str = "none"
    total_latency_ms: float = 0.0
    sensitivity_detected: bool = False
    sensitivity_level: SensitivityLevel = SensitivityLevel.LOW
    recommendations: list[str] = Field(default_factory=list)
