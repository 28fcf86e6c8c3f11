"""Authorization policy: caller role to permitted confidentiality tiers.

Unknown roles get no tiers (fail closed). Filtering is silent: callers see
fewer results, never an error that reveals restricted records exist.
"""

from __future__ import annotations

from collections.abc import Iterable

from dialog_core.core.errors import UnauthorizedError
from dialog_core.core.logging import get_logger
from dialog_core.schemas.knowledge import ConfidentialityTier, KnowledgeResult

logger = get_logger(__name__)

_ALL_TIERS = frozenset(ConfidentialityTier)

ROLE_TIERS: dict[str, frozenset[ConfidentialityTier]] = {
    "board": _ALL_TIERS,
    "legal": _ALL_TIERS,
    "finance": frozenset({ConfidentialityTier.RESTRICTED, ConfidentialityTier.CONFIDENTIAL}),
    "management": frozenset({ConfidentialityTier.RESTRICTED}),
}


def permitted_tiers(role: str | None) -> frozenset[ConfidentialityTier]:
    if not role:
        return frozenset()
    return ROLE_TIERS.get(role.strip().lower(), frozenset())


def is_authorized(role: str | None, tier: ConfidentialityTier | str | None) -> bool:
    """Untagged records are never treated as permitted."""
    if tier is None:
        return False
    try:
        return ConfidentialityTier(tier) in permitted_tiers(role)
    except ValueError:
        return False


def require_tier(role: str | None, tier: ConfidentialityTier | str | None) -> None:
    if not is_authorized(role, tier):
        raise UnauthorizedError(role or "")


def filter_permitted(results: Iterable[KnowledgeResult], role: str | None) -> list[KnowledgeResult]:
    """Drop every result whose tier is outside the role's permitted set."""
    kept: list[KnowledgeResult] = []
    dropped = 0
    for result in results:
        try:
            require_tier(role, result.confidentiality)
        except UnauthorizedError:
            dropped += 1
            continue
        kept.append(result)
    if dropped:
        logger.info("restricted_results_omitted", role=role, omitted=dropped)
    return kept
