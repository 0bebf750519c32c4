"""Composite match scoring."""
import math
from collections.abc import Iterable
from dataclasses import dataclass

from intentmatch.config import EngineConfig, ScoringWeights
from intentmatch.models import Intent, IntentKind

PRICE_CURRENCY_MISMATCH = 0.5
PRICE_CURRENCY_MATCH = 0.8
PRICE_WITHIN_BUDGET = 1.0

UNKNOWN_AGENT_REPUTATION = 0.5

# Decimal places kept when comparing totals against the threshold
THRESHOLD_PRECISION = 9


@dataclass
class MatchBreakdown:
    semantic_score: float = 0.0
    reputation_score: float = 0.0
    price_score: float = 0.0
    skills_score: float = 0.0
    weighted_total: float = 0.0
    composite: int = 0

    def as_dict(self) -> dict[str, float | int]:
        return {
            "semantic": round(self.semantic_score, 4),
            "reputation": round(self.reputation_score, 4),
            "price": round(self.price_score, 4),
            "skills": round(self.skills_score, 4),
            "weighted_total": round(self.weighted_total, 4),
            "composite": self.composite,
        }


def normalize_skills(skills: Iterable[str] | None) -> set[str]:
    return {s.strip().lower() for s in (skills or []) if s and s.strip()}


def skill_overlap(left: Iterable[str] | None, right: Iterable[str] | None) -> float:
    """Jaccard index of two skill sets; 0.0 when both are empty."""
    a = normalize_skills(left)
    b = normalize_skills(right)
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def price_compatibility(
    need_currency: str | None,
    need_amount: float | None,
    offer_currency: str | None,
    offer_amount: float | None,
) -> float:
    """
    Three-tier price heuristic.

    0.5 when currencies differ, 0.8 when they match, 1.0 when they match and
    the need side's budget covers the offer side's ask. Two missing
    currencies count as matching.
    """
    if _currency(need_currency) != _currency(offer_currency):
        return PRICE_CURRENCY_MISMATCH
    if need_amount is not None and offer_amount is not None and need_amount >= offer_amount:
        return PRICE_WITHIN_BUDGET
    return PRICE_CURRENCY_MATCH


def _currency(value: str | None) -> str | None:
    return value.strip().upper() if value else None


def reputation_subscore(reputation_score: float | None) -> float:
    if reputation_score is None:
        return UNKNOWN_AGENT_REPUTATION
    return max(0.0, min(1.0, reputation_score / 100))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def composite_score(
    semantic: float,
    reputation: float,
    price: float,
    skills: float,
    weights: ScoringWeights,
) -> MatchBreakdown:
    breakdown = MatchBreakdown(
        semantic_score=semantic,
        reputation_score=reputation,
        price_score=price,
        skills_score=skills,
    )
    breakdown.weighted_total = (
        semantic * weights.semantic
        + reputation * weights.reputation
        + price * weights.price
        + skills * weights.skills
    ) * 100
    breakdown.composite = round_half_up(round(breakdown.weighted_total, THRESHOLD_PRECISION))
    return breakdown


def order_pair(source: Intent, candidate: Intent) -> tuple[Intent, Intent]:
    """Return (need side, offer side). Same-kind pairs keep the source as need side."""
    if source.kind == IntentKind.OFFER:
        return candidate, source
    return source, candidate


def score_pair(
    source: Intent,
    candidate: Intent,
    similarity: float,
    candidate_reputation: float | None,
    config: EngineConfig,
) -> MatchBreakdown:
    """Score a candidate intent against the source intent."""
    need, offer = order_pair(source, candidate)
    return composite_score(
        semantic=max(0.0, min(1.0, similarity)),
        reputation=reputation_subscore(candidate_reputation),
        price=price_compatibility(need.currency, need.amount, offer.currency, offer.amount),
        skills=skill_overlap(source.skills, candidate.skills),
        weights=config.weights,
    )


def qualifies(breakdown: MatchBreakdown, config: EngineConfig) -> bool:
    """Strictly above the threshold, ignoring float noise in the weighted sum."""
    return round(breakdown.weighted_total, THRESHOLD_PRECISION) > config.match_threshold
