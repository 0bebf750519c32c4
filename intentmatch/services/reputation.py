"""Reputation components, ratings, decay and trust tiers."""
import logging
import math
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from intentmatch.config import ComponentWeights, EngineConfig, get_engine_config
from intentmatch.errors import InvalidStateError, NotFoundError, ValidationError
from intentmatch.models import (
    Agent,
    ReputationComponent,
    ReputationEvent,
    ReputationEventType,
    TrustTier,
    utcnow,
)

logger = logging.getLogger(__name__)

MIN_RATING = 1.0
MAX_RATING = 5.0
RATING_MIDPOINT = 2.5
RATING_SCALE = 10.0

# Upper bounds on the 0-5 display scale
TRUST_TIERS = [
    (1.5, TrustTier.NEW),
    (3.0, TrustTier.VERIFIED),
    (4.0, TrustTier.TRUSTED),
]

DECAY_EVENT_IMPACT = -1.0


def _clamp(value: float, min_val: float = 0.0, max_val: float = 100.0) -> float:
    return max(min_val, min(max_val, value))


def weighted_score(components: dict[str, float], weights: ComponentWeights) -> float:
    """Reputation score on the 0-100 scale; no further normalization."""
    return sum(components[name] * weight for name, weight in weights.as_dict().items())


def display_score(reputation_score: float) -> float:
    """Reputation on the 0-5 display scale."""
    return _clamp(reputation_score / 20, 0.0, 5.0)


def trust_tier(reputation_score: float) -> TrustTier:
    score = display_score(reputation_score)
    for upper, tier in TRUST_TIERS:
        if score < upper:
            return tier
    return TrustTier.ELITE


def rating_impact(rating: float) -> float:
    return (rating - RATING_MIDPOINT) * RATING_SCALE


def elapsed_months(last: datetime, now: datetime, period_days: int) -> int:
    return math.floor((now - last) / timedelta(days=period_days))


def decay_component(value: float, months: int, factor: float, neutral: float) -> float:
    """Pull a component toward neutral by `factor` per elapsed month, compounding."""
    return max(0.0, (value - neutral) * factor**months + neutral)


class ReputationService:
    """
    Maintains per-agent reputation components and the derived score.

    Every mutation writes the components, the recomputed score and a ledger
    event in one commit.
    """

    def __init__(self, db: Session, config: EngineConfig | None = None):
        self.db = db
        self.config = config or get_engine_config()

    # ---- agents ----

    def register_agent(
        self,
        agent_id: str,
        name: str,
        skills: list[str] | None = None,
        metadata: dict | None = None,
    ) -> Agent:
        if not agent_id or not agent_id.strip():
            raise ValidationError("agent_id is required")
        if self.find_agent(agent_id):
            raise InvalidStateError(f"Agent {agent_id} already exists")

        neutral = self.config.neutral_component
        agent = Agent(
            agent_id=agent_id,
            name=name,
            skills=list(skills or []),
            metadata_=metadata,
            quality=neutral,
            reliability=neutral,
            communication=neutral,
            fairness=neutral,
            reputation_score=neutral,
            completed_tasks=0,
        )
        self.db.add(agent)
        self.db.commit()
        self.db.refresh(agent)
        logger.info(f"Registered agent {agent_id}")
        return agent

    def find_agent(self, agent_id: str) -> Agent | None:
        return self.db.query(Agent).filter(Agent.agent_id == agent_id).first()

    def get_agent(self, agent_id: str) -> Agent:
        agent = self.find_agent(agent_id)
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")
        return agent

    def get_reputation(self, agent_id: str) -> dict:
        """Reputation summary with tier, 0-5 components and the recent event feed."""
        agent = self.get_agent(agent_id)
        events = (
            self.db.query(ReputationEvent)
            .filter(ReputationEvent.agent_id == agent_id)
            .order_by(ReputationEvent.created_at.desc(), ReputationEvent.id.desc())
            .limit(self.config.recent_events_limit)
            .all()
        )
        return {
            "agent_id": agent_id,
            "score": round(display_score(agent.reputation_score), 2),
            "reputation_score": round(agent.reputation_score, 2),
            "tier": trust_tier(agent.reputation_score),
            "completed_tasks": agent.completed_tasks,
            "components": {name: round(value / 20, 2) for name, value in agent.components().items()},
            "recent_events": events,
        }

    # ---- ratings ----

    def record_rating(
        self,
        agent_id: str,
        rating: float,
        component: str | None = None,
        match_id: int | None = None,
        reason: str | None = None,
    ) -> dict:
        if isinstance(rating, bool) or not isinstance(rating, (int, float)) or math.isnan(rating):
            raise ValidationError("Rating must be a number")
        if rating < MIN_RATING or rating > MAX_RATING:
            raise ValidationError("Rating must be between 1 and 5")
        try:
            comp = ReputationComponent(component or ReputationComponent.QUALITY.value)
        except ValueError:
            valid = [c.value for c in ReputationComponent]
            raise ValidationError(f"Invalid component '{component}'. Must be one of: {valid}")

        agent = self.get_agent(agent_id)
        impact = rating_impact(rating)
        new_value = _clamp(getattr(agent, comp.value) + impact)

        self.db.add(
            ReputationEvent(
                agent_id=agent_id,
                type=ReputationEventType.RATING,
                component=comp.value,
                impact=impact,
                match_id=match_id,
                reason=reason or f"Rating: {rating:g}/5 ({comp.value})",
            )
        )
        setattr(agent, comp.value, new_value)
        agent.reputation_score = weighted_score(agent.components(), self.config.component_weights)
        agent.completed_tasks = (agent.completed_tasks or 0) + 1
        self.db.commit()

        logger.info(f"Rating {rating:g} recorded for {agent_id} ({comp.value} -> {new_value:.2f})")
        return {
            "agent_id": agent_id,
            "component": comp.value,
            "new_value": new_value,
            "rating": rating,
            "reputation_score": agent.reputation_score,
        }

    # ---- decay ----

    def apply_decay(self, agent_id: str, now: datetime | None = None) -> dict:
        agent = self.get_agent(agent_id)
        return self._decay(agent, now or utcnow())

    def run_decay_for_all(self, now: datetime | None = None) -> dict:
        """Decay every agent; a failing agent is logged and skipped."""
        now = now or utcnow()
        agent_ids = [row[0] for row in self.db.query(Agent.agent_id).order_by(Agent.id).all()]
        decayed = 0
        failed = 0
        for agent_id in agent_ids:
            try:
                agent = self.get_agent(agent_id)
                if self._decay(agent, now)["decayed"]:
                    decayed += 1
            except Exception:
                self.db.rollback()
                failed += 1
                logger.exception(f"Decay failed for agent {agent_id}")

        logger.info(f"Decay sweep: {decayed}/{len(agent_ids)} agents decayed, {failed} failed")
        return {"decayed": decayed, "total": len(agent_ids), "failed": failed}

    def _decay(self, agent: Agent, now: datetime) -> dict:
        cfg = self.config
        last = agent.last_decay_at or agent.created_at
        months = elapsed_months(last, now, cfg.decay_period_days)
        if months < 1:
            return {"agent_id": agent.agent_id, "decayed": False, "months": 0}

        for name, value in agent.components().items():
            setattr(agent, name, decay_component(value, months, cfg.decay_factor, cfg.neutral_component))
        agent.reputation_score = weighted_score(agent.components(), cfg.component_weights)
        agent.last_decay_at = now
        self.db.add(
            ReputationEvent(
                agent_id=agent.agent_id,
                type=ReputationEventType.DECAY,
                impact=DECAY_EVENT_IMPACT,
                reason=f"Monthly decay ({months} months)",
                created_at=now,
            )
        )
        self.db.commit()

        logger.info(f"Decayed reputation for {agent.agent_id} over {months} months")
        return {"agent_id": agent.agent_id, "decayed": True, "months": months}
