import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values are taken as UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


# ============ Enums ============


class IntentKind(str, enum.Enum):
    NEED = "need"
    OFFER = "offer"
    QUERY = "query"
    COLLABORATION = "collaboration"


class IntentStatus(str, enum.Enum):
    OPEN = "open"
    MATCHED = "matched"
    CLOSED = "closed"


class MatchStatus(str, enum.Enum):
    PROPOSED = "proposed"
    NEGOTIATING = "negotiating"
    ACCEPTED = "accepted"
    FINALIZED = "finalized"
    EXPIRED = "expired"
    DISPUTED = "disputed"


class ReputationComponent(str, enum.Enum):
    QUALITY = "quality"
    RELIABILITY = "reliability"
    COMMUNICATION = "communication"
    FAIRNESS = "fairness"


class ReputationEventType(str, enum.Enum):
    RATING = "rating"
    DECAY = "decay"
    DISPUTE = "dispute"


class TrustTier(str, enum.Enum):
    NEW = "New"
    VERIFIED = "Verified"
    TRUSTED = "Trusted"
    ELITE = "Elite"


class DisputeStatus(str, enum.Enum):
    OPEN = "open"
    VOTING = "voting"
    RESOLVED = "resolved"


class VoteChoice(str, enum.Enum):
    UPHOLD = "uphold"
    REFUND = "refund"
    SPLIT = "split"


def _enum(enum_cls: type[enum.Enum]) -> SQLEnum:
    return SQLEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members],
    )


# ============ Agents & Reputation ============


class Agent(Base):
    """Marketplace participant with a denormalized reputation snapshot."""

    __tablename__ = "agents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agent_id: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(200))
    skills: Mapped[list] = mapped_column(JSON, default=list)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    # Reputation components, each 0-100 with 50 as neutral
    quality: Mapped[float] = mapped_column(Float, default=50.0)
    reliability: Mapped[float] = mapped_column(Float, default=50.0)
    communication: Mapped[float] = mapped_column(Float, default=50.0)
    fairness: Mapped[float] = mapped_column(Float, default=50.0)
    # Always the weighted recomputation of the four components
    reputation_score: Mapped[float] = mapped_column(Float, default=50.0, index=True)

    completed_tasks: Mapped[int] = mapped_column(Integer, default=0)
    last_decay_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    events = relationship("ReputationEvent", back_populates="agent", order_by="ReputationEvent.id")

    def components(self) -> dict[str, float]:
        return {
            "quality": self.quality,
            "reliability": self.reliability,
            "communication": self.communication,
            "fairness": self.fairness,
        }


class ReputationEvent(Base):
    """Append-only reputation ledger entry."""

    __tablename__ = "reputation_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    agent_id: Mapped[str] = mapped_column(ForeignKey("agents.agent_id"), index=True)
    type: Mapped[ReputationEventType] = mapped_column(_enum(ReputationEventType))
    component: Mapped[str | None] = mapped_column(String(20), nullable=True)
    impact: Mapped[float] = mapped_column(Float)
    match_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    agent = relationship("Agent", back_populates="events")


# ============ Intents & Matches ============


class Intent(Base):
    __tablename__ = "intents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    kind: Mapped[IntentKind] = mapped_column(_enum(IntentKind), index=True)
    owner_agent_id: Mapped[str] = mapped_column(String(100), index=True)
    title: Mapped[str] = mapped_column(String(200))
    description: Mapped[str] = mapped_column(Text)
    skills: Mapped[list] = mapped_column(JSON, default=list)

    # Pricing
    pricing_model: Mapped[str | None] = mapped_column(String(30), nullable=True)
    amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    currency: Mapped[str | None] = mapped_column(String(10), nullable=True)

    min_reputation: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[IntentStatus] = mapped_column(_enum(IntentStatus), default=IntentStatus.OPEN, index=True)

    # Attached asynchronously after creation
    embedding: Mapped[list | None] = mapped_column(JSON, nullable=True)
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)


class Match(Base):
    __tablename__ = "matches"
    __table_args__ = (
        Index("ix_matches_agents", "need_agent_id", "offer_agent_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    need_intent_id: Mapped[int] = mapped_column(ForeignKey("intents.id"), index=True)
    offer_intent_id: Mapped[int] = mapped_column(ForeignKey("intents.id"), index=True)

    score: Mapped[int] = mapped_column(Integer)
    algorithm: Mapped[str] = mapped_column(String(50))
    status: Mapped[MatchStatus] = mapped_column(_enum(MatchStatus), default=MatchStatus.PROPOSED, index=True)

    need_agent_id: Mapped[str] = mapped_column(String(100))
    offer_agent_id: Mapped[str] = mapped_column(String(100))
    # Set while the match is active, NULL otherwise; the unique index makes
    # creation an atomic insert-if-absent per unordered agent pair.
    active_pair_key: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)

    proposed_terms: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    need_intent = relationship("Intent", foreign_keys=[need_intent_id])
    offer_intent = relationship("Intent", foreign_keys=[offer_intent_id])

    def involves(self, agent_id: str) -> bool:
        return agent_id in (self.need_agent_id, self.offer_agent_id)


# ============ Disputes & Votes ============


class Dispute(Base):
    __tablename__ = "disputes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    match_id: Mapped[int] = mapped_column(ForeignKey("matches.id", ondelete="CASCADE"), index=True)
    initiator_agent_id: Mapped[str] = mapped_column(String(100))
    reason: Mapped[str] = mapped_column(Text)
    evidence: Mapped[list] = mapped_column(JSON, default=list)

    tier: Mapped[int] = mapped_column(Integer, default=1, index=True)  # 1 automated, 2 community, 3 council
    status: Mapped[DisputeStatus] = mapped_column(_enum(DisputeStatus), default=DisputeStatus.OPEN, index=True)

    resolution: Mapped[str | None] = mapped_column(String(50), nullable=True)
    ai_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    votes = relationship("Vote", back_populates="dispute", cascade="all, delete-orphan")


class Vote(Base):
    __tablename__ = "votes"
    __table_args__ = (UniqueConstraint("dispute_id", "agent_id", name="uq_votes_dispute_agent"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    dispute_id: Mapped[int] = mapped_column(ForeignKey("disputes.id"), index=True)
    agent_id: Mapped[str] = mapped_column(String(100), index=True)
    choice: Mapped[VoteChoice] = mapped_column(_enum(VoteChoice))
    weight: Mapped[float] = mapped_column(Float)  # voter reputation_score at cast time
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    dispute = relationship("Dispute", back_populates="votes")


# ============ Configuration ============


class ConfigEntry(Base):
    """Versioned tuning value; at most one active row per key."""

    __tablename__ = "configs"
    __table_args__ = (Index("ix_configs_key_active", "key", "is_active"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(100))
    value: Mapped[Any] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, default=1)
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
