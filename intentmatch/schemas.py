from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from intentmatch.models import DisputeStatus, IntentKind, IntentStatus, MatchStatus, ReputationEventType, TrustTier, VoteChoice

# Flexible metadata is a typed map of string -> primitive
Primitive = str | int | float | bool | None
Metadata = dict[str, Primitive]


# Agent Schemas
class AgentCreate(BaseModel):
    agent_id: str = Field(min_length=1, max_length=100)
    name: str
    skills: list[str] = Field(default_factory=list)
    metadata: Metadata | None = None


class AgentOut(BaseModel):
    agent_id: str
    name: str
    skills: list[str]
    metadata: Metadata | None = Field(default=None, validation_alias="metadata_")
    reputation_score: float
    quality: float
    reliability: float
    communication: float
    fairness: float
    completed_tasks: int
    last_decay_at: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# Intent Schemas
class PricingIn(BaseModel):
    model: str | None = None
    amount: float | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, max_length=10)


class IntentCreate(BaseModel):
    kind: IntentKind
    owner_agent_id: str
    title: str
    description: str = ""
    skills: list[str] = Field(default_factory=list)
    pricing: PricingIn | None = None
    min_reputation: float | None = None
    expires_at: datetime | None = None
    metadata: Metadata | None = None
    embedding: list[float] | None = None


class IntentOut(BaseModel):
    id: int
    kind: IntentKind
    owner_agent_id: str
    title: str
    description: str
    skills: list[str]
    pricing_model: str | None
    amount: float | None
    currency: str | None
    min_reputation: float | None
    status: IntentStatus
    has_embedding: bool = False
    metadata: Metadata | None = Field(default=None, validation_alias="metadata_")
    created_at: datetime
    expires_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class EmbeddingIn(BaseModel):
    embedding: list[float]


# Match Schemas
class MatchProposal(BaseModel):
    need_intent_id: int
    offer_intent_id: int
    agent_id: str
    proposed_terms: Metadata | None = None


class MatchAction(BaseModel):
    agent_id: str


class NegotiateIn(BaseModel):
    agent_id: str
    proposed_terms: Metadata


class MatchOut(BaseModel):
    id: int
    need_intent_id: int
    offer_intent_id: int
    score: int
    algorithm: str
    status: MatchStatus
    need_agent_id: str
    offer_agent_id: str
    proposed_terms: Metadata | None
    created_at: datetime
    expires_at: datetime
    accepted_at: datetime | None
    finalized_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class MatchCreateOut(BaseModel):
    match: MatchOut
    created: bool


class RejectOut(BaseModel):
    match_id: int
    status: str
    reason: str | None = None


class MatchOutcomeOut(BaseModel):
    match_id: int
    candidate_intent_id: int
    score: int
    created: bool
    breakdown: dict[str, float | int]


class MatchingPassOut(BaseModel):
    intent_id: int
    matches: list[MatchOutcomeOut]


class ScoredCandidateOut(BaseModel):
    intent_id: int
    owner_agent_id: str
    similarity: float
    qualifies: bool
    breakdown: dict[str, float | int]


class MatchPreviewOut(BaseModel):
    intent: IntentOut
    existing_matches: list[MatchOut]
    candidates: list[ScoredCandidateOut]


# Reputation Schemas
class RatingIn(BaseModel):
    rating: float
    component: str | None = None
    match_id: int | None = None
    reason: str | None = None


class RatingOut(BaseModel):
    agent_id: str
    component: str
    new_value: float
    rating: float
    reputation_score: float


class ReputationEventOut(BaseModel):
    id: int
    agent_id: str
    type: ReputationEventType
    component: str | None
    impact: float
    match_id: int | None
    reason: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReputationOut(BaseModel):
    agent_id: str
    score: float
    reputation_score: float
    tier: TrustTier
    completed_tasks: int
    components: dict[str, float]
    recent_events: list[ReputationEventOut]


class DecayOut(BaseModel):
    agent_id: str
    decayed: bool
    months: int


# Dispute Schemas
class DisputeCreate(BaseModel):
    match_id: int
    agent_id: str
    reason: str
    evidence: str | list[str] = Field(default_factory=list)


class DisputeOut(BaseModel):
    id: int
    match_id: int
    initiator_agent_id: str
    reason: str
    evidence: list[str]
    tier: int
    status: DisputeStatus
    resolution: str | None
    ai_confidence: float | None
    created_at: datetime
    resolved_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class ResolveIn(BaseModel):
    resolution: str


class VoteCreate(BaseModel):
    agent_id: str
    choice: VoteChoice
    justification: str | None = None


class VoteUpdate(BaseModel):
    choice: VoteChoice
    justification: str | None = None


class VoteOut(BaseModel):
    id: int
    dispute_id: int
    agent_id: str
    choice: VoteChoice
    weight: float
    justification: str | None
    created_at: datetime
    updated_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class TallyOut(BaseModel):
    dispute_id: int
    totals: dict[str, float]
    votes: int
    leading: str | None


# Config Schemas
class ConfigCreate(BaseModel):
    value: Any
    version: int = Field(default=1, ge=1)


class ConfigUpdate(BaseModel):
    value: Any


class ConfigOut(BaseModel):
    key: str
    value: Any
    version: int
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
