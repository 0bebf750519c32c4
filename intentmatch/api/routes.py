from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from intentmatch.config import EngineConfig
from intentmatch.db import get_db
from intentmatch.schemas import (
    AgentCreate,
    AgentOut,
    DecayOut,
    EmbeddingIn,
    IntentCreate,
    IntentOut,
    MatchAction,
    MatchCreateOut,
    MatchingPassOut,
    MatchOut,
    MatchPreviewOut,
    MatchProposal,
    NegotiateIn,
    RatingIn,
    RatingOut,
    RejectOut,
    ReputationOut,
)
from intentmatch.services.config_store import ConfigService
from intentmatch.services.intents import IntentService
from intentmatch.services.matches import MatchService
from intentmatch.services.matching import MatchingService, MatchOutcome, ScoredCandidate
from intentmatch.services.reputation import ReputationService

router = APIRouter()


def current_config(db: Session = Depends(get_db)) -> EngineConfig:
    """Engine config with the active persisted overrides applied."""
    return ConfigService(db).current_engine_config()


def _outcome_out(outcome: MatchOutcome) -> dict:
    return {
        "match_id": outcome.match_id,
        "candidate_intent_id": outcome.candidate_intent_id,
        "score": outcome.score,
        "created": outcome.created,
        "breakdown": outcome.breakdown.as_dict(),
    }


def _candidate_out(scored: ScoredCandidate) -> dict:
    return {
        "intent_id": scored.intent.id,
        "owner_agent_id": scored.intent.owner_agent_id,
        "similarity": round(scored.similarity, 4),
        "qualifies": scored.qualifies,
        "breakdown": scored.breakdown.as_dict(),
    }


# ============ Agent Endpoints ============


@router.post("/agents", response_model=AgentOut)
def create_agent(
    payload: AgentCreate,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    """Register an agent with neutral reputation."""
    return ReputationService(db, config).register_agent(
        payload.agent_id, payload.name, payload.skills, payload.metadata
    )


@router.get("/agents/{agent_id}", response_model=AgentOut)
def get_agent(agent_id: str, db: Session = Depends(get_db)):
    return ReputationService(db).get_agent(agent_id)


# ============ Intent Endpoints ============


@router.post("/intents", response_model=IntentOut)
def create_intent(payload: IntentCreate, db: Session = Depends(get_db)):
    """Create an intent. An embedding may be supplied now or attached later."""
    pricing = payload.pricing
    return IntentService(db).create_intent(
        kind=payload.kind,
        owner_agent_id=payload.owner_agent_id,
        title=payload.title,
        description=payload.description,
        skills=payload.skills,
        pricing_model=pricing.model if pricing else None,
        amount=pricing.amount if pricing else None,
        currency=pricing.currency if pricing else None,
        min_reputation=payload.min_reputation,
        expires_at=payload.expires_at,
        metadata=payload.metadata,
        embedding=payload.embedding,
    )


@router.get("/intents", response_model=list[IntentOut])
def list_intents(
    kind: str | None = None,
    status: str | None = None,
    owner: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return IntentService(db).list_intents(kind=kind, status=status, owner_agent_id=owner, limit=limit)


@router.get("/intents/{intent_id}", response_model=IntentOut)
def get_intent(intent_id: int, db: Session = Depends(get_db)):
    return IntentService(db).get_intent(intent_id)


@router.put("/intents/{intent_id}/embedding", response_model=MatchingPassOut)
def attach_embedding(
    intent_id: int,
    payload: EmbeddingIn,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    """Attach the intent's embedding, then run a matching pass for it."""
    IntentService(db).attach_embedding(intent_id, payload.embedding)
    outcomes = MatchingService(db, config).run_matching_pass(intent_id)
    return {"intent_id": intent_id, "matches": [_outcome_out(o) for o in outcomes]}


@router.post("/intents/{intent_id}/match", response_model=MatchingPassOut)
def run_matching_pass(
    intent_id: int,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    outcomes = MatchingService(db, config).run_matching_pass(intent_id)
    return {"intent_id": intent_id, "matches": [_outcome_out(o) for o in outcomes]}


@router.get("/intents/{intent_id}/matches", response_model=MatchPreviewOut)
def preview_matches(
    intent_id: int,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    """Existing matches plus scored candidates. Nothing is persisted."""
    preview = MatchingService(db, config).preview_matches(intent_id)
    return {
        "intent": preview["intent"],
        "existing_matches": preview["existing_matches"],
        "candidates": [_candidate_out(c) for c in preview["candidates"]],
    }


# ============ Match Endpoints ============


@router.post("/matches", response_model=MatchCreateOut)
def propose_match(
    payload: MatchProposal,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    match, created = MatchService(db, config).propose_match(
        payload.need_intent_id,
        payload.offer_intent_id,
        payload.agent_id,
        payload.proposed_terms,
    )
    return {"match": match, "created": created}


@router.get("/matches", response_model=list[MatchOut])
def list_matches(
    agent_id: str | None = None,
    status: str | None = None,
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    return MatchService(db).list_matches(agent_id=agent_id, status=status, limit=limit)


@router.get("/matches/{match_id}", response_model=MatchOut)
def get_match(match_id: int, db: Session = Depends(get_db)):
    return MatchService(db).get_match(match_id)


@router.post("/matches/{match_id}/negotiate", response_model=MatchOut)
def negotiate_match(match_id: int, payload: NegotiateIn, db: Session = Depends(get_db)):
    return MatchService(db).negotiate(match_id, payload.agent_id, payload.proposed_terms)


@router.post("/matches/{match_id}/accept", response_model=MatchOut)
def accept_match(match_id: int, payload: MatchAction, db: Session = Depends(get_db)):
    return MatchService(db).accept(match_id, payload.agent_id)


@router.post("/matches/{match_id}/finalize", response_model=MatchOut)
def finalize_match(match_id: int, payload: MatchAction, db: Session = Depends(get_db)):
    return MatchService(db).finalize(match_id, payload.agent_id)


@router.delete("/matches/{match_id}", response_model=RejectOut)
def reject_match(match_id: int, agent_id: str, reason: str | None = None, db: Session = Depends(get_db)):
    """Reject (delete) a match; the pair may be matched again afterwards."""
    return MatchService(db).reject(match_id, agent_id, reason)


# ============ Reputation Endpoints ============


@router.get("/reputation/{agent_id}", response_model=ReputationOut)
def get_reputation(
    agent_id: str,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    return ReputationService(db, config).get_reputation(agent_id)


@router.post("/reputation/{agent_id}/ratings", response_model=RatingOut)
def record_rating(
    agent_id: str,
    payload: RatingIn,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    return ReputationService(db, config).record_rating(
        agent_id,
        payload.rating,
        component=payload.component,
        match_id=payload.match_id,
        reason=payload.reason,
    )


@router.post("/reputation/{agent_id}/decay", response_model=DecayOut)
def apply_decay(
    agent_id: str,
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
):
    return ReputationService(db, config).apply_decay(agent_id)
