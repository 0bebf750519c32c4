"""
API endpoints for disputes and community votes.

Disputes open at tier 1. When a resolver endpoint is configured its verdict
is applied on creation; otherwise the dispute waits for an explicit
`/voting` or `/resolve` call.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from intentmatch.api.routes import current_config
from intentmatch.config import EngineConfig
from intentmatch.db import get_db
from intentmatch.schemas import (
    DisputeCreate,
    DisputeOut,
    ResolveIn,
    TallyOut,
    VoteCreate,
    VoteOut,
    VoteUpdate,
)
from intentmatch.services.disputes import DisputeService
from intentmatch.services.resolver_client import ResolverClient

router = APIRouter(tags=["disputes"])


def get_dispute_service(
    db: Session = Depends(get_db),
    config: EngineConfig = Depends(current_config),
) -> DisputeService:
    resolver = ResolverClient()
    return DisputeService(db, config, resolver=resolver if resolver.enabled else None)


@router.post("/disputes", response_model=DisputeOut)
def create_dispute(payload: DisputeCreate, service: DisputeService = Depends(get_dispute_service)):
    """Open a dispute on a match the agent is party to."""
    dispute = service.create_dispute(payload.match_id, payload.agent_id, payload.reason, payload.evidence)
    return service.get_dispute(dispute.id)


@router.get("/disputes/{dispute_id}", response_model=DisputeOut)
def get_dispute(dispute_id: int, service: DisputeService = Depends(get_dispute_service)):
    return service.get_dispute(dispute_id)


@router.post("/disputes/{dispute_id}/voting", response_model=DisputeOut)
def open_voting(dispute_id: int, service: DisputeService = Depends(get_dispute_service)):
    return service.open_voting(dispute_id)


@router.post("/disputes/{dispute_id}/resolve", response_model=DisputeOut)
def resolve_dispute(dispute_id: int, payload: ResolveIn, service: DisputeService = Depends(get_dispute_service)):
    return service.resolve_dispute(dispute_id, payload.resolution)


@router.post("/disputes/{dispute_id}/escalate", response_model=DisputeOut)
def escalate_dispute(dispute_id: int, service: DisputeService = Depends(get_dispute_service)):
    return service.escalate(dispute_id)


@router.get("/disputes/{dispute_id}/tally", response_model=TallyOut)
def tally_votes(dispute_id: int, service: DisputeService = Depends(get_dispute_service)):
    return service.tally(dispute_id)


@router.get("/disputes/{dispute_id}/votes", response_model=list[VoteOut])
def list_votes(dispute_id: int, service: DisputeService = Depends(get_dispute_service)):
    service.get_dispute(dispute_id)
    return service.list_votes(dispute_id)


@router.post("/disputes/{dispute_id}/votes", response_model=VoteOut)
def cast_vote(dispute_id: int, payload: VoteCreate, service: DisputeService = Depends(get_dispute_service)):
    """Cast a reputation-weighted vote; requires reputation of at least 60."""
    return service.cast_vote(dispute_id, payload.agent_id, payload.choice, payload.justification)


@router.put("/votes/{vote_id}", response_model=VoteOut)
def update_vote(vote_id: int, payload: VoteUpdate, service: DisputeService = Depends(get_dispute_service)):
    return service.update_vote(vote_id, payload.choice, payload.justification)


@router.delete("/votes/{vote_id}")
def retract_vote(vote_id: int, service: DisputeService = Depends(get_dispute_service)):
    return service.retract_vote(vote_id)
