"""Three-tier dispute controller: automated resolver, community vote, council."""
import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intentmatch.config import EngineConfig, get_engine_config
from intentmatch.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from intentmatch.models import Agent, Dispute, DisputeStatus, Vote, VoteChoice, utcnow
from intentmatch.services.matches import MatchService
from intentmatch.services.resolver_client import DisputeResolver

logger = logging.getLogger(__name__)

TIER_AUTOMATED = 1
TIER_COMMUNITY = 2
TIER_COUNCIL = 3

EscalationPolicy = Callable[[Dispute, list[Vote]], bool]
ResolutionHook = Callable[[Dispute], None]


def never_escalate(dispute: Dispute, votes: list[Vote]) -> bool:
    """Default policy: no dispute is escalated to the council."""
    return False


def _choice(value: str) -> VoteChoice:
    try:
        return VoteChoice(value)
    except ValueError:
        raise ValidationError(f"Invalid choice '{value}'. Must be one of: {[c.value for c in VoteChoice]}")


class DisputeService:
    """
    Drives disputes through open (tier 1) -> voting (tier 2) -> resolved.

    Mapping a resolution onto the match or any settlement is left to the
    `on_resolved` hook; tier 2 -> 3 escalation is left to `escalation_policy`.
    """

    def __init__(
        self,
        db: Session,
        config: EngineConfig | None = None,
        resolver: DisputeResolver | None = None,
        escalation_policy: EscalationPolicy = never_escalate,
        on_resolved: ResolutionHook | None = None,
    ):
        self.db = db
        self.config = config or get_engine_config()
        self.resolver = resolver
        self.escalation_policy = escalation_policy
        self.on_resolved = on_resolved
        self.matches = MatchService(db, self.config)

    # ---- queries ----

    def get_dispute(self, dispute_id: int) -> Dispute:
        dispute = self.db.get(Dispute, dispute_id)
        if not dispute:
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def get_vote(self, vote_id: int) -> Vote:
        vote = self.db.get(Vote, vote_id)
        if not vote:
            raise NotFoundError(f"Vote {vote_id} not found")
        return vote

    def list_votes(self, dispute_id: int) -> list[Vote]:
        return self.db.query(Vote).filter(Vote.dispute_id == dispute_id).order_by(Vote.id).all()

    def tally(self, dispute_id: int) -> dict:
        """Reputation-weighted vote totals per choice."""
        self.get_dispute(dispute_id)
        totals = {choice.value: 0.0 for choice in VoteChoice}
        votes = self.list_votes(dispute_id)
        for vote in votes:
            totals[vote.choice.value] += vote.weight
        leading = max(totals, key=totals.get) if votes else None
        return {"dispute_id": dispute_id, "totals": totals, "votes": len(votes), "leading": leading}

    # ---- lifecycle ----

    def create_dispute(self, match_id: int, agent_id: str, reason: str, evidence: str | list[str]) -> Dispute:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required")
        evidence_items = [evidence] if isinstance(evidence, str) else list(evidence or [])

        match = self.matches.get_match(match_id)
        if not match.involves(agent_id):
            raise UnauthorizedError("Agent not authorized for this match")
        self.matches.mark_disputed(match)

        dispute = Dispute(
            match_id=match_id,
            initiator_agent_id=agent_id,
            reason=reason,
            evidence=evidence_items,
            tier=TIER_AUTOMATED,
            status=DisputeStatus.OPEN,
        )
        self.db.add(dispute)
        self.db.commit()
        self.db.refresh(dispute)
        logger.info(f"Dispute {dispute.id} opened on match {match_id} by {agent_id}")

        if self.resolver is not None:
            self.run_automated_review(dispute.id)
        return dispute

    def run_automated_review(self, dispute_id: int) -> Dispute:
        """Ask the resolver; auto-resolve above the tier threshold, otherwise open voting."""
        dispute = self.get_dispute(dispute_id)
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidStateError(f"Dispute {dispute_id} is {dispute.status.value}, not open")
        if self.resolver is None:
            return dispute

        verdict = self.resolver.analyze(dispute.reason, dispute.evidence or [])
        if verdict is None:
            logger.info(f"No verdict for dispute {dispute_id}; it stays open")
            return dispute

        dispute.ai_analysis = verdict.analysis
        dispute.ai_confidence = verdict.confidence
        threshold = self.config.auto_resolve_threshold_for(dispute.tier)
        if verdict.confidence >= threshold:
            self.db.commit()
            logger.info(f"Dispute {dispute_id} auto-resolved ({verdict.confidence:.0f} >= {threshold:.0f})")
            return self.resolve_dispute(dispute_id, verdict.resolution)

        self.db.commit()
        return self.open_voting(dispute_id)

    def open_voting(self, dispute_id: int) -> Dispute:
        dispute = self.get_dispute(dispute_id)
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidStateError(f"Dispute {dispute_id} is {dispute.status.value}, not open")
        dispute.status = DisputeStatus.VOTING
        dispute.tier = max(dispute.tier, TIER_COMMUNITY)
        self.db.commit()
        logger.info(f"Dispute {dispute_id} open for community voting")
        return dispute

    def resolve_dispute(self, dispute_id: int, resolution: str, now: datetime | None = None) -> Dispute:
        """
        Terminal. The match keeps its DISPUTED status but stops blocking its
        agent pair; any further settlement is left to `on_resolved`.
        """
        if not resolution or not resolution.strip():
            raise ValidationError("A resolution is required")
        dispute = self.get_dispute(dispute_id)
        if dispute.status == DisputeStatus.RESOLVED:
            raise InvalidStateError(f"Dispute {dispute_id} is already resolved")

        dispute.status = DisputeStatus.RESOLVED
        dispute.resolution = resolution.strip()
        dispute.resolved_at = now or utcnow()
        self.matches.release_disputed(dispute.match_id)
        self.db.commit()
        logger.info(f"Dispute {dispute_id} resolved: {dispute.resolution} (tier {dispute.tier})")

        if self.on_resolved is not None:
            self.on_resolved(dispute)
        return dispute

    def escalate(self, dispute_id: int) -> Dispute:
        """Move an unresolved tier-2 dispute to the council if the policy allows it."""
        dispute = self.get_dispute(dispute_id)
        if dispute.status != DisputeStatus.VOTING or dispute.tier != TIER_COMMUNITY:
            raise InvalidStateError(f"Dispute {dispute_id} is not in community voting")
        if not self.escalation_policy(dispute, self.list_votes(dispute_id)):
            raise InvalidStateError(f"Escalation policy declined dispute {dispute_id}")

        dispute.tier = TIER_COUNCIL
        dispute.status = DisputeStatus.OPEN
        self.db.commit()
        logger.info(f"Dispute {dispute_id} escalated to council")
        return dispute

    # ---- votes ----

    def cast_vote(
        self,
        dispute_id: int,
        agent_id: str,
        choice: str,
        justification: str | None = None,
    ) -> Vote:
        vote_choice = _choice(choice)
        dispute = self.get_dispute(dispute_id)
        if dispute.status != DisputeStatus.VOTING:
            raise InvalidStateError("Dispute not open for voting")

        agent = self.db.query(Agent).filter(Agent.agent_id == agent_id).first()
        if not agent:
            raise NotFoundError(f"Agent {agent_id} not found")
        if agent.reputation_score < self.config.vote_min_reputation:
            raise UnauthorizedError("Insufficient reputation to vote")

        vote = Vote(
            dispute_id=dispute_id,
            agent_id=agent_id,
            choice=vote_choice,
            weight=agent.reputation_score,
            justification=justification,
        )
        self.db.add(vote)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise InvalidStateError(f"Agent {agent_id} already voted on dispute {dispute_id}")
        self.db.refresh(vote)
        logger.info(f"Vote {vote.id} cast on dispute {dispute_id} by {agent_id} (weight {vote.weight:.1f})")
        return vote

    def update_vote(self, vote_id: int, choice: str, justification: str | None = None) -> Vote:
        vote_choice = _choice(choice)
        vote = self.get_vote(vote_id)
        self._require_voting(vote.dispute_id)
        vote.choice = vote_choice
        if justification:
            vote.justification = justification
        vote.updated_at = utcnow()
        self.db.commit()
        return vote

    def retract_vote(self, vote_id: int) -> dict:
        vote = self.get_vote(vote_id)
        self._require_voting(vote.dispute_id)
        self.db.delete(vote)
        self.db.commit()
        logger.info(f"Vote {vote_id} retracted")
        return {"vote_id": vote_id, "status": "retracted"}

    def _require_voting(self, dispute_id: int) -> None:
        dispute = self.db.get(Dispute, dispute_id)
        if not dispute or dispute.status != DisputeStatus.VOTING:
            raise InvalidStateError("Dispute is not in voting status")
