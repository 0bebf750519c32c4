"""Match record lifecycle: proposal, negotiation, acceptance, finalization, expiry."""
import logging
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from intentmatch.config import EngineConfig, get_engine_config
from intentmatch.errors import InvalidStateError, NotFoundError, UnauthorizedError, ValidationError
from intentmatch.models import Agent, Intent, IntentKind, IntentStatus, Match, MatchStatus, utcnow
from intentmatch.services.candidates import complementary_kind
from intentmatch.services.scoring import score_pair
from intentmatch.services.vector_index import cosine_similarity

logger = logging.getLogger(__name__)

MANUAL_ALGORITHM = "manual"

NEGOTIABLE_STATES = (MatchStatus.PROPOSED, MatchStatus.NEGOTIATING, MatchStatus.ACCEPTED)
ACCEPTABLE_STATES = (MatchStatus.PROPOSED, MatchStatus.NEGOTIATING)
REJECTABLE_STATES = (MatchStatus.PROPOSED, MatchStatus.NEGOTIATING, MatchStatus.ACCEPTED, MatchStatus.EXPIRED)
FINALIZABLE_STATES = (MatchStatus.ACCEPTED, MatchStatus.NEGOTIATING)


def pair_key(agent_a: str, agent_b: str, algorithm: str) -> str:
    """Key identifying an unordered agent pair under one algorithm tag."""
    first, second = sorted((agent_a, agent_b))
    return f"{first}|{second}|{algorithm}"


class MatchService:
    """Creates matches idempotently and drives them through their state machine."""

    def __init__(self, db: Session, config: EngineConfig | None = None):
        self.db = db
        self.config = config or get_engine_config()

    # ---- queries ----

    def get_match(self, match_id: int) -> Match:
        match = self.db.get(Match, match_id)
        if not match:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def find_active(self, need_agent_id: str, offer_agent_id: str, algorithm: str) -> Match | None:
        key = pair_key(need_agent_id, offer_agent_id, algorithm)
        return self.db.query(Match).filter(Match.active_pair_key == key).first()

    def list_matches(
        self,
        agent_id: str | None = None,
        status: str | None = None,
        intent_id: int | None = None,
        limit: int = 100,
    ) -> list[Match]:
        query = self.db.query(Match)
        if agent_id:
            query = query.filter(or_(Match.need_agent_id == agent_id, Match.offer_agent_id == agent_id))
        if status:
            try:
                query = query.filter(Match.status == MatchStatus(status))
            except ValueError as e:
                raise ValidationError(str(e))
        if intent_id is not None:
            query = query.filter(or_(Match.need_intent_id == intent_id, Match.offer_intent_id == intent_id))
        return query.order_by(Match.created_at.desc(), Match.id.desc()).limit(limit).all()

    # ---- creation ----

    def create_match(
        self,
        need_intent: Intent,
        offer_intent: Intent,
        score: int,
        algorithm: str | None = None,
        proposed_terms: dict | None = None,
        now: datetime | None = None,
    ) -> tuple[Match, bool]:
        """
        Insert a proposed match unless the agent pair already has an active one.

        Returns (match, created). When another active match exists for the same
        unordered agent pair and algorithm tag, that match is returned with
        created=False. The unique active-pair key closes the race between two
        concurrent passes: the loser's insert fails and it returns the winner.
        """
        algorithm = algorithm or self.config.algorithm
        if not 0 <= score <= 100:
            raise ValidationError("Match score must be between 0 and 100")

        existing = self.find_active(need_intent.owner_agent_id, offer_intent.owner_agent_id, algorithm)
        if existing:
            logger.debug(f"Active match {existing.id} already exists for this pair")
            return existing, False

        now = now or utcnow()
        match = Match(
            need_intent_id=need_intent.id,
            offer_intent_id=offer_intent.id,
            score=score,
            algorithm=algorithm,
            status=MatchStatus.PROPOSED,
            need_agent_id=need_intent.owner_agent_id,
            offer_agent_id=offer_intent.owner_agent_id,
            active_pair_key=pair_key(need_intent.owner_agent_id, offer_intent.owner_agent_id, algorithm),
            proposed_terms=proposed_terms,
            created_at=now,
            expires_at=now + timedelta(days=self.config.match_ttl_days),
        )
        self.db.add(match)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.find_active(need_intent.owner_agent_id, offer_intent.owner_agent_id, algorithm)
            if existing is None:
                raise
            logger.info(f"Concurrent insert lost to match {existing.id}")
            return existing, False

        self.db.refresh(match)
        logger.info(
            f"Match {match.id} proposed: need {need_intent.id} / offer {offer_intent.id} "
            f"score={score} algorithm={algorithm}"
        )
        return match, True

    def propose_match(
        self,
        need_intent_id: int,
        offer_intent_id: int,
        agent_id: str,
        proposed_terms: dict | None = None,
        now: datetime | None = None,
    ) -> tuple[Match, bool]:
        """Manual proposal by the owner of one of the two intents."""
        need = self.db.get(Intent, need_intent_id)
        offer = self.db.get(Intent, offer_intent_id)
        if not need or not offer:
            raise NotFoundError("Intent not found")
        if agent_id not in (need.owner_agent_id, offer.owner_agent_id):
            raise UnauthorizedError("Agent not authorized to propose a match for these intents")
        if need.owner_agent_id == offer.owner_agent_id:
            raise ValidationError("Cannot match an agent's intents with each other")
        if need.kind == IntentKind.OFFER or complementary_kind(need.kind) != offer.kind:
            raise ValidationError(f"Intent kinds {need.kind.value} and {offer.kind.value} are not complementary")
        if need.status != IntentStatus.OPEN or offer.status != IntentStatus.OPEN:
            raise InvalidStateError("Both intents must be open")

        similarity = 0.0
        if need.embedding and offer.embedding:
            similarity = max(0.0, cosine_similarity(need.embedding, offer.embedding))
        counterparty = offer.owner_agent_id if agent_id == need.owner_agent_id else need.owner_agent_id
        agent = self.db.query(Agent).filter(Agent.agent_id == counterparty).first()
        breakdown = score_pair(
            need,
            offer,
            similarity,
            agent.reputation_score if agent else None,
            self.config,
        )
        return self.create_match(
            need,
            offer,
            breakdown.composite,
            algorithm=MANUAL_ALGORITHM,
            proposed_terms=proposed_terms,
            now=now,
        )

    # ---- transitions ----

    def negotiate(self, match_id: int, agent_id: str, proposed_terms: dict) -> Match:
        match = self._load_for(match_id, agent_id)
        self._require(match, NEGOTIABLE_STATES, "negotiate")
        match.status = MatchStatus.NEGOTIATING
        match.proposed_terms = dict(proposed_terms)
        self.db.commit()
        logger.info(f"Match {match_id} negotiating (by {agent_id})")
        return match

    def accept(self, match_id: int, agent_id: str, now: datetime | None = None) -> Match:
        match = self._load_for(match_id, agent_id)
        self._require(match, ACCEPTABLE_STATES, "accept")
        match.status = MatchStatus.ACCEPTED
        match.accepted_at = now or utcnow()
        self._set_intent_status(match, IntentStatus.MATCHED)
        self.db.commit()
        logger.info(f"Match {match_id} accepted (by {agent_id})")
        return match

    def reject(self, match_id: int, agent_id: str, reason: str | None = None) -> dict:
        """Hard-delete the match so the pair can be proposed again later."""
        match = self._load_for(match_id, agent_id)
        self._require(match, REJECTABLE_STATES, "reject")
        self.db.delete(match)
        self.db.commit()
        logger.info(f"Match {match_id} rejected by {agent_id}" + (f": {reason}" if reason else ""))
        return {"match_id": match_id, "status": "rejected", "reason": reason}

    def finalize(self, match_id: int, agent_id: str, now: datetime | None = None) -> Match:
        match = self._load_for(match_id, agent_id)
        if match.status not in FINALIZABLE_STATES:
            raise InvalidStateError("Match must be accepted before finalizing")
        match.status = MatchStatus.FINALIZED
        match.finalized_at = now or utcnow()
        match.active_pair_key = None
        self._set_intent_status(match, IntentStatus.CLOSED)
        self.db.commit()
        logger.info(f"Match {match_id} finalized (by {agent_id})")
        return match

    def mark_disputed(self, match: Match) -> None:
        if match.status in (MatchStatus.DISPUTED, MatchStatus.EXPIRED):
            raise InvalidStateError(f"Match {match.id} cannot be disputed while {match.status.value}")
        match.status = MatchStatus.DISPUTED

    def release_disputed(self, match_id: int) -> None:
        """Free the agent pair of a disputed match once its dispute is settled."""
        match = self.db.get(Match, match_id)
        if match is not None and match.status == MatchStatus.DISPUTED:
            match.active_pair_key = None

    def expire_stale_matches(self, now: datetime | None = None) -> dict:
        """Expire proposed matches older than the TTL; each match is handled independently."""
        now = now or utcnow()
        cutoff = now - timedelta(days=self.config.match_ttl_days)
        stale_ids = [
            row[0]
            for row in self.db.query(Match.id)
            .filter(Match.status == MatchStatus.PROPOSED, Match.created_at < cutoff)
            .all()
        ]
        expired = 0
        failed = 0
        for match_id in stale_ids:
            try:
                match = self.db.get(Match, match_id)
                if match is None or match.status != MatchStatus.PROPOSED:
                    continue
                match.status = MatchStatus.EXPIRED
                match.active_pair_key = None
                self.db.commit()
                expired += 1
            except Exception:
                self.db.rollback()
                failed += 1
                logger.exception(f"Failed to expire match {match_id}")

        if expired or failed:
            logger.info(f"Expiry sweep: {expired} expired, {failed} failed")
        return {"expired": expired, "failed": failed}

    # ---- helpers ----

    def _load_for(self, match_id: int, agent_id: str) -> Match:
        match = self.get_match(match_id)
        if not match.involves(agent_id):
            raise UnauthorizedError("Agent not authorized for this match")
        return match

    @staticmethod
    def _require(match: Match, allowed: tuple[MatchStatus, ...], action: str) -> None:
        if match.status not in allowed:
            raise InvalidStateError(f"Cannot {action} a match in status {match.status.value}")

    def _set_intent_status(self, match: Match, status: IntentStatus) -> None:
        for intent_id in (match.need_intent_id, match.offer_intent_id):
            intent = self.db.get(Intent, intent_id)
            if intent is not None:
                intent.status = status
