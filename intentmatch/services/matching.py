"""Matching pass: candidate generation, scoring and match persistence."""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from intentmatch.config import EngineConfig, get_engine_config
from intentmatch.models import Agent, Intent, IntentStatus, Match
from intentmatch.services.candidates import CandidateGenerator
from intentmatch.services.intents import IntentService
from intentmatch.services.matches import MatchService
from intentmatch.services.scoring import MatchBreakdown, order_pair, qualifies, score_pair

logger = logging.getLogger(__name__)


@dataclass
class ScoredCandidate:
    intent: Intent
    similarity: float
    breakdown: MatchBreakdown
    qualifies: bool


@dataclass
class MatchOutcome:
    match_id: int
    candidate_intent_id: int
    score: int
    created: bool
    breakdown: MatchBreakdown = field(default_factory=MatchBreakdown)


class MatchingService:
    """
    Runs the hybrid matching pass for one source intent.

    Candidates come from the vector index, each is scored independently and
    every candidate above the threshold is proposed (not just the best one).
    """

    def __init__(self, db: Session, config: EngineConfig | None = None):
        self.db = db
        self.config = config or get_engine_config()
        self.intents = IntentService(db)
        self.matches = MatchService(db, self.config)
        self.generator = CandidateGenerator(db, self.config)

    def run_matching_pass(self, intent_id: int, now: datetime | None = None) -> list[MatchOutcome]:
        source = self.intents.get_intent(intent_id)
        if not source.embedding:
            logger.info(f"Intent {intent_id} has no embedding yet; matching pass skipped")
            return []
        if source.status != IntentStatus.OPEN:
            logger.info(f"Intent {intent_id} is {source.status.value}; matching pass skipped")
            return []

        outcomes = []
        for scored in self.score_candidates(source):
            if not scored.qualifies:
                continue
            need, offer = order_pair(source, scored.intent)
            match, created = self.matches.create_match(
                need,
                offer,
                scored.breakdown.composite,
                algorithm=self.config.algorithm,
                now=now,
            )
            outcomes.append(
                MatchOutcome(
                    match_id=match.id,
                    candidate_intent_id=scored.intent.id,
                    score=match.score,
                    created=created,
                    breakdown=scored.breakdown,
                )
            )

        created_count = sum(1 for o in outcomes if o.created)
        logger.info(f"Matching pass for intent {intent_id}: {created_count} created, {len(outcomes)} qualifying")
        return outcomes

    def score_candidates(self, source: Intent) -> list[ScoredCandidate]:
        """Score every candidate for `source` in similarity order. Read-only."""
        candidates = self.generator.generate(source)
        if not candidates:
            return []

        owners = {c.intent.owner_agent_id for c in candidates} | {source.owner_agent_id}
        reputations = {
            agent.agent_id: agent.reputation_score
            for agent in self.db.query(Agent).filter(Agent.agent_id.in_(owners)).all()
        }

        results = []
        for candidate in candidates:
            if not self._passes_reputation_gate(source, candidate.intent, reputations):
                logger.debug(f"Candidate {candidate.intent.id} filtered by minimum reputation")
                continue
            breakdown = score_pair(
                source,
                candidate.intent,
                candidate.similarity,
                reputations.get(candidate.intent.owner_agent_id),
                self.config,
            )
            results.append(
                ScoredCandidate(
                    intent=candidate.intent,
                    similarity=candidate.similarity,
                    breakdown=breakdown,
                    qualifies=qualifies(breakdown, self.config),
                )
            )
        return results

    def preview_matches(self, intent_id: int) -> dict:
        """Existing matches of an intent plus scored candidates, without persisting anything."""
        source = self.intents.get_intent(intent_id)
        existing: list[Match] = self.matches.list_matches(intent_id=intent_id)
        return {
            "intent": source,
            "existing_matches": existing,
            "candidates": self.score_candidates(source) if source.embedding else [],
        }

    def _passes_reputation_gate(self, source: Intent, candidate: Intent, reputations: dict[str, float]) -> bool:
        neutral = self.config.neutral_component
        candidate_rep = reputations.get(candidate.owner_agent_id, neutral)
        source_rep = reputations.get(source.owner_agent_id, neutral)
        if source.min_reputation is not None and candidate_rep < source.min_reputation:
            return False
        if candidate.min_reputation is not None and source_rep < candidate.min_reputation:
            return False
        return True
