"""Candidate generation for the matching pass."""
import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from intentmatch.config import EngineConfig, get_engine_config
from intentmatch.models import Intent, IntentKind, IntentStatus
from intentmatch.services.vector_index import SqlVectorIndex

logger = logging.getLogger(__name__)

COMPLEMENTARY_KIND = {
    IntentKind.NEED: IntentKind.OFFER,
    IntentKind.OFFER: IntentKind.NEED,
    IntentKind.QUERY: IntentKind.QUERY,
    IntentKind.COLLABORATION: IntentKind.COLLABORATION,
}


@dataclass
class Candidate:
    intent: Intent
    similarity: float


def complementary_kind(kind: IntentKind) -> IntentKind:
    return COMPLEMENTARY_KIND[kind]


class CandidateGenerator:
    """Retrieves open, complementary intents semantically close to a source intent."""

    def __init__(self, db: Session, config: EngineConfig | None = None, index: SqlVectorIndex | None = None):
        self.db = db
        self.config = config or get_engine_config()
        self.index = index or SqlVectorIndex(db)

    def generate(self, source: Intent) -> list[Candidate]:
        if not source.embedding:
            logger.debug(f"Intent {source.id} has no embedding yet; skipping candidate generation")
            return []

        results = self.index.search(
            vector=source.embedding,
            limit=self.config.candidate_limit,
            kind=complementary_kind(source.kind),
            status=IntentStatus.OPEN,
            exclude_owner=source.owner_agent_id,
            exclude_ids={source.id},
        )
        return [Candidate(intent=intent, similarity=score) for intent, score in results]
