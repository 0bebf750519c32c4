"""Nearest-neighbour search over intent embeddings."""
import logging

import numpy as np
from sqlalchemy.orm import Session

from intentmatch.models import Intent, IntentKind, IntentStatus

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    a_arr = np.asarray(a, dtype=np.float64)
    b_arr = np.asarray(b, dtype=np.float64)
    if a_arr.shape != b_arr.shape:
        return 0.0

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


class SqlVectorIndex:
    """
    Exact cosine search over embeddings stored on the intents table.

    Filters (kind, status, owner exclusion) are applied in SQL before
    scoring. Similarities are clamped to [0, 1] and ties are broken by
    intent id so results are deterministic for a given table state.
    """

    def __init__(self, db: Session):
        self.db = db

    def search(
        self,
        vector: list[float],
        limit: int,
        kind: IntentKind,
        status: IntentStatus = IntentStatus.OPEN,
        exclude_owner: str | None = None,
        exclude_ids: set[int] | None = None,
    ) -> list[tuple[Intent, float]]:
        query = self.db.query(Intent).filter(Intent.kind == kind, Intent.status == status)
        if exclude_owner is not None:
            query = query.filter(Intent.owner_agent_id != exclude_owner)

        exclude_ids = exclude_ids or set()
        source = np.asarray(vector, dtype=np.float64)
        source_norm = np.linalg.norm(source)
        if source.ndim != 1 or source_norm == 0:
            return []

        rows: list[Intent] = []
        vectors: list[list[float]] = []
        for intent in query.order_by(Intent.id.asc()).all():
            if intent.id in exclude_ids or not intent.embedding:
                continue
            if len(intent.embedding) != source.shape[0]:
                logger.debug(f"Skipping intent {intent.id}: embedding dimension {len(intent.embedding)}")
                continue
            rows.append(intent)
            vectors.append(intent.embedding)

        if not rows:
            return []

        matrix = np.asarray(vectors, dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        norms[norms == 0] = np.inf
        scores = np.clip(matrix @ source / (norms * source_norm), 0.0, 1.0)

        ranked = sorted(zip(rows, scores.tolist()), key=lambda pair: (-pair[1], pair[0].id))
        return ranked[:limit]
