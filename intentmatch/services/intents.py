"""Intent records consumed by the matching engine."""
import logging
import math
from datetime import datetime

from sqlalchemy.orm import Session

from intentmatch.errors import NotFoundError, ValidationError
from intentmatch.models import Intent, IntentKind, IntentStatus, as_naive_utc, utcnow

logger = logging.getLogger(__name__)

TITLE_MAX = 200
DESCRIPTION_MAX = 5000
MIN_SKILLS = 1


class IntentService:
    def __init__(self, db: Session):
        self.db = db

    def create_intent(
        self,
        kind: str,
        owner_agent_id: str,
        title: str,
        description: str,
        skills: list[str],
        pricing_model: str | None = None,
        amount: float | None = None,
        currency: str | None = None,
        min_reputation: float | None = None,
        expires_at: datetime | None = None,
        metadata: dict | None = None,
        embedding: list[float] | None = None,
    ) -> Intent:
        try:
            intent_kind = IntentKind(kind)
        except ValueError:
            raise ValidationError(f"Invalid intent kind '{kind}'. Must be one of: {[k.value for k in IntentKind]}")
        if not owner_agent_id:
            raise ValidationError("owner_agent_id is required")
        if not title or len(title) > TITLE_MAX:
            raise ValidationError(f"Title must be 1-{TITLE_MAX} characters")
        if len(description or "") > DESCRIPTION_MAX:
            raise ValidationError(f"Description must be at most {DESCRIPTION_MAX} characters")
        cleaned_skills = [s.strip() for s in skills or [] if s and s.strip()]
        if len(cleaned_skills) < MIN_SKILLS:
            raise ValidationError(f"At least {MIN_SKILLS} skill is required")
        if amount is not None and amount < 0:
            raise ValidationError("Amount must not be negative")
        if min_reputation is not None and not 0 <= min_reputation <= 100:
            raise ValidationError("min_reputation must be between 0 and 100")
        if embedding is not None:
            _validate_embedding(embedding)

        intent = Intent(
            kind=intent_kind,
            owner_agent_id=owner_agent_id,
            title=title,
            description=description or "",
            skills=cleaned_skills,
            pricing_model=pricing_model,
            amount=amount,
            currency=currency,
            min_reputation=min_reputation,
            status=IntentStatus.OPEN,
            embedding=list(embedding) if embedding is not None else None,
            metadata_=metadata,
            expires_at=as_naive_utc(expires_at),
        )
        self.db.add(intent)
        self.db.commit()
        self.db.refresh(intent)
        logger.info(f"Intent {intent.id} created ({intent_kind.value}) by {owner_agent_id}")
        return intent

    def get_intent(self, intent_id: int) -> Intent:
        intent = self.db.get(Intent, intent_id)
        if not intent:
            raise NotFoundError(f"Intent {intent_id} not found")
        return intent

    def list_intents(
        self,
        kind: str | None = None,
        status: str | None = None,
        owner_agent_id: str | None = None,
        limit: int = 100,
    ) -> list[Intent]:
        query = self.db.query(Intent)
        try:
            if kind:
                query = query.filter(Intent.kind == IntentKind(kind))
            if status:
                query = query.filter(Intent.status == IntentStatus(status))
        except ValueError as e:
            raise ValidationError(str(e))
        if owner_agent_id:
            query = query.filter(Intent.owner_agent_id == owner_agent_id)
        return query.order_by(Intent.created_at.desc(), Intent.id.desc()).limit(limit).all()

    def attach_embedding(self, intent_id: int, embedding: list[float]) -> Intent:
        _validate_embedding(embedding)
        intent = self.get_intent(intent_id)
        intent.embedding = [float(x) for x in embedding]
        self.db.commit()
        self.db.refresh(intent)
        logger.info(f"Embedding attached to intent {intent_id} ({len(embedding)} dims)")
        return intent

    def close_expired_intents(self, now: datetime | None = None) -> dict:
        """Close open intents whose expiry has passed; each intent is handled independently."""
        now = as_naive_utc(now) or utcnow()
        candidates = [
            row[0]
            for row in self.db.query(Intent.id)
            .filter(Intent.status == IntentStatus.OPEN, Intent.expires_at.is_not(None), Intent.expires_at < now)
            .all()
        ]
        closed = 0
        failed = 0
        for intent_id in candidates:
            try:
                intent = self.db.get(Intent, intent_id)
                if intent is None or intent.status != IntentStatus.OPEN:
                    continue
                intent.status = IntentStatus.CLOSED
                self.db.commit()
                closed += 1
            except Exception:
                self.db.rollback()
                failed += 1
                logger.exception(f"Failed to close expired intent {intent_id}")

        if closed or failed:
            logger.info(f"Intent sweep: {closed} closed, {failed} failed")
        return {"closed": closed, "failed": failed}


def _validate_embedding(embedding: list[float]) -> None:
    if not embedding:
        raise ValidationError("Embedding must not be empty")
    if not all(isinstance(x, (int, float)) and math.isfinite(x) for x in embedding):
        raise ValidationError("Embedding must contain only finite numbers")
