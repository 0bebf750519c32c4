"""Versioned configuration records and the current engine configuration."""
import dataclasses
import logging
from typing import Any

from sqlalchemy.orm import Session

from intentmatch.config import EngineConfig, ScoringWeights, get_engine_config
from intentmatch.errors import InvalidStateError, NotFoundError, ValidationError
from intentmatch.models import ConfigEntry

logger = logging.getLogger(__name__)

MATCHING_WEIGHTS = "matching_weights"
MATCH_THRESHOLD = "match_threshold"
REPUTATION_DECAY = "reputation_decay"

DEFAULT_ENTRIES: dict[str, Any] = {
    MATCHING_WEIGHTS: {"vector": 0.4, "reputation": 0.2, "price": 0.2, "skills": 0.2},
    MATCH_THRESHOLD: 60,
    REPUTATION_DECAY: {"factor": 0.95},
}


def _weights_from(value: Any) -> ScoringWeights:
    if not isinstance(value, dict):
        raise ValidationError(f"{MATCHING_WEIGHTS} must be an object")
    try:
        return ScoringWeights(
            semantic=float(value.get("vector", value.get("semantic", 0.0))),
            reputation=float(value.get("reputation", 0.0)),
            price=float(value.get("price", 0.0)),
            skills=float(value.get("skills", 0.0)),
        )
    except (TypeError, ValueError) as e:
        raise ValidationError(str(e))


def _threshold_from(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not 0 <= value <= 100:
        raise ValidationError(f"{MATCH_THRESHOLD} must be a number between 0 and 100")
    return float(value)


def _decay_factor_from(value: Any) -> float:
    factor = value.get("factor") if isinstance(value, dict) else None
    if isinstance(factor, bool) or not isinstance(factor, (int, float)) or not 0 < factor <= 1:
        raise ValidationError(f"{REPUTATION_DECAY}.factor must be in (0, 1]")
    return float(factor)


VALIDATORS = {
    MATCHING_WEIGHTS: _weights_from,
    MATCH_THRESHOLD: _threshold_from,
    REPUTATION_DECAY: _decay_factor_from,
}


def apply_overrides(base: EngineConfig, values: dict[str, Any]) -> EngineConfig:
    """Return a copy of `base` with the known config keys applied."""
    changes: dict[str, Any] = {}
    if MATCHING_WEIGHTS in values:
        changes["weights"] = _weights_from(values[MATCHING_WEIGHTS])
    if MATCH_THRESHOLD in values:
        changes["match_threshold"] = _threshold_from(values[MATCH_THRESHOLD])
    if REPUTATION_DECAY in values:
        changes["decay_factor"] = _decay_factor_from(values[REPUTATION_DECAY])
    return dataclasses.replace(base, **changes) if changes else base


class ConfigService:
    def __init__(self, db: Session):
        self.db = db

    def _active(self, key: str) -> ConfigEntry | None:
        return (
            self.db.query(ConfigEntry)
            .filter(ConfigEntry.key == key, ConfigEntry.is_active.is_(True))
            .order_by(ConfigEntry.id.desc())
            .first()
        )

    def get(self, key: str) -> ConfigEntry:
        entry = self._active(key)
        if not entry:
            raise NotFoundError(f"Config {key} not found")
        return entry

    def list_active(self) -> list[ConfigEntry]:
        return self.db.query(ConfigEntry).filter(ConfigEntry.is_active.is_(True)).order_by(ConfigEntry.key).all()

    def create(self, key: str, value: Any, version: int = 1) -> ConfigEntry:
        if self._active(key):
            raise InvalidStateError(f"Config {key} already exists; use update or deactivate first")
        self._validate(key, value)
        entry = ConfigEntry(key=key, value=value, version=version, is_active=True)
        self.db.add(entry)
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"Config {key} created (v{version})")
        return entry

    def update(self, key: str, value: Any) -> ConfigEntry:
        entry = self.get(key)
        self._validate(key, value)
        entry.value = value
        entry.version += 1
        self.db.commit()
        logger.info(f"Config {key} updated (v{entry.version})")
        return entry

    def deactivate(self, key: str) -> ConfigEntry:
        entry = self.get(key)
        entry.is_active = False
        self.db.commit()
        logger.info(f"Config {key} deactivated")
        return entry

    def seed_defaults(self) -> dict:
        created = 0
        for key, value in DEFAULT_ENTRIES.items():
            if not self._active(key):
                self.db.add(ConfigEntry(key=key, value=value, version=1, is_active=True))
                created += 1
        self.db.commit()
        return {"created": created, "total": len(DEFAULT_ENTRIES)}

    def current_engine_config(self, base: EngineConfig | None = None) -> EngineConfig:
        config = base or get_engine_config()
        for entry in self.list_active():
            try:
                config = apply_overrides(config, {entry.key: entry.value})
            except ValidationError as e:
                logger.error(f"Ignoring invalid persisted config {entry.key}: {e.message}")
        return config

    @staticmethod
    def _validate(key: str, value: Any) -> None:
        validator = VALIDATORS.get(key)
        if validator is not None:
            validator(value)
