import pytest

from intentmatch.config import EngineConfig
from intentmatch.errors import InvalidStateError, NotFoundError, ValidationError
from intentmatch.models import ConfigEntry
from intentmatch.services.config_store import (
    MATCH_THRESHOLD,
    MATCHING_WEIGHTS,
    REPUTATION_DECAY,
    ConfigService,
    apply_overrides,
)


def test_seed_defaults_is_repeatable(db):
    service = ConfigService(db)

    assert service.seed_defaults() == {"created": 3, "total": 3}
    assert service.seed_defaults() == {"created": 0, "total": 3}
    assert service.get(MATCH_THRESHOLD).value == 60


def test_create_update_deactivate(db):
    service = ConfigService(db)
    entry = service.create(MATCH_THRESHOLD, 70)
    assert entry.version == 1

    with pytest.raises(InvalidStateError):
        service.create(MATCH_THRESHOLD, 65)

    updated = service.update(MATCH_THRESHOLD, 75)
    assert updated.version == 2
    assert updated.value == 75

    service.deactivate(MATCH_THRESHOLD)
    with pytest.raises(NotFoundError):
        service.get(MATCH_THRESHOLD)
    assert db.query(ConfigEntry).count() == 1


@pytest.mark.parametrize(
    "key,value",
    [
        (MATCH_THRESHOLD, 120),
        (MATCH_THRESHOLD, "high"),
        (MATCHING_WEIGHTS, {"vector": 0.9, "reputation": 0.9, "price": 0, "skills": 0}),
        (MATCHING_WEIGHTS, [0.4, 0.2, 0.2, 0.2]),
        (REPUTATION_DECAY, {"factor": 1.5}),
        (REPUTATION_DECAY, 0.95),
    ],
)
def test_invalid_values_rejected(db, key, value):
    with pytest.raises(ValidationError):
        ConfigService(db).create(key, value)
    assert db.query(ConfigEntry).count() == 0


def test_unknown_keys_are_stored_verbatim(db):
    entry = ConfigService(db).create("validation_rules", {"title_max": 200})
    assert entry.value == {"title_max": 200}


def test_current_engine_config_applies_overrides(db):
    service = ConfigService(db)
    service.create(MATCHING_WEIGHTS, {"vector": 0.5, "reputation": 0.1, "price": 0.2, "skills": 0.2})
    service.create(MATCH_THRESHOLD, 70)
    service.create(REPUTATION_DECAY, {"factor": 0.9})

    config = service.current_engine_config(EngineConfig())

    assert config.weights.semantic == 0.5
    assert config.weights.reputation == 0.1
    assert config.match_threshold == 70.0
    assert config.decay_factor == 0.9
    assert config.match_ttl_days == 7


def test_current_engine_config_ignores_invalid_persisted_values(db):
    db.add(ConfigEntry(key=MATCH_THRESHOLD, value=500, version=1, is_active=True))
    db.commit()

    base = EngineConfig()
    assert ConfigService(db).current_engine_config(base) is base


def test_invalid_persisted_value_keeps_other_overrides(db):
    service = ConfigService(db)
    service.create(MATCHING_WEIGHTS, {"vector": 0.5, "reputation": 0.1, "price": 0.2, "skills": 0.2})
    service.create(REPUTATION_DECAY, {"factor": 0.9})
    db.add(ConfigEntry(key=MATCH_THRESHOLD, value="high", version=1, is_active=True))
    db.commit()

    config = service.current_engine_config(EngineConfig())

    assert config.weights.semantic == 0.5
    assert config.decay_factor == 0.9
    assert config.match_threshold == 60.0


def test_apply_overrides_without_known_keys():
    base = EngineConfig()
    assert apply_overrides(base, {"validation_rules": {}}) is base
