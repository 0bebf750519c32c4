from datetime import datetime, timedelta

import pytest

from intentmatch.errors import InvalidStateError, NotFoundError, ValidationError
from intentmatch.models import ReputationEvent, ReputationEventType, TrustTier
from intentmatch.services.reputation import (
    ReputationService,
    decay_component,
    display_score,
    elapsed_months,
    trust_tier,
)

NOW = datetime(2026, 3, 1, 12, 0, 0)


def test_register_agent_starts_neutral(db, config):
    agent = ReputationService(db, config).register_agent("alice", "Alice", ["python"])
    assert agent.reputation_score == 50.0
    assert agent.components() == {"quality": 50.0, "reliability": 50.0, "communication": 50.0, "fairness": 50.0}
    assert agent.completed_tasks == 0

    with pytest.raises(InvalidStateError):
        ReputationService(db, config).register_agent("alice", "Again")


def test_five_star_rating_raises_quality_and_score(db, config, make_agent):
    make_agent("bob")
    service = ReputationService(db, config)

    result = service.record_rating("bob", 5, match_id=7)

    assert result["component"] == "quality"
    assert result["new_value"] == pytest.approx(75.0)
    assert result["reputation_score"] == pytest.approx(60.0)

    agent = service.get_agent("bob")
    assert agent.completed_tasks == 1
    event = db.query(ReputationEvent).filter(ReputationEvent.agent_id == "bob").one()
    assert event.type == ReputationEventType.RATING
    assert event.impact == pytest.approx(25.0)
    assert event.match_id == 7


def test_component_is_clamped(db, config, make_agent):
    make_agent("carol")
    service = ReputationService(db, config)
    for _ in range(5):
        service.record_rating("carol", 5, component="reliability")
    for _ in range(10):
        service.record_rating("carol", 1, component="fairness")

    agent = service.get_agent("carol")
    assert agent.reliability == 100.0
    assert agent.fairness == 0.0
    assert agent.completed_tasks == 15


@pytest.mark.parametrize("rating", [0, 5.5, float("nan"), "5"])
def test_invalid_rating_rejected_without_writes(db, config, make_agent, rating):
    make_agent("dave")
    service = ReputationService(db, config)
    with pytest.raises(ValidationError):
        service.record_rating("dave", rating)

    assert db.query(ReputationEvent).count() == 0
    assert service.get_agent("dave").completed_tasks == 0


def test_invalid_component_rejected(db, config, make_agent):
    make_agent("erin")
    with pytest.raises(ValidationError):
        ReputationService(db, config).record_rating("erin", 4, component="speed")


def test_rating_unknown_agent(db, config):
    with pytest.raises(NotFoundError):
        ReputationService(db, config).record_rating("ghost", 4)


def test_decay_within_first_month_is_noop(db, config, make_agent):
    agent = make_agent("frank", quality=100.0)
    agent.last_decay_at = NOW
    db.commit()

    result = ReputationService(db, config).apply_decay("frank", now=NOW + timedelta(days=29))

    assert result == {"agent_id": "frank", "decayed": False, "months": 0}
    assert db.query(ReputationEvent).count() == 0
    assert agent.quality == 100.0


def test_decay_one_month(db, config, make_agent):
    agent = make_agent("gina", quality=100.0, fairness=0.0)
    agent.last_decay_at = NOW
    db.commit()

    later = NOW + timedelta(days=31)
    result = ReputationService(db, config).apply_decay("gina", now=later)

    assert result["decayed"] is True
    assert result["months"] == 1
    assert agent.quality == pytest.approx(97.5)
    assert agent.fairness == pytest.approx(2.5)
    assert agent.last_decay_at == later

    event = db.query(ReputationEvent).one()
    assert event.type == ReputationEventType.DECAY
    assert event.impact == -1.0
    assert event.reason == "Monthly decay (1 months)"


def test_decay_compounds_over_months():
    assert decay_component(100.0, 3, 0.95, 50.0) == pytest.approx(50 * 0.95**3 + 50)
    assert decay_component(50.0, 12, 0.95, 50.0) == 50.0
    assert elapsed_months(NOW, NOW + timedelta(days=95), 30) == 3


def test_run_decay_for_all(db, config, make_agent):
    for agent_id in ("h1", "h2"):
        agent = make_agent(agent_id, quality=90.0)
        agent.last_decay_at = NOW
    fresh = make_agent("h3")
    fresh.last_decay_at = NOW + timedelta(days=40)
    db.commit()

    result = ReputationService(db, config).run_decay_for_all(now=NOW + timedelta(days=61))

    assert result == {"decayed": 2, "total": 3, "failed": 0}


@pytest.mark.parametrize(
    "score,tier",
    [(0, TrustTier.NEW), (29.9, TrustTier.NEW), (30, TrustTier.VERIFIED), (59.9, TrustTier.VERIFIED),
     (60, TrustTier.TRUSTED), (79.9, TrustTier.TRUSTED), (80, TrustTier.ELITE), (100, TrustTier.ELITE)],
)
def test_trust_tiers(score, tier):
    assert trust_tier(score) == tier


def test_get_reputation_summary(db, config, make_agent):
    make_agent("ivan")
    service = ReputationService(db, config)
    service.record_rating("ivan", 4, component="communication")

    summary = service.get_reputation("ivan")

    assert summary["tier"] == TrustTier.VERIFIED
    assert summary["score"] == pytest.approx(display_score(summary["reputation_score"]), abs=0.01)
    assert summary["components"]["communication"] == pytest.approx(3.25)
    assert len(summary["recent_events"]) == 1


def test_decay_failure_is_isolated_per_agent(db, config, make_agent, monkeypatch):
    for agent_id in ("k1", "k2", "k3"):
        agent = make_agent(agent_id, quality=90.0)
        agent.last_decay_at = NOW
    db.commit()

    original_decay = ReputationService._decay

    def flaky_decay(self, agent, now):
        if agent.agent_id == "k2":
            raise RuntimeError("disk full")
        return original_decay(self, agent, now)

    monkeypatch.setattr(ReputationService, "_decay", flaky_decay)
    service = ReputationService(db, config)

    result = service.run_decay_for_all(now=NOW + timedelta(days=31))

    assert result == {"decayed": 2, "total": 3, "failed": 1}
    assert service.get_agent("k1").quality == pytest.approx(88.0)
    assert service.get_agent("k2").quality == 90.0
    assert service.get_agent("k3").quality == pytest.approx(88.0)
    assert db.query(ReputationEvent).count() == 2
