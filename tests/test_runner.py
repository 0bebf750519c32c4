import time
from datetime import datetime, timedelta, timezone

from intentmatch.jobs import runner
from intentmatch.jobs.runner import SweepRunner, close_intents_job, decay_job, expire_matches_job
from intentmatch.models import Intent, IntentStatus, MatchStatus, utcnow
from intentmatch.services.intents import IntentService
from intentmatch.services.matches import MatchService


def test_expire_matches_job(db, config, make_intent):
    need = make_intent("need", "alice")
    offer = make_intent("offer", "bob")
    match, _ = MatchService(db, config).create_match(need, offer, 70, now=utcnow() - timedelta(days=8))

    assert expire_matches_job(db) == {"expired": 1, "failed": 0}
    db.refresh(match)
    assert match.status == MatchStatus.EXPIRED


def test_close_intents_job(db, make_intent):
    stale = make_intent("need", "alice", expires_at=utcnow() - timedelta(days=1))
    current = make_intent("need", "bob", expires_at=utcnow() + timedelta(days=1))
    forever = make_intent("need", "carol")

    assert close_intents_job(db) == {"closed": 1, "failed": 0}
    assert stale.status == IntentStatus.CLOSED
    assert current.status == IntentStatus.OPEN
    assert forever.status == IntentStatus.OPEN


def test_decay_job(db, make_agent):
    agent = make_agent("alice", quality=80.0)
    agent.last_decay_at = utcnow() - timedelta(days=65)
    db.commit()

    assert decay_job(db) == {"decayed": 1, "total": 1, "failed": 0}


def test_tick_runs_due_sweeps_and_records_failures(monkeypatch):
    calls = []

    def ok(db):
        calls.append("ok")
        return {"done": 1}

    def broken(db):
        raise RuntimeError("database is locked")

    monkeypatch.setattr(runner, "SWEEPS", {"expire-matches": ok, "close-intents": broken, "decay": ok})
    sweep_runner = SweepRunner()
    now = time.time()

    sweep_runner._tick(now)

    status = sweep_runner.get_status()
    assert calls == ["ok", "ok"]
    assert status["expire-matches"]["runs"] == 1
    assert status["expire-matches"]["last_result"] == {"done": 1}
    assert status["close-intents"]["runs"] == 0
    assert status["close-intents"]["last_error"] == "database is locked"

    # Nothing is due again within the interval
    sweep_runner._tick(now + 1)
    assert calls == ["ok", "ok"]


def test_close_intents_converts_offsets_to_utc(db, make_intent):
    # 12:00 at UTC+5 is 07:00 UTC
    intent = make_intent("need", "alice", expires_at=datetime(2030, 1, 1, 12, 0, tzinfo=timezone(timedelta(hours=5))))
    assert intent.expires_at == datetime(2030, 1, 1, 7, 0)

    service = IntentService(db)
    assert service.close_expired_intents(now=datetime(2030, 1, 1, 6, 30)) == {"closed": 0, "failed": 0}
    assert service.close_expired_intents(now=datetime(2030, 1, 1, 7, 30)) == {"closed": 1, "failed": 0}
    assert intent.status == IntentStatus.CLOSED


def test_close_intents_failure_is_isolated_per_intent(db, make_intent, monkeypatch):
    expired = utcnow() - timedelta(days=1)
    intents = [make_intent("need", owner, expires_at=expired) for owner in ("alice", "bob", "carol")]
    broken_id = intents[0].id
    original_get = db.get

    def flaky_get(entity, ident, **kwargs):
        if entity is Intent and ident == broken_id:
            raise RuntimeError("row locked")
        return original_get(entity, ident, **kwargs)

    monkeypatch.setattr(db, "get", flaky_get)

    assert close_intents_job(db) == {"closed": 2, "failed": 1}
    monkeypatch.undo()
    assert [i.status for i in intents] == [IntentStatus.OPEN, IntentStatus.CLOSED, IntentStatus.CLOSED]


def test_run_sweep_with_session_records_status(db, monkeypatch):
    monkeypatch.setattr(runner, "SWEEPS", {**runner.SWEEPS, "decay": lambda session: {"session": session is db}})
    sweep_runner = SweepRunner()

    assert sweep_runner.run_sweep("decay", db) == {"session": True}

    status = sweep_runner.get_status()["decay"]
    assert status["runs"] == 1
    assert status["last_result"] == {"session": True}
    assert status["last_run"] is not None
