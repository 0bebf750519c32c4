import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from intentmatch.config import settings
from intentmatch.db import SessionLocal
from intentmatch.services.config_store import ConfigService
from intentmatch.services.intents import IntentService
from intentmatch.services.matches import MatchService
from intentmatch.services.reputation import ReputationService

logger = logging.getLogger(__name__)


def expire_matches_job(db: Session) -> dict:
    config = ConfigService(db).current_engine_config()
    return MatchService(db, config).expire_stale_matches()


def close_intents_job(db: Session) -> dict:
    return IntentService(db).close_expired_intents()


def decay_job(db: Session) -> dict:
    config = ConfigService(db).current_engine_config()
    return ReputationService(db, config).run_decay_for_all()


SWEEPS: dict[str, Callable[[Session], dict]] = {
    "expire-matches": expire_matches_job,
    "close-intents": close_intents_job,
    "decay": decay_job,
}


@dataclass
class SweepState:
    name: str
    interval_seconds: float
    last_run: float = 0
    last_result: dict | None = None
    last_error: str | None = None
    runs: int = 0


class SweepRunner:
    """Background thread running the periodic sweeps on their intervals."""

    def __init__(self):
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._states = {
            "expire-matches": SweepState("expire-matches", settings.expiry_sweep_interval_seconds),
            "close-intents": SweepState("close-intents", settings.intent_sweep_interval_seconds),
            "decay": SweepState("decay", settings.decay_sweep_interval_seconds),
        }

    def start(self):
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="sweep-runner")
        self._thread.start()
        logger.info("SweepRunner started")

    def stop(self):
        self._stop_event.set()
        logger.info("SweepRunner stopping")

    def get_status(self) -> dict:
        with self._lock:
            return {
                name: {
                    "interval_seconds": state.interval_seconds,
                    "last_run": state.last_run or None,
                    "runs": state.runs,
                    "last_result": state.last_result,
                    "last_error": state.last_error,
                }
                for name, state in self._states.items()
            }

    def run_sweep(self, name: str, db: Session | None = None) -> dict:
        """Run one sweep now, in `db` when given, otherwise in its own session."""
        job = SWEEPS[name]
        if db is not None:
            result = job(db)
        else:
            with SessionLocal() as session:
                result = job(session)
        with self._lock:
            state = self._states[name]
            state.last_run = time.time()
            state.last_result = result
            state.last_error = None
            state.runs += 1
        return result

    def _loop(self):
        while not self._stop_event.is_set():
            self._tick(time.time())
            self._stop_event.wait(settings.scheduler_tick_seconds)

    def _tick(self, now: float):
        for name, state in self._states.items():
            if now - state.last_run < state.interval_seconds:
                continue
            try:
                self.run_sweep(name)
            except Exception as e:
                logger.error(f"Sweep {name} failed: {e}")
                with self._lock:
                    state.last_run = now
                    state.last_error = str(e)


sweep_runner = SweepRunner()
