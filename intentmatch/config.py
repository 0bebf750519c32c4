from dataclasses import dataclass, field
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = "IntentMatch Engine"
    database_url: str = "sqlite:///./data/intentmatch.db"
    log_level: str = "INFO"

    # Scheduled sweeps
    enable_scheduler: bool = True
    scheduler_tick_seconds: float = 60.0
    expiry_sweep_interval_seconds: int = 60 * 60
    intent_sweep_interval_seconds: int = 24 * 60 * 60
    decay_sweep_interval_seconds: int = 30 * 24 * 60 * 60

    # Automated dispute resolver (OpenAI-compatible chat endpoint)
    resolver_base_url: str | None = None
    resolver_model: str = "gpt-4o"
    resolver_api_key: str | None = None
    resolver_timeout_seconds: float = 30.0

    debug: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()


@dataclass(frozen=True)
class ScoringWeights:
    """Weights of the four match sub-scores. Must sum to 1.0."""

    semantic: float = 0.4
    reputation: float = 0.2
    price: float = 0.2
    skills: float = 0.2

    def __post_init__(self) -> None:
        values = (self.semantic, self.reputation, self.price, self.skills)
        if any(v < 0 for v in values):
            raise ValueError("Scoring weights must be non-negative")
        if abs(sum(values) - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0, got {sum(values):.4f}")


@dataclass(frozen=True)
class ComponentWeights:
    quality: float = 0.4
    reliability: float = 0.3
    communication: float = 0.15
    fairness: float = 0.15

    def as_dict(self) -> dict[str, float]:
        return {
            "quality": self.quality,
            "reliability": self.reliability,
            "communication": self.communication,
            "fairness": self.fairness,
        }


@dataclass(frozen=True)
class EngineConfig:
    """
    Tuning knobs for matching, reputation and disputes.

    Instances are immutable; services receive one explicitly. Use
    `get_engine_config()` for the defaults or
    `ConfigService.current_engine_config()` for the persisted overlay.
    """

    weights: ScoringWeights = field(default_factory=ScoringWeights)
    match_threshold: float = 60.0
    candidate_limit: int = 20
    match_ttl_days: int = 7
    algorithm: str = "hybrid_v1"

    component_weights: ComponentWeights = field(default_factory=ComponentWeights)
    neutral_component: float = 50.0
    decay_factor: float = 0.95
    decay_period_days: int = 30
    recent_events_limit: int = 50

    vote_min_reputation: float = 60.0
    auto_resolve_threshold_tier1: float = 90.0
    auto_resolve_threshold: float = 80.0

    def auto_resolve_threshold_for(self, tier: int) -> float:
        return self.auto_resolve_threshold_tier1 if tier == 1 else self.auto_resolve_threshold


@lru_cache(maxsize=1)
def get_engine_config() -> EngineConfig:
    """Default engine configuration."""
    return EngineConfig()
