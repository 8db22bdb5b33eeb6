from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    database_url: str = "sqlite:///./data/fci_engine.db"
    app_name: str = "fci-engine"
    debug: bool = False

    discount_rate: float = 0.03
    deferral_penalty_rate: float = 0.05  # per deferred year
    annual_condition_loss: float = 2.0  # condition points per year
    annual_maintenance_rate: float = 0.02  # of replacement value
    failure_threshold: float = 20.0

    trend_window: int = 5
    model_version: str = "fci-engine/1"

    max_horizon_years: int = 30
    max_candidates_per_year: int = 500
    snapshot_max_age_hours: int = 24

    portfolio_target_ci: float = 90.0  # CI reached once deferred work is funded
    portfolio_residual_fci_share: float = 0.2  # of deferred cost left after funding

    ci_decimal_places: int = 2
    fci_decimal_places: int = 4
    money_decimal_places: int = 2

    model_config = {"env_prefix": "FCI_ENGINE_", "env_file": ".env"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
