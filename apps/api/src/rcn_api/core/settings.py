from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./rcn.db"

    # Internal API security
    api_key: str = ""

    # Earning capacity
    daily_earning_cap: int = 50
    monthly_earning_cap: int = 500
    capped_source_types: list[str] = Field(default_factory=lambda: ["shop_repair", "referral_bonus"])

    @field_validator("capped_source_types", mode="before")
    @classmethod
    def _parse_source_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Redemption rules
    cross_shop_ratio: float = 0.20
    home_shop_tie_break: Literal["earliest_to_max", "most_recent"] = "earliest_to_max"
    redemption_session_ttl_seconds: int = 300

    # Repair rewards
    repair_reward_large: int = 25
    repair_reward_small: int = 10
    repair_large_threshold: int = 100
    repair_small_threshold: int = 50
    tier_bonus_bronze: int = 10
    tier_bonus_silver: int = 20
    tier_bonus_gold: int = 30

    # Referrals
    referrer_reward: int = 25
    referee_reward: int = 10
    referral_expiry_days: int = 30

    # Token settlement gateway
    blockchain_minting_enabled: bool = False
    minter_gateway_url: str | None = None
    minter_api_key: str | None = None
    minter_timeout_seconds: float = 10.0

    # Scheduled sweeps
    ledger_scheduler_enabled: bool = False
    ledger_job_schedule_path: str = "config/schedules.toml"
    integrity_alert_ttl_seconds: int = 3600


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
