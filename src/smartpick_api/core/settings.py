import json
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PenaltyTier(BaseModel):
    """One row of the no-show escalation table."""

    offense: int
    name: str
    suspension_minutes: int = 0
    lift_cost_points: int | None = None


def _default_penalty_tiers() -> list[PenaltyTier]:
    return [
        PenaltyTier(offense=1, name="warning", suspension_minutes=0),
        PenaltyTier(offense=2, name="short", suspension_minutes=30, lift_cost_points=30),
        PenaltyTier(offense=3, name="long", suspension_minutes=90, lift_cost_points=90),
        PenaltyTier(offense=4, name="day", suspension_minutes=24 * 60, lift_cost_points=500),
    ]


def _default_slot_costs() -> dict[int, int]:
    return {4: 100, 5: 200, 6: 400, 7: 800, 8: 1600, 9: 3200, 10: 6400}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./smartpick.db"
    database_echo: bool = False
    sqlite_busy_timeout_seconds: float = 15.0

    # Internal API security
    internal_api_key: str = ""

    # Business calendar
    business_timezone: str = "Asia/Tbilisi"
    default_locale: Literal["en", "ka"] = "en"

    # Reservations
    reservation_hold_minutes: int = 60
    max_active_reservations: int = 1
    default_reservation_quantity_limit: int = 3
    max_reservation_quantity_limit: int = 10
    slot_unlock_costs: dict[int, int] = Field(default_factory=_default_slot_costs)

    # Penalties
    penalty_tiers: list[PenaltyTier] = Field(default_factory=_default_penalty_tiers)
    expired_counts_as_no_show: bool = True

    # Cooldown guard
    cooldown_window_minutes: int = 30
    cooldown_duration_minutes: int = 30
    cooldown_threshold: int = 3
    cooldown_lift_cost_points: int = 100

    # Forgiveness
    forgiveness_request_window_hours: int = 24
    forgiveness_response_hours: int = 24

    # Referrals
    referral_bonus_points: int = 50

    # Achievements
    achievement_catalog_sync_enabled: bool = True

    # Scheduler
    job_scheduler_enabled: bool = False
    job_schedule_path: str = "config/schedules.toml"

    @field_validator("penalty_tiers", mode="before")
    @classmethod
    def _parse_penalty_tiers(cls, value: object) -> object:
        if isinstance(value, str):
            value = json.loads(value)
        return value

    @field_validator("penalty_tiers")
    @classmethod
    def _sort_penalty_tiers(cls, value: list[PenaltyTier]) -> list[PenaltyTier]:
        if not value:
            raise ValueError("penalty_tiers must define at least one tier")
        return sorted(value, key=lambda tier: tier.offense)

    @model_validator(mode="after")
    def _clamp_cooldown_duration(self) -> "Settings":
        if self.cooldown_duration_minutes > self.cooldown_window_minutes:
            self.cooldown_duration_minutes = self.cooldown_window_minutes
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
