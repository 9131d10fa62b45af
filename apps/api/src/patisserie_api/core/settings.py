from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./patisserie.db"
    database_echo: bool = False

    # Internal API security (order flow -> reward hooks)
    checkout_api_key: str = ""
    admin_roles: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["admin"])

    @field_validator("admin_roles", mode="before")
    @classmethod
    def _parse_role_list(cls, value: object) -> list[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        return []

    # Monthly free product reward
    free_product_required_days: int = Field(10, ge=1, le=31)
    reward_timezone: str = "Asia/Kolkata"
    reward_claim_retention_enabled: bool = False
    reward_claim_retention_months: int = Field(1, ge=1)

    # Reward automation scheduler
    reward_job_scheduler_enabled: bool = False
    reward_job_schedule_path: str = "config/schedules.toml"


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
