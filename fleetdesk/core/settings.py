from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    environment: str = Field(default="development", alias="ENVIRONMENT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    backend_api_url: str = Field(default="http://localhost:8000", alias="BACKEND_API_URL")
    backend_timeout_seconds: float = Field(default=20.0, alias="BACKEND_TIMEOUT_SECONDS")
    allowed_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"], alias="ALLOWED_ORIGINS")
    error_dismiss_seconds: int = Field(default=8, alias="ERROR_DISMISS_SECONDS")
    success_dismiss_seconds: int = Field(default=5, alias="SUCCESS_DISMISS_SECONDS")
    unknown_organization_label: str = Field(default="Unknown Organization", alias="UNKNOWN_ORGANIZATION_LABEL")
    own_risk_step: int = Field(default=50, alias="OWN_RISK_STEP")
    percentage_max_fraction_digits: int = Field(default=3, alias="PERCENTAGE_MAX_FRACTION_DIGITS")
    max_operator_workflows: int = Field(default=500, alias="MAX_OPERATOR_WORKFLOWS")
    pending_statuses: list[Literal["Pending", "Rejected"]] = Field(
        default_factory=lambda: ["Pending", "Rejected"], alias="PENDING_STATUSES"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
