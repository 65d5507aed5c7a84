"""
Runtime settings for the recurring scheduler.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class SchedulerSettings(BaseSettings):
    """
    Settings read from the environment (prefix ``RECURRING_SCHEDULER_``) or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="RECURRING_SCHEDULER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Storage ---
    DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"

    # --- Execution ---
    # Delay before a failed live occurrence is attempted again
    RETRY_DELAY_SECONDS: float = Field(default=300.0, gt=0)
    MAX_CATCH_UP_ITERATIONS: int = Field(default=10000, gt=0)

    # --- Webhook materializer ---
    WEBHOOK_URL: Optional[str] = None
    WEBHOOK_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def validate_webhook(self) -> "SchedulerSettings":
        if self.WEBHOOK_URL is not None and not self.WEBHOOK_URL.startswith(("http://", "https://")):
            raise ValueError("WEBHOOK_URL must be an http(s) URL.")
        return self
