"""Runtime configuration sourced from environment variables and ``.env`` files."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .ingest.commcare import feed_url

PLACEHOLDER_USERNAME = "your_username_here"
PLACEHOLDER_PASSWORD = "your_password_here"
PLACEHOLDER_PROJECT = "your_project_here"
PLACEHOLDER_FORM_ID = "your_form_id_here"


class ServiceCredentials(BaseModel):
    """Username/API-key pair for the forms API. ``repr`` masks the key."""

    model_config = ConfigDict(frozen=True)

    username: str
    api_key: SecretStr

    def as_auth(self) -> tuple[str, str]:
        """Return a ``(username, key)`` tuple suitable for HTTP basic auth."""
        return (self.username, self.api_key.get_secret_value())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # "dev" for local runs, "test" for pytest; anything else is treated as production
    ENV: str = "dev"

    # --- Forms API ---
    COMMCARE_USERNAME: str = PLACEHOLDER_USERNAME
    COMMCARE_PASSWORD: SecretStr = SecretStr(PLACEHOLDER_PASSWORD)
    COMMCARE_PROJECT: str = PLACEHOLDER_PROJECT
    COMMCARE_FORM_ID: str = PLACEHOLDER_FORM_ID
    COMMCARE_BASE_URL: str = "https://www.commcarehq.org"

    # --- Pipeline ---
    SURVEY_DATA_DIR: Path = Path("data")
    SURVEY_PAGE_SIZE: int = Field(2000, gt=0)
    SURVEY_PAGING: Literal["odata", "offset"] = "odata"
    SURVEY_TIMEOUT: float = Field(30.0, gt=0, description="Per-request timeout in seconds.")
    SURVEY_RETRY_ATTEMPTS: int = Field(3, ge=1)
    SURVEY_MAX_AGE_HOURS: float = Field(24.0, ge=0)
    SURVEY_PLANTED_PREFIX: str = "planted_"
    SURVEY_SURVIVED_PREFIX: str = "survived_"

    @model_validator(mode="after")
    def _check_placeholders(self):
        if self.ENV in ("dev", "test"):
            return self
        # Production builds must get real values from the environment.
        placeholders = {
            "COMMCARE_USERNAME": self.COMMCARE_USERNAME == PLACEHOLDER_USERNAME,
            "COMMCARE_PASSWORD": (
                self.COMMCARE_PASSWORD.get_secret_value() == PLACEHOLDER_PASSWORD
            ),
            "COMMCARE_PROJECT": self.COMMCARE_PROJECT == PLACEHOLDER_PROJECT,
            "COMMCARE_FORM_ID": self.COMMCARE_FORM_ID == PLACEHOLDER_FORM_ID,
        }
        missing = sorted(name for name, flagged in placeholders.items() if flagged)
        if missing:
            raise ValueError(
                f"{', '.join(missing)} must be set via environment outside dev/test environments."
            )
        return self

    def credentials(self) -> ServiceCredentials:
        return ServiceCredentials(username=self.COMMCARE_USERNAME, api_key=self.COMMCARE_PASSWORD)

    def feed_url(self) -> str:
        return feed_url(self.COMMCARE_PROJECT, self.COMMCARE_FORM_ID, base_url=self.COMMCARE_BASE_URL)


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


__all__ = ["ServiceCredentials", "Settings", "get_settings"]
