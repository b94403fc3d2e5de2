"""Runtime settings loaded from environment variables."""

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

NonEmptyStr = Annotated[str, Field(min_length=1)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]
PositiveFloat = Annotated[float, Field(gt=0.0)]
PositiveInt = Annotated[int, Field(gt=0)]
PresenceState = Literal["online", "offline", "unavailable"]


class Settings(BaseSettings):
    """Environment-driven sync engine settings."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    matrix_user_id: NonEmptyStr = Field(validation_alias="MATRIX_USER_ID")
    matrix_password: NonEmptyStr | None = Field(
        default=None,
        validation_alias="MATRIX_PASSWORD",
    )
    matrix_homeserver_url: HttpUrl | None = Field(
        default=None,
        validation_alias="MATRIX_HOMESERVER_URL",
    )
    matrix_default_domain: NonEmptyStr = Field(
        default="matrix.org",
        validation_alias="MATRIX_DEFAULT_DOMAIN",
    )
    matrix_device_id: NonEmptyStr | None = Field(
        default=None,
        validation_alias="MATRIX_DEVICE_ID",
    )
    matrix_sync_timeout_ms: PositiveInt = Field(
        default=30_000,
        validation_alias="MATRIX_SYNC_TIMEOUT_MS",
    )
    matrix_sync_grace_seconds: NonNegativeFloat = Field(
        default=5.0,
        validation_alias="MATRIX_SYNC_GRACE_SECONDS",
    )
    matrix_sync_backoff_cap_seconds: PositiveFloat = Field(
        default=60.0,
        validation_alias="MATRIX_SYNC_BACKOFF_CAP_SECONDS",
    )
    matrix_sync_full_state: bool = Field(
        default=False,
        validation_alias="MATRIX_SYNC_FULL_STATE",
    )
    matrix_sync_set_presence: PresenceState | None = Field(
        default=None,
        validation_alias="MATRIX_SYNC_SET_PRESENCE",
    )
    matrix_request_timeout_seconds: PositiveFloat = Field(
        default=30.0,
        validation_alias="MATRIX_REQUEST_TIMEOUT_SECONDS",
    )
    matrix_synchronous_requests: bool = Field(
        default=False,
        validation_alias="MATRIX_SYNCHRONOUS_REQUESTS",
    )
    database_url: NonEmptyStr | None = Field(default=None, validation_alias="DATABASE_URL")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and cache sync engine settings."""

    return Settings()  # type: ignore[call-arg]
