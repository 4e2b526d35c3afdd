from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"
    gateway_url: str = Field(..., validation_alias="GATEWAY_URL")
    gateway_token: str | None = Field(default=None, validation_alias="GATEWAY_TOKEN")
    gateway_timeout_seconds: int = Field(default=30, validation_alias="GATEWAY_TIMEOUT_SECONDS")
    stream_timeout_seconds: float = Field(
        default=120.0, validation_alias="STREAM_TIMEOUT_SECONDS"
    )

    @field_validator("gateway_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value:
            raise ValueError("GATEWAY_URL must not be empty")
        return value

    @field_validator("stream_timeout_seconds")
    @classmethod
    def _timeout_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("STREAM_TIMEOUT_SECONDS must be positive")
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
