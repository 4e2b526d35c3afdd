import json
from functools import lru_cache
from typing import Annotated

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

FALLBACK_MODEL = "gpt-4o-2024-08-06"
TITLE_MODEL = "gpt-5-nano"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"
    ai_enabled: bool = Field(default=True, validation_alias="AI_ENABLED")
    default_model: str = Field(default=FALLBACK_MODEL, validation_alias="DEFAULT_MODEL")
    title_model: str = Field(default=TITLE_MODEL, validation_alias="TITLE_MODEL")
    allowed_models: Annotated[list[str], NoDecode] = Field(
        default_factory=list, validation_alias="ALLOWED_MODELS"
    )
    gateway_token_secret: str = Field(..., validation_alias="GATEWAY_TOKEN_SECRET")

    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    openai_timeout_seconds: int = Field(default=30, validation_alias="OPENAI_TIMEOUT_SECONDS")

    gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta/models",
        validation_alias="GEMINI_BASE_URL",
    )
    gemini_timeout_seconds: int = Field(default=60, validation_alias="GEMINI_TIMEOUT_SECONDS")

    llama_api_url: str = Field(
        default="http://host.docker.internal:8080/v1", validation_alias="LLAMA_API_URL"
    )
    llama_api_key: str | None = Field(default=None, validation_alias="LLAMA_API_KEY")
    llama_timeout_seconds: int = Field(default=120, validation_alias="LLAMA_TIMEOUT_SECONDS")

    temperature: float = Field(default=0.7, validation_alias="LLM_TEMPERATURE")
    persona_path: str | None = Field(default=None, validation_alias="PERSONA_PATH")
    sse_heartbeat_seconds: float = Field(default=15.0, validation_alias="SSE_HEARTBEAT_SECONDS")
    dev_echo_delay_seconds: float = Field(
        default=0.01, validation_alias="DEV_ECHO_DELAY_SECONDS"
    )

    @field_validator("allowed_models", mode="before")
    @classmethod
    def _split_models(cls, value):
        # Accepts a JSON list or a comma separated string; empty allows every model.
        if isinstance(value, str):
            value = value.strip()
            if value.startswith("["):
                value = json.loads(value)
            else:
                value = value.split(",")
        return [str(item).strip() for item in value or [] if str(item).strip()]

    @field_validator("gateway_token_secret")
    @classmethod
    def _token_secret_not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("GATEWAY_TOKEN_SECRET must not be empty")
        return value

    @field_validator("sse_heartbeat_seconds")
    @classmethod
    def _heartbeat_positive(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("SSE_HEARTBEAT_SECONDS must be positive")
        return value

    def resolve_model(self, model: str | None) -> str:
        if model and model.strip():
            return model.strip()
        return self.default_model

    def is_model_allowed(self, model: str) -> bool:
        if not self.allowed_models:
            return True
        return model in self.allowed_models


@lru_cache
def get_settings() -> Settings:
    return Settings()
