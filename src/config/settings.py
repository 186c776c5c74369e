"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # LLM connectivity
    llm_provider: Literal["openai", "self_hosted_vllm"] = Field(default="openai")
    llm_endpoint: str | None = Field(
        default=None,
        description="Base URL of an OpenAI-compatible endpoint (required for self-hosted vLLM).",
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(default="gpt-4o-mini")
    llm_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    llm_max_tool_rounds: int = Field(
        default=5,
        ge=0,
        description="How many follow-up streams a single turn may open after tool calls.",
    )

    # Assets (contexts, tool manifests, server configuration)
    assets_dir: Path = Field(default=Path("./assets"))

    # Silence watchdog
    silence_tick_seconds: float = Field(
        default=1.0,
        gt=0.0,
        description="Interval between silence watchdog evaluations.",
    )

    # Twilio
    twilio_account_sid: str | None = Field(default=None)
    twilio_auth_token: str | None = Field(default=None)
    twilio_from_number: str | None = Field(default=None, description="E.164, e.g. +4144...")
    public_base_url: str | None = Field(
        default=None,
        description="Public base URL used to build the ConversationRelay WebSocket URL.",
    )

    @field_validator("assets_dir")
    @classmethod
    def ensure_assets_dir(cls, value: Path) -> Path:
        if not value.is_dir():
            raise ValueError(f"Assets directory not found: {value}")
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
