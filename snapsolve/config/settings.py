from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from snapsolve.config.provider_config import (
    DEFAULT_GEMINI_BASE_URL,
    ApiProvider,
    ProviderConfig,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SNAPSOLVE_",
        extra="ignore",
    )

    environment: str = "local"
    config_path: Path = Path("config/snapsolve.yaml")

    api_provider: ApiProvider = "gemini"
    extraction_model: str = ""
    solution_model: str = ""
    debugging_model: str = ""
    language: str = "auto"

    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4000, ge=1)
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    openai_max_retries: int = Field(default=2, ge=0)
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL

    log_level: str = "INFO"
    log_file: Path | None = None

    api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SNAPSOLVE_API_KEY", "SNAPSOLVE_LLM_API_KEY"),
    )
    openai_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("SNAPSOLVE_OPENAI_API_KEY", "OPENAI_API_KEY"),
    )
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "SNAPSOLVE_GEMINI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"
        ),
    )

    @property
    def resolved_config_path(self) -> Path:
        if self.config_path.is_absolute():
            return self.config_path
        return (Path.cwd() / self.config_path).resolve()

    def credential_for(self, provider: ApiProvider) -> str:
        if self.api_key:
            return self.api_key
        if provider == "openai":
            return self.openai_api_key or ""
        return self.gemini_api_key or ""

    def provider_config(self) -> ProviderConfig:
        return ProviderConfig(
            api_provider=self.api_provider,
            api_key=self.credential_for(self.api_provider),
            extraction_model=self.extraction_model,
            solution_model=self.solution_model,
            debugging_model=self.debugging_model,
            language=self.language,
            temperature=self.temperature,
            max_output_tokens=self.max_output_tokens,
            request_timeout_seconds=self.request_timeout_seconds,
            openai_max_retries=self.openai_max_retries,
            gemini_base_url=self.gemini_base_url,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
