from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

ApiProvider = Literal["openai", "gemini"]
Stage = Literal["extraction", "solution", "debugging"]

DEFAULT_MODELS: dict[ApiProvider, str] = {
    "openai": "gpt-4o",
    "gemini": "gemini-2.0-flash",
}
DEFAULT_GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class ProviderConfig(BaseModel):
    """Snapshot of everything a provider session needs for one run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    api_provider: ApiProvider = "gemini"
    api_key: str = ""
    extraction_model: str = ""
    solution_model: str = ""
    debugging_model: str = ""
    language: str = "auto"
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4000, ge=1)
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    openai_max_retries: int = Field(default=2, ge=0)
    gemini_base_url: str = DEFAULT_GEMINI_BASE_URL

    @field_validator("api_key", "language", mode="before")
    @classmethod
    def _strip_text(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)

    @property
    def resolved_language(self) -> str:
        return self.language or "auto"

    def model_for(self, stage: Stage) -> str:
        configured = {
            "extraction": self.extraction_model,
            "solution": self.solution_model,
            "debugging": self.debugging_model,
        }[stage]
        return configured.strip() or DEFAULT_MODELS[self.api_provider]

    def masked(self) -> dict[str, object]:
        data = self.model_dump()
        if self.api_key:
            data["api_key"] = f"{self.api_key[:4]}***"
        return data
