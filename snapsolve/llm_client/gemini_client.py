from __future__ import annotations

import logging
import time
from typing import Any, Sequence

import httpx

from snapsolve.config.provider_config import ProviderConfig, Stage
from snapsolve.llm_client.base import LLMResult, usage_counts
from snapsolve.pipeline.types import ImagePayload
from snapsolve.prompts.templates import (
    SOLUTION_SYSTEM_PROMPT,
    debug_system_prompt,
    extraction_system_prompt,
    extraction_user_prompt,
    is_auto_language,
)
from snapsolve.utils.error_taxonomy import MalformedResponseError

logger = logging.getLogger(__name__)


class GeminiProviderClient:
    """generateContent backend: one user turn of alternating text and inline images.

    The credential travels as the ``key`` query parameter of every request, so the
    HTTP client itself carries no authentication state.
    """

    provider = "gemini"

    def __init__(
        self,
        *,
        config: ProviderConfig,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    async def extract(
        self, images: Sequence[ImagePayload], *, language: str
    ) -> LLMResult:
        text = extraction_system_prompt(language)
        if not is_auto_language(language):
            text = f"{text} {extraction_user_prompt(language)}"
        return await self._generate(stage="extraction", parts=build_parts(text, images))

    async def solve(self, prompt_text: str) -> LLMResult:
        text = (
            f"{SOLUTION_SYSTEM_PROMPT} Provide a clear, optimal solution with detailed "
            f"explanations for this problem:\n\n{prompt_text}"
        )
        return await self._generate(stage="solution", parts=build_parts(text, []))

    async def debug(
        self, prompt_text: str, images: Sequence[ImagePayload], *, language: str
    ) -> LLMResult:
        text = f"{debug_system_prompt(language)}\n\n{prompt_text}"
        return await self._generate(stage="debugging", parts=build_parts(text, images))

    async def aclose(self) -> None:
        client, self._http_client = self._http_client, None
        if client is not None and self._owns_client:
            await client.aclose()

    @staticmethod
    def build_request_payload(
        *,
        parts: list[dict[str, Any]],
        temperature: float,
        max_output_tokens: int,
    ) -> dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": int(max_output_tokens),
            },
        }

    def endpoint_for(self, model: str) -> str:
        base_url = self._config.gemini_base_url.rstrip("/")
        return f"{base_url}/models/{model}:generateContent"

    async def _generate(self, *, stage: Stage, parts: list[dict[str, Any]]) -> LLMResult:
        if not self._config.has_credential:
            raise ValueError("Gemini API key is required")

        client = self._resolve_client()
        model = self._config.model_for(stage)
        payload = self.build_request_payload(
            parts=parts,
            temperature=self._config.temperature,
            max_output_tokens=self._config.max_output_tokens,
        )

        start_time = time.perf_counter()
        response = await client.post(
            self.endpoint_for(model),
            params={"key": self._config.api_key},
            json=payload,
        )
        response.raise_for_status()
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        try:
            response_payload = response.json()
        except ValueError as error:
            raise MalformedResponseError("Gemini response is not valid JSON") from error
        if not isinstance(response_payload, dict):
            raise MalformedResponseError("Gemini response must be a JSON object")

        raw_text = extract_candidate_text(response_payload)
        usage = response_payload.get("usageMetadata") or {}
        logger.info(
            "Gemini %s request completed",
            stage,
            extra={"duration_ms": round(elapsed_ms, 1), "stage": stage},
        )
        return LLMResult(
            raw_text=raw_text,
            model=model,
            raw_response=response_payload,
            usage=usage_counts(
                usage.get("promptTokenCount"),
                usage.get("candidatesTokenCount"),
                usage.get("totalTokenCount"),
            ),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    def _resolve_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._config.request_timeout_seconds
            )
            self._owns_client = True
        return self._http_client


def build_parts(text: str, images: Sequence[ImagePayload]) -> list[dict[str, Any]]:
    parts: list[dict[str, Any]] = [{"text": text}]
    for image in images:
        parts.append(
            {"inlineData": {"mimeType": image.mime_type, "data": image.base64_data}}
        )
    return parts


def extract_candidate_text(payload: dict[str, Any]) -> str:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise MalformedResponseError("Empty response from Gemini API")

    for candidate in candidates:
        if not isinstance(candidate, dict):
            continue
        content = candidate.get("content")
        if not isinstance(content, dict):
            continue
        parts = content.get("parts")
        if not isinstance(parts, list):
            continue
        for part in parts:
            if not isinstance(part, dict):
                continue
            text = part.get("text")
            if isinstance(text, str) and text.strip():
                return text

    raise MalformedResponseError("Gemini response does not contain text output")
