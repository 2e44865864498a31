from __future__ import annotations

import logging
import time
from typing import Any, Protocol, Sequence

from snapsolve.config.provider_config import ProviderConfig, Stage
from snapsolve.llm_client.base import LLMResult, to_dict, usage_counts
from snapsolve.pipeline.types import ImagePayload
from snapsolve.prompts.templates import (
    SOLUTION_SYSTEM_PROMPT,
    debug_system_prompt,
    extraction_system_prompt,
    extraction_user_prompt,
)
from snapsolve.utils.error_taxonomy import MalformedResponseError

logger = logging.getLogger(__name__)


class ChatCompletionsService(Protocol):
    async def create(self, **kwargs: Any) -> Any: ...


class OpenAIProviderClient:
    """Chat-completions backend: system turn plus a mixed text/image user turn."""

    provider = "openai"

    def __init__(
        self,
        *,
        config: ProviderConfig,
        completions_service: ChatCompletionsService | None = None,
    ) -> None:
        self._config = config
        self._completions_service = completions_service
        self._client: Any = None

    async def extract(
        self, images: Sequence[ImagePayload], *, language: str
    ) -> LLMResult:
        messages = [
            {"role": "system", "content": extraction_system_prompt(language)},
            {
                "role": "user",
                "content": build_user_content(extraction_user_prompt(language), images),
            },
        ]
        return await self._complete(stage="extraction", messages=messages)

    async def solve(self, prompt_text: str) -> LLMResult:
        messages = [
            {"role": "system", "content": SOLUTION_SYSTEM_PROMPT},
            {"role": "user", "content": prompt_text},
        ]
        return await self._complete(stage="solution", messages=messages)

    async def debug(
        self, prompt_text: str, images: Sequence[ImagePayload], *, language: str
    ) -> LLMResult:
        messages = [
            {"role": "system", "content": debug_system_prompt(language)},
            {"role": "user", "content": build_user_content(prompt_text, images)},
        ]
        return await self._complete(stage="debugging", messages=messages)

    async def aclose(self) -> None:
        client, self._client = self._client, None
        self._completions_service = None
        if client is not None:
            await client.close()

    @staticmethod
    def build_request_payload(
        *,
        model: str,
        messages: list[dict[str, Any]],
        temperature: float,
        max_output_tokens: int,
    ) -> dict[str, Any]:
        return {
            "model": model,
            "messages": messages,
            "max_tokens": int(max_output_tokens),
            "temperature": temperature,
        }

    async def _complete(
        self, *, stage: Stage, messages: list[dict[str, Any]]
    ) -> LLMResult:
        service = self._resolve_service()
        model = self._config.model_for(stage)
        payload = self.build_request_payload(
            model=model,
            messages=messages,
            temperature=self._config.temperature,
            max_output_tokens=self._config.max_output_tokens,
        )

        start_time = time.perf_counter()
        response = await service.create(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = to_dict(response)
        raw_text = _extract_message_text(response=response, payload=response_payload)
        usage = response_payload.get("usage") or {}
        logger.info(
            "OpenAI %s request completed",
            stage,
            extra={"duration_ms": round(elapsed_ms, 1), "stage": stage},
        )
        return LLMResult(
            raw_text=raw_text,
            model=model,
            raw_response=response_payload,
            usage=usage_counts(
                usage.get("prompt_tokens"),
                usage.get("completion_tokens"),
                usage.get("total_tokens"),
            ),
            timings={"t_llm_total_ms": elapsed_ms},
        )

    def _resolve_service(self) -> ChatCompletionsService:
        if self._completions_service is not None:
            return self._completions_service

        if not self._config.has_credential:
            raise ValueError("OpenAI API key is required when service is not injected")

        try:
            from openai import AsyncOpenAI
        except ImportError as error:
            raise RuntimeError("openai package is not installed") from error

        self._client = AsyncOpenAI(
            api_key=self._config.api_key,
            timeout=self._config.request_timeout_seconds,
            max_retries=self._config.openai_max_retries,
        )
        self._completions_service = self._client.chat.completions
        return self._completions_service


def build_user_content(
    text: str, images: Sequence[ImagePayload]
) -> list[dict[str, Any]]:
    content: list[dict[str, Any]] = [{"type": "text", "text": text}]
    for image in images:
        content.append({"type": "image_url", "image_url": {"url": image.data_url}})
    return content


def _extract_message_text(*, response: Any, payload: dict[str, Any]) -> str:
    choices = getattr(response, "choices", None)
    if choices:
        message = getattr(choices[0], "message", None)
        content = getattr(message, "content", None)
        if isinstance(content, str) and content.strip():
            return content

    payload_choices = payload.get("choices")
    if isinstance(payload_choices, list):
        for choice in payload_choices:
            if not isinstance(choice, dict):
                continue
            message = choice.get("message")
            if not isinstance(message, dict):
                continue
            content = message.get("content")
            if isinstance(content, str) and content.strip():
                return content

    raise MalformedResponseError("OpenAI response does not contain message content")
