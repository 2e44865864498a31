from __future__ import annotations

import asyncio
from typing import Any

import pytest

from snapsolve.config.provider_config import ProviderConfig
from snapsolve.llm_client.openai_client import OpenAIProviderClient
from snapsolve.pipeline.types import ImagePayload
from snapsolve.prompts.templates import SOLUTION_SYSTEM_PROMPT
from snapsolve.utils.error_taxonomy import MalformedResponseError


class FakeCompletionsService:
    def __init__(self, content: str | None = "hello") -> None:
        self.calls: list[dict[str, Any]] = []
        self._content = content

    async def create(self, **kwargs: Any) -> dict[str, Any]:
        self.calls.append(kwargs)
        choices = []
        if self._content is not None:
            choices.append({"message": {"role": "assistant", "content": self._content}})
        return {
            "choices": choices,
            "usage": {"prompt_tokens": 120, "completion_tokens": 30},
        }


def _config(**overrides: Any) -> ProviderConfig:
    return ProviderConfig(api_provider="openai", api_key="sk-test", **overrides)


def test_openai_payload_builder_is_pure() -> None:
    messages = [{"role": "user", "content": "hi"}]

    payload = OpenAIProviderClient.build_request_payload(
        model="gpt-4o",
        messages=messages,
        temperature=0.2,
        max_output_tokens=4000,
    )

    assert payload == {
        "model": "gpt-4o",
        "messages": messages,
        "max_tokens": 4000,
        "temperature": 0.2,
    }


def test_openai_extract_sends_system_turn_and_data_url_images() -> None:
    service = FakeCompletionsService()
    client = OpenAIProviderClient(config=_config(), completions_service=service)
    image = ImagePayload(path="a.png", data=b"png-bytes")

    result = asyncio.run(client.extract([image], language="python"))

    assert result.raw_text == "hello"
    assert result.model == "gpt-4o"
    assert result.usage == {
        "prompt_tokens": 120,
        "completion_tokens": 30,
        "total_tokens": 150,
    }

    payload = service.calls[0]
    assert payload["max_tokens"] == 4000
    assert payload["temperature"] == 0.2
    system, user = payload["messages"]
    assert system["role"] == "system"
    assert "JSON" in system["content"]
    assert user["content"][0]["type"] == "text"
    assert "python" in user["content"][0]["text"]
    assert user["content"][1] == {
        "type": "image_url",
        "image_url": {"url": f"data:image/png;base64,{image.base64_data}"},
    }


def test_openai_uses_per_stage_models() -> None:
    service = FakeCompletionsService()
    client = OpenAIProviderClient(
        config=_config(solution_model="gpt-4o-mini", debugging_model="o3"),
        completions_service=service,
    )
    image = ImagePayload(path="a.png", data=b"x")

    asyncio.run(client.solve("solve this"))
    asyncio.run(client.debug("debug this", [image], language="auto"))

    solve_payload, debug_payload = service.calls
    assert solve_payload["model"] == "gpt-4o-mini"
    assert solve_payload["messages"] == [
        {"role": "system", "content": SOLUTION_SYSTEM_PROMPT},
        {"role": "user", "content": "solve this"},
    ]
    assert debug_payload["model"] == "o3"
    assert debug_payload["messages"][1]["content"][0]["text"] == "debug this"
    assert len(debug_payload["messages"][1]["content"]) == 2


def test_openai_empty_choices_are_malformed() -> None:
    client = OpenAIProviderClient(
        config=_config(), completions_service=FakeCompletionsService(content=None)
    )

    with pytest.raises(MalformedResponseError):
        asyncio.run(client.solve("prompt"))


def test_openai_client_requires_key_without_injected_service() -> None:
    client = OpenAIProviderClient(config=ProviderConfig(api_provider="openai"))

    with pytest.raises(ValueError, match="API key is required"):
        asyncio.run(client.solve("prompt"))
