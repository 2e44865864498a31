from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Sequence

from snapsolve.pipeline.types import ImagePayload


@dataclass(frozen=True, slots=True)
class LLMResult:
    raw_text: str
    model: str
    raw_response: dict[str, Any] = field(default_factory=dict)
    usage: dict[str, int | None] = field(default_factory=dict)
    timings: dict[str, float] = field(default_factory=dict)


class ProviderClient(Protocol):
    provider: str

    async def extract(
        self, images: Sequence[ImagePayload], *, language: str
    ) -> LLMResult: ...

    async def solve(self, prompt_text: str) -> LLMResult: ...

    async def debug(
        self, prompt_text: str, images: Sequence[ImagePayload], *, language: str
    ) -> LLMResult: ...

    async def aclose(self) -> None: ...


def to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}


def usage_counts(
    prompt_tokens: Any, completion_tokens: Any, total_tokens: Any = None
) -> dict[str, int | None]:
    prompt = _to_int(prompt_tokens)
    completion = _to_int(completion_tokens)
    total = _to_int(total_tokens)
    if total is None and (prompt is not None or completion is not None):
        total = (prompt or 0) + (completion or 0)
    return {
        "prompt_tokens": prompt,
        "completion_tokens": completion,
        "total_tokens": total,
    }


def _to_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)
