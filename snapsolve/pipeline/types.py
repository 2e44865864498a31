from __future__ import annotations

import asyncio
import base64
import json
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Mapping

from snapsolve.utils.error_taxonomy import ErrorCode

PipelineMode = Literal["initial", "debug"]
View = Literal["queue", "solutions"]
RunStatus = Literal["succeeded", "failed", "canceled"]

PIPELINE_MODES: tuple[PipelineMode, ...] = ("initial", "debug")
DEBUG_COMPLEXITY = "N/A"


@dataclass(frozen=True, slots=True)
class ImagePayload:
    path: str
    data: bytes
    mime_type: str = "image/png"
    preview: str | None = None

    @property
    def base64_data(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64_data}"


async def load_image_payload(path: str | Path, *, preview: str | None = None) -> ImagePayload:
    source = Path(path)
    data = await asyncio.to_thread(source.read_bytes)
    mime_type, _ = mimetypes.guess_type(source.name)
    if mime_type is None or not mime_type.startswith("image/"):
        mime_type = "image/png"
    return ImagePayload(path=str(source), data=data, mime_type=mime_type, preview=preview)


@dataclass(frozen=True, slots=True)
class ProblemInfo:
    problem_statement: str
    constraints: str = ""
    example_input: str = ""
    example_output: str = ""

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ProblemInfo:
        return cls(
            problem_statement=_as_text(payload.get("problem_statement")),
            constraints=_as_text(payload.get("constraints")),
            example_input=_as_text(payload.get("example_input")),
            example_output=_as_text(payload.get("example_output")),
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "problem_statement": self.problem_statement,
            "constraints": self.constraints,
            "example_input": self.example_input,
            "example_output": self.example_output,
        }


@dataclass(frozen=True, slots=True)
class SolutionResult:
    code: str
    thoughts: list[str]
    time_complexity: str
    space_complexity: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "thoughts": list(self.thoughts),
            "time_complexity": self.time_complexity,
            "space_complexity": self.space_complexity,
        }


@dataclass(frozen=True, slots=True)
class DebugResult:
    code: str
    debug_analysis: str
    thoughts: list[str]
    time_complexity: str = DEBUG_COMPLEXITY
    space_complexity: str = DEBUG_COMPLEXITY

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "debug_analysis": self.debug_analysis,
            "thoughts": list(self.thoughts),
            "time_complexity": self.time_complexity,
            "space_complexity": self.space_complexity,
        }


@dataclass(frozen=True, slots=True)
class PipelineEvent:
    name: str
    mode: PipelineMode | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    terminal: bool = False


@dataclass(frozen=True, slots=True)
class PipelineResult:
    mode: PipelineMode
    status: RunStatus
    run_id: str
    problem_info: ProblemInfo | None = None
    solution: SolutionResult | None = None
    debug: DebugResult | None = None
    error_code: ErrorCode | None = None
    error_message: str | None = None
    user_message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "status": self.status,
            "run_id": self.run_id,
            "problem_info": self.problem_info.to_dict() if self.problem_info else None,
            "solution": self.solution.to_dict() if self.solution else None,
            "debug": self.debug.to_dict() if self.debug else None,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "user_message": self.user_message,
        }


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return "\n".join(_as_text(item) for item in value if item is not None)
    return json.dumps(value, ensure_ascii=False)
