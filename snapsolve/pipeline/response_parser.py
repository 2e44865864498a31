"""Heuristic extraction of structured fields from free-text model output.

Every function here is total: malformed input degrades to a documented default
instead of raising. Only `parse_problem_info` reports failure, and it does so
through its return value.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

from jsonschema import Draft202012Validator

from snapsolve.pipeline.types import DebugResult, ProblemInfo, SolutionResult

DEFAULT_THOUGHT = "Solution approach based on efficiency and readability"
DEFAULT_DEBUG_THOUGHT = "Debug analysis based on your screenshots"
DEFAULT_TIME_COMPLEXITY = (
    "O(n) - Linear time complexity because we only iterate through the array once. "
    "Each element is processed exactly one time, and the hashmap lookups are O(1) "
    "operations."
)
DEFAULT_SPACE_COMPLEXITY = (
    "O(n) - Linear space complexity because we store elements in the hashmap. In the "
    "worst case, we might need to store all elements before finding the solution pair."
)
PROBLEM_PARSE_ERROR = (
    "Failed to parse problem information. Please try again or use clearer screenshots."
)
MAX_DEBUG_SUMMARY_ITEMS = 5

PROBLEM_INFO_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "properties": {
        "problem_statement": {"type": "string", "pattern": r"\S"},
        "constraints": {"type": ["string", "array", "object", "number", "null"]},
        "example_input": {"type": ["string", "array", "object", "number", "null"]},
        "example_output": {"type": ["string", "array", "object", "number", "null"]},
    },
    "required": ["problem_statement"],
}

_FENCE_MARKER_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CODE_BLOCK_RE = re.compile(r"```(?:\w+)?\s*([\s\S]*?)```")
_THOUGHTS_RE = re.compile(
    r"(?:Thoughts|Key Insights|Reasoning|Approach)[*]*:[*]*"
    r"([\s\S]*?)"
    r"(?=Time complexity|Space complexity|(?:^|\n)\W*Code:|\Z)",
    re.IGNORECASE,
)
_BULLET_RE = re.compile(r"^[ \t]*(?:[-*•]|\d+\.)[ \t]+(.+)$", re.MULTILINE)
_BIG_O_RE = re.compile(r"O\([^)]+\)", re.IGNORECASE)
_HEADING_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"issues identified|problems found|bugs found", re.IGNORECASE),
        "## Issues Identified",
    ),
    (
        re.compile(r"code improvements|improvements|suggested changes", re.IGNORECASE),
        "## Code Improvements",
    ),
    (
        re.compile(r"optimizations|performance improvements", re.IGNORECASE),
        "## Optimizations",
    ),
    (re.compile(r"explanation|detailed analysis", re.IGNORECASE), "## Explanation"),
)

_problem_validator = Draft202012Validator(PROBLEM_INFO_SCHEMA)


@dataclass(frozen=True, slots=True)
class ProblemParseResult:
    valid: bool
    problem_info: ProblemInfo | None
    errors: list[str]
    payload: dict[str, Any] | None = None


def strip_code_fences(text: str) -> str:
    return _FENCE_MARKER_RE.sub("", text or "").strip()


def parse_problem_info(text: str) -> ProblemParseResult:
    json_text = strip_code_fences(text)
    try:
        payload = json.loads(json_text)
    except (json.JSONDecodeError, TypeError) as error:
        return ProblemParseResult(
            valid=False,
            problem_info=None,
            errors=[PROBLEM_PARSE_ERROR, f"JSON parse error: {error}"],
        )

    schema_errors = _validate_problem_payload(payload)
    if schema_errors:
        return ProblemParseResult(
            valid=False,
            problem_info=None,
            errors=[PROBLEM_PARSE_ERROR, *schema_errors],
            payload=payload if isinstance(payload, dict) else None,
        )

    return ProblemParseResult(
        valid=True,
        problem_info=ProblemInfo.from_mapping(payload),
        errors=[],
        payload=payload,
    )


def extract_code(text: str) -> str:
    match = _CODE_BLOCK_RE.search(text or "")
    if match is None:
        return (text or "").strip()
    return match.group(1).strip()


def extract_thoughts(text: str) -> list[str]:
    match = _THOUGHTS_RE.search(text or "")
    thoughts: list[str] = []
    if match is not None:
        section = match.group(1)
        bullets = [item.strip() for item in _BULLET_RE.findall(section)]
        thoughts = [item for item in bullets if item]
        if not thoughts:
            lines = (line.strip() for line in section.splitlines())
            thoughts = [line for line in lines if re.search(r"\w", line)]

    return thoughts or [DEFAULT_THOUGHT]


def extract_time_complexity(text: str) -> str:
    return _extract_complexity(text, "Time complexity", DEFAULT_TIME_COMPLEXITY)


def extract_space_complexity(text: str) -> str:
    return _extract_complexity(text, "Space complexity", DEFAULT_SPACE_COMPLEXITY)


def normalize_complexity(value: str) -> str:
    text = value.strip()
    notation_match = _BIG_O_RE.search(text)
    if notation_match is None:
        return f"O(n) - {text}"

    if "-" not in text and "because" not in text:
        notation = notation_match.group(0)
        rest = text.replace(notation, "", 1).strip()
        return f"{notation} - {rest}"

    return text


def format_debug_analysis(text: str) -> str:
    content = text or ""
    if "# " in content or "## " in content:
        return content

    for pattern, heading in _HEADING_REWRITES:
        content = pattern.sub(heading, content, count=1)
    return content


def extract_debug_summary(text: str) -> list[str]:
    bullets = [item.strip() for item in _BULLET_RE.findall(text or "")]
    bullets = [item for item in bullets if item]
    if not bullets:
        return [DEFAULT_DEBUG_THOUGHT]
    return bullets[:MAX_DEBUG_SUMMARY_ITEMS]


def parse_solution(text: str) -> SolutionResult:
    return SolutionResult(
        code=extract_code(text),
        thoughts=extract_thoughts(text),
        time_complexity=extract_time_complexity(text),
        space_complexity=extract_space_complexity(text),
    )


def parse_debug(text: str) -> DebugResult:
    analysis = format_debug_analysis(text)
    return DebugResult(
        code=extract_code(text),
        debug_analysis=analysis,
        thoughts=extract_debug_summary(analysis),
    )


def _extract_complexity(text: str, label: str, default: str) -> str:
    # The label opens a line, optionally after markdown or a list number. The
    # span ends where a new paragraph or list item begins.
    pattern = re.compile(
        r"(?:^|\n)[ \t#>*-]*(?:\d+[.)][ \t]*)?[*]*"
        rf"(?i:{label})[*]*:?[*]*[ \t]*\n?[ \t]*"
        r"([^\n]+(?:\n[^\n]+)*?)"
        r"(?=\n[ \t]*\n|\n\s*[A-Z]|\n[ \t]*(?:[-*•]|\d+[.)])[ \t]|\s*\Z)"
    )
    match = pattern.search(text or "")
    if match is None:
        return default

    captured = match.group(1).strip()
    if not captured or not re.search(r"\w", captured):
        return default
    return normalize_complexity(captured)


def _validate_problem_payload(payload: Any) -> list[str]:
    errors = sorted(
        _problem_validator.iter_errors(payload),
        key=lambda item: [str(part) for part in item.path],
    )
    messages: list[str] = []
    for error in errors:
        path = "/".join(str(item) for item in error.path)
        if path:
            messages.append(f"{path}: {error.message}")
        else:
            messages.append(error.message)
    return messages
