"""Tolerant JSON extraction for model output.

Models wrap JSON in markdown fences, add prose around it, or emit
almost-JSON with trailing commas and bare keys. Each helper here tries a
fixed list of recovery strategies and validates candidates before accepting
them.
"""

import json
import logging
import re
from collections.abc import Callable
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_LEADING_FENCE = re.compile(r"^\s*```(?:json)?\s*", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\s*```\s*$")
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")
_ARRAY_SPAN = re.compile(r"\[[\s\S]*\]")
_STRING_LITERAL = r'"(?:\\.|[^"\\])*"'
# Group 1 matches a string literal so repairs never touch text inside values.
_TRAILING_COMMA = re.compile(rf"({_STRING_LITERAL})|,\s*([}}\]])")
_BARE_KEY = re.compile(rf"({_STRING_LITERAL})|([{{,]\s*)(\w+)(\s*:)")


def strip_code_fences(content: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    return _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", content.strip())).strip()


def repair_json(text: str) -> str:
    """Strip trailing commas before closing brackets and quote bare object keys."""
    text = _TRAILING_COMMA.sub(lambda m: m.group(1) if m.group(1) is not None else m.group(2), text)
    return _BARE_KEY.sub(lambda m: m.group(1) if m.group(1) is not None else f'{m.group(2)}"{m.group(3)}"{m.group(4)}', text)


def _object_span(text: str) -> str | None:
    match = _OBJECT_SPAN.search(text)
    return match.group(0) if match else None


def _strategies(text: str) -> list[Callable[[], str | None]]:
    return [
        lambda: text,
        lambda: _object_span(text),
        lambda: _object_span(repair_json(text)),
    ]


def parse_model_json(content: str, schema: type[T]) -> T | None:
    """Parse model output into `schema`, trying each recovery strategy in order.

    Returns None when no strategy yields JSON that validates against `schema`.
    """
    text = strip_code_fences(content)
    for strategy in _strategies(text):
        candidate = strategy()
        if not candidate:
            continue
        try:
            return schema.model_validate(json.loads(candidate))
        except (json.JSONDecodeError, ValidationError):
            continue
    return None


def extract_json_object(content: str) -> dict[str, Any] | None:
    """Return the first `{...}` span of the output parsed as a dict, or None."""
    span = _object_span(strip_code_fences(content))
    if not span:
        return None
    try:
        data = json.loads(span)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def extract_json_array(content: str) -> list[Any] | None:
    """Return the first `[...]` span of the output parsed as a list, or None."""
    match = _ARRAY_SPAN.search(strip_code_fences(content))
    if not match:
        return None
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, list) else None


# --- Schemas for model output ---


class PlanStepPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: int | None = None
    question: str | None = None
    search_query: str | None = Field(default=None, alias="searchQuery")
    purpose: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return int(value) if value.strip().isdigit() else None
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return int(value) if value > 0 else None

    @field_validator("question", "search_query", "purpose", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None


class PlanPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    main_question: str | None = Field(default=None, alias="mainQuestion")
    steps: list[PlanStepPayload]
    expected_insights: list[str] = Field(default_factory=list, alias="expectedInsights")

    @field_validator("main_question", mode="before")
    @classmethod
    def _coerce_main_question(cls, value: Any) -> Any:
        return value if isinstance(value, str) else None

    @field_validator("steps", mode="before")
    @classmethod
    def _drop_non_objects(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
        return value

    @field_validator("expected_insights", mode="before")
    @classmethod
    def _strings_only(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [item for item in value if isinstance(item, str)]
        return []
