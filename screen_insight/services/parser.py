"""Extract a JSON payload from free-form model text."""

import json
import math
import re
from dataclasses import dataclass
from typing import Any

RAW_RESPONSE_LIMIT = 200

# ```json ... ``` / ``` ... ```
_OPENING_FENCE = re.compile(r"^```[\w-]*[ \t]*\n?")
_CLOSING_FENCE = re.compile(r"\n?```\s*$")


@dataclass(frozen=True)
class ParseSuccess:
    value: Any


@dataclass(frozen=True)
class ParseFailure:
    error: str
    raw_response: str


ParseResult = ParseSuccess | ParseFailure


def _reject_constant(name: str) -> Any:
    msg = f"Non-finite number {name} is not valid JSON"
    raise ValueError(msg)


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        msg = f"Number {literal} is out of range"
        raise ValueError(msg)
    return value


def strip_code_fence(text: str) -> str:
    """前後の空白とコードフェンスを取り除く."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _OPENING_FENCE.sub("", cleaned, count=1)
        cleaned = _CLOSING_FENCE.sub("", cleaned, count=1)
    return cleaned


def parse_response(raw_text: str | None) -> ParseResult:
    """モデルの応答テキストをJSONとして解釈する.

    NaN, Infinity and out-of-range floats are rejected.
    Never raises: any decoding problem is returned as a ``ParseFailure``
    holding the decoder message and the first 200 characters of the text.
    """
    text = raw_text if isinstance(raw_text, str) else ""
    try:
        return ParseSuccess(
            json.loads(
                strip_code_fence(text),
                parse_constant=_reject_constant,
                parse_float=_finite_float,
            )
        )
    except (ValueError, RecursionError) as exc:
        return ParseFailure(error=str(exc), raw_response=text[:RAW_RESPONSE_LIMIT])
