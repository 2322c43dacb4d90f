"""Productivity and attention scores derived from partial analysis signals."""

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel

from screen_insight.model.models import clamp

NEUTRAL_PRODUCTIVITY = 50
CONFIDENCE_WEIGHT = 10  # confidence 100 で +10

# 活動ごとの基本スコア
PRODUCTIVITY_BY_ACTIVITY: dict[str, int] = {
    "coding": 90,
    "writing": 85,
    "design": 80,
    "research": 75,
    "debugging": 85,
    "testing": 80,
    "planning": 70,
    "learning": 75,
    "communication": 60,
    "browsing": 40,
    "entertainment": 20,
    "social_media": 15,
}

ATTENTION_BASE = 60
HIGH_OCR_CONFIDENCE = 80
OCR_CONFIDENCE_BONUS = 15
FEW_OBJECTS_LIMIT = 5
FEW_OBJECTS_BONUS = 15
LOW_COMPLEXITY_LIMIT = 50
LOW_COMPLEXITY_BONUS = 10

SCORE_MIN = 0
SCORE_MAX = 100


def _field(source: Any, name: str) -> Any:
    """dict / pydantic モデルのどちらからもフィールドを取り出す."""
    if isinstance(source, Mapping):
        return source.get(name)
    if isinstance(source, BaseModel):
        return getattr(source, name, None)
    return None


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def productivity_score(activity: Any = None) -> int:
    """活動分類から生産性スコア (0-100) を計算する.

    Args:
        activity: primaryActivity / confidence を持つ活動シグナル (省略可)

    Returns:
        int: 活動が無ければ 50
    """
    if activity is None:
        return NEUTRAL_PRODUCTIVITY

    primary = _field(activity, "primaryActivity")
    base = NEUTRAL_PRODUCTIVITY
    if isinstance(primary, str):
        base = PRODUCTIVITY_BY_ACTIVITY.get(primary, NEUTRAL_PRODUCTIVITY)
    confidence = _number(_field(activity, "confidence")) or 0.0

    score = base + confidence / 100 * CONFIDENCE_WEIGHT
    return int(clamp(round_half_up(score), SCORE_MIN, SCORE_MAX))


def attention_score(ocr: Any = None, objects: Any = None) -> int:
    """OCRと物体検出のシグナルから注意スコア (0-100) を計算する.

    各ボーナスは独立に加算される。欠けているフィールドは条件不成立として扱う。
    """
    score = ATTENTION_BASE

    ocr_confidence = _number(_field(ocr, "confidence"))
    if ocr_confidence is not None and ocr_confidence > HIGH_OCR_CONFIDENCE:
        score += OCR_CONFIDENCE_BONUS

    detected = _field(objects, "detectedObjects")
    if isinstance(detected, (list, tuple)) and len(detected) < FEW_OBJECTS_LIMIT:
        score += FEW_OBJECTS_BONUS

    complexity = _number(_field(_field(objects, "layoutAnalysis"), "complexity_score"))
    if complexity is not None and complexity < LOW_COMPLEXITY_LIMIT:
        score += LOW_COMPLEXITY_BONUS

    return int(clamp(score, SCORE_MIN, SCORE_MAX))


def bounded_score(value: Any) -> int | float | None:
    """モデルが返した 0-100 のスコアを範囲内に収める. 数値でなければ None."""
    number = _number(value)
    if number is None:
        return None
    bounded = clamp(number, SCORE_MIN, SCORE_MAX)
    return int(bounded) if float(bounded).is_integer() else bounded
