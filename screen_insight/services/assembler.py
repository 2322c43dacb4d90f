"""Normalize parsed or synthesized payloads into the per-mode response contract."""

import random
from typing import Any

from screen_insight.model.models import (
    ActivitySignal,
    AnalysisMode,
    ClickInsight,
    GoalRelevance,
    GroupInsight,
    ObjectSignal,
    OcrSignal,
    ProgressReport,
    Schema,
    SessionInsight,
    UiElementsSignal,
    coerce,
)
from screen_insight.services.parser import ParseFailure
from screen_insight.services.scoring import attention_score, bounded_score, productivity_score

PROCESSING_TIME_MIN_MS = 1000
PROCESSING_TIME_SPAN_MS = 2000

FULL_KEYS = ("ocr", "objectDetection", "activityClassification", "productivityScore", "attentionScore")

# HTTP 層が決めるキー. モデル応答に含まれていても捨てる
ENVELOPE_KEYS = ("success", "error")

SCHEMAS: dict[AnalysisMode, type[Schema]] = {
    AnalysisMode.OCR: OcrSignal,
    AnalysisMode.OBJECT_DETECTION: ObjectSignal,
    AnalysisMode.ACTIVITY_CLASSIFICATION: ActivitySignal,
    AnalysisMode.UI_ELEMENTS: UiElementsSignal,
    AnalysisMode.CLICK_INTELLIGENCE: ClickInsight,
    AnalysisMode.GOAL_RELEVANCE: GoalRelevance,
    AnalysisMode.PROGRESS_INDICATORS: ProgressReport,
    AnalysisMode.SESSION_INTELLIGENCE: SessionInsight,
    AnalysisMode.GROUP_ANALYSIS: GroupInsight,
}

# full モードのサブオブジェクト: (出力キー, 受け付ける別名, フラットに置かれうるキー, スキーマ)
_SECTIONS: tuple[tuple[str, tuple[str, ...], tuple[str, ...], type[Schema]], ...] = (
    ("ocr", ("ocr",), ("extractedText", "textRegions", "language"), OcrSignal),
    (
        "objectDetection",
        ("objectDetection", "object_detection", "objects"),
        ("detectedObjects", "uiElements", "layoutAnalysis", "confidenceScores"),
        ObjectSignal,
    ),
    (
        "activityClassification",
        ("activityClassification", "activity_classification", "activity"),
        ("primaryActivity", "secondaryActivities", "contextClues"),
        ActivitySignal,
    ),
)


def processing_time_ms(rng: random.Random | None = None) -> float:
    """見積もりの処理時間 [1000, 3000) ミリ秒. 実測値ではない."""
    source = rng or random
    return PROCESSING_TIME_MIN_MS + source.random() * PROCESSING_TIME_SPAN_MS


def _renest(payload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """フラット/ネストどちらの応答も ocr / objectDetection / activityClassification に振り分ける."""
    sections: dict[str, dict[str, Any]] = {}
    for key, aliases, flat_keys, _schema in _SECTIONS:
        nested: dict[str, Any] = {}
        for alias in aliases:
            candidate = payload.get(alias)
            if isinstance(candidate, dict):
                nested = candidate
                break
        flat = {name: payload[name] for name in flat_keys if name in payload and name not in nested}
        sections[key] = {**flat, **nested}

    # トップレベルの confidence は活動分類の確信度とみなす
    activity = sections["activityClassification"]
    if "primaryActivity" in payload and "confidence" in payload and "confidence" not in activity:
        activity["confidence"] = payload["confidence"]
    return sections


def assemble_full(payload: Any, rng: random.Random | None = None) -> dict[str, Any]:
    """full モードの結果を組み立てる.

    Always returns the five keys in ``FULL_KEYS``; ``reasoning`` is kept when
    the payload carries one.
    """
    source = payload if isinstance(payload, dict) else {}
    sections = _renest(source)

    elapsed = processing_time_ms(rng)
    result: dict[str, Any] = {}
    for key, _aliases, _flat, schema in _SECTIONS:
        section = coerce(schema, sections[key])
        section["processing_time_ms"] = elapsed
        result[key] = section

    productivity = bounded_score(source.get("productivityScore"))
    if productivity is None:
        productivity = productivity_score(result["activityClassification"])
    attention = bounded_score(source.get("attentionScore"))
    if attention is None:
        attention = attention_score(result["ocr"], result["objectDetection"])

    result["productivityScore"] = productivity
    result["attentionScore"] = attention

    reasoning = source.get("reasoning")
    if isinstance(reasoning, str) and reasoning:
        result["reasoning"] = reasoning
    return result


def assemble(mode: Any, payload: Any, rng: random.Random | None = None) -> dict[str, Any]:
    """解析モードに応じて結果を正規化する.

    Args:
        mode: 解析モード (未知なら full)
        payload: パース済みのモデル応答、または代替結果
        rng: processing_time_ms 用の乱数源 (テスト用)

    Returns:
        dict: スキーマに沿った結果 + processing_time_ms
    """
    resolved = AnalysisMode.resolve(mode)
    if resolved is AnalysisMode.FULL:
        return assemble_full(payload, rng)

    if resolved is AnalysisMode.PROGRESS_INDICATORS and isinstance(payload, list):
        payload = {"progressIndicators": payload}

    result = coerce(SCHEMAS[resolved], payload)
    for key in ENVELOPE_KEYS:
        result.pop(key, None)
    result["processing_time_ms"] = processing_time_ms(rng)
    return result


def parse_error_envelope(mode: Any, failure: ParseFailure) -> dict[str, Any]:
    """パース失敗を示すエラー形の結果. rawResponse は200文字以内."""
    return {
        "success": False,
        "error": f"Failed to parse AI response: {failure.error}",
        "analysisType": AnalysisMode.resolve(mode).value,
        "rawResponse": failure.raw_response,
    }
