"""Deterministic substitutes for model output.

Used when no model is configured (``raw_text is None``) or when the model
answered with text that could not be parsed.  Every synthesizer returns the
same shape the model is asked to emit, so the assembler treats both paths
alike; only the ``reasoning``/``note`` field tells them apart.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from screen_insight.model.models import UNKNOWN, AnalysisMode

NOTE_UNAVAILABLE = "Heuristic analysis (AI not available)"
NOTE_PARSE_FAILED = "Fallback analysis due to parsing error"
NOTE_APPROXIMATE = "Approximate values; enable AI analysis for better insights"

OCR_RAW_TEXT_LIMIT = 1000
WORKFLOW_RAW_TEXT_LIMIT = 200
SECONDS_PER_DATA_POINT = 30
MIN_KEYWORD_LENGTH = 4  # 4文字以上の単語だけをキーワードとする

GOAL_TEXT_WEIGHT = 0.3
GOAL_TITLE_WEIGHT = 0.2
GOAL_APP_WEIGHT = 0.1


@dataclass(frozen=True)
class Rule:
    """(predicate, factory) の組. 判定は小文字化済みテキストに対して行う."""

    name: str
    predicate: Callable[[str], bool]
    factory: Callable[[], dict[str, Any]]


def contains_any(*needles: str) -> Callable[[str], bool]:
    def predicate(text: str) -> bool:
        return any(needle in text for needle in needles)

    return predicate


def fire_all(rules: Sequence[Rule], text: str) -> list[dict[str, Any]]:
    """条件を満たす全ルールを定義順に適用する."""
    return [rule.factory() for rule in rules if rule.predicate(text)]


def first_match(rules: Sequence[Rule], text: str) -> dict[str, Any] | None:
    """最初に条件を満たしたルールの結果を返す."""
    for rule in rules:
        if rule.predicate(text):
            return rule.factory()
    return None


def _indicator(kind: str, indicator: str, confidence: float, impact: str) -> Callable[[], dict[str, Any]]:
    return lambda: {
        "type": kind,
        "indicator": indicator,
        "confidence": confidence,
        "impact": impact,
    }


PROGRESS_RULES: tuple[Rule, ...] = (
    Rule(
        "completion",
        contains_any("completed", "done", "finished"),
        _indicator("completion", "Task completion detected", 0.7, "positive"),
    ),
    Rule(
        "blocker",
        contains_any("error", "failed", "problem"),
        _indicator("blocker", "Error or problem detected", 0.8, "negative"),
    ),
    Rule(
        "progress_bar",
        contains_any("%", "progress", "loading"),
        _indicator("progress_bar", "Progress tracking detected", 0.6, "neutral"),
    ),
)


def _activity(name: str, confidence: int, evidence: str) -> Callable[[], dict[str, Any]]:
    return lambda: {
        "primaryActivity": name,
        "confidence": confidence,
        "contextClues": {"evidenceText": evidence},
    }


def _part(text: str, label: str) -> str:
    prefix = f"{label}:"
    for line in text.splitlines():
        if line.startswith(prefix):
            return line[len(prefix):]
    return ""


def field_contains(label: str, *needles: str) -> Callable[[str], bool]:
    """app / title 行だけを対象にした contains_any."""
    match = contains_any(*needles)

    def predicate(text: str) -> bool:
        return match(_part(text, label))

    return predicate


# 入力は "app:<アプリ名>\ntitle:<ウィンドウタイトル>" 形式. 最初に一致したルールを採用
ACTIVITY_RULES: tuple[Rule, ...] = (
    Rule(
        "editor_app",
        field_contains("app", "code", "vim", "pycharm", "intellij", "ide"),
        _activity("coding", 75, "development application in focus"),
    ),
    Rule(
        "code_title",
        field_contains("title", "code", "editor", ".js", ".py", ".ts"),
        _activity("coding", 70, "source file in window title"),
    ),
    Rule(
        "entertainment_title",
        field_contains("title", "youtube", "netflix", "twitch"),
        _activity("entertainment", 70, "video site in window title"),
    ),
    Rule(
        "social_title",
        field_contains("title", "social", "twitter", "facebook", "instagram", "reddit"),
        _activity("social_media", 70, "social network in window title"),
    ),
    Rule(
        "writing_title",
        field_contains("title", "document", "word", "write"),
        _activity("writing", 65, "document in window title"),
    ),
    Rule(
        "design_title",
        field_contains("title", "figma", "design", "sketch"),
        _activity("design", 65, "design tool in window title"),
    ),
    Rule(
        "chat_title",
        field_contains("title", "slack", "discord", "teams"),
        _activity("communication", 60, "chat application in window title"),
    ),
    Rule(
        "browser_app",
        field_contains("app", "chrome", "firefox", "safari", "edge", "browser"),
        _activity("research", 40, "web browser in focus"),
    ),
)


# --- Image modes ---


def ocr_fallback(raw_text: str | None = None) -> dict[str, Any]:
    if raw_text is None:
        return {
            "extractedText": "",
            "textRegions": [],
            "confidence": 0,
            "language": "en",
            "note": NOTE_UNAVAILABLE,
        }
    # パース失敗時は生テキストをそのまま抽出結果として扱う
    return {
        "extractedText": raw_text[:OCR_RAW_TEXT_LIMIT],
        "textRegions": [],
        "confidence": 50,
        "language": "en",
        "note": NOTE_PARSE_FAILED,
    }


def object_fallback(raw_text: str | None = None) -> dict[str, Any]:
    return {
        "detectedObjects": [],
        "uiElements": [],
        "layoutAnalysis": {"layout_type": UNKNOWN, "complexity_score": 50},
        "note": NOTE_UNAVAILABLE if raw_text is None else NOTE_PARSE_FAILED,
    }


def ui_elements_fallback(raw_text: str | None = None) -> dict[str, Any]:
    return {
        "elements": [],
        "layout": {"layout_type": UNKNOWN, "complexity_score": 50},
        "confidence": 0,
        "note": NOTE_UNAVAILABLE if raw_text is None else NOTE_PARSE_FAILED,
    }


def activity_fallback(active_window: dict[str, Any] | None = None, raw_text: str | None = None) -> dict[str, Any]:
    """ウィンドウ情報から活動を推定する. 手掛かりが無ければ unknown."""
    window = active_window or {}
    text = "\n".join(
        [
            f"app:{str(window.get('applicationName') or '').lower()}",
            f"title:{str(window.get('windowTitle') or '').lower()}",
        ]
    )
    result = first_match(ACTIVITY_RULES, text) or {
        "primaryActivity": UNKNOWN,
        "confidence": 0,
        "contextClues": {},
    }
    result["secondaryActivities"] = []
    result["reasoning"] = NOTE_UNAVAILABLE if raw_text is None else NOTE_PARSE_FAILED
    return result


def full_fallback(active_window: dict[str, Any] | None = None, raw_text: str | None = None) -> dict[str, Any]:
    activity = activity_fallback(active_window, raw_text)
    reasoning = activity.pop("reasoning")
    ocr = ocr_fallback(None)
    ocr.pop("note")
    objects = object_fallback(raw_text)
    objects.pop("note")
    return {
        "ocr": ocr,
        "objectDetection": objects,
        "activityClassification": activity,
        "reasoning": reasoning,
    }


# --- Context modes ---


def _element_text(element: Any) -> str:
    if isinstance(element, dict):
        text = element.get("text")
        return text if isinstance(text, str) else ""
    return ""


def click_fallback(
    nearby_elements: Sequence[Any] | None,
    analysis_mode: str | None = None,
    raw_text: str | None = None,
) -> dict[str, Any]:
    """クリック周辺の要素テキストだけで意図を推定する."""
    nearby = list(nearby_elements or [])
    texts = [_element_text(element) for element in nearby]
    return {
        "targetElement": (texts[0] if nearby and texts[0] else UNKNOWN),
        "contextText": " ".join(text for text in texts if text),
        "intentClassification": "navigation",
        "productivityScore": 0.5,
        "goalRelevance": 0.5 if analysis_mode == "goal_oriented" else 0.0,
        "reasoning": NOTE_UNAVAILABLE if raw_text is None else NOTE_PARSE_FAILED,
    }


def goal_keywords(goal_context: dict[str, Any]) -> list[str]:
    words = f"{goal_context.get('title') or ''} {goal_context.get('description') or ''}".lower().split()
    return [word for word in words if len(word) >= MIN_KEYWORD_LENGTH]


def goal_relevance_fallback(
    goal_context: dict[str, Any],
    extracted_text: str | None = None,
    active_window: dict[str, Any] | None = None,
    raw_text: str | None = None,
) -> dict[str, Any]:
    """キーワード一致によるゴール関連度 (0-1)."""
    if raw_text is not None:
        return {
            "relevanceScore": 0.5,
            "reasoning": "Failed to parse AI response, using default score",
            "keyIndicators": [],
            "confidence": 0.3,
        }

    window = active_window or {}
    content = (extracted_text or "").lower()
    title = str(window.get("windowTitle") or "").lower()
    app = str(window.get("applicationName") or "").lower()

    score = 0.0
    matched: list[str] = []
    for keyword in goal_keywords(goal_context):
        hit = False
        if keyword in content:
            score += GOAL_TEXT_WEIGHT
            hit = True
        if keyword in title:
            score += GOAL_TITLE_WEIGHT
            hit = True
        if keyword in app:
            score += GOAL_APP_WEIGHT
            hit = True
        if hit:
            matched.append(keyword)

    return {
        "relevanceScore": round(min(1.0, score), 4),
        "reasoning": "Basic keyword matching (AI not available)",
        "keyIndicators": matched,
    }


def progress_fallback(text_content: str | None, raw_text: str | None = None) -> dict[str, Any]:
    if raw_text is not None:
        return {
            "progressIndicators": [
                {
                    "type": UNKNOWN,
                    "indicator": "Failed to parse progress analysis",
                    "confidence": 0.3,
                    "impact": "neutral",
                    "details": "AI response parsing failed",
                }
            ],
            "note": NOTE_PARSE_FAILED,
        }
    return {
        "progressIndicators": fire_all(PROGRESS_RULES, (text_content or "").lower()),
        "note": NOTE_UNAVAILABLE,
    }


def session_fallback(
    session_data: Any,
    goal_context: dict[str, Any] | None = None,
    team_context: dict[str, Any] | None = None,
    raw_text: str | None = None,
) -> dict[str, Any]:
    """固定のプレースホルダ値. 入力からは件数と時間だけを使う."""
    if raw_text is not None:
        return {
            "analysis": {
                "sessionDuration": 1800,
                "productivityScore": 0.5,
                "focusScore": 0.5,
                "mainActivity": UNKNOWN,
                "applicationBreakdown": {},
            },
            "insights": {
                "patterns": ["Analysis parsing failed"],
                "achievements": [],
                "distractions": [],
                "improvements": ["Fix AI response parsing"],
            },
            "recommendations": ["Retry analysis with corrected data"],
            "goalProgress": None,
            "teamMetrics": None,
            "note": NOTE_PARSE_FAILED,
        }

    points = session_data if isinstance(session_data, list) else [session_data]
    duration = len(points) * SECONDS_PER_DATA_POINT
    return {
        "analysis": {
            "sessionDuration": duration,
            "screenshotCount": len(points),
            "productivityScore": 0.7,
            "focusScore": 0.6,
            "mainActivity": UNKNOWN,
            "applicationBreakdown": {},
        },
        "insights": {
            "patterns": ["Basic analysis completed"],
            "achievements": ["Session recorded"],
            "distractions": [],
            "improvements": ["Consider using AI analysis for better insights"],
        },
        "recommendations": [
            "Enable AI analysis for detailed insights",
            "Increase session duration for better analysis",
        ],
        "goalProgress": (
            {"relevanceScore": 0.5, "timeSpent": duration, "tasksCompleted": 0, "blockers": []}
            if goal_context
            else None
        ),
        "teamMetrics": (
            {"collaborationScore": 0.5, "communicationEvents": 0, "sharedProgress": 0}
            if team_context
            else None
        ),
        "note": NOTE_APPROXIMATE,
    }


def group_fallback(raw_text: str, screenshot_count: int) -> dict[str, Any]:
    """グループ解析のパース失敗時の結果. モデル未設定時には使わない."""
    return {
        "sessionSummary": {
            "primaryActivities": [UNKNOWN],
            "timeSpent": {UNKNOWN: 100},
            "productivityScore": 50,
            "focusQuality": "medium",
        },
        "detailedAnalysis": {
            "workflowDescription": raw_text[:WORKFLOW_RAW_TEXT_LIMIT] + "...",
            "keyApplications": [],
            "contentAnalysis": {},
        },
        "insights": {
            "accomplishments": ["Group analysis completed"],
            "patterns": [],
            "recommendations": ["Unable to parse detailed insights"],
            "distractions": [],
        },
        "activityBreakdown": [],
        "metadata": {
            "screenshotCount": screenshot_count,
            "analysisType": "group_analysis_fallback",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "error": "JSON parsing failed",
        },
    }


def synthesize(mode: AnalysisMode, context: dict[str, Any], raw_text: str | None = None) -> dict[str, Any]:
    """モードに応じた代替結果を作る.

    Args:
        mode: 解析モード
        context: リクエストのペイロード (camelCase のまま)
        raw_text: パースに失敗したモデル応答. モデル未設定なら None
    """
    window = context.get("activeWindow")
    if mode is AnalysisMode.OCR:
        return ocr_fallback(raw_text)
    if mode is AnalysisMode.OBJECT_DETECTION:
        return object_fallback(raw_text)
    if mode is AnalysisMode.UI_ELEMENTS:
        return ui_elements_fallback(raw_text)
    if mode is AnalysisMode.ACTIVITY_CLASSIFICATION:
        return activity_fallback(window, raw_text)
    if mode is AnalysisMode.CLICK_INTELLIGENCE:
        return click_fallback(context.get("nearbyElements"), context.get("analysisMode"), raw_text)
    if mode is AnalysisMode.GOAL_RELEVANCE:
        return goal_relevance_fallback(
            context.get("goalContext") or {}, context.get("extractedText"), window, raw_text
        )
    if mode is AnalysisMode.PROGRESS_INDICATORS:
        return progress_fallback(context.get("textContent"), raw_text)
    if mode is AnalysisMode.SESSION_INTELLIGENCE:
        return session_fallback(
            context.get("sessionData"), context.get("goalContext"), context.get("teamContext"), raw_text
        )
    if mode is AnalysisMode.GROUP_ANALYSIS:
        return group_fallback(raw_text or "", len(context.get("images") or []))
    return full_fallback(window, raw_text)
