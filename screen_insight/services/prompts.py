"""Prompt templates for each analysis mode."""

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from screen_insight.model.models import ACTIVITY_TYPES, AnalysisMode

SESSION_CONTEXT_LIMIT = 1000
TEXT_CONTEXT_LIMIT = 4000

ACTIVITY_LINE = "Activity types: " + ", ".join((*ACTIVITY_TYPES, "unknown"))

ContextRenderer = Callable[[dict[str, Any]], str]


@dataclass(frozen=True)
class PromptTemplate:
    """解析モードごとのプロンプト定義."""

    mode: AnalysisMode
    instruction: str
    schema: str
    notes: str = ""
    context: ContextRenderer | None = None

    @property
    def attaches_images(self) -> bool:
        return self.mode.uses_image

    def render(self, context: dict[str, Any] | None = None) -> str:
        parts = [f"{self.instruction} Return a JSON response:\n{self.schema}"]
        if self.notes:
            parts.append(self.notes)
        if self.context is not None:
            parts.append(self.context(context or {}))
        return "\n\n".join(part.strip() for part in parts if part.strip())


# --- Context helpers ---


def _text(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    return str(value)


def _window_line(ctx: dict[str, Any]) -> str:
    window = ctx.get("activeWindow") or {}
    app = _text(window.get("applicationName"), "Unknown")
    title = _text(window.get("windowTitle"), "Unknown")
    return f"{app} - {title}"


def _goal_lines(ctx: dict[str, Any]) -> list[str]:
    goal = ctx.get("goalContext") or {}
    return [
        f"- Title: {_text(goal.get('title'), 'Untitled')}",
        f"- Description: {_text(goal.get('description'), 'No description')}",
    ]


def truncate_session_data(session_data: Any, limit: int = SESSION_CONTEXT_LIMIT) -> str:
    """セッションデータをJSON化し、プロンプト肥大化を防ぐため切り詰める."""
    serialized = json.dumps(session_data, ensure_ascii=False, default=str)
    if len(serialized) <= limit:
        return serialized
    return serialized[:limit] + "..."


def _click_context(ctx: dict[str, Any]) -> str:
    coords = ctx.get("clickCoordinates") or {}
    nearby = ctx.get("nearbyElements") or []
    lines = [
        "Click Context:",
        f"- Coordinates: ({coords.get('x')}, {coords.get('y')})",
        f"- Nearby elements: {json.dumps(nearby, ensure_ascii=False, default=str)}",
        f"- Active window: {_window_line(ctx)}",
        f"- Analysis mode: {_text(ctx.get('analysisMode'), 'general')}",
    ]
    goal = ctx.get("goalContext")
    if goal:
        lines.append(
            f"- Goal: {_text(goal.get('title'), 'Untitled')} - "
            f"{_text(goal.get('description'), 'No description')}"
        )
    lines.append("")
    lines.append("Analyze the user's intent and productivity impact of this click.")
    return "\n".join(lines)


def _goal_relevance_context(ctx: dict[str, Any]) -> str:
    goal = ctx.get("goalContext") or {}
    window = ctx.get("activeWindow") or {}
    extracted = _text(ctx.get("extractedText"), "No text extracted")[:TEXT_CONTEXT_LIMIT]
    lines = [
        "Goal Context:",
        *_goal_lines(ctx),
        f"- Deadline: {_text(goal.get('deadline'), 'None specified')}",
        "",
        "Screen Content:",
        f"- Extracted Text: {extracted}",
        f"- Active Application: {_text(window.get('applicationName'), 'Unknown')}",
        f"- Window Title: {_text(window.get('windowTitle'), 'Unknown')}",
        f"- Team ID: {_text(ctx.get('teamId'), 'None')}",
        "",
        "Score from 0.0 (completely irrelevant) to 1.0 (directly working on the goal).",
    ]
    return "\n".join(lines)


def _progress_context(ctx: dict[str, Any]) -> str:
    text = _text(ctx.get("textContent"), "No text content")[:TEXT_CONTEXT_LIMIT]
    ui_elements = json.dumps(ctx.get("uiElements") or [], ensure_ascii=False, default=str)
    lines = [
        "Goal Context:",
        *_goal_lines(ctx),
        "",
        "Screen Content:",
        f"- Text: {text}",
        f"- UI Elements: {ui_elements}",
        "",
        "Look for:",
        "- Task completions or checkmarks",
        "- Progress bars or percentages",
        "- Error messages or warnings",
        "- Build/deployment status",
        "- Test results",
        "- File changes or saves",
        "- Milestones reached",
        "- Blockers or issues",
    ]
    return "\n".join(lines)


def _session_context(ctx: dict[str, Any]) -> str:
    goal = ctx.get("goalContext")
    team = ctx.get("teamContext")
    goal_text = (
        f"{_text(goal.get('title'), 'Untitled')} - {_text(goal.get('description'), 'No description')}"
        if goal
        else "None"
    )
    team_text = f"Team {_text(team.get('teamId'), 'unknown')}" if team else "Individual"
    lines = [
        "Session Context:",
        f"- Data: {truncate_session_data(ctx.get('sessionData'))}",
        f"- Analysis Mode: {_text(ctx.get('analysisMode'), 'general')}",
        f"- Goal: {goal_text}",
        f"- Team: {team_text}",
        "",
        "Provide actionable insights for productivity improvement.",
    ]
    return "\n".join(lines)


def _group_context(ctx: dict[str, Any]) -> str:
    session = ctx.get("sessionContext") or {}
    count = len(ctx.get("images") or [])
    time_range = _text(session.get("timeRange"), "recent activity")
    hour = ctx.get("hour")
    if hour is None:
        hour = datetime.now().hour
    return "\n".join(
        [
            f"The sequence contains {count} screenshots taken during {time_range}.",
            f"Current time: {hour}:00",
            "Write in third person. Be specific about file paths, line numbers and exact error messages.",
        ]
    )


# --- Schemas ---

_OCR_SCHEMA = """{
  "extractedText": "all visible text concatenated",
  "textRegions": [
    {"x": 0, "y": 0, "width": 100, "height": 20, "text": "specific text", "confidence": 95}
  ],
  "confidence": 90,
  "language": "en"
}"""

_OBJECT_SCHEMA = """{
  "detectedObjects": ["button", "textfield", "window", "menu"],
  "uiElements": ["header", "sidebar", "main_content"],
  "layoutAnalysis": {"layout_type": "desktop_application", "complexity_score": 65},
  "confidenceScores": {"button": 95, "textfield": 88}
}"""

_ACTIVITY_SCHEMA = """{
  "primaryActivity": "coding",
  "secondaryActivities": ["debugging", "research"],
  "confidence": 85,
  "contextClues": {
    "applicationContext": "development_tool",
    "timeOfDay": 14,
    "screenContent": "code_focused",
    "evidenceText": "key indicators you observed"
  },
  "reasoning": "explain why you classified it this way"
}"""

_FULL_SCHEMA = """{
  "ocr": {
    "extractedText": "all visible text",
    "confidence": 90,
    "textRegions": [{"x": 0, "y": 0, "width": 100, "height": 20, "text": "text"}],
    "language": "en"
  },
  "objectDetection": {
    "detectedObjects": ["button", "textfield"],
    "uiElements": ["header", "content"],
    "layoutAnalysis": {"layout_type": "desktop_application", "complexity_score": 65}
  },
  "activityClassification": {
    "primaryActivity": "coding",
    "secondaryActivities": ["debugging"],
    "confidence": 85,
    "contextClues": {
      "applicationContext": "development_tool",
      "screenContent": "code_focused",
      "evidenceText": "key indicators observed"
    }
  },
  "productivityScore": 85,
  "attentionScore": 75,
  "reasoning": "explain the analysis"
}"""

_UI_ELEMENTS_SCHEMA = """{
  "elements": [
    {"type": "button", "x": 100, "y": 200, "width": 80, "height": 30, "text": "Submit", "confidence": 95},
    {"type": "textfield", "x": 50, "y": 150, "width": 200, "height": 25, "placeholder": "Enter text", "confidence": 88}
  ],
  "layout": {
    "layout_type": "desktop_application",
    "complexity_score": 65,
    "primary_color": "#ffffff",
    "secondary_color": "#000000"
  },
  "confidence": 85
}"""

_UI_ELEMENT_TYPES = (
    "Detect these UI element types: button, textfield, checkbox, radio, dropdown, link, "
    "image, icon, menu, window, dialog, tab, scrollbar, slider, progress_bar, label, "
    "heading, paragraph, list, table, form, navigation, header, footer, sidebar, main_content"
)

_CLICK_SCHEMA = """{
  "targetElement": "button|link|textfield|menu|unknown",
  "contextText": "text content near the click",
  "intentClassification": "navigation|input|selection|creation|deletion|search|save|cancel|submit",
  "productivityScore": 0.85,
  "goalRelevance": 0.75,
  "reasoning": "explanation of the analysis"
}"""

_GOAL_RELEVANCE_SCHEMA = """{
  "relevanceScore": 0.85,
  "reasoning": "The content shows code editing which directly relates to the development goal",
  "keyIndicators": ["code editor", "file structure", "debugging"],
  "confidence": 0.9
}"""

_PROGRESS_SCHEMA = """{
  "progressIndicators": [
    {
      "type": "completion|milestone|blocker|progress_bar|file_creation|test_results|build_status|deployment",
      "indicator": "Specific progress indicator found",
      "confidence": 0.9,
      "impact": "positive|negative|neutral",
      "details": "Additional context about the indicator"
    }
  ]
}"""

_SESSION_SCHEMA = """{
  "analysis": {
    "sessionDuration": 3600,
    "productivityScore": 0.85,
    "focusScore": 0.75,
    "mainActivity": "coding",
    "applicationBreakdown": {"VS Code": 60, "Chrome": 25, "Slack": 15},
    "timeDistribution": {"productive": 70, "neutral": 20, "distraction": 10}
  },
  "insights": {
    "patterns": ["Deep focus periods during morning hours"],
    "achievements": ["Completed authentication module", "Fixed 3 bugs"],
    "distractions": ["Social media check", "Multiple browser tabs"],
    "improvements": ["Use focus mode", "Block distracting websites"]
  },
  "recommendations": ["Schedule focused coding blocks", "Use Pomodoro technique", "Minimize context switching"],
  "goalProgress": {
    "relevanceScore": 0.9,
    "timeSpent": 2400,
    "tasksCompleted": 3,
    "milestones": ["Module completed"],
    "blockers": ["API rate limiting"]
  },
  "teamMetrics": {
    "collaborationScore": 0.6,
    "communicationEvents": 5,
    "sharedProgress": 0.8,
    "peerInteractions": ["Code review", "Slack discussion"]
  }
}"""

_GROUP_SCHEMA = """{
  "sessionSummary": {
    "primaryActivities": ["exact activity names, e.g. 'debugging TypeError in auth.js'"],
    "timeSpent": {"debugging auth.js TypeError": 45, "implementing JWT tokens": 35},
    "productivityScore": 75,
    "focusQuality": "high|medium|low",
    "filesModified": 12,
    "errorsEncountered": 8,
    "contextSwitches": 23
  },
  "detailedAnalysis": {
    "workflowDescription": "what the user did across the sequence",
    "keyApplications": ["Visual Studio Code - primary IDE for coding"],
    "contentAnalysis": {
      "websitesVisited": [],
      "filesModified": [],
      "errorsResolved": [],
      "codeSnippets": []
    }
  },
  "insights": {
    "accomplishments": [],
    "patterns": [],
    "recommendations": [],
    "distractions": [],
    "inefficiencies": []
  },
  "activityBreakdown": [
    {
      "screenshotRange": "1-5",
      "activity": "debugging authentication error",
      "specificActions": ["Opened login.js", "Set breakpoint at line 67"],
      "productivity": 85,
      "focusLevel": "high"
    }
  ]
}"""


TEMPLATES: dict[AnalysisMode, PromptTemplate] = {
    AnalysisMode.OCR: PromptTemplate(
        mode=AnalysisMode.OCR,
        instruction="Extract all visible text from this screenshot.",
        schema=_OCR_SCHEMA,
    ),
    AnalysisMode.OBJECT_DETECTION: PromptTemplate(
        mode=AnalysisMode.OBJECT_DETECTION,
        instruction="Analyze this screenshot and identify all UI elements and objects.",
        schema=_OBJECT_SCHEMA,
    ),
    AnalysisMode.ACTIVITY_CLASSIFICATION: PromptTemplate(
        mode=AnalysisMode.ACTIVITY_CLASSIFICATION,
        instruction="Analyze this screenshot to determine what activity the user is performing.",
        schema=_ACTIVITY_SCHEMA,
        notes=ACTIVITY_LINE,
    ),
    AnalysisMode.FULL: PromptTemplate(
        mode=AnalysisMode.FULL,
        instruction=(
            "Perform a comprehensive analysis of this screenshot. Analyze the text content, "
            "UI elements, and determine what activity the user is performing."
        ),
        schema=_FULL_SCHEMA,
        notes=ACTIVITY_LINE,
    ),
    AnalysisMode.UI_ELEMENTS: PromptTemplate(
        mode=AnalysisMode.UI_ELEMENTS,
        instruction="Analyze this screenshot and identify all UI elements and objects.",
        schema=_UI_ELEMENTS_SCHEMA,
        notes=_UI_ELEMENT_TYPES,
    ),
    AnalysisMode.CLICK_INTELLIGENCE: PromptTemplate(
        mode=AnalysisMode.CLICK_INTELLIGENCE,
        instruction="Analyze this click interaction based on the provided context.",
        schema=_CLICK_SCHEMA,
        context=_click_context,
    ),
    AnalysisMode.GOAL_RELEVANCE: PromptTemplate(
        mode=AnalysisMode.GOAL_RELEVANCE,
        instruction="Analyze how relevant this screen content is to the specified goal.",
        schema=_GOAL_RELEVANCE_SCHEMA,
        context=_goal_relevance_context,
    ),
    AnalysisMode.PROGRESS_INDICATORS: PromptTemplate(
        mode=AnalysisMode.PROGRESS_INDICATORS,
        instruction="Analyze the screen content for progress indicators related to the specified goal.",
        schema=_PROGRESS_SCHEMA,
        context=_progress_context,
    ),
    AnalysisMode.SESSION_INTELLIGENCE: PromptTemplate(
        mode=AnalysisMode.SESSION_INTELLIGENCE,
        instruction="Analyze this work session data and provide comprehensive insights.",
        schema=_SESSION_SCHEMA,
        context=_session_context,
    ),
    AnalysisMode.GROUP_ANALYSIS: PromptTemplate(
        mode=AnalysisMode.GROUP_ANALYSIS,
        instruction=(
            "Perform a detailed analysis of this sequence of screenshots. Document visible text, "
            "code, errors, UI elements, browser tabs and terminal commands."
        ),
        schema=_GROUP_SCHEMA,
        notes=ACTIVITY_LINE,
        context=_group_context,
    ),
}


def template_for(mode: Any) -> PromptTemplate:
    """モードに対応するテンプレートを返す. 未知のモードは full."""
    return TEMPLATES[AnalysisMode.resolve(mode)]


def render_prompt(mode: Any, context: dict[str, Any] | None = None) -> str:
    return template_for(mode).render(context)
