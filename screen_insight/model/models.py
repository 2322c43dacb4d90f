"""Analysis modes and the response schemas every analysis path is coerced into."""

__all__ = [
    "ACTIVITY_TYPES",
    "ActivitySignal",
    "AnalysisMode",
    "ClickInsight",
    "GoalRelevance",
    "GroupInsight",
    "ObjectSignal",
    "OcrSignal",
    "ProgressIndicator",
    "ProgressReport",
    "SessionInsight",
    "UiElementsSignal",
    "coerce",
]

import copy
from enum import Enum
from typing import Annotated, Any, ClassVar, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_serializer,
)

UNKNOWN = "unknown"

# 分類に使う活動語彙 (12種) + unknown
ACTIVITY_TYPES = (
    "coding",
    "writing",
    "design",
    "browsing",
    "communication",
    "research",
    "debugging",
    "testing",
    "planning",
    "learning",
    "entertainment",
    "social_media",
)

PROGRESS_TYPES = (
    "completion",
    "milestone",
    "blocker",
    "progress_bar",
    "file_creation",
    "test_results",
    "build_status",
    "deployment",
    UNKNOWN,
)

IMPACTS = ("positive", "negative", "neutral")

MAX_PRUNE_PASSES = 10


class AnalysisMode(str, Enum):
    """解析モード."""

    OCR = "ocr"
    OBJECT_DETECTION = "object_detection"
    ACTIVITY_CLASSIFICATION = "activity_classification"
    FULL = "full"
    CLICK_INTELLIGENCE = "click_intelligence"
    SESSION_INTELLIGENCE = "session_intelligence"
    PROGRESS_INDICATORS = "progress_indicators"
    UI_ELEMENTS = "ui_elements"
    GOAL_RELEVANCE = "goal_relevance"
    GROUP_ANALYSIS = "group_analysis"

    @classmethod
    def resolve(cls, value: Any) -> "AnalysisMode":
        """未知のモードはエラーにせず FULL として扱う."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.FULL

    @property
    def uses_image(self) -> bool:
        return self in IMAGE_MODES


IMAGE_MODES = frozenset(
    {
        AnalysisMode.OCR,
        AnalysisMode.OBJECT_DETECTION,
        AnalysisMode.ACTIVITY_CLASSIFICATION,
        AnalysisMode.FULL,
        AnalysisMode.UI_ELEMENTS,
        AnalysisMode.GROUP_ANALYSIS,
    }
)


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


# 0-100 のスコア / 0-1 の割合
Percent = Annotated[float, AfterValidator(lambda v: clamp(v, 0.0, 100.0))]
Fraction = Annotated[float, AfterValidator(lambda v: clamp(v, 0.0, 1.0))]


def _labels(value: Any) -> Any:
    """文字列リストを期待するフィールドで、dict要素は type/name/text を採用する."""
    if not isinstance(value, list):
        return value
    labels = []
    for item in value:
        if isinstance(item, dict):
            item = item.get("type") or item.get("name") or item.get("text")
        if isinstance(item, str) and item:
            labels.append(item)
    return labels


class Schema(BaseModel):
    """Base for response schemas.

    Unknown keys returned by the model are kept.  Keys listed in
    ``optional_fields`` are omitted from the dump when they are ``None``.
    """

    model_config = ConfigDict(extra="allow")

    optional_fields: ClassVar[frozenset[str]] = frozenset()

    @model_serializer(mode="wrap")
    def _drop_empty_optionals(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        for key in self.optional_fields:
            if key in data and data[key] is None:
                del data[key]
        return data


# --- Image signals ---


class TextRegion(Schema):
    optional_fields: ClassVar[frozenset[str]] = frozenset({"confidence"})

    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    text: str = ""
    confidence: Percent | None = None


class OcrSignal(Schema):
    extractedText: str = ""
    confidence: Percent = 0
    textRegions: list[TextRegion] = Field(default_factory=list)
    language: str = "en"


class LayoutAnalysis(Schema):
    layout_type: str = UNKNOWN
    complexity_score: Percent = 50


class ObjectSignal(Schema):
    detectedObjects: list[str] = Field(default_factory=list)
    uiElements: list[str] = Field(default_factory=list)
    layoutAnalysis: LayoutAnalysis = Field(default_factory=LayoutAnalysis)

    @field_validator("detectedObjects", "uiElements", mode="before")
    @classmethod
    def _normalize_labels(cls, v: Any) -> Any:
        return _labels(v)


class ActivitySignal(Schema):
    primaryActivity: str = UNKNOWN
    secondaryActivities: list[str] = Field(default_factory=list)
    confidence: Percent = 0
    contextClues: dict[str, Any] = Field(default_factory=dict)

    @field_validator("primaryActivity", mode="before")
    @classmethod
    def _known_activity(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        name = v.strip().lower().replace(" ", "_")
        return name if name in ACTIVITY_TYPES else UNKNOWN

    @field_validator("secondaryActivities", mode="before")
    @classmethod
    def _known_activities(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        names = (str(item).strip().lower().replace(" ", "_") for item in v)
        return [name for name in names if name in ACTIVITY_TYPES]


class UiElement(Schema):
    optional_fields: ClassVar[frozenset[str]] = frozenset({"text", "confidence"})

    type: str = UNKNOWN
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0
    text: str | None = None
    confidence: Percent | None = None


class UiElementsSignal(Schema):
    elements: list[UiElement] = Field(default_factory=list)
    layout: LayoutAnalysis = Field(default_factory=LayoutAnalysis)
    confidence: Percent = 0


# --- Context signals ---


class ClickInsight(Schema):
    optional_fields: ClassVar[frozenset[str]] = frozenset({"reasoning"})

    targetElement: str = UNKNOWN
    contextText: str = ""
    intentClassification: str = "navigation"
    productivityScore: Fraction = 0.5
    goalRelevance: Fraction = 0.0
    reasoning: str | None = None


class GoalRelevance(Schema):
    optional_fields: ClassVar[frozenset[str]] = frozenset({"confidence"})

    relevanceScore: Fraction = 0.0
    reasoning: str = ""
    keyIndicators: list[str] = Field(default_factory=list)
    confidence: Fraction | None = None


class ProgressIndicator(Schema):
    optional_fields: ClassVar[frozenset[str]] = frozenset({"details"})

    type: str = UNKNOWN
    indicator: str = ""
    confidence: Fraction = 0
    impact: str = "neutral"
    details: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _known_type(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        name = v.strip().lower()
        return name if name in PROGRESS_TYPES else UNKNOWN

    @field_validator("impact", mode="before")
    @classmethod
    def _known_impact(cls, v: Any) -> Any:
        if not isinstance(v, str):
            return v
        name = v.strip().lower()
        return name if name in IMPACTS else "neutral"


class ProgressReport(Schema):
    progressIndicators: list[ProgressIndicator] = Field(default_factory=list)

    @field_validator("progressIndicators", mode="before")
    @classmethod
    def _coerce_items(cls, v: Any) -> Any:
        # 壊れた要素だけを捨てる
        if not isinstance(v, list):
            return v
        return [coerce(ProgressIndicator, item) for item in v if isinstance(item, dict)]


class SessionAnalysis(Schema):
    sessionDuration: float = 0
    productivityScore: Fraction = 0
    focusScore: Fraction = 0
    mainActivity: str = UNKNOWN
    applicationBreakdown: dict[str, float] = Field(default_factory=dict)


class SessionInsights(Schema):
    patterns: list[str] = Field(default_factory=list)
    achievements: list[str] = Field(default_factory=list)
    distractions: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)


class GoalProgress(Schema):
    relevanceScore: Fraction = 0
    timeSpent: float = 0
    tasksCompleted: int = 0
    blockers: list[str] = Field(default_factory=list)


class TeamMetrics(Schema):
    collaborationScore: Fraction = 0
    communicationEvents: int = 0
    sharedProgress: Fraction = 0


class SessionInsight(Schema):
    analysis: SessionAnalysis = Field(default_factory=SessionAnalysis)
    insights: SessionInsights = Field(default_factory=SessionInsights)
    recommendations: list[str] = Field(default_factory=list)
    goalProgress: GoalProgress | None = None
    teamMetrics: TeamMetrics | None = None


class GroupSummary(Schema):
    primaryActivities: list[str] = Field(default_factory=lambda: [UNKNOWN])
    timeSpent: dict[str, float] = Field(default_factory=dict)
    productivityScore: Percent = 50
    focusQuality: str = "medium"


class GroupInsight(Schema):
    sessionSummary: GroupSummary = Field(default_factory=GroupSummary)
    detailedAnalysis: dict[str, Any] = Field(default_factory=dict)
    insights: dict[str, Any] = Field(default_factory=dict)
    activityBreakdown: list[dict[str, Any]] = Field(default_factory=list)


# --- Default filling ---

SchemaT = TypeVar("SchemaT", bound=Schema)


def _prune(data: Any, loc: tuple[Any, ...]) -> bool:
    """エラー位置の値を取り除く. 取り除けたら True."""
    parent: Any = None
    key: Any = None
    current = data
    for step in loc:
        if isinstance(current, dict) and step in current:
            parent, key, current = current, step, current[step]
        elif isinstance(current, list) and isinstance(step, int) and 0 <= step < len(current):
            parent, key, current = current, step, current[step]
        else:
            break
    if parent is None:
        return False
    del parent[key]
    return True


def validate_schema(schema: type[SchemaT], value: Any) -> SchemaT:
    """``value`` を schema に当てはめる.

    Invalid fields are removed and replaced by their defaults; a value that
    is not a mapping yields the all-default instance.
    """
    if isinstance(value, schema):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if not isinstance(value, dict):
        return schema()

    data = copy.deepcopy(value)
    for _ in range(MAX_PRUNE_PASSES):
        try:
            return schema.model_validate(data)
        except ValidationError as exc:
            # 後ろのリスト要素から削除してインデックスのずれを防ぐ
            locs = sorted(
                {tuple(err["loc"]) for err in exc.errors()},
                key=lambda loc: [str(step).zfill(8) for step in loc],
                reverse=True,
            )
            if not any([_prune(data, loc) for loc in locs]):
                break
    return schema()


def coerce(schema: type[Schema], value: Any) -> dict[str, Any]:
    """Validate ``value`` against ``schema`` and return a plain dict."""
    return validate_schema(schema, value).model_dump()
