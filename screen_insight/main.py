"""FastAPI app exposing the screenshot and session analysis endpoints."""

from collections import deque
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from screen_insight.config import Settings, get_settings
from screen_insight.logger import configure_logging, logger
from screen_insight.services.analysis import AnalysisService
from screen_insight.services.llm import ModelProvider
from screen_insight.services.outcome import HTTP_BAD_REQUEST, Outcome, to_status_and_body

ANALYSIS_ENDPOINTS = [
    "/api/analysis/ocr",
    "/api/analysis/ui-elements",
    "/api/analysis/click-intelligence",
    "/api/analysis/goal-relevance",
    "/api/analysis/progress-indicators",
    "/api/analysis/session-intelligence",
]

# --- Pydanticモデル定義 ---


class Payload(BaseModel):
    """リクエストボディの基底. 未知のフィールドはそのまま保持する."""

    model_config = ConfigDict(extra="allow")


class ActiveWindow(Payload):
    applicationName: str | None = None
    windowTitle: str | None = None


class GoalContext(Payload):
    title: str | None = None
    description: str | None = None
    deadline: str | None = None


class AnalyzeRequest(Payload):
    """スクリーンショット解析リクエスト."""

    imageBase64: str | None = None
    analysisType: str | None = "full"
    activeWindow: ActiveWindow | None = None


class ImageRequest(Payload):
    imageData: str | None = None
    mimeType: str | None = "image/png"


class ClickRequest(Payload):
    """クリック解析リクエスト."""

    clickCoordinates: dict[str, Any] | None = None
    nearbyElements: list[dict[str, Any]] | None = None
    activeWindow: ActiveWindow | None = None
    analysisMode: str | None = None
    goalContext: GoalContext | None = None


class GoalRelevanceRequest(Payload):
    goalContext: GoalContext | None = None
    extractedText: str | None = None
    activeWindow: ActiveWindow | None = None
    teamId: str | int | None = None


class ProgressRequest(Payload):
    textContent: str | None = None
    uiElements: list[Any] | None = None
    goalContext: GoalContext | None = None


class SessionRequest(Payload):
    sessionData: Any = None
    analysisMode: str | None = None
    goalContext: GoalContext | None = None
    teamContext: dict[str, Any] | None = None


class GroupRequest(Payload):
    images: list[str] | None = None
    sessionContext: dict[str, Any] | None = None


# --- ロギング ---


def log_message(app: FastAPI, message: str) -> None:
    """ロガーに出力し、ログキューにも追加する."""
    logger.info(message)
    app.state.logs.append(message)


# --- 依存関係 ---


def get_analysis_service(request: Request) -> AnalysisService:
    return request.app.state.analysis


def _respond(request: Request, outcome: Outcome) -> JSONResponse:
    status_code, body = to_status_and_body(outcome)
    log_message(request.app, f"{request.method} {request.url.path} -> {status_code}")
    return JSONResponse(status_code=status_code, content=body)


def create_app(settings: Settings | None = None, provider: ModelProvider | None = None) -> FastAPI:
    """アプリケーションを構築する.

    Args:
        settings: 設定 (省略時は環境変数から)
        provider: モデルクライアントの保持者 (テストでは差し替え可能)
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, settings.log_file)
    provider = provider or ModelProvider(settings)

    app = FastAPI(
        title="Screen Insight API",
        description="Screenshot and session telemetry analysis for productivity signals",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.provider = provider
    app.state.analysis = AnalysisService(provider)
    app.state.logs = deque(maxlen=100)  # 最大100件

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """不正なリクエストボディは 400 で返す."""
        errors = exc.errors()
        if errors:
            first = errors[0]
            where = ".".join(str(step) for step in first.get("loc", ()) if step != "body")
            message = f"Invalid request body: {where or 'body'} {first.get('msg', '')}".strip()
        else:
            message = "Invalid request body"
        log_message(request.app, f"{request.method} {request.url.path} -> {HTTP_BAD_REQUEST}")
        return JSONResponse(status_code=HTTP_BAD_REQUEST, content={"success": False, "error": message})

    # --- APIエンドポイント定義 ---

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "ai_service_available": provider.configured,
            "model_name": provider.model_name,
        }

    @app.get("/status")
    async def get_current_status(request: Request) -> dict[str, Any]:
        """現在のシステム状態と直近のログを返す."""
        return {
            "provider": settings.provider,
            "model_configured": provider.configured,
            "model_name": provider.model_name,
            "logs": list(request.app.state.logs),
        }

    @app.post("/api/analyze")
    async def analyze(
        req: AnalyzeRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        """スクリーンショットを解析モードに応じて解析する."""
        window = req.activeWindow.model_dump() if req.activeWindow else None
        outcome = await service.analyze_screenshot(req.imageBase64, req.analysisType, window)
        return _respond(request, outcome)

    @app.post("/api/analyze-group")
    async def analyze_group(
        req: GroupRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        """スクリーンショット列をまとめて解析する."""
        outcome = await service.group_analysis(req.images, req.sessionContext)
        return _respond(request, outcome)

    @app.post("/api/analysis/ocr")
    async def analysis_ocr(
        req: ImageRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        outcome = await service.ocr(req.imageData, req.mimeType)
        return _respond(request, outcome)

    @app.post("/api/analysis/ui-elements")
    async def analysis_ui_elements(
        req: ImageRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        outcome = await service.ui_elements(req.imageData, req.mimeType)
        return _respond(request, outcome)

    @app.post("/api/analysis/click-intelligence")
    async def analysis_click(
        req: ClickRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        outcome = await service.click_intelligence(req.model_dump())
        return _respond(request, outcome)

    @app.post("/api/analysis/goal-relevance")
    async def analysis_goal_relevance(
        req: GoalRelevanceRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        outcome = await service.goal_relevance(req.model_dump())
        return _respond(request, outcome)

    @app.post("/api/analysis/progress-indicators")
    async def analysis_progress(
        req: ProgressRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        outcome = await service.progress_indicators(req.model_dump())
        return _respond(request, outcome)

    @app.post("/api/analysis/session-intelligence")
    async def analysis_session(
        req: SessionRequest, request: Request, service: AnalysisService = Depends(get_analysis_service)
    ) -> JSONResponse:
        outcome = await service.session_intelligence(req.model_dump())
        return _respond(request, outcome)

    @app.post("/api/analysis/{name}")
    async def analysis_not_found(name: str) -> JSONResponse:
        return JSONResponse(
            status_code=404,
            content={
                "success": False,
                "error": "Analysis endpoint not found",
                "availableEndpoints": ANALYSIS_ENDPOINTS,
            },
        )

    log_message(app, f"Model configured: {provider.configured} ({settings.provider})")
    return app


app = create_app()
