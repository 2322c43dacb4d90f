"""Request orchestration: prompt → model or fallback → assembled result."""

import asyncio
import base64
import binascii
import random
import re
from datetime import datetime, timezone
from typing import Any

from screen_insight.logger import logger
from screen_insight.model.models import AnalysisMode
from screen_insight.services.assembler import assemble, parse_error_envelope
from screen_insight.services.fallback import synthesize
from screen_insight.services.llm import ImagePart, ModelCallError, ModelProvider
from screen_insight.services.outcome import Ok, Outcome, TransportFailed, Unavailable, ValidationFailed
from screen_insight.services.parser import ParseFailure, parse_response
from screen_insight.services.prompts import template_for

log = logger.getChild("analysis")

_DATA_URL = re.compile(r"^data:(image/[\w.+-]+);base64,")

# /api/analyze が受け付けるモード. それ以外は full
SCREENSHOT_MODES = frozenset(
    {
        AnalysisMode.OCR,
        AnalysisMode.OBJECT_DETECTION,
        AnalysisMode.ACTIVITY_CLASSIFICATION,
        AnalysisMode.FULL,
    }
)


class InvalidImageError(ValueError):
    pass


def decode_image(data: str, mime_type: str = "image/png") -> ImagePart:
    """base64 (data URL 形式も可) の画像を ImagePart に変換する."""
    # MIME 形式の折り返し (改行) は取り除く
    data = "".join(data.split())
    match = _DATA_URL.match(data)
    if match:
        mime_type = match.group(1)
        data = data[match.end():]
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        msg = "image is not valid base64"
        raise InvalidImageError(msg) from exc
    if not raw:
        msg = "image is empty"
        raise InvalidImageError(msg)
    return ImagePart(data=raw, mime_type=mime_type)


def _missing(value: Any) -> bool:
    return value is None or value == ""


class AnalysisService:
    """解析リクエストを処理する.

    One instance is shared by all requests; it keeps no per-request state.
    """

    def __init__(self, provider: ModelProvider, rng: random.Random | None = None) -> None:
        self.provider = provider
        self._rng = rng

    async def _generate(self, mode: AnalysisMode, context: dict[str, Any], images: list[ImagePart]) -> str | None:
        """モデルに問い合わせる. モデル未設定なら None.

        Raises:
            ModelCallError: モデル呼び出しの失敗
        """
        client = self.provider.get()
        if client is None:
            return None
        template = template_for(mode)
        prompt = template.render(context)
        attached = images if template.attaches_images else []
        # ブロッキングな呼び出しはワーカースレッドで実行する
        return await asyncio.to_thread(client.generate, prompt, attached)

    async def _run(
        self,
        mode: AnalysisMode,
        context: dict[str, Any],
        label: str,
        images: list[ImagePart] | None = None,
    ) -> tuple[dict[str, Any], ParseFailure | None] | TransportFailed:
        """モデル経路と代替経路のどちらでも同じ形の結果を返す."""
        try:
            text = await self._generate(mode, context, images or [])
        except ModelCallError as exc:
            log.exception("%s failed", label)
            return TransportFailed(label=label, cause=str(exc))

        if text is None:
            log.info("%s: model not configured, using heuristic fallback", label)
            return assemble(mode, synthesize(mode, context), self._rng), None

        parsed = parse_response(text)
        if isinstance(parsed, ParseFailure):
            log.warning("Failed to parse %s response: %s", mode.value, parsed.error)
            fallback = synthesize(mode, context, raw_text=text)
            return assemble(mode, fallback, self._rng), parsed

        return assemble(mode, parsed.value, self._rng), None

    # --- /api/analyze ---

    async def analyze_screenshot(
        self,
        image_base64: str | None,
        analysis_type: str | None = None,
        active_window: dict[str, Any] | None = None,
    ) -> Outcome:
        """スクリーンショットを解析する (ocr / object_detection / activity_classification / full)."""
        if _missing(image_base64):
            return ValidationFailed("imageBase64")
        try:
            image = decode_image(image_base64)
        except InvalidImageError as exc:
            return ValidationFailed("imageBase64", f"Invalid imageBase64: {exc}")

        mode = AnalysisMode.resolve(analysis_type or AnalysisMode.FULL)
        if mode not in SCREENSHOT_MODES:
            mode = AnalysisMode.FULL

        outcome = await self._run(mode, {"activeWindow": active_window}, "AI analysis", [image])
        if isinstance(outcome, TransportFailed):
            return outcome
        result, failure = outcome
        if failure is not None:
            # エラー形の結果. スキーマのキーは代替結果で埋める
            result.update(parse_error_envelope(mode, failure))
        return Ok(result)

    # --- /api/analysis/* ---

    async def _image_endpoint(
        self, mode: AnalysisMode, image_data: str | None, mime_type: str | None, key: str, label: str
    ) -> Outcome:
        if _missing(image_data):
            return ValidationFailed("imageData")
        try:
            image = decode_image(image_data, mime_type or "image/png")
        except InvalidImageError as exc:
            return ValidationFailed("imageData", f"Invalid imageData: {exc}")

        outcome = await self._run(mode, {}, label, [image])
        if isinstance(outcome, TransportFailed):
            return outcome
        result, failure = outcome
        if failure is not None:
            result["rawResponse"] = failure.raw_response
        return Ok({key: result})

    async def ocr(self, image_data: str | None, mime_type: str | None = None) -> Outcome:
        return await self._image_endpoint(AnalysisMode.OCR, image_data, mime_type, "ocrData", "OCR analysis")

    async def ui_elements(self, image_data: str | None, mime_type: str | None = None) -> Outcome:
        return await self._image_endpoint(
            AnalysisMode.UI_ELEMENTS, image_data, mime_type, "uiElements", "UI elements analysis"
        )

    async def _context_endpoint(
        self, mode: AnalysisMode, payload: dict[str, Any], required: str, label: str
    ) -> Outcome:
        if _missing(payload.get(required)):
            return ValidationFailed(required)

        outcome = await self._run(mode, payload, label)
        if isinstance(outcome, TransportFailed):
            return outcome
        result, failure = outcome
        if failure is not None:
            result["rawResponse"] = failure.raw_response
        return Ok(result)

    async def click_intelligence(self, payload: dict[str, Any]) -> Outcome:
        """クリック操作の意図と生産性への影響を推定する."""
        return await self._context_endpoint(
            AnalysisMode.CLICK_INTELLIGENCE, payload, "clickCoordinates", "Click intelligence analysis"
        )

    async def goal_relevance(self, payload: dict[str, Any]) -> Outcome:
        return await self._context_endpoint(
            AnalysisMode.GOAL_RELEVANCE, payload, "goalContext", "Goal relevance analysis"
        )

    async def progress_indicators(self, payload: dict[str, Any]) -> Outcome:
        return await self._context_endpoint(
            AnalysisMode.PROGRESS_INDICATORS, payload, "goalContext", "Progress indicators analysis"
        )

    async def session_intelligence(self, payload: dict[str, Any]) -> Outcome:
        return await self._context_endpoint(
            AnalysisMode.SESSION_INTELLIGENCE, payload, "sessionData", "Session intelligence analysis"
        )

    # --- /api/analyze-group ---

    async def group_analysis(self, images: list[str] | None, session_context: dict[str, Any] | None = None) -> Outcome:
        """複数スクリーンショットをまとめて解析する. 代替経路は無い."""
        if not images:
            return ValidationFailed("images", "Missing images array in request body")
        if not self.provider.configured:
            return Unavailable()

        try:
            parts = [decode_image(image) for image in images]
        except InvalidImageError as exc:
            return ValidationFailed("images", f"Invalid images: {exc}")

        log.info("Analyzing group of %d screenshots", len(parts))
        context = {"images": images, "sessionContext": session_context or {}}
        outcome = await self._run(AnalysisMode.GROUP_ANALYSIS, context, "Group AI analysis", parts)
        if isinstance(outcome, TransportFailed):
            return outcome
        result, failure = outcome
        if failure is not None:
            result["rawResponse"] = failure.raw_response
        else:
            result["metadata"] = {
                "screenshotCount": len(parts),
                "analysisType": AnalysisMode.GROUP_ANALYSIS.value,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "model": self.provider.model_name,
            }
        return Ok(result)
