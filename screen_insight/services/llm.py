"""Generative model clients (Gemini or OpenAI-compatible API such as LM Studio)."""

import base64
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import google.generativeai as genai
import requests

from screen_insight.config import PROVIDER_GEMINI, PROVIDER_OPENAI, Settings
from screen_insight.logger import logger

HTTP_OK = 200

log = logger.getChild("llm")


class ModelCallError(RuntimeError):
    """モデル呼び出し (ネットワーク / API) の失敗."""


@dataclass(frozen=True)
class ImagePart:
    """プロンプトに添付する画像."""

    data: bytes
    mime_type: str = "image/png"

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class ModelClient(Protocol):
    model_name: str

    def generate(self, prompt: str, images: Sequence[ImagePart] = ()) -> str: ...

    def is_available(self) -> bool: ...


class LLMService:
    """OpenAI互換APIクライアント (例: LM Studio + Gemma 3 4B)."""

    def __init__(
        self,
        base_url: str = "http://localhost:1234",
        model_name: str = "google/gemma-3-4b",
        timeout: float = 20.0,
        api_key: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> None:
        """初期化

        Args:
        base_url: OpenAI互換APIのベースURL(LM Studio の場合は http://localhost:1234)
        model_name: 使用するモデル名
        timeout: APIタイムアウト(秒)
        api_key: 必要に応じてBearerトークン

        """
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.timeout = timeout
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.chat_url = f"{self.base_url}/v1/chat/completions"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def is_available(self) -> bool:
        """LLMサービスが利用可能かチェック."""
        try:
            response = requests.get(
                f"{self.base_url}/v1/models", timeout=5, headers=self._headers()
            )
        except requests.RequestException:
            return False
        else:
            status_code: int = response.status_code
            return status_code == HTTP_OK

    def _build_messages(self, prompt: str, images: Sequence[ImagePart]) -> list[dict[str, Any]]:
        if not images:
            return [{"role": "user", "content": prompt}]

        # ビジョン対応メッセージ
        content: list[dict[str, Any]] = [{"type": "text", "text": prompt}]
        for image in images:
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{image.mime_type};base64,{image.to_base64()}"},
                }
            )
        return [{"role": "user", "content": content}]

    def generate(self, prompt: str, images: Sequence[ImagePart] = ()) -> str:
        """プロンプト (と画像) を送信し、応答テキストを返す.

        Raises:
            ModelCallError: 通信エラー、HTTPエラー、想定外の応答形式
        """
        payload = {
            "model": self.model_name,
            "messages": self._build_messages(prompt, images),
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        try:
            response = requests.post(
                self.chat_url,
                json=payload,
                timeout=self.timeout,
                headers=self._headers(),
            )
        except requests.exceptions.Timeout as exc:
            msg = f"LLM timeout after {self.timeout}s"
            raise ModelCallError(msg) from exc
        except requests.RequestException as exc:
            raise ModelCallError(str(exc)) from exc

        if response.status_code != HTTP_OK:
            msg = f"LLM returned HTTP {response.status_code}"
            raise ModelCallError(msg)

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            msg = "Unexpected LLM response format"
            raise ModelCallError(msg) from exc
        return content or ""


class GeminiService:
    """Google Gemini クライアント."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.0-flash-exp",
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> None:
        self.model_name = model_name
        self._generation_config = {
            "max_output_tokens": max_tokens,
            "temperature": temperature,
        }
        genai.configure(api_key=api_key)
        self._model = genai.GenerativeModel(model_name)

    def is_available(self) -> bool:
        return True

    def generate(self, prompt: str, images: Sequence[ImagePart] = ()) -> str:
        parts: list[Any] = [prompt]
        parts.extend({"mime_type": image.mime_type, "data": image.data} for image in images)
        try:
            response = self._model.generate_content(parts, generation_config=self._generation_config)
            return response.text or ""
        except Exception as exc:
            # SDK の例外型は通信方式によって異なるため一括で変換する
            raise ModelCallError(str(exc)) from exc


def create_model_client(settings: Settings) -> ModelClient:
    """設定に応じたモデルクライアントを生成する."""
    if settings.provider == PROVIDER_GEMINI and settings.google_api_key:
        return GeminiService(
            api_key=settings.google_api_key,
            model_name=settings.gemini_model,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
    if settings.provider == PROVIDER_OPENAI and settings.llm_url:
        return LLMService(
            base_url=settings.llm_url,
            model_name=settings.llm_model,
            timeout=settings.timeout,
            api_key=settings.llm_api_key,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )
    msg = f"Model provider '{settings.provider}' is not configured"
    raise ValueError(msg)


class ModelProvider:
    """プロセス全体で共有するモデルクライアントの保持者.

    The client is built on first use and reused afterwards; repeated calls
    to :meth:`get` after construction are no-ops.  When no model is
    configured :meth:`get` returns ``None`` and callers fall back to
    heuristics.
    """

    def __init__(
        self,
        settings: Settings,
        factory: Callable[[Settings], ModelClient] = create_model_client,
    ) -> None:
        self._settings = settings
        self._factory = factory
        self._client: ModelClient | None = None
        self._lock = threading.Lock()
        self._configured = settings.model_configured

    @classmethod
    def with_client(cls, client: ModelClient | None, settings: Settings | None = None) -> "ModelProvider":
        """構築済みのクライアントを使うプロバイダ (None ならモデル未設定)."""
        provider = cls(settings or Settings())
        provider._client = client
        provider._configured = client is not None
        return provider

    @property
    def configured(self) -> bool:
        return self._configured

    @property
    def model_name(self) -> str | None:
        if self._client is not None:
            return self._client.model_name
        return self._settings.model_name if self._configured else None

    def get(self) -> ModelClient | None:
        if not self._configured:
            return None
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._factory(self._settings)
                    log.info("Model client initialized: %s", self._client.model_name)
        return self._client
