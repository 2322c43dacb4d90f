"""Environment driven settings for the screen-insight API."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

REPO_ROOT = Path(__file__).resolve().parent.parent

PROVIDER_GEMINI = "gemini"
PROVIDER_OPENAI = "openai"
PROVIDER_NONE = "none"

DEFAULT_GEMINI_MODEL = "gemini-2.0-flash-exp"
DEFAULT_LLM_MODEL = "google/gemma-3-4b"


@dataclass(frozen=True)
class Settings:
    """アプリケーション設定."""

    provider: str = PROVIDER_NONE
    google_api_key: str | None = None
    gemini_model: str = DEFAULT_GEMINI_MODEL
    llm_url: str | None = None
    llm_model: str = DEFAULT_LLM_MODEL
    llm_api_key: str | None = None
    timeout: float = 20.0
    max_tokens: int = 2048
    temperature: float = 0.2
    log_level: str = "INFO"
    log_file: str | None = None
    cors_origins: tuple[str, ...] = ("*",)

    @property
    def model_configured(self) -> bool:
        """モデルの認証情報・接続先が設定されているか."""
        if self.provider == PROVIDER_GEMINI:
            return bool(self.google_api_key)
        if self.provider == PROVIDER_OPENAI:
            return bool(self.llm_url)
        return False

    @property
    def model_name(self) -> str | None:
        if self.provider == PROVIDER_GEMINI:
            return self.gemini_model
        if self.provider == PROVIDER_OPENAI:
            return self.llm_model
        return None

    @staticmethod
    def from_env() -> Settings:
        """環境変数から設定を構築する.

        環境変数:
        - LLM_PROVIDER: gemini / openai / none (未設定なら自動判定)
        - GOOGLE_API_KEY, GEMINI_MODEL
        - LLM_URL, LLM_MODEL, LLM_API_KEY: OpenAI互換API (例: LM Studio)
        - LLM_TIMEOUT, LLM_MAX_TOKENS, LLM_TEMPERATURE
        - LOG_LEVEL, LOG_FILE, CORS_ORIGINS
        """
        google_api_key = os.getenv("GOOGLE_API_KEY") or None
        llm_url = (os.getenv("LLM_URL") or "").rstrip("/") or None

        return Settings(
            provider=_resolve_provider(
                os.getenv("LLM_PROVIDER"), google_api_key, llm_url
            ),
            google_api_key=google_api_key,
            gemini_model=os.getenv("GEMINI_MODEL") or DEFAULT_GEMINI_MODEL,
            llm_url=llm_url,
            llm_model=os.getenv("LLM_MODEL") or DEFAULT_LLM_MODEL,
            llm_api_key=os.getenv("LLM_API_KEY") or None,
            timeout=float(os.getenv("LLM_TIMEOUT", "20")),
            max_tokens=int(os.getenv("LLM_MAX_TOKENS", "2048")),
            temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE") or None,
            cors_origins=_split_csv(os.getenv("CORS_ORIGINS", "*")),
        )


def _resolve_provider(
    raw: str | None, google_api_key: str | None, llm_url: str | None
) -> str:
    value = (raw or "").strip().lower()
    if value in {PROVIDER_GEMINI, PROVIDER_OPENAI, PROVIDER_NONE}:
        return value
    if google_api_key:
        return PROVIDER_GEMINI
    if llm_url:
        return PROVIDER_OPENAI
    return PROVIDER_NONE


def _split_csv(raw: str) -> tuple[str, ...]:
    items = tuple(item.strip() for item in raw.split(",") if item.strip())
    return items or ("*",)


def load_local_env() -> None:
    """リポジトリ直下の .env.local を読み込む (既存の環境変数は上書きしない)."""
    load_dotenv(dotenv_path=REPO_ROOT / ".env.local", override=False)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    load_local_env()
    return Settings.from_env()
