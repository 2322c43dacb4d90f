import json
import random

import pytest
from fastapi.testclient import TestClient

from screen_insight.config import PROVIDER_OPENAI, Settings
from screen_insight.main import create_app, get_analysis_service
from screen_insight.services.analysis import AnalysisService
from screen_insight.services.llm import ModelCallError, ModelProvider

# 1x1 PNG のシグネチャ部分 (base64 として有効であればよい)
PNG_BASE64 = "iVBORw0KGgo="


class StubModel:
    """テスト用のモデルクライアント. 決められた応答を返し、呼び出しを記録する."""

    model_name = "stub-model"

    def __init__(self, reply="{}", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def generate(self, prompt, images=()):
        self.calls.append({"prompt": prompt, "images": list(images)})
        if self.error is not None:
            raise ModelCallError(self.error)
        if isinstance(self.reply, (dict, list)):
            return json.dumps(self.reply)
        return self.reply

    def is_available(self):
        return True


@pytest.fixture
def png_base64():
    """テスト用の画像データ"""
    return PNG_BASE64


@pytest.fixture
def make_stub():
    """StubModel を作る (reply=応答テキスト/JSON, error=例外メッセージ)"""
    return StubModel


@pytest.fixture
def make_client():
    """モデル (None ならモデル未設定) を差し込んだ TestClient を作る"""

    def _make(model=None):
        settings = Settings(provider=PROVIDER_OPENAI, llm_url="http://localhost:1234") if model else Settings()
        provider = ModelProvider.with_client(model, settings)
        app = create_app(settings=settings, provider=provider)
        service = AnalysisService(provider, rng=random.Random(0))
        app.dependency_overrides[get_analysis_service] = lambda: service
        return TestClient(app)

    return _make


@pytest.fixture
def offline_client(make_client):
    """モデル未設定のクライアント"""
    return make_client(None)
