import base64

import pytest

FULL_KEYS = ("ocr", "objectDetection", "activityClassification", "productivityScore", "attentionScore")


class TestHealth:
    """ヘルスチェック / ステータス"""

    def test_health_offline(self, offline_client):
        response = offline_client.get("/health")
        assert response.status_code == 200
        assert response.json()["ai_service_available"] is False

    def test_health_with_model(self, make_client, make_stub):
        client = make_client(make_stub())
        body = client.get("/health").json()
        assert body["ai_service_available"] is True
        assert body["model_name"] == "stub-model"

    def test_status_keeps_request_log(self, offline_client):
        offline_client.post("/api/analyze", json={})
        logs = offline_client.get("/status").json()["logs"]
        assert "POST /api/analyze -> 400" in logs


class TestAnalyzeEndpoint:
    """/api/analyze のテスト"""

    def test_missing_image(self, offline_client):
        """imageBase64 が無ければ 400"""
        response = offline_client.post("/api/analyze", json={"analysisType": "full"})
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Missing imageBase64 in request body"}

    def test_invalid_base64(self, offline_client):
        response = offline_client.post("/api/analyze", json={"imageBase64": "not base64!!"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_malformed_body(self, offline_client):
        """JSONとして不正なボディは 400"""
        response = offline_client.post(
            "/api/analyze", content="{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_offline_full_analysis(self, offline_client, png_base64):
        """モデル未設定でも5つのキーを持つ結果を返す"""
        response = offline_client.post("/api/analyze", json={"imageBase64": png_base64})
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        for key in FULL_KEYS:
            assert key in body
        assert body["productivityScore"] == 50
        assert body["attentionScore"] == 75

    def test_offline_uses_active_window(self, offline_client, png_base64):
        payload = {
            "imageBase64": png_base64,
            "activeWindow": {"applicationName": "Code.exe", "windowTitle": "main.py - VSCode"},
        }
        body = offline_client.post("/api/analyze", json=payload).json()
        assert body["activityClassification"]["primaryActivity"] == "coding"
        # 90 + 75/100*10 = 97.5 → 98
        assert body["productivityScore"] == 98

    def test_model_response(self, make_client, make_stub, png_base64):
        """モデル応答からスコアを算出する"""
        stub = make_stub(
            {
                "ocr": {"extractedText": "def main():", "confidence": 85},
                "objectDetection": {
                    "detectedObjects": ["a", "b", "c"],
                    "layoutAnalysis": {"layout_type": "ide", "complexity_score": 40},
                },
                "activityClassification": {"primaryActivity": "coding", "confidence": 90},
            }
        )
        client = make_client(stub)

        response = client.post("/api/analyze", json={"imageBase64": png_base64})

        assert response.status_code == 200
        body = response.json()
        assert body["productivityScore"] == 99
        assert body["attentionScore"] == 100
        assert len(stub.calls) == 1
        assert stub.calls[0]["images"][0].mime_type == "image/png"

    def test_data_url_prefix(self, make_client, make_stub, png_base64):
        stub = make_stub()
        client = make_client(stub)

        response = client.post("/api/analyze", json={"imageBase64": f"data:image/jpeg;base64,{png_base64}"})

        assert response.status_code == 200
        assert stub.calls[0]["images"][0].mime_type == "image/jpeg"

    def test_fenced_model_response(self, make_client, make_stub, png_base64):
        stub = make_stub('```json\n{"extractedText": "hello", "confidence": 95}\n```')
        client = make_client(stub)

        body = client.post("/api/analyze", json={"imageBase64": png_base64, "analysisType": "ocr"}).json()

        assert body["success"] is True
        assert body["extractedText"] == "hello"
        assert 1000 <= body["processing_time_ms"] < 3000
        assert "productivityScore" not in body

    def test_parse_failure(self, make_client, make_stub, png_base64):
        """パース失敗はエラー形の結果 (HTTP 200)"""
        client = make_client(make_stub("I think the user is coding. " * 20))

        response = client.post("/api/analyze", json={"imageBase64": png_base64})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("Failed to parse AI response")
        assert body["analysisType"] == "full"
        assert len(body["rawResponse"]) <= 200
        for key in FULL_KEYS:
            assert key in body

    def test_non_finite_number_is_parse_failure(self, make_client, make_stub, png_base64):
        """Infinity を含む応答はパース失敗として扱う (500 にならない)"""
        client = make_client(make_stub('{"activityClassification": {"contextClues": {"timeOfDay": Infinity}}}'))

        response = client.post("/api/analyze", json={"imageBase64": png_base64})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["error"].startswith("Failed to parse AI response")
        for key in FULL_KEYS:
            assert key in body

    def test_model_error(self, make_client, make_stub, png_base64):
        """モデル呼び出しの失敗は 500"""
        client = make_client(make_stub(error="boom"))

        response = client.post("/api/analyze", json={"imageBase64": png_base64})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "AI analysis failed: boom"}

    def test_context_mode_falls_back_to_full(self, make_client, make_stub, png_base64):
        client = make_client(make_stub())
        body = client.post(
            "/api/analyze", json={"imageBase64": png_base64, "analysisType": "click_intelligence"}
        ).json()
        for key in FULL_KEYS:
            assert key in body


class TestImageEndpoints:
    """/api/analysis/ocr, /api/analysis/ui-elements"""

    def test_ocr_missing_image(self, offline_client):
        response = offline_client.post("/api/analysis/ocr", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing imageData in request body"

    def test_ocr_offline(self, offline_client, png_base64):
        body = offline_client.post("/api/analysis/ocr", json={"imageData": png_base64}).json()
        assert body["success"] is True
        assert body["ocrData"]["extractedText"] == ""
        assert body["ocrData"]["confidence"] == 0

    def test_ocr_parse_failure_keeps_raw_text(self, make_client, make_stub, png_base64):
        client = make_client(make_stub("Invoice #42\nTotal: $10"))
        body = client.post("/api/analysis/ocr", json={"imageData": png_base64}).json()
        assert body["success"] is True
        assert body["ocrData"]["extractedText"] == "Invoice #42\nTotal: $10"
        assert body["ocrData"]["rawResponse"] == "Invoice #42\nTotal: $10"

    def test_ocr_line_wrapped_base64(self, offline_client):
        """改行で折り返された base64 も受け付ける"""
        wrapped = base64.encodebytes(bytes(range(256)) * 2).decode("ascii")
        assert "\n" in wrapped

        response = offline_client.post("/api/analysis/ocr", json={"imageData": wrapped})

        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_ocr_garbage_still_rejected(self, offline_client):
        response = offline_client.post("/api/analysis/ocr", json={"imageData": "@@@ not an image @@@"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid imageData: image is not valid base64"

    def test_ui_elements(self, make_client, make_stub, png_base64):
        stub = make_stub(
            {
                "elements": [{"type": "button", "x": 10, "y": 20, "width": 80, "height": 30, "text": "Submit"}],
                "layout": {"layout_type": "web_page", "complexity_score": 30},
                "confidence": 88,
            }
        )
        client = make_client(stub)
        body = client.post("/api/analysis/ui-elements", json={"imageData": png_base64}).json()
        element = body["uiElements"]["elements"][0]
        assert element["type"] == "button"
        assert element["text"] == "Submit"
        assert body["uiElements"]["confidence"] == 88


class TestContextEndpoints:
    """画像を使わない解析エンドポイント"""

    def test_click_offline(self, offline_client):
        """モデル未設定のクリック解析"""
        payload = {"clickCoordinates": {"x": 10, "y": 20}, "nearbyElements": [{"text": "Submit"}]}
        response = offline_client.post("/api/analysis/click-intelligence", json=payload)
        assert response.status_code == 200
        body = response.json()
        assert body["targetElement"] == "Submit"
        assert body["contextText"] == "Submit"
        assert body["intentClassification"] == "navigation"
        assert body["productivityScore"] == 0.5

    def test_click_missing_coordinates(self, offline_client):
        response = offline_client.post("/api/analysis/click-intelligence", json={"nearbyElements": []})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing clickCoordinates in request body"

    def test_click_with_model(self, make_client, make_stub):
        stub = make_stub({"targetElement": "button", "intentClassification": "submit", "productivityScore": 0.9})
        client = make_client(stub)
        body = client.post("/api/analysis/click-intelligence", json={"clickCoordinates": {"x": 1, "y": 2}}).json()
        assert body["intentClassification"] == "submit"
        assert body["productivityScore"] == 0.9
        # 画像は送らない
        assert stub.calls[0]["images"] == []
        assert "(1, 2)" in stub.calls[0]["prompt"]

    def test_click_nan_reply_falls_back(self, make_client, make_stub):
        """NaN を含む応答は代替結果 + rawResponse"""
        reply = '{"targetElement": "Submit", "confidenceScores": {"button": NaN}}'
        client = make_client(make_stub(reply))

        payload = {"clickCoordinates": {"x": 1, "y": 2}, "nearbyElements": [{"text": "Save"}]}
        response = client.post("/api/analysis/click-intelligence", json=payload)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["targetElement"] == "Save"
        assert body["rawResponse"] == reply
        assert "confidenceScores" not in body

    def test_model_cannot_override_success_flag(self, make_client, make_stub):
        client = make_client(make_stub({"relevanceScore": 0.9, "success": False, "error": "nope"}))
        body = client.post("/api/analysis/goal-relevance", json={"goalContext": {"title": "Ship"}}).json()
        assert body["success"] is True
        assert "error" not in body
        assert body["relevanceScore"] == 0.9

    def test_goal_relevance_offline(self, offline_client):
        payload = {
            "goalContext": {"title": "Refactor authentication"},
            "extractedText": "authentication module",
        }
        body = offline_client.post("/api/analysis/goal-relevance", json=payload).json()
        assert body["relevanceScore"] == pytest.approx(0.3)
        assert body["keyIndicators"] == ["authentication"]

    def test_goal_relevance_missing_goal(self, offline_client):
        response = offline_client.post("/api/analysis/goal-relevance", json={"extractedText": "x"})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing goalContext in request body"

    def test_progress_offline(self, offline_client):
        """「Task failed with error」は blocker 1件"""
        payload = {"goalContext": {"title": "Ship"}, "textContent": "Task failed with error"}
        body = offline_client.post("/api/analysis/progress-indicators", json=payload).json()
        assert body["progressIndicators"] == [
            {
                "type": "blocker",
                "indicator": "Error or problem detected",
                "confidence": 0.8,
                "impact": "negative",
            }
        ]

    def test_progress_model_list_response(self, make_client, make_stub):
        stub = make_stub([{"type": "test_results", "indicator": "Tests passed", "confidence": 0.9, "impact": "positive"}])
        client = make_client(stub)
        body = client.post("/api/analysis/progress-indicators", json={"goalContext": {"title": "Ship"}}).json()
        assert body["progressIndicators"][0]["type"] == "test_results"

    def test_session_offline(self, offline_client):
        payload = {"sessionData": [{"app": "Code.exe"}] * 4, "goalContext": {"title": "Ship"}}
        body = offline_client.post("/api/analysis/session-intelligence", json=payload).json()
        assert body["success"] is True
        assert body["analysis"]["sessionDuration"] == 120
        assert body["goalProgress"]["timeSpent"] == 120
        assert body["teamMetrics"] is None

    def test_session_missing_data(self, offline_client):
        response = offline_client.post("/api/analysis/session-intelligence", json={})
        assert response.status_code == 400

    def test_session_parse_failure(self, make_client, make_stub):
        client = make_client(make_stub("no json here"))
        body = client.post("/api/analysis/session-intelligence", json={"sessionData": {"a": 1}}).json()
        assert body["success"] is True
        assert body["rawResponse"] == "no json here"
        assert body["insights"]["patterns"] == ["Analysis parsing failed"]

    def test_unknown_analysis_endpoint(self, offline_client):
        response = offline_client.post("/api/analysis/telepathy", json={})
        assert response.status_code == 404
        assert "/api/analysis/ocr" in response.json()["availableEndpoints"]


class TestGroupAnalysis:
    """/api/analyze-group のテスト"""

    def test_missing_images(self, offline_client):
        response = offline_client.post("/api/analyze-group", json={"images": []})
        assert response.status_code == 400
        assert response.json()["error"] == "Missing images array in request body"

    def test_unavailable_without_model(self, offline_client, png_base64):
        """モデル未設定なら 503"""
        response = offline_client.post("/api/analyze-group", json={"images": [png_base64]})
        assert response.status_code == 503
        assert response.json()["success"] is False

    def test_group_with_model(self, make_client, make_stub, png_base64):
        stub = make_stub({"sessionSummary": {"primaryActivities": ["coding"], "productivityScore": 80}})
        client = make_client(stub)

        body = client.post("/api/analyze-group", json={"images": [png_base64, png_base64]}).json()

        assert body["success"] is True
        assert body["sessionSummary"]["primaryActivities"] == ["coding"]
        assert body["metadata"]["screenshotCount"] == 2
        assert body["metadata"]["model"] == "stub-model"
        assert len(stub.calls[0]["images"]) == 2

    def test_group_parse_failure(self, make_client, make_stub, png_base64):
        client = make_client(make_stub("The user was debugging for a while."))
        body = client.post("/api/analyze-group", json={"images": [png_base64]}).json()
        assert body["success"] is True
        assert body["metadata"]["analysisType"] == "group_analysis_fallback"
        assert body["detailedAnalysis"]["workflowDescription"].startswith("The user was debugging")
