from screen_insight.model.models import (
    ActivitySignal,
    AnalysisMode,
    ClickInsight,
    GoalRelevance,
    OcrSignal,
    ProgressReport,
    SessionInsight,
    coerce,
)


class TestAnalysisMode:
    """解析モードの解決"""

    def test_known_modes(self):
        assert AnalysisMode.resolve("ocr") is AnalysisMode.OCR
        assert AnalysisMode.resolve(" Click_Intelligence ") is AnalysisMode.CLICK_INTELLIGENCE

    def test_unknown_is_full(self):
        assert AnalysisMode.resolve("nonsense") is AnalysisMode.FULL
        assert AnalysisMode.resolve(None) is AnalysisMode.FULL

    def test_image_modes(self):
        assert AnalysisMode.OCR.uses_image
        assert AnalysisMode.GROUP_ANALYSIS.uses_image
        assert not AnalysisMode.SESSION_INTELLIGENCE.uses_image


class TestCoerce:
    """スキーマへの当てはめ"""

    def test_invalid_field_replaced_by_default(self):
        result = coerce(OcrSignal, {"extractedText": "x", "confidence": "abc"})
        assert result["extractedText"] == "x"
        assert result["confidence"] == 0

    def test_invalid_list_item_field_pruned(self):
        result = coerce(OcrSignal, {"textRegions": [{"x": "left", "text": "hello"}]})
        assert result["textRegions"][0]["x"] == 0
        assert result["textRegions"][0]["text"] == "hello"

    def test_non_object_gives_defaults(self):
        assert coerce(GoalRelevance, "text") == {
            "relevanceScore": 0.0,
            "reasoning": "",
            "keyIndicators": [],
        }

    def test_activity_normalized_to_vocabulary(self):
        result = coerce(ActivitySignal, {"primaryActivity": "Social Media", "secondaryActivities": ["Gaming", "testing"]})
        assert result["primaryActivity"] == "social_media"
        assert result["secondaryActivities"] == ["testing"]

    def test_unknown_activity(self):
        assert coerce(ActivitySignal, {"primaryActivity": "gardening"})["primaryActivity"] == "unknown"

    def test_fraction_clamped(self):
        result = coerce(ClickInsight, {"productivityScore": 3, "goalRelevance": -1})
        assert result["productivityScore"] == 1.0
        assert result["goalRelevance"] == 0.0
        assert "reasoning" not in result

    def test_progress_items_coerced_individually(self):
        result = coerce(
            ProgressReport,
            {"progressIndicators": [{"type": "bogus", "confidence": 2, "impact": "great"}, "junk"]},
        )
        assert result["progressIndicators"] == [
            {"type": "unknown", "indicator": "", "confidence": 1.0, "impact": "neutral"}
        ]

    def test_session_optional_sections_are_null(self):
        result = coerce(SessionInsight, {})
        assert result["goalProgress"] is None
        assert result["teamMetrics"] is None
        assert result["analysis"]["mainActivity"] == "unknown"

    def test_extra_keys_preserved(self):
        assert coerce(OcrSignal, {"note": "hello"})["note"] == "hello"

    def test_input_not_mutated(self):
        payload = {"confidence": "bad"}
        coerce(OcrSignal, payload)
        assert payload == {"confidence": "bad"}
