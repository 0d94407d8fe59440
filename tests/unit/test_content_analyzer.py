"""
Unit tests for the Content Analyzer.
"""

import json

import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from prcast.services.content_analyzer import (
    DEFAULT_SUMMARY,
    TRUNCATION_MARKER,
    ContentAnalysisError,
    ContentAnalyzer,
    build_analysis_context,
    parse_analysis,
    truncate_diff,
)


@pytest.fixture
def analyzer_settings():
    return SimpleNamespace(analysis_model="gpt-4o-mini", max_diff_chars=100)


@pytest.fixture
def llm_client():
    client = AsyncMock()
    return client


def structured_output(**overrides) -> str:
    data = {
        "summary": "Adds a checkout button to the cart.",
        "script": "In this update, the cart page gets a checkout button.",
        "changes": [
            {
                "title": "Checkout button",
                "description": "A new button on the cart page",
                "page_url": "/cart",
                "selector": "#checkout",
                "duration_seconds": 6,
            }
        ],
    }
    data.update(overrides)
    return json.dumps(data)


class TestPromptContext:
    """Test the text handed to the model."""

    def test_truncate_diff(self):
        assert truncate_diff("abc", 10) == "abc"
        assert truncate_diff("a" * 20, 10) == "a" * 10 + TRUNCATION_MARKER

    def test_build_analysis_context(self, sample_payload):
        context = build_analysis_context(sample_payload, 60000)

        assert "Repository: Acme/Storefront" in context
        assert "PR #12: Add checkout button" in context
        assert "Merged by: octocat" in context
        assert "1. Add checkout button\n2. Style checkout button" in context
        assert sample_payload.raw_diff in context

    def test_build_analysis_context_without_diff(self, sample_payload):
        payload = sample_payload.model_copy(update={"raw_diff": "", "raw_commits": []})

        context = build_analysis_context(payload, 60000)

        assert "(no diff available)" in context
        assert "(none)" in context


class TestParseAnalysis:
    """Test parsing of the model's JSON output."""

    def test_valid_output(self):
        analysis = parse_analysis(structured_output())

        assert analysis.script.startswith("In this update")
        assert len(analysis.changes) == 1
        assert analysis.changes[0].page_url == "/cart"
        assert analysis.changes[0].duration_seconds == 6
        assert analysis.fallback_used is False

    def test_invalid_json(self):
        assert parse_analysis("Here is your analysis: {") is None
        assert parse_analysis("[1, 2]") is None

    def test_missing_script_falls_back_to_summary(self):
        analysis = parse_analysis(structured_output(script=""))

        assert analysis.script == "Adds a checkout button to the cart."

    def test_no_script_or_summary(self):
        assert parse_analysis(structured_output(script="", summary="")) is None

    def test_invalid_changes_are_dropped(self):
        analysis = parse_analysis(structured_output(changes=[
            {"title": "Bad duration", "duration_seconds": -3},
            {"description": "no title"},
            "not an object",
            {"title": "Pricing", "page_url": "pricing", "selector": "  "},
        ]))

        assert [c.title for c in analysis.changes] == ["Pricing"]
        assert analysis.changes[0].page_url == "/pricing"
        assert analysis.changes[0].selector is None
        assert analysis.changes[0].duration_seconds == 5.0

    def test_empty_changes_become_homepage_overview(self):
        analysis = parse_analysis(structured_output(changes=[]))

        assert len(analysis.changes) == 1
        assert analysis.changes[0].page_url == "/"
        assert analysis.changes[0].duration_seconds == 8


class TestContentAnalyzer:
    """Test the analyzer end to end with a mocked model."""

    @pytest.mark.asyncio
    async def test_analyze_structured(self, llm_client, analyzer_settings, sample_payload):
        llm_client.complete.return_value = structured_output()
        analyzer = ContentAnalyzer(llm_client=llm_client, settings=analyzer_settings)

        analysis = await analyzer.analyze(sample_payload, "https://acme.example.com")

        assert analysis.changes[0].selector == "#checkout"
        kwargs = llm_client.complete.call_args.kwargs
        assert kwargs["json_mode"] is True
        assert kwargs["max_tokens"] == 2000
        assert "https://acme.example.com" in llm_client.complete.call_args.args[1]

    @pytest.mark.asyncio
    async def test_analyze_fallback_on_bad_output(self, llm_client, analyzer_settings, sample_payload):
        llm_client.complete.side_effect = [
            "Sorry, I can't produce JSON",
            "This update adds a checkout button.",
        ]
        analyzer = ContentAnalyzer(llm_client=llm_client, settings=analyzer_settings)

        analysis = await analyzer.analyze(sample_payload)

        assert analysis.fallback_used is True
        assert analysis.script == "This update adds a checkout button."
        assert len(analysis.changes) == 1
        assert analysis.changes[0].page_url == "/"
        assert analysis.changes[0].duration_seconds == 8
        assert llm_client.complete.call_args.kwargs["max_tokens"] == 200

    @pytest.mark.asyncio
    async def test_analyze_request_failure(self, llm_client, analyzer_settings, sample_payload):
        llm_client.complete.side_effect = Exception("rate limited")
        analyzer = ContentAnalyzer(llm_client=llm_client, settings=analyzer_settings)

        with pytest.raises(ContentAnalysisError):
            await analyzer.analyze(sample_payload)

    @pytest.mark.asyncio
    async def test_analyze_empty_fallback(self, llm_client, analyzer_settings, sample_payload):
        llm_client.complete.side_effect = ["not json", ""]
        analyzer = ContentAnalyzer(llm_client=llm_client, settings=analyzer_settings)

        analysis = await analyzer.analyze(sample_payload)

        assert analysis.fallback_used is True
        assert analysis.script == "Add checkout button. PR merged successfully."
        assert len(analysis.changes) == 1

    @pytest.mark.asyncio
    async def test_analyze_empty_fallback_without_title(self, llm_client, analyzer_settings, sample_payload):
        sample_payload.high_level.title = ""
        llm_client.complete.side_effect = ["not json", "   "]
        analyzer = ContentAnalyzer(llm_client=llm_client, settings=analyzer_settings)

        analysis = await analyzer.analyze(sample_payload)

        assert analysis.summary == DEFAULT_SUMMARY
