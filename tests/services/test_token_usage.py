"""Tests for token usage estimation and display formatting."""

import pytest

from src.services.token_usage import (
    DEFAULT_CONTEXT_WINDOW,
    estimate_token_usage,
    format_percentage,
    format_token_count,
)


def _assistant(usage=None, model=None):
    message = {}
    if usage is not None:
        message["usage"] = usage
    if model is not None:
        message["model"] = model
    return {"type": "assistant", "content": {"type": "assistant", "message": message}}


def _result(**content):
    return {"type": "result", "content": {"type": "result", **content}}


@pytest.mark.parametrize(
    "count,expected",
    [
        (0, "0"),
        (999, "999"),
        (1_000, "1K"),
        (1_500, "2K"),
        (50_000, "50K"),
        (999_999, "1000K"),
        (1_000_000, "1.0M"),
        (1_500_000, "1.5M"),
        (10_000_000, "10.0M"),
    ],
)
def test_format_token_count(count, expected):
    assert format_token_count(count) == expected


@pytest.mark.parametrize(
    "percent,expected",
    [(0, "<1%"), (0.99, "<1%"), (1, "1%"), (1.4, "1%"), (1.5, "2%"), (99.9, "100%")],
)
def test_format_percentage(percent, expected):
    assert format_percentage(percent) == expected


class TestEstimateTokenUsage:
    """Tests for estimate_token_usage."""

    def test_empty(self):
        usage = estimate_token_usage([])
        assert usage.total_tokens == 0
        assert usage.context_window == DEFAULT_CONTEXT_WINDOW
        assert usage.percent_used == 0
        assert usage.model is None

    def test_sums_assistant_turns_without_result(self):
        usage = estimate_token_usage(
            [
                _assistant({"input_tokens": 1000, "output_tokens": 500, "cache_read_input_tokens": 100}),
                _assistant({"input_tokens": 2000, "output_tokens": 1000}),
            ]
        )
        assert usage.input_tokens == 3000
        assert usage.output_tokens == 1500
        assert usage.cache_read_tokens == 100
        assert usage.total_tokens == 4500

    def test_result_usage_wins_over_assistant_turns(self):
        usage = estimate_token_usage(
            [
                _assistant({"input_tokens": 1000, "output_tokens": 500}),
                _result(usage={"input_tokens": 5000, "output_tokens": 2500}),
            ]
        )
        assert (usage.input_tokens, usage.output_tokens) == (5000, 2500)

    def test_latest_result_wins(self):
        usage = estimate_token_usage(
            [
                _result(usage={"input_tokens": 1, "output_tokens": 1}),
                _result(usage={"input_tokens": 10, "output_tokens": 20}),
            ]
        )
        assert usage.total_tokens == 30

    def test_model_usage_with_context_window(self):
        usage = estimate_token_usage(
            [
                _result(
                    modelUsage={
                        "claude-sonnet-4-20250514": {
                            "inputTokens": 3000,
                            "outputTokens": 1500,
                            "cacheReadInputTokens": 200,
                            "cacheCreationInputTokens": 100,
                            "contextWindow": 100_000,
                        }
                    }
                )
            ]
        )
        assert usage.input_tokens == 3000
        assert usage.cache_creation_tokens == 100
        assert usage.context_window == 100_000
        assert usage.model == "claude-sonnet-4-20250514"
        assert usage.percent_used == pytest.approx(4.5)

    def test_model_from_system_init(self):
        usage = estimate_token_usage(
            [
                {"type": "system", "content": {"type": "system", "subtype": "init", "model": "claude-opus-4-5-20251101"}},
                _assistant(model="claude-3-5-sonnet-20241022"),
            ]
        )
        assert usage.model == "claude-opus-4-5-20251101"

    def test_model_from_assistant_message(self):
        usage = estimate_token_usage([_assistant({"input_tokens": 100}, model="claude-3-5-sonnet-20241022")])
        assert usage.model == "claude-3-5-sonnet-20241022"

    def test_percentage(self):
        usage = estimate_token_usage([_result(usage={"input_tokens": 100_000, "output_tokens": 50_000})])
        assert usage.percent_used == 75

    def test_percentage_is_capped(self):
        usage = estimate_token_usage([_result(usage={"input_tokens": 250_000, "output_tokens": 50_000})])
        assert usage.percent_used == 100

    def test_missing_usage_and_odd_content_are_ignored(self):
        usage = estimate_token_usage(
            [
                _assistant(),
                {"type": "assistant", "content": "not a dict"},
                {"type": "system", "content": {"subtype": "raw_output", "text": "x"}},
            ]
        )
        assert usage.total_tokens == 0
