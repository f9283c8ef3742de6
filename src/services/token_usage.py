"""Token usage estimation from a session's message log.

The agent reports usage in two places: each ``assistant`` event carries the
per-turn ``message.usage`` (snake_case), and the final ``result`` event of a
run carries cumulative ``usage`` and/or per-model ``modelUsage`` (camelCase,
optionally with ``contextWindow``). The latest result wins when present.
"""

import math
from dataclasses import asdict, dataclass
from typing import Any, Iterable

DEFAULT_CONTEXT_WINDOW = 200_000


@dataclass
class TokenUsage:
    """Aggregated token counts for a session."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    total_tokens: int = 0
    context_window: int = DEFAULT_CONTEXT_WINDOW
    percent_used: float = 0.0
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_token_count(count: int) -> str:
    """Compact token count: ``1.5M``, ``2K``, ``999``."""
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{_round_half_up(count / 1_000)}K"
    return str(count)


def format_percentage(percent: float) -> str:
    """Whole-number percentage, ``<1%`` below one."""
    if percent < 1:
        return "<1%"
    return f"{_round_half_up(percent)}%"


def _get(message: Any, name: str) -> Any:
    if isinstance(message, dict):
        return message.get(name)
    return getattr(message, name, None)


def _int(value: Any) -> int:
    return value if isinstance(value, int) else 0


def _usage_from_result(content: dict[str, Any], usage: TokenUsage) -> bool:
    """Fill ``usage`` from a result event. Returns False if it has no usage."""
    model_usage = content.get("modelUsage")
    if isinstance(model_usage, dict) and model_usage:
        for model_name, stats in model_usage.items():
            if not isinstance(stats, dict):
                continue
            usage.input_tokens += _int(stats.get("inputTokens"))
            usage.output_tokens += _int(stats.get("outputTokens"))
            usage.cache_read_tokens += _int(stats.get("cacheReadInputTokens"))
            usage.cache_creation_tokens += _int(stats.get("cacheCreationInputTokens"))
            window = stats.get("contextWindow")
            if isinstance(window, int) and window > 0:
                usage.context_window = window
            usage.model = usage.model or model_name
        return True

    totals = content.get("usage")
    if isinstance(totals, dict):
        usage.input_tokens = _int(totals.get("input_tokens"))
        usage.output_tokens = _int(totals.get("output_tokens"))
        usage.cache_read_tokens = _int(totals.get("cache_read_input_tokens"))
        usage.cache_creation_tokens = _int(totals.get("cache_creation_input_tokens"))
        return True
    return False


def estimate_token_usage(messages: Iterable[Any]) -> TokenUsage:
    """Estimate context usage from stored messages.

    Args:
        messages: Messages in ascending order (LogMessage objects or dicts
            with ``type`` and ``content``).

    Returns:
        TokenUsage with totals, context window and capped percentage.
    """
    messages = list(messages)
    usage = TokenUsage()
    detected_model: str | None = None

    for message in messages:
        content = _get(message, "content")
        if not isinstance(content, dict):
            continue
        message_type = _get(message, "type")
        if message_type == "system" and content.get("subtype") == "init":
            if isinstance(content.get("model"), str):
                detected_model = content["model"]
        elif message_type == "assistant":
            inner = content.get("message")
            if isinstance(inner, dict) and isinstance(inner.get("model"), str):
                detected_model = detected_model or inner["model"]

    latest_result = None
    for message in reversed(messages):
        content = _get(message, "content")
        if _get(message, "type") == "result" and isinstance(content, dict):
            latest_result = content
            break

    if latest_result is None or not _usage_from_result(latest_result, usage):
        usage = TokenUsage()
        for message in messages:
            content = _get(message, "content")
            if _get(message, "type") != "assistant" or not isinstance(content, dict):
                continue
            inner = content.get("message")
            turn = inner.get("usage") if isinstance(inner, dict) else None
            if not isinstance(turn, dict):
                continue
            usage.input_tokens += _int(turn.get("input_tokens"))
            usage.output_tokens += _int(turn.get("output_tokens"))
            usage.cache_read_tokens += _int(turn.get("cache_read_input_tokens"))
            usage.cache_creation_tokens += _int(turn.get("cache_creation_input_tokens"))

    if detected_model:
        usage.model = detected_model
    usage.total_tokens = usage.input_tokens + usage.output_tokens
    if usage.context_window > 0:
        usage.percent_used = min(100.0, usage.total_tokens / usage.context_window * 100)
    return usage
