"""Tests for model suggestions and alias inference."""

from unittest.mock import MagicMock

import pytest

from src.services.model_suggestions import (
    WELL_KNOWN_ALIASES,
    ModelSuggestionCache,
    _client_credentials,
    infer_alias,
)


class _AsyncPage:
    """Async iterator standing in for the SDK paginator."""

    def __init__(self, ids):
        self._items = [MagicMock(id=i) for i in ids]

    def __aiter__(self):
        self._iter = iter(self._items)
        return self

    async def __anext__(self):
        try:
            return next(self._iter)
        except StopIteration:
            raise StopAsyncIteration


def _client(ids=None, error=None):
    client = MagicMock()
    if error is not None:
        client.models.list.side_effect = error
    else:
        client.models.list.side_effect = lambda **kwargs: _AsyncPage(ids)
    return client


@pytest.mark.parametrize(
    "model_id,alias",
    [
        ("claude-sonnet-4-5-20250929", "claude-sonnet-4-5"),
        ("claude-3-5-haiku-20241022", "claude-3-5-haiku"),
        ("claude-opus-4-1", None),
        ("claude-20250929-x", None),
    ],
)
def test_infer_alias(model_id, alias):
    assert infer_alias(model_id) == alias


class TestCredentials:
    """Tests for credential resolution."""

    def test_api_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-abc")
        assert _client_credentials() == {"api_key": "sk-ant-abc"}

    def test_oauth_token(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.setenv("CLAUDE_CODE_OAUTH_TOKEN", "oauth-token")
        assert _client_credentials() == {"auth_token": "oauth-token"}

    def test_none(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        assert _client_credentials() is None


class TestModelSuggestionCache:
    """Tests for suggestion ordering and caching."""

    @pytest.mark.asyncio
    async def test_aliases_then_inferred_then_ids(self):
        cache = ModelSuggestionCache(
            client=_client(["claude-sonnet-4-5-20250929", "claude-opus-4-1"])
        )

        assert await cache.get_suggestions() == [
            "opus",
            "sonnet",
            "haiku",
            "claude-sonnet-4-5",
            "claude-sonnet-4-5-20250929",
            "claude-opus-4-1",
        ]

    @pytest.mark.asyncio
    async def test_duplicates_are_dropped(self):
        cache = ModelSuggestionCache(client=_client(["x-20250101", "x-20250101"]))
        assert await cache.get_suggestions() == [*WELL_KNOWN_ALIASES, "x", "x-20250101"]

    @pytest.mark.asyncio
    async def test_api_failure_falls_back_to_aliases(self):
        cache = ModelSuggestionCache(client=_client(error=RuntimeError("401")))
        assert await cache.get_suggestions() == WELL_KNOWN_ALIASES

    @pytest.mark.asyncio
    async def test_no_credentials_falls_back_to_aliases(self, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        monkeypatch.delenv("CLAUDE_CODE_OAUTH_TOKEN", raising=False)
        assert await ModelSuggestionCache().get_suggestions() == WELL_KNOWN_ALIASES

    @pytest.mark.asyncio
    async def test_results_are_cached_until_invalidated(self):
        client = _client(["claude-opus-4-1"])
        cache = ModelSuggestionCache(client=client)

        await cache.get_suggestions()
        await cache.get_suggestions()
        assert client.models.list.call_count == 1

        cache.invalidate()
        await cache.get_suggestions()
        assert client.models.list.call_count == 2

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self):
        client = _client(["claude-opus-4-1"])
        cache = ModelSuggestionCache(ttl_seconds=0, client=client)

        await cache.get_suggestions()
        await cache.get_suggestions()
        assert client.models.list.call_count == 2
