"""Model name suggestions for the agent's ``--model`` option.

Combines well-known short aliases with the model IDs the Anthropic API
reports for the configured credentials. Results are cached per instance;
the cache object is owned by the application and injected where needed.
"""

import logging
import os
import re
import time

from anthropic import AsyncAnthropic

logger = logging.getLogger(__name__)

WELL_KNOWN_ALIASES = ["opus", "sonnet", "haiku"]

DEFAULT_TTL_SECONDS = 60 * 60

_DATED_MODEL_PATTERN = re.compile(r"^(.+)-(\d{8})$")


def infer_alias(model_id: str) -> str | None:
    """Strip a trailing ``-YYYYMMDD`` date from a model ID.

    Example:
        infer_alias("claude-sonnet-4-5-20250929")  # "claude-sonnet-4-5"
    """
    match = _DATED_MODEL_PATTERN.match(model_id)
    if match:
        return match.group(1)
    return None


def _client_credentials() -> dict[str, str] | None:
    """Resolve credentials for the models API from the environment.

    ``sk-ant-`` values are API keys; anything else is treated as an OAuth
    token.
    """
    token = os.environ.get("ANTHROPIC_API_KEY") or os.environ.get("CLAUDE_CODE_OAUTH_TOKEN")
    if not token:
        return None
    if token.startswith("sk-ant-"):
        return {"api_key": token}
    return {"auth_token": token}


class ModelSuggestionCache:
    """TTL cache of model suggestions.

    Args:
        ttl_seconds: How long a fetched list stays fresh.
        client: Optional pre-built AsyncAnthropic client. When omitted, one
            is built from environment credentials on each refresh.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        client: AsyncAnthropic | None = None,
    ) -> None:
        self._ttl_seconds = ttl_seconds
        self._client = client
        self._cached: list[str] | None = None
        self._fetched_at = 0.0

    def invalidate(self) -> None:
        """Drop the cached list so the next call refetches."""
        self._cached = None
        self._fetched_at = 0.0

    async def _fetch_model_ids(self) -> list[str]:
        client = self._client
        if client is None:
            credentials = _client_credentials()
            if credentials is None:
                logger.debug("No Anthropic credentials, skipping model fetch")
                return []
            client = AsyncAnthropic(**credentials)

        try:
            return [model.id async for model in client.models.list(limit=100)]
        except Exception as e:
            logger.debug("Failed to fetch models from Anthropic API: %s", e)
            return []

    async def get_suggestions(self) -> list[str]:
        """Return aliases, then inferred aliases, then full model IDs.

        Deduplicated, order preserved. Falls back to the well-known aliases
        when the API is unavailable.
        """
        now = time.monotonic()
        if self._cached is not None and now - self._fetched_at < self._ttl_seconds:
            return self._cached

        model_ids = await self._fetch_model_ids()

        seen: set[str] = set()
        suggestions: list[str] = []

        def _add(name: str | None) -> None:
            if name and name not in seen:
                seen.add(name)
                suggestions.append(name)

        for alias in WELL_KNOWN_ALIASES:
            _add(alias)
        for model_id in model_ids:
            _add(infer_alias(model_id))
        for model_id in model_ids:
            _add(model_id)

        self._cached = suggestions
        self._fetched_at = now
        return suggestions
