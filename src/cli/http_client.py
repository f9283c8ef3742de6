"""HTTP client for the AgentDock server API.

Thin wrapper around httpx used by the CLI. Error responses raise
AgentDockClientError (never typer.Exit) so the client is reusable from
scripts and tests.

``follow_session`` implements the client side of the message protocol:
load history newest-first, open the live stream at the newest history
sequence, and yield one ordered, duplicate-free stream.
"""

import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any

import httpx

from src.services.message_log import merge_messages, subscription_cursor

logger = logging.getLogger(__name__)


class AgentDockClientError(Exception):
    """Non-2xx response or transport failure from the AgentDock server.

    Attributes:
        message: Human-readable error.
        status_code: HTTP status, if a response was received.
        error_code: E-XXXX code from the response body, if any.
    """

    def __init__(
        self, message: str, status_code: int | None = None, error_code: str | None = None
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code


class AgentDockClient:
    """Async client for the AgentDock API.

    Args:
        base_url: Server base URL.
        transport: Optional httpx transport (tests pass an ASGI or mock
            transport here).
    """

    def __init__(
        self,
        base_url: str = "http://127.0.0.1:8000",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._api_key = os.environ.get("AGENTDOCK_API_KEY", "").strip()

    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self._api_key} if self._api_key else {}

    async def __aenter__(self) -> "AgentDockClient":
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=30.0,
            headers=self._headers(),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("AgentDockClient must be used as an async context manager")
        return self._client

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        error_code = None
        try:
            body = resp.json()
            detail = body.get("message") or body.get("detail") or resp.text
            error_code = body.get("error_code")
        except (json.JSONDecodeError, ValueError, AttributeError):
            detail = resp.text
        raise AgentDockClientError(
            message=str(detail), status_code=resp.status_code, error_code=error_code
        )

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            resp = await self.http.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise AgentDockClientError(f"Cannot reach server at {self._base_url}: {e}") from e
        self._raise_for_status(resp)
        return resp.json()

    # Sessions

    async def list_sessions(self, include_archived: bool = False) -> list[dict]:
        data = await self._request(
            "GET", "/api/v1/sessions", params={"include_archived": include_archived}
        )
        return data["sessions"]

    async def create_session(self, name: str, repo_url: str, branch: str = "main") -> dict:
        return await self._request(
            "POST",
            "/api/v1/sessions",
            json={"name": name, "repo_url": repo_url, "branch": branch},
        )

    async def get_session(self, session_id: str) -> dict:
        return await self._request("GET", f"/api/v1/sessions/{session_id}")

    async def start_session(self, session_id: str) -> dict:
        return await self._request("POST", f"/api/v1/sessions/{session_id}/start")

    async def stop_session(self, session_id: str) -> dict:
        return await self._request("POST", f"/api/v1/sessions/{session_id}/stop")

    async def archive_session(self, session_id: str) -> dict:
        return await self._request("DELETE", f"/api/v1/sessions/{session_id}")

    async def get_usage(self, session_id: str) -> dict:
        return await self._request("GET", f"/api/v1/sessions/{session_id}/usage")

    # Agent

    async def send_prompt(self, session_id: str, prompt: str) -> bool:
        data = await self._request(
            "POST", f"/api/v1/sessions/{session_id}/agent/send", json={"prompt": prompt}
        )
        return data["success"]

    async def interrupt(self, session_id: str) -> bool:
        data = await self._request("POST", f"/api/v1/sessions/{session_id}/agent/interrupt")
        return data["success"]

    async def is_running(self, session_id: str) -> bool:
        data = await self._request("GET", f"/api/v1/sessions/{session_id}/agent/running")
        return data["running"]

    async def get_history(
        self, session_id: str, cursor: int | None = None, limit: int = 50
    ) -> dict:
        params: dict[str, Any] = {"limit": limit}
        if cursor is not None:
            params["cursor"] = cursor
        return await self._request(
            "GET", f"/api/v1/sessions/{session_id}/agent/history", params=params
        )

    async def load_history(self, session_id: str, max_pages: int | None = None) -> list[dict]:
        """Walk history pages backwards and return messages oldest first.

        Args:
            session_id: Session to read.
            max_pages: Stop after this many pages (None reads everything).
        """
        pages: list[list[dict]] = []
        cursor: int | None = None
        while True:
            page = await self.get_history(session_id, cursor=cursor, limit=100)
            if page["messages"]:
                pages.append(page["messages"])
            if not page["has_more"] or page["next_cursor"] is None:
                break
            if max_pages is not None and len(pages) >= max_pages:
                break
            cursor = page["next_cursor"]
        return [m for chunk in reversed(pages) for m in chunk]

    async def stream_messages(
        self, session_id: str, after_sequence: int | None = None
    ) -> AsyncIterator[dict]:
        """Yield messages from the live SSE stream. Pings are skipped."""
        params = {} if after_sequence is None else {"after_sequence": after_sequence}
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=None,
            headers=self._headers(),
            transport=self._transport,
        ) as stream_client:
            async with stream_client.stream(
                "GET", f"/api/v1/sessions/{session_id}/agent/stream", params=params
            ) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    self._raise_for_status(resp)
                event_type = ""
                async for line in resp.aiter_lines():
                    line = line.strip()
                    if line.startswith("event:"):
                        event_type = line[6:].strip()
                    elif line.startswith("data:"):
                        data_str = line[5:].strip()
                        if event_type == "error":
                            raise AgentDockClientError(f"Stream ended: {data_str}")
                        if event_type != "message":
                            continue
                        try:
                            yield json.loads(data_str)
                        except json.JSONDecodeError:
                            logger.debug("Skipping malformed stream payload: %s", data_str)

    async def follow_session(
        self, session_id: str, history_pages: int | None = 1
    ) -> AsyncIterator[dict]:
        """Yield recent history then live messages, in order, without duplicates.

        The stream is anchored at the newest history sequence, so nothing
        appended between the two requests is lost.
        """
        history = await self.load_history(session_id, max_pages=history_pages)
        seen: set[str] = set()
        for message in merge_messages(history, []):
            seen.add(message["id"])
            yield message

        async for message in self.stream_messages(session_id, subscription_cursor(history)):
            if message["id"] in seen:
                continue
            seen.add(message["id"])
            yield message

    async def health(self) -> dict:
        return await self._request("GET", "/health")
