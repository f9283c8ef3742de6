"""Optional shared-key authentication for the AgentDock API.

When ``AGENTDOCK_API_KEY`` is set, every ``/api/`` request must present it
either as ``X-API-Key: <key>`` or ``Authorization: Bearer <key>``. Health,
readiness and OpenAPI paths stay public. Repeated failures from one client
are throttled with HTTP 429.

This is a single shared secret, not per-user authorization; issuing user
tokens is left to whatever sits in front of the server.
"""

from __future__ import annotations

import hmac
import logging
import os
import threading
import time

from fastapi import Request
from fastapi.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

API_KEY_ENV = "AGENTDOCK_API_KEY"
MIN_API_KEY_LENGTH = 32

_PUBLIC_PATH_PREFIXES = (
    "/health",
    "/readyz",
    "/docs",
    "/redoc",
    "/openapi.json",
)


class AuthFailureLimiter:
    """Sliding-window counter of authentication failures per client.

    Args:
        max_failures: Failures allowed inside the window before blocking.
        window_seconds: Window length.
    """

    def __init__(self, max_failures: int = 10, window_seconds: float = 300) -> None:
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self._failures: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def is_blocked(self, client: str) -> bool:
        with self._lock:
            now = time.monotonic()
            recent = [
                t for t in self._failures.get(client, []) if now - t < self.window_seconds
            ]
            self._failures[client] = recent
            return len(recent) >= self.max_failures

    def record_failure(self, client: str) -> None:
        with self._lock:
            self._failures.setdefault(client, []).append(time.monotonic())

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()


failure_limiter = AuthFailureLimiter()


def reset_rate_limiter() -> None:
    """Forget all recorded failures. Used by tests."""
    failure_limiter.reset()


def get_expected_api_key() -> str:
    """Return the configured key; empty string means auth is disabled."""
    return os.environ.get(API_KEY_ENV, "").strip()


def validate_api_key_strength() -> None:
    """Reject a configured key shorter than MIN_API_KEY_LENGTH.

    Raises:
        ValueError: If the key is set but too short.
    """
    key = get_expected_api_key()
    if key and len(key) < MIN_API_KEY_LENGTH:
        raise ValueError(
            f"{API_KEY_ENV} is too short ({len(key)} chars). "
            f"Minimum length is {MIN_API_KEY_LENGTH} characters."
        )


def _trust_proxy() -> bool:
    return os.environ.get("AGENTDOCK_TRUST_PROXY", "").strip().lower() in ("1", "true")


def _client_ip(request: Request) -> str:
    """Client address; X-Forwarded-For only when AGENTDOCK_TRUST_PROXY is on."""
    if _trust_proxy():
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def extract_api_key(request: Request) -> str:
    """Return the key presented by the request, or an empty string."""
    key = request.headers.get("X-API-Key", "")
    if key:
        return key
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer":
        return token.strip()
    return ""


def should_authenticate(path: str) -> bool:
    """Return True when ``path`` is protected by API-key auth."""
    if path.startswith(_PUBLIC_PATH_PREFIXES):
        return False
    return path.startswith("/api/")


async def maybe_require_api_key(request: Request, call_next) -> Response:
    """HTTP middleware enforcing the shared key when one is configured."""
    if request.method.upper() == "OPTIONS":
        return await call_next(request)

    expected_key = get_expected_api_key()
    if not expected_key or not should_authenticate(request.url.path):
        return await call_next(request)

    client = _client_ip(request)
    if failure_limiter.is_blocked(client):
        logger.warning("Auth rate limit exceeded for %s", client)
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many authentication failures. Try again later."},
        )

    provided_key = extract_api_key(request)
    if not provided_key or not hmac.compare_digest(provided_key, expected_key):
        failure_limiter.record_failure(client)
        return JSONResponse(
            status_code=401,
            content={"detail": "Invalid or missing API key"},
        )
    return await call_next(request)
