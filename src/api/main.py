"""FastAPI application for the AgentDock API.

Provides the application factory and the default application instance
with routers, middleware and exception handlers configured. The lifespan
builds the long-lived components (process registry, sandbox runtime,
message log, supervisor, model cache) on ``app.state`` and runs the
reconciliation pass before any route is reachable.
"""

import logging
import os
import sys
import time as _time
from collections.abc import Callable
from contextlib import asynccontextmanager
from importlib.metadata import version as _pkg_version
from typing import Any

from fastapi import FastAPI, Request

# Configure logging to stdout for uvicorn to capture
logging.basicConfig(
    level=logging.INFO,
    format="%(levelname)s:%(name)s:%(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
# Ensure our application loggers are captured
logging.getLogger("src").setLevel(logging.INFO)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from src.api.middleware.auth import maybe_require_api_key, validate_api_key_strength
from src.api.routes import agent, models, sessions
from src.cli.config import AgentDockConfig, load_config
from src.db.connection import SessionLocal, close_db, init_db
from src.errors import DomainError
from src.services.message_log import MessageLog
from src.services.model_suggestions import ModelSuggestionCache
from src.services.process_registry import ProcessRegistry
from src.services.process_supervisor import ProcessSupervisor
from src.services.reconciliation import reconcile_sessions
from src.services.sandbox_runtime import DockerSandboxRuntime, SandboxRuntime
from src.utils.paths import ensure_dirs_exist

logger = logging.getLogger(__name__)


def _parse_allowed_origins() -> list[str]:
    """Parse comma-separated CORS allowlist from ALLOWED_ORIGINS env var."""
    raw = os.environ.get("ALLOWED_ORIGINS", "").strip()
    if not raw:
        return []
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def _package_version() -> str:
    try:
        return _pkg_version("agentdock")
    except Exception:
        return "unknown"


def create_app(
    config: AgentDockConfig | None = None,
    runtime: SandboxRuntime | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings; loaded with ``load_config()`` at startup if None.
        runtime: Sandbox runtime; a DockerSandboxRuntime if None.
        session_factory: Database session factory; the default engine's
            ``SessionLocal`` (with tables created at startup) if None.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Async lifespan: build components, reconcile, then clean up."""
        # --- Startup ---
        app.state.startup_time = _time.time()
        validate_api_key_strength()

        factory = session_factory
        if factory is None:
            ensure_dirs_exist()
            init_db()
            factory = SessionLocal
        cfg = config or load_config()
        sandbox = runtime or DockerSandboxRuntime(cfg.sandbox)

        registry = ProcessRegistry()
        message_log = MessageLog(factory)
        supervisor = ProcessSupervisor(registry, sandbox, message_log, cfg.supervisor)

        app.state.config = cfg
        app.state.session_factory = factory
        app.state.runtime = sandbox
        app.state.registry = registry
        app.state.message_log = message_log
        app.state.supervisor = supervisor
        app.state.model_cache = ModelSuggestionCache()

        logger.info("Reconciling sessions against sandbox runtime...")
        try:
            with factory() as db:
                app.state.reconciliation = await reconcile_sessions(
                    db, sandbox, registry, cfg.supervisor.process_pattern
                )
        except Exception as e:
            app.state.reconciliation = None
            logger.error("Error reconciling sessions (non-blocking): %s", e)

        yield

        # --- Shutdown ---
        await supervisor.shutdown()
        if session_factory is None:
            close_db()

    app = FastAPI(
        title="AgentDock API",
        description="Sandboxed coding-agent sessions with live message streams",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Optional API auth for /api/* when AGENTDOCK_API_KEY is configured.
    app.middleware("http")(maybe_require_api_key)

    # CORS allowlist is env-driven. If unset, CORS is disabled (same-origin only).
    allowed_origins = _parse_allowed_origins()
    if allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "Authorization", "X-API-Key"],
        )

    @app.exception_handler(DomainError)
    async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
        """Map domain exceptions to their HTTP status with a coded body."""
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_error().to_payload(),
        )

    # Include routers
    app.include_router(sessions.router, prefix="/api/v1")
    app.include_router(agent.router, prefix="/api/v1")
    app.include_router(models.router, prefix="/api/v1")

    @app.get("/health")
    def health_check(request: Request) -> dict:
        """Health check endpoint with process status."""
        started = getattr(request.app.state, "startup_time", 0.0)
        uptime = int(_time.time() - started) if started else 0
        registry = getattr(request.app.state, "registry", None)
        running_agents = len(registry.live_handles()) if registry is not None else 0
        return {
            "status": "healthy",
            "version": _package_version(),
            "uptime_seconds": uptime,
            "running_agents": running_agents,
        }

    @app.get("/readyz")
    def readiness_check(request: Request):
        """Dependency-aware readiness check."""
        checks: dict[str, dict[str, Any]] = {}
        try:
            with request.app.state.session_factory() as db:
                db.execute(text("SELECT 1"))
            checks["database"] = {"status": "ok"}
        except Exception as exc:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "not_ready",
                    "checks": {"database": {"status": "error", "message": str(exc)}},
                },
            )

        result = getattr(request.app.state, "reconciliation", None)
        checks["reconciliation"] = (
            {"status": "ok", **result.to_dict()}
            if result is not None
            else {"status": "error", "message": "reconciliation did not complete"}
        )
        return {"status": "ready", "checks": checks}

    return app


app = create_app()
