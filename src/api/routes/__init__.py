"""FastAPI route modules.

Exports all route modules for inclusion in the main application.
"""

from src.api.routes import agent, models, sessions

__all__ = [
    "agent",
    "models",
    "sessions",
]
