"""Service layer for AgentDock.

Provides the session lifecycle, agent process supervision, the per-session
message log and startup reconciliation.
"""

from src.services.message_log import MessageLog, Subscription
from src.services.process_registry import ProcessRegistry, SupervisorHandle
from src.services.process_supervisor import ProcessSupervisor
from src.services.reconciliation import ReconciliationResult, reconcile_sessions
from src.services.session_service import SessionService

__all__ = [
    "MessageLog",
    "Subscription",
    "ProcessRegistry",
    "SupervisorHandle",
    "ProcessSupervisor",
    "ReconciliationResult",
    "reconcile_sessions",
    "SessionService",
]
