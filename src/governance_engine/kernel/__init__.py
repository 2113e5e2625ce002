"""
Kernel - Infrastructure shared by every governance module

Storage, errors, audit events, ids, time, settings, logging, metrics and retry.
Nothing in here knows what a war declaration is.
"""

from governance_engine.kernel.errors import (
    AuthorizationError,
    ConflictError,
    ExecutionError,
    GovernanceError,
    StateError,
    StoreError,
    ValidationError,
)
from governance_engine.kernel.events import AuditEvent
from governance_engine.kernel.ids import generate_id
from governance_engine.kernel.settings import EngineSettings
from governance_engine.kernel.time import RealTimeProvider, TestTimeProvider, TimeProvider

__all__ = [
    # IDs
    "generate_id",
    # Time
    "TimeProvider",
    "RealTimeProvider",
    "TestTimeProvider",
    # Events & settings
    "AuditEvent",
    "EngineSettings",
    # Errors
    "GovernanceError",
    "StoreError",
    "AuthorizationError",
    "ValidationError",
    "ConflictError",
    "StateError",
    "ExecutionError",
]
