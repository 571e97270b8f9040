"""Core services and utilities for the compliance engine.

The audit trail lives in :mod:`atende_compliance.core.audit` and is imported
from there directly, since it depends on the database models.
"""

from .context import (
    ActorType,
    RequestContext,
    get_current_context_or_none,
    request_context,
)
from .exceptions import (
    AppendOnlyViolation,
    AuditWriteFailure,
    ConcurrencyConflict,
    DsrNotFoundError,
    InvalidTransitionError,
    PurgeFailure,
    TenantNotFoundError,
    TooManyPendingRequests,
    ValidationError,
)
from .locks import InMemoryLeaseLock, LeaseLock, hold_lease

__all__ = [
    # Context
    "ActorType",
    "RequestContext",
    "get_current_context_or_none",
    "request_context",
    # Exceptions
    "AppendOnlyViolation",
    "AuditWriteFailure",
    "ConcurrencyConflict",
    "DsrNotFoundError",
    "InvalidTransitionError",
    "PurgeFailure",
    "TenantNotFoundError",
    "TooManyPendingRequests",
    "ValidationError",
    # Locks
    "InMemoryLeaseLock",
    "LeaseLock",
    "hold_lease",
]
