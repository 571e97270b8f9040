"""Request context for async-safe audit correlation.

Carries the actor and correlation id of the current operation through
``contextvars`` so audit events and log lines can be tied together without
threading the values through every call.

Usage:
    from atende_compliance.core.context import RequestContext, request_context

    ctx = RequestContext(tenant_id=tenant_uuid, actor="operator@example.com")
    with request_context(ctx):
        await engine.decide_dsr(...)
"""

from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_utils.compat import uuid7


class ActorType(str, Enum):
    """Type of actor performing the operation."""

    HUMAN = "human"  # Operator via UI or API
    SERVICE = "service"  # Internal service call
    SYSTEM = "system"  # Scheduler, auto-approval


class RequestContext(BaseModel):
    """Context for a single request/operation."""

    tenant_id: UUID | None = None
    actor: str = "system"
    actor_type: ActorType = ActorType.SYSTEM
    correlation_id: UUID = Field(default_factory=uuid7)
    ip_address: str | None = None
    user_agent: str | None = None
    initiated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


_current_context: ContextVar[RequestContext | None] = ContextVar(
    "compliance_request_context", default=None
)


def get_current_context_or_none() -> RequestContext | None:
    """Get the active context, if any."""
    return _current_context.get()


def set_context(ctx: RequestContext) -> Token[RequestContext | None]:
    return _current_context.set(ctx)


def reset_context(token: Token[RequestContext | None]) -> None:
    _current_context.reset(token)


@contextmanager
def request_context(ctx: RequestContext) -> Iterator[RequestContext]:
    """Make ctx the active context for the enclosed block."""
    token = set_context(ctx)
    try:
        yield ctx
    finally:
        reset_context(token)
