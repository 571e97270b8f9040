"""Core exceptions for the consent, DSR, purge and audit components."""

from uuid import UUID

from atende_compliance.utils.exceptions import ComplianceEngineError


class ValidationError(ComplianceEngineError):
    """Raised when input is malformed. Nothing is persisted.

    Attributes:
        field: Name of the offending field, if known
    """

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field

    def __str__(self) -> str:
        if self.field:
            return f"ValidationError({self.field}): {self.args[0]}"
        return f"ValidationError: {self.args[0]}"


class ConcurrencyConflict(ComplianceEngineError):
    """Raised when a lease could not be acquired or state changed underneath us.

    The caller may retry or skip; state is never partially changed.

    Attributes:
        resource: Lock key or identifier of the contended resource
    """

    def __init__(self, message: str, resource: str):
        super().__init__(message)
        self.resource = resource

    def __str__(self) -> str:
        return f"ConcurrencyConflict({self.resource}): {self.args[0]}"


class InvalidTransitionError(ConcurrencyConflict):
    """Raised when a DSR lifecycle event is not allowed from the current status.

    Attributes:
        dsr_id: The request that was touched
        current_status: Status the request was in
        event: The rejected lifecycle event
    """

    def __init__(self, dsr_id: UUID, current_status: str, event: str):
        super().__init__(
            f"Event '{event}' is not allowed from status '{current_status}'",
            resource=f"dsr:{dsr_id}",
        )
        self.dsr_id = dsr_id
        self.current_status = current_status
        self.event = event

    def __str__(self) -> str:
        return (
            f"InvalidTransitionError: request {self.dsr_id} "
            f"cannot apply '{self.event}' from '{self.current_status}'"
        )


class TooManyPendingRequests(ComplianceEngineError):
    """Raised when a tenant already has the maximum number of outstanding DSRs.

    Attributes:
        tenant_id: The tenant submitting the request
        pending: Number of outstanding requests
        limit: Configured maximum
    """

    def __init__(self, tenant_id: UUID, pending: int, limit: int):
        super().__init__(f"Tenant has {pending} outstanding requests (limit {limit})")
        self.tenant_id = tenant_id
        self.pending = pending
        self.limit = limit

    def __str__(self) -> str:
        return (
            f"TooManyPendingRequests: tenant {self.tenant_id} "
            f"(pending={self.pending}, limit={self.limit})"
        )


class PurgeFailure(ComplianceEngineError):
    """Raised by a record provider when a record could not be purged.

    The failure is retryable; the executor records it as a FAILED outcome.

    Attributes:
        record_type: Domain record type (messages, tickets, ...)
        record_id: Identifier of the record
        reason: Human readable reason, safe to store
    """

    def __init__(self, record_type: str, record_id: str, reason: str):
        super().__init__(reason)
        self.record_type = record_type
        self.record_id = record_id
        self.reason = reason

    def __str__(self) -> str:
        return f"PurgeFailure({self.record_type}:{self.record_id}): {self.reason}"


class AuditWriteFailure(ComplianceEngineError):
    """Raised when an audit event could not be persisted.

    The triggering operation must be rolled back or reported failed.

    Attributes:
        action: Audit action that failed to persist
        reason: Underlying error description
    """

    def __init__(self, action: str, reason: str):
        super().__init__(f"Audit write failed for '{action}': {reason}")
        self.action = action
        self.reason = reason

    def __str__(self) -> str:
        return f"AuditWriteFailure({self.action}): {self.reason}"


class AppendOnlyViolation(ComplianceEngineError):
    """Raised when an update or delete targets an append-only table.

    Attributes:
        entity: Table or class name
        operation: "update" or "delete"
    """

    def __init__(self, entity: str, operation: str):
        super().__init__(f"{entity} is append-only; {operation} is not permitted")
        self.entity = entity
        self.operation = operation


class DsrNotFoundError(ComplianceEngineError):
    """Raised when a data subject request does not exist.

    Attributes:
        dsr_id: The ID that was not found
    """

    def __init__(self, dsr_id: UUID):
        super().__init__(f"Data subject request not found: {dsr_id}")
        self.dsr_id = dsr_id


class TenantNotFoundError(ComplianceEngineError):
    """Raised when a tenant does not exist or is inactive.

    Attributes:
        tenant_id: The ID that was not found
    """

    def __init__(self, tenant_id: UUID):
        super().__init__(f"Tenant not found: {tenant_id}")
        self.tenant_id = tenant_id
