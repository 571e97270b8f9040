"""Data subject request lifecycle graph.

    REQUESTED -> IN_REVIEW -> APPROVED | REJECTED
    APPROVED  -> PROCESSING -> COMPLETED | FAILED
    FAILED    -> PROCESSING (retry) | REJECTED (abandon)

COMPLETED and REJECTED are terminal. Every legal move is one entry in
``TRANSITIONS``; anything else is rejected by a single lookup.
"""

from enum import Enum
from uuid import UUID

from atende_compliance.compliance.types import DsrStatus
from atende_compliance.core.exceptions import InvalidTransitionError


class DsrEvent(str, Enum):
    """Events that move a request through its lifecycle."""

    BEGIN_REVIEW = "begin_review"
    APPROVE = "approve"
    REJECT = "reject"
    START_PROCESSING = "start_processing"
    COMPLETE = "complete"
    FAIL = "fail"
    ABANDON = "abandon"


TRANSITIONS: dict[tuple[DsrStatus, DsrEvent], DsrStatus] = {
    (DsrStatus.REQUESTED, DsrEvent.BEGIN_REVIEW): DsrStatus.IN_REVIEW,
    (DsrStatus.IN_REVIEW, DsrEvent.APPROVE): DsrStatus.APPROVED,
    (DsrStatus.IN_REVIEW, DsrEvent.REJECT): DsrStatus.REJECTED,
    (DsrStatus.APPROVED, DsrEvent.START_PROCESSING): DsrStatus.PROCESSING,
    (DsrStatus.PROCESSING, DsrEvent.COMPLETE): DsrStatus.COMPLETED,
    (DsrStatus.PROCESSING, DsrEvent.FAIL): DsrStatus.FAILED,
    (DsrStatus.FAILED, DsrEvent.START_PROCESSING): DsrStatus.PROCESSING,
    (DsrStatus.FAILED, DsrEvent.ABANDON): DsrStatus.REJECTED,
}


def next_status(dsr_id: UUID, current: DsrStatus | str, event: DsrEvent) -> DsrStatus:
    """Resolve the status reached by applying event.

    Raises:
        InvalidTransitionError: If the move is not in the lifecycle graph
    """
    current = DsrStatus(current)
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransitionError(dsr_id, current.value, event.value)
    return target


def allowed_events(current: DsrStatus | str) -> list[DsrEvent]:
    """Events accepted from a status (empty for terminal statuses)."""
    current = DsrStatus(current)
    return [event for (status, event) in TRANSITIONS if status == current]
