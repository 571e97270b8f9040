"""Data subject request lifecycle."""

from atende_compliance.compliance.dsr.lifecycle import TRANSITIONS, DsrEvent, allowed_events, next_status
from atende_compliance.compliance.dsr.manager import SYSTEM_REVIEWER, DsrManager, DsrSubmission

__all__ = [
    "TRANSITIONS",
    "DsrEvent",
    "allowed_events",
    "next_status",
    "SYSTEM_REVIEWER",
    "DsrManager",
    "DsrSubmission",
]
