"""Database models for the compliance engine."""

from .audit import AuditAction, AuditEvent, AuditSeverity
from .base import AppendOnlyMixin, Base, TimestampMixin, utc_now
from .consent import ConsentRecord
from .dsr import DsrRequest
from .purge import PurgeRun, PurgeRunItem
from .tenant import Tenant

__all__ = [
    "Base",
    "TimestampMixin",
    "AppendOnlyMixin",
    "utc_now",
    "AuditEvent",
    "AuditAction",
    "AuditSeverity",
    "ConsentRecord",
    "DsrRequest",
    "PurgeRun",
    "PurgeRunItem",
    "Tenant",
]
