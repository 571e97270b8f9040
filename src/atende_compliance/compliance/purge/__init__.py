"""Retention purge execution and scheduling."""

from atende_compliance.compliance.purge.executor import PurgeExecutor
from atende_compliance.compliance.purge.scheduler import PurgeRunSummary, RetentionPurgeScheduler

__all__ = ["PurgeExecutor", "PurgeRunSummary", "RetentionPurgeScheduler"]
