"""Retention policy resolution by subscription tier."""

from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from atende_compliance.compliance.types import PlanTier
from atende_compliance.utils.exceptions import ConfigurationError

if TYPE_CHECKING:
    from atende_compliance.compliance.config import RetentionConfig

# Hard ceiling so a typo cannot turn into unbounded retention
MAX_RETENTION_DAYS = 3650

DEFAULT_RETENTION_DAYS: dict[PlanTier, int] = {
    PlanTier.FREE: 30,
    PlanTier.PRO: 90,
    PlanTier.BUSINESS: 365,
}


def validate_retention_days(tier: str, days: object) -> int:
    """Validate a retention window.

    Args:
        tier: Tier name, used in the error message
        days: Configured value

    Returns:
        The validated number of days

    Raises:
        ConfigurationError: If the value is not an integer in 1..MAX_RETENTION_DAYS
    """
    if isinstance(days, bool) or not isinstance(days, int):
        raise ConfigurationError(f"Retention days for '{tier}' must be an integer, got {days!r}")
    if days <= 0:
        raise ConfigurationError(f"Retention days for '{tier}' must be positive, got {days}")
    if days > MAX_RETENTION_DAYS:
        raise ConfigurationError(
            f"Retention days for '{tier}' exceed the ceiling of {MAX_RETENTION_DAYS}, got {days}"
        )
    return days


class RetentionPolicyResolver:
    """Maps a tenant's plan tier to its retention window.

    The table is validated once at construction and never changes.
    """

    def __init__(self, days_by_tier: Mapping[PlanTier | str, int] | None = None):
        source = DEFAULT_RETENTION_DAYS if days_by_tier is None else days_by_tier
        table: dict[PlanTier, int] = {}
        for tier, days in source.items():
            try:
                plan = PlanTier(tier.value if isinstance(tier, PlanTier) else str(tier).lower())
            except ValueError as e:
                raise ConfigurationError(f"Unknown plan tier in retention policy: {tier}") from e
            table[plan] = validate_retention_days(plan.value, days)

        missing = [t.value for t in PlanTier if t not in table]
        if missing:
            raise ConfigurationError(f"Retention policy missing tiers: {', '.join(missing)}")

        self._table = table

    @classmethod
    def from_config(cls, config: "RetentionConfig") -> "RetentionPolicyResolver":
        return cls(config.days_by_tier())

    def retention_days(self, tier: PlanTier | str) -> int:
        """Get the retention window for a tier.

        Raises:
            ConfigurationError: If the tier is unknown
        """
        try:
            plan = tier if isinstance(tier, PlanTier) else PlanTier(str(tier).lower())
        except ValueError as e:
            raise ConfigurationError(f"Unknown plan tier: {tier}") from e
        return self._table[plan]

    def cutoff(self, tier: PlanTier | str, now: datetime) -> datetime:
        """Records with last activity strictly before this instant are stale."""
        return now - timedelta(days=self.retention_days(tier))

    def as_dict(self) -> dict[str, int]:
        return {tier.value: days for tier, days in self._table.items()}
