"""Lease locks with expiry.

A lease is held by whoever knows its token and lapses on its own after the
TTL, so a crashed worker can never block later runs. Two backends share the
:class:`LeaseLock` protocol: an in-process map for tests and single-worker
deployments, and Redis (see :mod:`atende_compliance.core.redis`) for
multiple workers.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Protocol

from uuid_utils.compat import uuid7

from atende_compliance.core.exceptions import ConcurrencyConflict
from atende_compliance.core.logging import get_logger

logger = get_logger(__name__)


class LeaseLock(Protocol):
    """Protocol for lease-based mutual exclusion."""

    async def acquire(self, key: str, ttl_seconds: float) -> str | None:
        """Try to take the lease.

        Returns:
            A token identifying this holder, or None if the lease is held
        """
        ...

    async def release(self, key: str, token: str) -> bool:
        """Release the lease if token still owns it."""
        ...

    async def extend(self, key: str, token: str, ttl_seconds: float) -> bool:
        """Push the expiry forward if token still owns the lease."""
        ...

    async def is_held(self, key: str) -> bool:
        """Check whether anyone currently holds the lease."""
        ...


class InMemoryLeaseLock:
    """Single-process lease map.

    Args:
        clock: Monotonic time source in seconds, injectable for tests
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._leases: dict[str, tuple[str, float]] = {}
        self._guard = asyncio.Lock()

    def _live(self, key: str) -> tuple[str, float] | None:
        lease = self._leases.get(key)
        if lease is None:
            return None
        if lease[1] <= self._clock():
            del self._leases[key]
            return None
        return lease

    async def acquire(self, key: str, ttl_seconds: float) -> str | None:
        async with self._guard:
            if self._live(key) is not None:
                return None
            token = str(uuid7())
            self._leases[key] = (token, self._clock() + ttl_seconds)
            return token

    async def release(self, key: str, token: str) -> bool:
        async with self._guard:
            lease = self._live(key)
            if lease is None or lease[0] != token:
                return False
            del self._leases[key]
            return True

    async def extend(self, key: str, token: str, ttl_seconds: float) -> bool:
        async with self._guard:
            lease = self._live(key)
            if lease is None or lease[0] != token:
                return False
            self._leases[key] = (token, self._clock() + ttl_seconds)
            return True

    async def is_held(self, key: str) -> bool:
        async with self._guard:
            return self._live(key) is not None


@asynccontextmanager
async def hold_lease(lock: LeaseLock, key: str, ttl_seconds: float) -> AsyncIterator[str]:
    """Hold a lease for the duration of the block.

    Raises:
        ConcurrencyConflict: If the lease is held by someone else
    """
    token = await lock.acquire(key, ttl_seconds)
    if token is None:
        raise ConcurrencyConflict("Resource is locked by another operation", resource=key)
    try:
        yield token
    finally:
        released = await lock.release(key, token)
        if not released:
            logger.warning("lease_lost_before_release", lock_key=key)
