"""Redis client management and the Redis-backed lease lock."""

import asyncio

from redis.asyncio import ConnectionPool, Redis
from uuid_utils.compat import uuid7

from atende_compliance.config.settings import get_settings
from atende_compliance.utils.exceptions import ConfigurationError

# Global connection pool
_pool: ConnectionPool | None = None
_client: Redis | None = None
_lock = asyncio.Lock()

# Only the holder may release or extend: compare the token before acting
_RELEASE_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""

_EXTEND_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("PEXPIRE", KEYS[1], ARGV[2])
end
return 0
"""


async def get_redis_pool() -> ConnectionPool:
    """Get or create the Redis connection pool.

    Raises:
        ConfigurationError: If REDIS_URL is not configured
    """
    global _pool
    if _pool is None:
        async with _lock:
            if _pool is None:
                settings = get_settings()
                if not settings.REDIS_URL:
                    raise ConfigurationError("REDIS_URL is required for the redis lock backend")
                _pool = ConnectionPool.from_url(
                    settings.REDIS_URL,
                    max_connections=settings.REDIS_MAX_CONNECTIONS,
                    decode_responses=True,
                )
    return _pool


async def get_redis_client() -> Redis:
    """Get or create the shared Redis client."""
    global _client
    if _client is None:
        pool = await get_redis_pool()
        async with _lock:
            if _client is None:
                _client = Redis(connection_pool=pool)
    return _client


async def close_redis() -> None:
    """Close Redis connection pool and client.

    Should be called during application shutdown.
    """
    global _pool, _client
    async with _lock:
        if _client is not None:
            await _client.aclose()
            _client = None
        if _pool is not None:
            await _pool.disconnect()
            _pool = None


class RedisLeaseLock:
    """Lease lock shared by every worker connected to the same Redis.

    Uses ``SET key token NX PX ttl`` to acquire; release and extend run
    Lua scripts so a worker whose lease already lapsed cannot clobber the
    next holder.
    """

    def __init__(self, client: Redis | None = None, prefix: str = "lease"):
        """Initialize the lock.

        Args:
            client: Redis client (uses global if None)
            prefix: Key prefix for namespacing
        """
        self._client = client
        self.prefix = prefix

    async def _get_client(self) -> Redis:
        if self._client is not None:
            return self._client
        return await get_redis_client()

    def _make_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def acquire(self, key: str, ttl_seconds: float) -> str | None:
        client = await self._get_client()
        token = str(uuid7())
        acquired = await client.set(
            self._make_key(key), token, nx=True, px=int(ttl_seconds * 1000)
        )
        return token if acquired else None

    async def release(self, key: str, token: str) -> bool:
        client = await self._get_client()
        result = await client.eval(_RELEASE_SCRIPT, 1, self._make_key(key), token)
        return bool(result)

    async def extend(self, key: str, token: str, ttl_seconds: float) -> bool:
        client = await self._get_client()
        result = await client.eval(
            _EXTEND_SCRIPT, 1, self._make_key(key), token, int(ttl_seconds * 1000)
        )
        return bool(result)

    async def is_held(self, key: str) -> bool:
        client = await self._get_client()
        return bool(await client.exists(self._make_key(key)))
