"""Unit tests for Redis client management and the Redis lease lock."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from atende_compliance.config.settings import Settings
from atende_compliance.core import redis as redis_module
from atende_compliance.core.redis import RedisLeaseLock, close_redis, get_redis_pool
from atende_compliance.utils.exceptions import ConfigurationError


class TestRedisLeaseLock:
    """Tests for RedisLeaseLock."""

    @pytest.fixture
    def mock_client(self):
        """Create mock Redis client."""
        client = MagicMock()
        client.set = AsyncMock()
        client.eval = AsyncMock()
        client.exists = AsyncMock()
        return client

    @pytest.fixture
    def lock(self, mock_client):
        return RedisLeaseLock(client=mock_client, prefix="test")

    @pytest.mark.asyncio
    async def test_acquire_uses_set_nx_px(self, lock, mock_client):
        """Test acquisition is a single atomic SET with NX and a millisecond TTL."""
        mock_client.set.return_value = True

        token = await lock.acquire("purge:t1", 1.5)

        assert token is not None
        mock_client.set.assert_called_once_with("test:purge:t1", token, nx=True, px=1500)

    @pytest.mark.asyncio
    async def test_acquire_when_held(self, lock, mock_client):
        mock_client.set.return_value = None

        assert await lock.acquire("purge:t1", 30) is None

    @pytest.mark.asyncio
    async def test_release_compares_token(self, lock, mock_client):
        mock_client.eval.return_value = 1

        assert await lock.release("purge:t1", "tok") is True

        script, numkeys, key, token = mock_client.eval.call_args.args
        assert "DEL" in script
        assert (numkeys, key, token) == (1, "test:purge:t1", "tok")

    @pytest.mark.asyncio
    async def test_release_by_non_owner(self, lock, mock_client):
        mock_client.eval.return_value = 0

        assert await lock.release("purge:t1", "stale") is False

    @pytest.mark.asyncio
    async def test_extend(self, lock, mock_client):
        mock_client.eval.return_value = 1

        assert await lock.extend("dsr:1", "tok", 60) is True

        script, numkeys, key, token, ttl_ms = mock_client.eval.call_args.args
        assert "PEXPIRE" in script
        assert (key, token, ttl_ms) == ("test:dsr:1", "tok", 60000)

    @pytest.mark.asyncio
    async def test_is_held(self, lock, mock_client):
        mock_client.exists.return_value = 1

        assert await lock.is_held("dsr:1") is True
        mock_client.exists.assert_called_once_with("test:dsr:1")

    @pytest.mark.asyncio
    async def test_uses_global_client(self, mock_client):
        lock = RedisLeaseLock()
        mock_client.exists.return_value = 0

        with patch.object(redis_module, "get_redis_client", AsyncMock(return_value=mock_client)):
            assert await lock.is_held("dsr:1") is False

        mock_client.exists.assert_called_once_with("lease:dsr:1")


class TestRedisPool:
    """Tests for pool creation."""

    @pytest.mark.asyncio
    async def test_requires_redis_url(self):
        with (
            patch.object(redis_module, "_pool", None),
            patch.object(redis_module, "get_settings", return_value=Settings(REDIS_URL=None)),
        ):
            with pytest.raises(ConfigurationError, match="REDIS_URL"):
                await get_redis_pool()

    @pytest.mark.asyncio
    async def test_pool_from_settings(self):
        settings = Settings(REDIS_URL="redis://localhost:6379/2", REDIS_MAX_CONNECTIONS=5)

        with (
            patch.object(redis_module, "_pool", None),
            patch.object(redis_module, "get_settings", return_value=settings),
        ):
            pool = await get_redis_pool()

            assert pool.max_connections == 5
            assert pool.connection_kwargs["db"] == 2

    @pytest.mark.asyncio
    async def test_close_redis(self):
        client = MagicMock()
        client.aclose = AsyncMock()
        pool = MagicMock()
        pool.disconnect = AsyncMock()

        with patch.object(redis_module, "_client", client), patch.object(redis_module, "_pool", pool):
            await close_redis()

            client.aclose.assert_awaited_once()
            pool.disconnect.assert_awaited_once()
            assert redis_module._client is None
            assert redis_module._pool is None
