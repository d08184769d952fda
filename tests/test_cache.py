"""Tests for cache layer (Redis client and device-local cache)."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cache.local_cache import LocalCache, PendingWriteKind
from cache.redis_client import RedisClient
from config.settings import RedisSettings
from domain.entities import Account, AccountRole, Connection, PractitionerStatus


class TestRedisClientInit:
    """Tests for RedisClient initialization."""

    def test_init_with_default_settings(self):
        with patch('cache.redis_client.get_settings') as mock_settings:
            mock_redis_settings = MagicMock()
            mock_settings.return_value.redis = mock_redis_settings

            client = RedisClient()

            assert client.settings is mock_redis_settings
            assert client._client is None
            assert client.is_connected is False

    def test_wrapping_existing_client_counts_as_connected(self, fake_redis):
        client = RedisClient(settings=RedisSettings(), client=fake_redis)
        assert client.is_connected is True


class TestRedisClientOperations:
    """Tests for RedisClient key prefixing, JSON and error handling."""

    @pytest.mark.asyncio
    async def test_set_and_get_json(self, redis_client, fake_redis):
        assert await redis_client.set("k", {"a": 1}) is True

        assert fake_redis.strings["cleartrack:k"] == '{"a": 1}'
        assert await redis_client.get("k") == {"a": 1}

    @pytest.mark.asyncio
    async def test_non_json_value_is_returned_raw(self, redis_client, fake_redis):
        fake_redis.strings["cleartrack:raw"] = "plain text"
        assert await redis_client.get("raw") == "plain text"

    @pytest.mark.asyncio
    async def test_hash_operations(self, redis_client):
        await redis_client.hset("h", "f1", {"x": 1})
        await redis_client.hset("h", "f2", [1, 2])

        assert await redis_client.hgetall("h") == {"f1": {"x": 1}, "f2": [1, 2]}
        assert await redis_client.hdel("h", "f1") == 1
        assert await redis_client.hgetall("h") == {"f2": [1, 2]}

    @pytest.mark.asyncio
    async def test_errors_are_swallowed(self, redis_client, fake_redis):
        fake_redis.fail = True

        assert await redis_client.get("k") is None
        assert await redis_client.set("k", 1) is False
        assert await redis_client.delete("k") is False
        assert await redis_client.hset("h", "f", 1) is False
        assert await redis_client.hgetall("h") == {}
        assert await redis_client.ping() is False

    @pytest.mark.asyncio
    async def test_unconnected_client_is_inert(self):
        client = RedisClient(settings=RedisSettings())

        assert await client.get("k") is None
        assert await client.set("k", 1) is False
        assert await client.hgetall("h") == {}

    @pytest.mark.asyncio
    async def test_ttl_is_passed_as_seconds(self):
        raw = MagicMock()
        raw.set = AsyncMock()
        client = RedisClient(settings=RedisSettings(), client=raw)

        await client.set("k", 1, ttl=timedelta(minutes=2))

        raw.set.assert_awaited_once_with("cleartrack:k", "1", ex=120)


class TestLocalCache:
    """Tests for LocalCache mirrors and the journal."""

    @pytest.mark.asyncio
    async def test_mirror_connection_round_trip(self, cache):
        connection = Connection(connection_id="conn-1", client_id="c1", practitioner_id="p1")

        await cache.mirror_connection("c1", connection)

        assert await cache.get_client_practitioner("c1") == "p1"
        assert await cache.get_connection("c1") == connection

        await cache.mirror_connection("c1", None)
        assert await cache.get_client_practitioner("c1") is None
        assert await cache.get_connection("c1") is None

    @pytest.mark.asyncio
    async def test_mirror_account(self, cache, fake_redis):
        account = Account(account_id="c1", role=AccountRole.CLIENT, email="c1@example.com")

        await cache.mirror_account(account)

        assert await cache.get_account("c1") == account
        assert await cache.get_account("c2") is None
        assert "cleartrack:device:test-device:account:c1" in fake_redis.strings

    @pytest.mark.asyncio
    async def test_keys_are_device_scoped(self, redis_client):
        tablet = LocalCache(redis_client, device_id="tablet")
        laptop = LocalCache(redis_client, device_id="laptop")

        await tablet.mirror_connection(
            "c1", Connection(connection_id="conn-1", client_id="c1", practitioner_id="p1")
        )

        assert await laptop.get_client_practitioner("c1") is None

    @pytest.mark.asyncio
    async def test_roster(self, cache):
        assert await cache.get_roster("p1") is None

        clients = [Account(account_id="c1", role=AccountRole.CLIENT, connected_practitioner_id="p1")]
        await cache.mirror_roster("p1", clients)

        assert [a.account_id for a in await cache.get_roster("p1")] == ["c1"]

    @pytest.mark.asyncio
    async def test_practitioner_code_index(self, cache):
        practitioner = Account(
            account_id="p1",
            role=AccountRole.PRACTITIONER,
            practitioner_code="7K2P9Q",
            practitioner_status=PractitionerStatus.APPROVED,
        )

        await cache.mirror_practitioner_code("7K2P9Q", practitioner)
        assert (await cache.get_practitioner_by_code("7K2P9Q")).account_id == "p1"

        await cache.forget_practitioner_code("7K2P9Q")
        assert await cache.get_practitioner_by_code("7K2P9Q") is None

    @pytest.mark.asyncio
    async def test_malformed_entries_are_ignored(self, cache, fake_redis):
        fake_redis.strings["cleartrack:device:test-device:client:c1:connection"] = '{"bogus": true}'
        assert await cache.get_connection("c1") is None

    @pytest.mark.asyncio
    async def test_journal_lifecycle(self, cache):
        first = await cache.journal_write(PendingWriteKind.CONNECT, {"client_id": "c1"})
        second = await cache.journal_write(PendingWriteKind.DISCONNECT, {"client_id": "c2"})

        pending = await cache.pending_writes()
        assert [p.write_id for p in pending] == [first.write_id, second.write_id]

        first.attempts = 3
        await cache.update_write(first)
        await cache.discard_write(second.write_id)

        (remaining,) = await cache.pending_writes()
        assert remaining.attempts == 3

    @pytest.mark.asyncio
    async def test_journal_failure_returns_none(self, cache, fake_redis):
        fake_redis.fail = True

        assert await cache.journal_write(PendingWriteKind.CONNECT, {"client_id": "c1"}) is None

    @pytest.mark.asyncio
    async def test_unreadable_journal_entries_are_dropped(self, cache, fake_redis):
        fake_redis.hashes["cleartrack:device:test-device:journal"] = {"w1": '"garbage"'}

        assert await cache.pending_writes() == []
        assert fake_redis.hashes["cleartrack:device:test-device:journal"] == {}
