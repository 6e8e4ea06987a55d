"""Tests for the Redis backend adapter."""

import asyncio

import pytest

from conftest import make_settings
from core.backend import BackendState, RedisBackend
from core.exceptions import BackendTimeout, BackendUnavailable
from services.rate_limiter import RateLimiterRegistry

CLIENT = "rate_limit:198.51.100.4"


async def wait_for_state(backend, state, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while backend.state is not state:
        assert loop.time() < deadline, f"backend stuck in {backend.state.value}"
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
class TestConnect:
    async def test_connects_and_reports_available(self, settings, fake_redis):
        backend = RedisBackend(settings, client=fake_redis)
        assert not backend.is_available()

        await backend.connect()

        assert backend.is_available()
        assert backend.state is BackendState.CONNECTED
        await backend.disconnect()

    async def test_gives_up_after_bounded_attempts(self, settings, fake_server, fake_redis):
        fake_server.connected = False
        backend = RedisBackend(settings, client=fake_redis)

        with pytest.raises(BackendUnavailable):
            await backend.connect()

        assert backend.state is BackendState.FAILED
        assert not backend.is_available()

        # Once failed, later attempts fail immediately
        fake_server.connected = True
        with pytest.raises(BackendUnavailable):
            await backend.connect()

    async def test_ping_timeout_counts_as_failed_attempt(self, settings, fake_redis, monkeypatch):
        async def hanging_ping():
            raise asyncio.TimeoutError()

        monkeypatch.setattr(fake_redis, "ping", hanging_ping)
        backend = RedisBackend(settings, client=fake_redis)

        with pytest.raises(BackendUnavailable):
            await backend.connect()
        assert backend.state is BackendState.FAILED

    async def test_disabled_backend_stays_idle(self, tmp_path, fake_redis):
        backend = RedisBackend(make_settings(tmp_path, redis_enabled=False), client=fake_redis)
        await backend.connect()
        assert backend.state is BackendState.IDLE
        assert not backend.is_available()

    async def test_disconnect_is_idempotent(self, backend):
        await backend.disconnect()
        await backend.disconnect()
        assert backend.state is BackendState.CLOSED
        assert not backend.is_available()

    async def test_state_listeners_see_transitions(self, settings, fake_redis):
        seen = []
        backend = RedisBackend(settings, client=fake_redis)
        backend.on_state_change(lambda prev, cur: seen.append((prev, cur)))

        await backend.connect()
        await backend.disconnect()

        assert seen == [
            (BackendState.IDLE, BackendState.CONNECTING),
            (BackendState.CONNECTING, BackendState.CONNECTED),
            (BackendState.CONNECTED, BackendState.CLOSED),
        ]


def test_retry_delay_is_capped(settings):
    backend = RedisBackend(settings)
    assert backend.retry_delay(1) == 0.001
    assert backend.retry_delay(100) == 0.005


@pytest.mark.asyncio
class TestOperations:
    async def test_set_get_with_expiry(self, backend, fake_redis):
        assert await backend.set_with_expiry("k", "v", 30)
        assert await backend.get("k") == "v"
        assert 0 < await fake_redis.ttl("k") <= 30

    async def test_increment_decrement(self, backend):
        assert await backend.increment("n") == 1
        assert await backend.increment("n") == 2
        assert await backend.decrement("n") == 1

    async def test_expire_and_ttl(self, backend):
        await backend.increment("n")
        assert await backend.ttl("n") == -1
        await backend.expire("n", 60)
        assert 0 < await backend.ttl("n") <= 60
        assert await backend.ttl("missing") == -2

    async def test_list_keys_and_delete_many(self, backend):
        for key in ("cache:/a", "cache:/a?x=1", "cache:/b", "rate_limit:x"):
            await backend.set_with_expiry(key, "1", 60)

        keys = await backend.list_keys("cache:/a*")
        assert sorted(keys) == ["cache:/a", "cache:/a?x=1"]

        assert await backend.delete_many(keys) == 2
        assert await backend.get("cache:/a") is None
        assert await backend.get("cache:/b") == "1"

    async def test_delete_many_empty(self, backend):
        assert await backend.delete_many([]) == 0

    async def test_operations_fail_when_not_connected(self, settings, fake_redis):
        backend = RedisBackend(settings, client=fake_redis)
        with pytest.raises(BackendUnavailable):
            await backend.get("k")
        with pytest.raises(BackendUnavailable):
            await backend.delete_many([])

    async def test_connection_loss_marks_disconnected(self, backend, fake_server):
        fake_server.connected = False

        with pytest.raises(BackendUnavailable):
            await backend.get("k")

        assert backend.state is BackendState.DISCONNECTED
        assert not backend.is_available()

    async def test_slow_operation_times_out(self, backend, fake_redis, monkeypatch):
        async def slow_get(key):
            await asyncio.sleep(1)

        monkeypatch.setattr(backend.settings, "redis_operation_timeout", 0.05)
        monkeypatch.setattr(fake_redis, "get", slow_get)

        with pytest.raises(BackendTimeout):
            await backend.get("k")
        assert backend.is_available()


@pytest.mark.asyncio
class TestReconnect:
    async def test_recovers_and_discards_fallback_counters(self, tmp_path, fake_server, fake_redis):
        settings = make_settings(tmp_path, redis_auto_reconnect=True, redis_connect_attempts=50,
                                 redis_retry_backoff_ms=10, redis_retry_backoff_max_ms=20,
                                 redis_retry_max_seconds=5.0)
        backend = RedisBackend(settings, client=fake_redis)
        await backend.connect()
        limiter = RateLimiterRegistry(settings, backend)["api"]

        fake_server.connected = False
        first = await limiter.check(CLIENT)
        assert first.allowed and first.degraded
        assert backend.state in (BackendState.DISCONNECTED, BackendState.CONNECTING)

        await limiter.check(CLIENT)
        assert len(limiter.fallback_store) == 1

        fake_server.connected = True
        await wait_for_state(backend, BackendState.CONNECTED)

        assert backend.is_available()
        assert len(limiter.fallback_store) == 0
        await backend.disconnect()

    async def test_outage_longer_than_retry_budget_fails(self, tmp_path, fake_server, fake_redis):
        settings = make_settings(tmp_path, redis_auto_reconnect=True, redis_connect_attempts=3)
        backend = RedisBackend(settings, client=fake_redis)
        await backend.connect()

        fake_server.connected = False
        with pytest.raises(BackendUnavailable):
            await backend.get("k")

        await wait_for_state(backend, BackendState.FAILED)
        assert not backend.is_available()
        await backend.disconnect()

    async def test_disconnect_cancels_pending_reconnect(self, tmp_path, fake_server, fake_redis):
        settings = make_settings(tmp_path, redis_auto_reconnect=True, redis_connect_attempts=50,
                                 redis_retry_backoff_ms=50, redis_retry_backoff_max_ms=50,
                                 redis_retry_max_seconds=10.0)
        backend = RedisBackend(settings, client=fake_redis)
        await backend.connect()

        fake_server.connected = False
        with pytest.raises(BackendUnavailable):
            await backend.get("k")
        await asyncio.sleep(0)

        await backend.disconnect()
        fake_server.connected = True
        await asyncio.sleep(0.2)

        assert backend.state is BackendState.CLOSED
        assert not backend.is_available()
