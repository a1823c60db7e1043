"""
Tests for the idle-bounded connection pool.
"""

import asyncio

import pytest

from svckit.cache import IdleBoundedConnectionPool
from svckit.cache.pool import UNBOUNDED_CONNECTIONS

from .conftest import FakeConnection


@pytest.fixture
def make_pool(server):
    def factory(**kwargs):
        return IdleBoundedConnectionPool(connection_class=FakeConnection, server=server, **kwargs)
    return factory


class TestIdleBoundedConnectionPool:
    """Tests for slot waiting and idle trimming."""

    def test_zero_max_connections_means_unbounded(self, make_pool):
        pool = make_pool(max_connections=0)

        assert pool.max_connections == UNBOUNDED_CONNECTIONS

    @pytest.mark.asyncio
    async def test_release_keeps_at_most_max_idle(self, make_pool):
        pool = make_pool(max_connections=5, max_idle=1)
        connections = [await pool.get_connection() for _ in range(3)]
        assert pool.in_use_count == 3

        for connection in connections:
            await pool.release(connection)

        assert pool.in_use_count == 0
        assert pool.idle_count == 1
        assert sum(conn.disconnects for conn in connections) == 2
        # the most recently released connection is the one kept
        assert connections[-1].connected

    @pytest.mark.asyncio
    async def test_zero_max_idle_closes_every_released_connection(self, make_pool):
        pool = make_pool(max_connections=2, max_idle=0)
        connection = await pool.get_connection()

        await pool.release(connection)

        assert pool.idle_count == 0
        assert connection.disconnects == 1

    @pytest.mark.asyncio
    async def test_idle_timeout_closes_stale_connections(self, make_pool):
        pool = make_pool(max_connections=2, max_idle=2, idle_timeout=0.01)
        first = await pool.get_connection()
        await pool.release(first)

        await asyncio.sleep(0.05)
        second = await pool.get_connection()

        assert second is not first
        assert first.disconnects == 1
        assert second.connected

    @pytest.mark.asyncio
    async def test_fresh_idle_connection_is_reused(self, make_pool):
        pool = make_pool(max_connections=2, max_idle=2, idle_timeout=60)
        first = await pool.get_connection()
        await pool.release(first)

        second = await pool.get_connection()

        assert second is first
        assert first.disconnects == 0

    @pytest.mark.asyncio
    async def test_acquire_waits_for_free_slot(self, make_pool):
        pool = make_pool(max_connections=1)
        held = await pool.get_connection()

        waiter = asyncio.create_task(pool.get_connection())
        await asyncio.sleep(0.01)
        assert not waiter.done()

        await pool.release(held)
        acquired = await asyncio.wait_for(waiter, timeout=1)

        assert acquired is held
        assert pool.in_use_count == 1

    @pytest.mark.asyncio
    async def test_disconnect_closes_all_connections(self, make_pool):
        pool = make_pool(max_connections=3)
        idle = await pool.get_connection()
        busy = await pool.get_connection()
        await pool.release(idle)

        await pool.disconnect()

        assert not idle.connected
        assert not busy.connected
