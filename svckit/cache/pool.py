"""
Blocking connection pool with an idle policy.

redis.asyncio's BlockingConnectionPool already bounds open connections and
makes callers wait for a free slot. This subclass adds the two idle rules the
cache client is configured with:

- at most `max_idle` released connections are kept open,
- a released connection left unused for longer than `idle_timeout` seconds
  is closed before the next acquisition.
"""

import time
from typing import Any, Dict, List, Optional

from redis.asyncio.connection import AbstractConnection, BlockingConnectionPool, ConnectionPool

from ..logging import get_logger

UNBOUNDED_CONNECTIONS = 2 ** 31


class IdleBoundedConnectionPool(BlockingConnectionPool):
    """Connection pool that waits for a slot and trims idle connections."""

    def __init__(
        self,
        max_connections: Optional[int] = None,
        max_idle: int = 2,
        idle_timeout: Optional[float] = None,
        **connection_kwargs: Any,
    ):
        # timeout=None: acquisition waits for a slot instead of failing
        super().__init__(
            max_connections=max_connections or UNBOUNDED_CONNECTIONS,
            timeout=None,
            **connection_kwargs,
        )
        self.max_idle = max(0, max_idle)
        self.idle_timeout = idle_timeout
        self.logger = get_logger("svckit.cache.pool")
        self._released_at: Dict[AbstractConnection, float] = {}

    @property
    def in_use_count(self) -> int:
        return len(self._in_use_connections)

    @property
    def idle_count(self) -> int:
        return len(self._available_connections)

    async def get_connection(self):
        """Close expired idle connections, then wait for a free one."""
        async with self._condition:
            stale = self._evict_idle()
        await self._close(stale)

        connection = await super().get_connection()
        self._released_at.pop(connection, None)
        return connection

    async def release(self, connection: AbstractConnection):
        """Return a connection and close whatever exceeds the idle policy."""
        async with self._condition:
            await ConnectionPool.release(self, connection)
            self._released_at[connection] = time.monotonic()
            stale = self._evict_idle()
            self._condition.notify()
        await self._close(stale)

    async def disconnect(self, inuse_connections: bool = True):
        self._released_at.clear()
        await super().disconnect(inuse_connections=inuse_connections)

    def _evict_idle(self) -> List[AbstractConnection]:
        """Remove expired and surplus idle connections; caller holds the condition."""
        now = time.monotonic()
        available = self._available_connections

        stale = []
        if self.idle_timeout:
            stale = [
                conn for conn in available
                if now - self._released_at.get(conn, now) > self.idle_timeout
            ]

        # the pool hands out from the end of the list, so the front is oldest
        kept = [conn for conn in available if conn not in stale]
        surplus = len(kept) - self.max_idle
        if surplus > 0:
            stale.extend(kept[:surplus])

        for conn in stale:
            available.remove(conn)
            self._released_at.pop(conn, None)
        return stale

    async def _close(self, connections: List[AbstractConnection]) -> None:
        for conn in connections:
            await conn.disconnect()
        if connections:
            self.logger.debug("Closed idle cache connections", count=len(connections))
