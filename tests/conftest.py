"""
Shared fixtures and in-memory cache fakes.
"""

import asyncio
import math
import time
from typing import Any, Dict, List, Optional, Tuple

import pytest
from prometheus_client import CollectorRegistry
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from svckit.cache import CacheClient
from svckit.logging import clear_context
from svckit.metrics import MetricsCollector

WRONGTYPE = "WRONGTYPE Operation against a key holding the wrong kind of value"


class FakeRedisServer:
    """Just enough of a Redis server to exercise the cache client."""

    def __init__(self):
        self.data: Dict[bytes, Tuple[str, Any]] = {}
        self.expires: Dict[bytes, float] = {}
        self.commands: List[Tuple[str, Tuple[bytes, ...]]] = []
        self.delays: Dict[str, float] = {}
        self.down = False
        self.ping_reply = b"PONG"
        # called with the command name while it executes
        self.observers: List[Any] = []

    def execute(self, command: str, args: Tuple[bytes, ...]) -> Any:
        self.commands.append((command, args))
        for observer in self.observers:
            observer(command)
        handler = getattr(self, f"_cmd_{command.lower()}", None)
        if handler is None:
            raise ResponseError(f"ERR unknown command '{command}'")
        return handler(*args)

    def command_names(self) -> List[str]:
        return [name for name, _ in self.commands]

    # helpers

    def _purge(self, key: bytes) -> None:
        deadline = self.expires.get(key)
        if deadline is not None and deadline <= time.monotonic():
            self.data.pop(key, None)
            self.expires.pop(key, None)

    def _get(self, key: bytes, kind: str) -> Any:
        self._purge(key)
        entry = self.data.get(key)
        if entry is None:
            return None
        if entry[0] != kind:
            raise ResponseError(WRONGTYPE)
        return entry[1]

    def _incr(self, key: bytes, amount: int) -> int:
        value = self._get(key, "string")
        try:
            current = int(value) if value is not None else 0
        except ValueError:
            raise ResponseError("ERR value is not an integer or out of range") from None
        current += amount
        self.data[key] = ("string", str(current).encode())
        return current

    # generic

    def _cmd_ping(self) -> bytes:
        return self.ping_reply

    def _cmd_exists(self, *keys: bytes) -> int:
        count = 0
        for key in keys:
            self._purge(key)
            if key in self.data:
                count += 1
        return count

    def _cmd_del(self, *keys: bytes) -> int:
        count = 0
        for key in keys:
            self._purge(key)
            if self.data.pop(key, None) is not None:
                count += 1
            self.expires.pop(key, None)
        return count

    def _cmd_ttl(self, key: bytes) -> int:
        self._purge(key)
        if key not in self.data:
            return -2
        deadline = self.expires.get(key)
        if deadline is None:
            return -1
        return max(0, math.ceil(deadline - time.monotonic()))

    def _cmd_expire(self, key: bytes, seconds: bytes) -> int:
        self._purge(key)
        if key not in self.data:
            return 0
        self.expires[key] = time.monotonic() + int(seconds)
        return 1

    def _cmd_incr(self, key: bytes) -> int:
        return self._incr(key, 1)

    def _cmd_incrby(self, key: bytes, amount: bytes) -> int:
        return self._incr(key, int(amount))

    def _cmd_decr(self, key: bytes) -> int:
        return self._incr(key, -1)

    def _cmd_decrby(self, key: bytes, amount: bytes) -> int:
        return self._incr(key, -int(amount))

    # strings

    def _cmd_get(self, key: bytes) -> Optional[bytes]:
        return self._get(key, "string")

    def _cmd_set(self, key: bytes, value: bytes) -> bytes:
        self.data[key] = ("string", value)
        self.expires.pop(key, None)
        return b"OK"

    # sets

    def _cmd_sadd(self, key: bytes, *members: bytes) -> int:
        members_set = self._get(key, "set")
        if members_set is None:
            members_set = set()
            self.data[key] = ("set", members_set)
        added = len(set(members) - members_set)
        members_set.update(members)
        return added

    def _cmd_srem(self, key: bytes, *members: bytes) -> int:
        members_set = self._get(key, "set")
        if members_set is None:
            return 0
        removed = len(members_set & set(members))
        members_set.difference_update(members)
        if not members_set:
            self._cmd_del(key)
        return removed

    def _cmd_sismember(self, key: bytes, member: bytes) -> int:
        members_set = self._get(key, "set") or set()
        return int(member in members_set)

    def _cmd_smembers(self, key: bytes) -> List[bytes]:
        return list(self._get(key, "set") or ())

    def _cmd_scard(self, key: bytes) -> int:
        return len(self._get(key, "set") or ())

    # hashes

    def _cmd_hset(self, name: bytes, *items: bytes) -> int:
        if not items or len(items) % 2:
            raise ResponseError("ERR wrong number of arguments for 'hset' command")
        fields = self._get(name, "hash")
        if fields is None:
            fields = {}
            self.data[name] = ("hash", fields)
        added = 0
        for field, value in zip(items[::2], items[1::2]):
            if field not in fields:
                added += 1
            fields[field] = value
        return added

    def _cmd_hget(self, name: bytes, field: bytes) -> Optional[bytes]:
        return (self._get(name, "hash") or {}).get(field)

    def _cmd_hgetall(self, name: bytes) -> List[bytes]:
        flat: List[bytes] = []
        for field, value in (self._get(name, "hash") or {}).items():
            flat.extend((field, value))
        return flat

    def _cmd_hdel(self, name: bytes, *fields_to_delete: bytes) -> int:
        fields = self._get(name, "hash")
        if fields is None:
            return 0
        removed = sum(1 for field in fields_to_delete if fields.pop(field, None) is not None)
        if not fields:
            self._cmd_del(name)
        return removed

    # sorted sets

    def _cmd_zadd(self, key: bytes, score: bytes, member: bytes) -> int:
        scores = self._get(key, "zset")
        if scores is None:
            scores = {}
            self.data[key] = ("zset", scores)
        added = int(member not in scores)
        scores[member] = float(score)
        return added

    def _cmd_zrem(self, key: bytes, *members: bytes) -> int:
        scores = self._get(key, "zset")
        if scores is None:
            return 0
        removed = sum(1 for member in members if scores.pop(member, None) is not None)
        if not scores:
            self._cmd_del(key)
        return removed

    def _cmd_zrange(self, key: bytes, start: bytes, stop: bytes, *options: bytes) -> List[bytes]:
        scores = self._get(key, "zset") or {}
        ordered = sorted(scores.items(), key=lambda item: (item[1], item[0]))
        size = len(ordered)
        first, last = int(start), int(stop)
        if first < 0:
            first = max(size + first, 0)
        if last < 0:
            last = size + last
        selected = ordered[first:last + 1]
        with_scores = any(option.upper() == b"WITHSCORES" for option in options)
        flat: List[bytes] = []
        for member, score in selected:
            flat.append(member)
            if with_scores:
                flat.append(_format_score(score))
        return flat

    def _cmd_zinterstore(self, destination: bytes, numkeys: bytes, *keys: bytes) -> int:
        sources = [self._get(key, "zset") or {} for key in keys[:int(numkeys)]]
        common = set.intersection(*(set(source) for source in sources)) if sources else set()
        result = {member: sum(source[member] for source in sources) for member in common}
        self._cmd_del(destination)
        if result:
            self.data[destination] = ("zset", result)
        return len(result)


def _format_score(score: float) -> bytes:
    return (str(int(score)) if score.is_integer() else repr(score)).encode()


class FakeConnection:
    """Connection double speaking to a FakeRedisServer."""

    def __init__(self, server: FakeRedisServer, **kwargs: Any):
        self.server = server
        self.kwargs = kwargs
        self.connected = False
        self.disconnects = 0
        self._pending: Optional[Tuple[str, Tuple[bytes, ...]]] = None

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        if self.server.down:
            raise RedisConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
        self.connected = True

    async def disconnect(self, nowait: bool = False) -> None:
        if self.connected:
            self.disconnects += 1
        self.connected = False
        self._pending = None

    async def can_read_destructive(self) -> bool:
        return False

    async def can_read(self, timeout: float = 0) -> bool:
        return False

    def should_reconnect(self) -> bool:
        return False

    async def re_auth(self) -> None:
        return None

    async def send_command(self, command: str, *args: bytes, **kwargs: Any) -> None:
        if not self.connected:
            await self.connect()
        self._pending = (command, args)

    async def read_response(self, **kwargs: Any) -> Any:
        command, args = self._pending
        delay = self.server.delays.get(command, 0)
        if delay:
            await asyncio.sleep(delay)
        self._pending = None
        return self.server.execute(command, args)


class FakePool:
    """Bounded pool double that records how many connections are borrowed."""

    def __init__(self, server: FakeRedisServer, max_connections: int = 10):
        self.server = server
        self.max_connections = max_connections
        self._slots = asyncio.Semaphore(max_connections)
        self.idle: List[FakeConnection] = []
        self.created: List[FakeConnection] = []
        self.in_use = 0
        self.max_in_use = 0
        self.acquired = 0
        self.closed = False

    async def get_connection(self):
        await self._slots.acquire()
        if self.idle:
            connection = self.idle.pop()
        else:
            connection = FakeConnection(self.server)
            self.created.append(connection)
        try:
            await connection.connect()
        except BaseException:
            self.idle.append(connection)
            self._slots.release()
            raise
        self.acquired += 1
        self.in_use += 1
        self.max_in_use = max(self.max_in_use, self.in_use)
        return connection

    async def release(self, connection: FakeConnection) -> None:
        self.in_use -= 1
        self.idle.append(connection)
        self._slots.release()

    async def disconnect(self, inuse_connections: bool = True) -> None:
        for connection in self.created:
            await connection.disconnect()
        self.closed = True


@pytest.fixture(autouse=True)
def reset_log_context():
    """Keep request-scoped log fields from leaking between tests."""
    clear_context()
    yield
    clear_context()


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return MetricsCollector(registry=registry)


@pytest.fixture
def server():
    return FakeRedisServer()


@pytest.fixture
def pool(server):
    return FakePool(server, max_connections=10)


@pytest.fixture
def client(pool, metrics):
    return CacheClient(pool, connection="localhost:6379", timeout=1, metrics=metrics)
