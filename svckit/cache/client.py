"""
Redis cache client.

Every typed operation funnels through CacheClient.do, the only place that
borrows a connection from the pool. Operations return a Reply; nothing but
`exists` and `ping` raises for a failed command.
"""

import asyncio
import time
from typing import Any, List, Optional, Tuple

from redis.exceptions import RedisError, ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .. import structs
from ..config import RedisConfig
from ..errors import (
    CacheConnectionError,
    CacheError,
    CommandError,
    CommandTimeoutError,
    ConfigurationError,
    EncodeError,
    NotFoundError,
)
from ..logging import get_logger
from ..metrics import MetricsCollector, get_metrics_collector
from .args import encode_args, key_with_members
from .pool import IdleBoundedConnectionPool
from .reply import Reply

# Applied by set, sadd and hset when the caller gives no expiry
DEFAULT_EXPIRE = 15 * 60

DEFAULT_PORT = 6379

logger = get_logger("svckit.cache")


def parse_endpoint(connection: str) -> Tuple[str, int]:
    """Split a host:port endpoint; the port defaults to 6379."""
    host, sep, port = connection.rpartition(":")
    if not sep or host.endswith(":"):
        # bare host or unbracketed IPv6 address
        return connection.strip("[]") or "localhost", DEFAULT_PORT
    try:
        return host.strip("[]") or "localhost", int(port)
    except ValueError:
        raise ConfigurationError(
            f"Invalid cache endpoint {connection!r}",
            {"connection": connection},
        ) from None


class CacheClient:
    """Typed commands over a pooled connection to one cache endpoint."""

    def __init__(
        self,
        pool: Any,
        *,
        connection: str,
        timeout: float,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.connection = connection
        self.timeout = timeout
        self.pool = pool
        self.metrics = metrics or get_metrics_collector()
        self.logger = logger

    async def close(self) -> None:
        """Disconnect every pooled connection."""
        await self.pool.disconnect()
        self.logger.info("Cache client closed", endpoint=self.connection)

    async def __aenter__(self) -> "CacheClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Command execution

    async def do(self, command: str, *args: Any) -> Reply:
        """Run one command on a pooled connection under the client timeout."""
        start = time.perf_counter()
        try:
            encoded = encode_args(args)
        except EncodeError as exc:
            return self._finish(command, start, Reply(error=exc))

        try:
            connection = await self.pool.get_connection()
        except (RedisError, OSError) as exc:
            return self._finish(command, start, Reply(error=_wrap(
                command, exc, f"failed to acquire connection: {exc}")))

        self.metrics.inc_gauge("cache_connections_in_use")
        reusable = False
        try:
            value = await asyncio.wait_for(
                self._execute(connection, command, encoded), timeout=self.timeout
            )
            reusable = True
            reply = Reply(value=value)
        except (asyncio.TimeoutError, RedisTimeoutError) as exc:
            error = CommandTimeoutError(command, self.timeout)
            error.__cause__ = exc
            reply = Reply(error=error)
        except ResponseError as exc:
            reusable = True
            reply = Reply(error=_wrap(command, exc, str(exc)))
        except (RedisError, OSError) as exc:
            reply = Reply(error=_wrap(command, exc, str(exc)))
        finally:
            # a connection with an unread reply must not go back as is
            if not reusable:
                await connection.disconnect()
            self.metrics.dec_gauge("cache_connections_in_use")
            await self.pool.release(connection)

        return self._finish(command, start, reply)

    @staticmethod
    async def _execute(connection: Any, command: str, args: List[bytes]) -> Any:
        await connection.send_command(command, *args)
        return await connection.read_response()

    def _finish(self, command: str, start: float, reply: Reply) -> Reply:
        if reply.ok:
            status = "ok"
        elif isinstance(reply.error, CommandTimeoutError):
            status = "timeout"
        else:
            status = "error"
        self.metrics.increment_counter("cache_commands_total", command=command, status=status)
        self.metrics.observe_histogram(
            "cache_command_duration_seconds", time.perf_counter() - start, command=command
        )
        if reply.ok:
            self.logger.debug("Cache command executed", command=command, endpoint=self.connection)
        else:
            self.logger.error(
                "Cache command failed",
                command=command,
                endpoint=self.connection,
                error=str(reply.error),
            )
        return reply

    async def _apply_expire(self, key: str, expire: int, result: Reply) -> Reply:
        """Set a TTL after a successful write; a failed EXPIRE only gets logged."""
        if result.ok:
            expired = await self.expire(key, expire)
            if not expired.ok:
                self.logger.warning(
                    "Failed to apply expiry",
                    key=key,
                    expire=expire,
                    error=str(expired.error),
                )
        return result

    async def ping(self) -> None:
        """Health check; raises CacheConnectionError unless the server answers PONG."""
        reply = await self.do("PING")
        try:
            pong = reply.as_str()
        except CacheError as exc:
            raise CacheConnectionError(self.connection, exc) from exc
        if pong != "PONG":
            raise CacheConnectionError(self.connection, f"unexpected reply {pong!r}")

    # Existence and metadata

    async def exists(self, key: str) -> bool:
        """True when `key` exists; a nil reply counts as absent, command failures raise."""
        try:
            return (await self.do("EXISTS", key)).as_int() == 1
        except NotFoundError:
            return False

    async def ttl(self, key: str) -> Reply:
        return await self.do("TTL", key)

    async def expire(self, key: str, expire: int) -> Reply:
        return await self.do("EXPIRE", key, expire)

    async def incr(self, key: str) -> Reply:
        return await self.do("INCR", key)

    async def incr_by(self, key: str, incr: int) -> Reply:
        return await self.do("INCRBY", key, incr)

    async def decr(self, key: str) -> Reply:
        return await self.do("DECR", key)

    async def decr_by(self, key: str, decr: int) -> Reply:
        return await self.do("DECRBY", key, decr)

    # String values

    async def get(self, key: str) -> Reply:
        return await self.do("GET", key)

    async def set(self, key: str, value: Any) -> Reply:
        """SET with the default 15 minute expiry."""
        return await self._apply_expire(key, DEFAULT_EXPIRE, await self.do("SET", key, value))

    async def set_with_expire(self, key: str, expire: int, value: Any) -> Reply:
        return await self._apply_expire(key, expire, await self.do("SET", key, value))

    async def set_no_expire(self, key: str, value: Any) -> Reply:
        return await self.do("SET", key, value)

    async def delete(self, key: str) -> Reply:
        return await self.do("DEL", key)

    async def set_struct(self, key: str, value: Any) -> Reply:
        """JSON-encode `value` and store it with the default expiry."""
        payload = _json_payload(key, value)
        if isinstance(payload, Reply):
            return payload
        return await self.set(key, payload)

    async def set_struct_with_expire(self, key: str, expire: int, value: Any) -> Reply:
        payload = _json_payload(key, value)
        if isinstance(payload, Reply):
            return payload
        return await self.set_with_expire(key, expire, payload)

    async def set_struct_no_expire(self, key: str, value: Any) -> Reply:
        payload = _json_payload(key, value)
        if isinstance(payload, Reply):
            return payload
        return await self.set_no_expire(key, payload)

    # Set values

    async def sadd(self, key: str, *members: str) -> Reply:
        """SADD with the default 15 minute expiry."""
        result = await self.do("SADD", *key_with_members(key, members))
        return await self._apply_expire(key, DEFAULT_EXPIRE, result)

    async def sadd_with_expire(self, key: str, expire: int, *members: str) -> Reply:
        """
        SADD without touching the TTL.

        `expire` is accepted for signature parity with set_with_expire and
        hset_with_expire, but only `sadd` applies an expiry to sets.
        """
        return await self.do("SADD", *key_with_members(key, members))

    async def sadd_no_expire(self, key: str, *members: str) -> Reply:
        return await self.do("SADD", *key_with_members(key, members))

    async def srem(self, key: str, *members: str) -> Reply:
        return await self.do("SREM", *key_with_members(key, members))

    async def sismember(self, key: str, member: str) -> Reply:
        return await self.do("SISMEMBER", key, member)

    async def smembers(self, key: str) -> Reply:
        return await self.do("SMEMBERS", key)

    async def scard(self, key: str) -> Reply:
        return await self.do("SCARD", key)

    # Hash values

    async def hset(self, name: str, obj: Any) -> Reply:
        """Store the fields of `obj` as a hash with the default expiry."""
        args = _hash_args(name, obj)
        if isinstance(args, Reply):
            return args
        return await self._apply_expire(name, DEFAULT_EXPIRE, await self.do("HSET", *args))

    async def hset_with_expire(self, name: str, expire: int, obj: Any) -> Reply:
        args = _hash_args(name, obj)
        if isinstance(args, Reply):
            return args
        return await self._apply_expire(name, expire, await self.do("HSET", *args))

    async def hset_no_expire(self, name: str, obj: Any) -> Reply:
        args = _hash_args(name, obj)
        if isinstance(args, Reply):
            return args
        return await self.do("HSET", *args)

    async def hget(self, name: str, field: str) -> Reply:
        return await self.do("HGET", name, field)

    async def hgetall(self, name: str) -> Reply:
        return await self.do("HGETALL", name)

    async def hdel(self, name: str, field: str) -> Reply:
        return await self.do("HDEL", name, field)

    # Sorted set values

    async def zadd(self, key: str, member: Any, score: float) -> Reply:
        return await self.do("ZADD", key, score, member)

    async def zrem(self, key: str, member: Any) -> Reply:
        return await self.do("ZREM", key, member)

    async def zrange(self, *args: Any) -> Reply:
        """ZRANGE with raw arguments, e.g. zrange("board", 0, -1, "WITHSCORES")."""
        return await self.do("ZRANGE", *args)

    async def zinterstore(self, *args: Any) -> Reply:
        """ZINTERSTORE with raw arguments: destination, numkeys, key..."""
        return await self.do("ZINTERSTORE", *args)


def _wrap(command: str, exc: BaseException, message: str) -> CommandError:
    error = CommandError(command, message)
    error.__cause__ = exc
    return error


def _json_payload(key: str, value: Any):
    try:
        return structs.dump_json(value)
    except (TypeError, ValueError) as exc:
        error = EncodeError(f"cannot encode value for {key}: {exc}", {"key": key})
        error.__cause__ = exc
        return Reply(error=error)


def _hash_args(name: str, obj: Any):
    try:
        flat = structs.flatten(obj)
    except TypeError as exc:
        error = EncodeError(str(exc), {"name": name})
        error.__cause__ = exc
        return Reply(error=error)
    if not flat:
        return Reply(error=EncodeError("hash value has no fields", {"name": name}))
    return [name, *flat]


async def connect(
    config: RedisConfig,
    *,
    metrics: Optional[MetricsCollector] = None,
    **pool_kwargs: Any,
) -> CacheClient:
    """
    Build the connection pool for `config` and verify it with PING.

    Raises CacheConnectionError (and leaves nothing open) when the endpoint
    cannot be dialled or does not answer PONG. Extra keyword arguments are
    passed to the pool, e.g. a custom `connection_class`.
    """
    host, port = parse_endpoint(config.connection)
    pool = IdleBoundedConnectionPool(
        max_connections=config.max_active,
        max_idle=config.max_idle,
        idle_timeout=config.timeout,
        host=host,
        port=port,
        password=config.password or None,
        socket_connect_timeout=config.timeout,
        **pool_kwargs,
    )
    client = CacheClient(pool, connection=config.connection, timeout=config.timeout, metrics=metrics)

    try:
        await client.ping()
    except CacheConnectionError as exc:
        logger.error("Failed to connect cache client", endpoint=config.connection, error=str(exc))
        await pool.disconnect()
        raise

    logger.info(
        "Cache client connected",
        endpoint=config.connection,
        max_active=config.max_active,
        max_idle=config.max_idle,
    )
    return client
