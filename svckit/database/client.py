"""
PostgreSQL client over an asyncpg pool.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, List, Optional, Type, TypeVar

import asyncpg

from .. import structs
from ..config import DatabaseConfig
from ..errors import BindError, ConfigurationError, DatabaseError, NoRowsError
from ..logging import get_logger
from ..metrics import MetricsCollector, get_metrics_collector
from .binding import NamedQuery, compile_named, rebind

T = TypeVar("T")

SUPPORTED_DRIVERS = ("postgres", "postgresql", "pgx", "cockroachdb")

DEFAULT_MAX_OPEN_CONNS = 10
DEFAULT_MAX_IDLE_CONNS = 2

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

logger = get_logger("svckit.database")


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a statement that returns no rows."""

    status: str
    rows_affected: int

    @classmethod
    def from_status(cls, status: str) -> "ExecResult":
        # command tags look like "INSERT 0 1", "UPDATE 3", "CREATE TABLE"
        last = (status or "").rsplit(" ", 1)[-1]
        return cls(status=status, rows_affected=int(last) if last.isdigit() else 0)


def _load(row: Any, model: Optional[Type[T]]) -> Any:
    if model is None:
        return row
    return structs.load(model, dict(row))


class _Queries:
    """Query surface shared by the pool-backed Database and a Transaction."""

    _executor: Any
    metrics: MetricsCollector
    logger: Any

    @asynccontextmanager
    async def _observe(self, operation: str):
        start = time.perf_counter()
        status = "ok"
        try:
            yield
        except NoRowsError:
            status = "no_rows"
            raise
        except _DRIVER_ERRORS as exc:
            status = "error"
            self.logger.error("Database operation failed", operation=operation, error=str(exc))
            raise DatabaseError(
                str(exc) or type(exc).__name__,
                {"operation": operation, "sqlstate": getattr(exc, "sqlstate", None)},
            ) from exc
        finally:
            self.metrics.increment_counter("db_queries_total", operation=operation, status=status)
            self.metrics.observe_histogram(
                "db_query_duration_seconds", time.perf_counter() - start, operation=operation
            )

    def rebind(self, query: str) -> str:
        """Rewrite `?` placeholders into PostgreSQL `$n` form."""
        return rebind(query)

    async def exec(self, query: str, *args: Any) -> ExecResult:
        async with self._observe("exec"):
            status = await self._executor.execute(rebind(query), *args)
        return ExecResult.from_status(status)

    async def named_exec(self, query: str, arg: Any) -> ExecResult:
        sql, args = compile_named(query).bind(arg)
        async with self._observe("exec"):
            status = await self._executor.execute(sql, *args)
        return ExecResult.from_status(status)

    async def named_query_row(self, query: str, arg: Any) -> Optional[asyncpg.Record]:
        """First row for a named query, or None when there is none."""
        sql, args = compile_named(query).bind(arg)
        async with self._observe("query_row"):
            return await self._executor.fetchrow(sql, *args)

    async def get(self, query: str, *args: Any, model: Optional[Type[T]] = None) -> Any:
        """Exactly one row; raises NoRowsError when the result is empty."""
        async with self._observe("get"):
            row = await self._executor.fetchrow(rebind(query), *args)
            if row is None:
                raise NoRowsError()
        return _load(row, model)

    async def named_get(self, query: str, arg: Any, model: Optional[Type[T]] = None) -> Any:
        sql, args = compile_named(query).bind(arg)
        async with self._observe("get"):
            row = await self._executor.fetchrow(sql, *args)
            if row is None:
                raise NoRowsError()
        return _load(row, model)

    async def select(self, query: str, *args: Any, model: Optional[Type[T]] = None) -> List[Any]:
        async with self._observe("select"):
            rows = await self._executor.fetch(rebind(query), *args)
        return [_load(row, model) for row in rows]

    async def named_select(self, query: str, arg: Any, model: Optional[Type[T]] = None) -> List[Any]:
        sql, args = compile_named(query).bind(arg)
        async with self._observe("select"):
            rows = await self._executor.fetch(sql, *args)
        return [_load(row, model) for row in rows]


class Database(_Queries):
    """Pool-backed database handle."""

    def __init__(self, pool: asyncpg.Pool, metrics: Optional[MetricsCollector] = None):
        self.pool = pool
        self._executor = pool
        self.metrics = metrics or get_metrics_collector()
        self.logger = logger

    async def ping(self) -> None:
        async with self._observe("ping"):
            await self.pool.fetchval("SELECT 1")

    async def close(self) -> None:
        await self.pool.close()
        self.logger.info("Database pool closed")

    async def __aenter__(self) -> "Database":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def begin(self) -> "Transaction":
        """Start a transaction on a dedicated pooled connection."""
        async with self._observe("begin"):
            connection = await self.pool.acquire()
            try:
                transaction = connection.transaction()
                await transaction.start()
            except BaseException:
                await self.pool.release(connection)
                raise
        return Transaction(self, connection, transaction)

    async def prepare(self, query: str) -> "Statement":
        """Validate a positional query once and return a reusable statement."""
        sql = rebind(query)
        async with self._observe("prepare"):
            async with self.pool.acquire() as connection:
                await connection.prepare(sql)
        return Statement(self, sql)

    async def named_prepare(self, query: str) -> "NamedStatement":
        """Validate a named query once and return a reusable statement."""
        named = compile_named(query)
        async with self._observe("prepare"):
            async with self.pool.acquire() as connection:
                await connection.prepare(named.template())
        return NamedStatement(self, named)


class Transaction(_Queries):
    """
    A transaction holding one pooled connection until commit or rollback.

    Used as an async context manager it commits when the block succeeds and
    rolls back when it raises.
    """

    def __init__(self, database: Database, connection: Any, transaction: Any):
        self._database = database
        self._connection = connection
        self._executor = connection
        self._transaction = transaction
        self._released = False
        self.metrics = database.metrics
        self.logger = database.logger

    @property
    def finished(self) -> bool:
        return self._released

    async def commit(self) -> None:
        self._check_open()
        try:
            async with self._observe("commit"):
                await self._transaction.commit()
        finally:
            await self._release()

    async def rollback(self) -> None:
        self._check_open()
        try:
            async with self._observe("rollback"):
                await self._transaction.rollback()
        finally:
            await self._release()

    def _check_open(self) -> None:
        if self._released:
            raise DatabaseError("transaction has already been committed or rolled back")

    async def _release(self) -> None:
        if not self._released:
            self._released = True
            await self._database.pool.release(self._connection)

    async def __aenter__(self) -> "Transaction":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._released:
            return
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()


class Statement:
    """A validated positional query run through the pool."""

    def __init__(self, database: Database, query: str):
        self._database = database
        self.query = query

    async def exec(self, *args: Any) -> ExecResult:
        return await self._database.exec(self.query, *args)

    async def get(self, *args: Any, model: Optional[Type[T]] = None) -> Any:
        return await self._database.get(self.query, *args, model=model)

    async def select(self, *args: Any, model: Optional[Type[T]] = None) -> List[Any]:
        return await self._database.select(self.query, *args, model=model)


class NamedStatement:
    """A validated named query; each call binds one mapping, model or dataclass."""

    def __init__(self, database: Database, named: NamedQuery):
        self._database = database
        self.named = named

    def _bind(self, args: tuple):
        if not args:
            raise BindError("Missing parameter for this action")
        return self.named.bind(args[0])

    async def exec(self, *args: Any) -> ExecResult:
        sql, values = self._bind(args)
        return await self._database.exec(sql, *values)

    async def get(self, *args: Any, model: Optional[Type[T]] = None) -> Any:
        sql, values = self._bind(args)
        return await self._database.get(sql, *values, model=model)

    async def select(self, *args: Any, model: Optional[Type[T]] = None) -> List[Any]:
        sql, values = self._bind(args)
        return await self._database.select(sql, *values, model=model)


async def connect(
    config: DatabaseConfig,
    *,
    metrics: Optional[MetricsCollector] = None,
    **pool_kwargs: Any,
) -> Database:
    """Open a connection pool for `config` and ping it."""
    driver = config.driver.lower()
    if driver not in SUPPORTED_DRIVERS:
        raise ConfigurationError(
            f"Unsupported database driver {config.driver!r}",
            {"driver": config.driver, "supported": list(SUPPORTED_DRIVERS)},
        )

    max_size = config.max_open_conns or DEFAULT_MAX_OPEN_CONNS
    options = {
        "min_size": min(config.max_idle_conns or DEFAULT_MAX_IDLE_CONNS, max_size),
        "max_size": max_size,
    }
    if config.conn_max_lifetime > 0:
        options["max_inactive_connection_lifetime"] = config.conn_max_lifetime * 3600
    options.update(pool_kwargs)

    try:
        pool = await asyncpg.create_pool(config.dsn, **options)
    except _DRIVER_ERRORS as exc:
        logger.error("Failed to connect to database", driver=driver, error=str(exc))
        raise DatabaseError(f"Failed to connect to database: {exc}", {"driver": driver}) from exc

    database = Database(pool, metrics=metrics)
    try:
        await database.ping()
    except DatabaseError:
        await pool.close()
        raise

    logger.info("Database connected", driver=driver, max_size=max_size, min_size=options["min_size"])
    return database
