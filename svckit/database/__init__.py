"""
PostgreSQL client.

Wraps an asyncpg pool with `?` and `:name` placeholder support, model
loading for rows, transactions and reusable statements.
"""

from ..errors import BindError, DatabaseError, NoRowsError
from .binding import NamedQuery, bind_named, compile_named, rebind
from .client import (
    SUPPORTED_DRIVERS,
    Database,
    ExecResult,
    NamedStatement,
    Statement,
    Transaction,
    connect,
)

__all__ = [
    "BindError",
    "Database",
    "DatabaseError",
    "ExecResult",
    "NamedQuery",
    "NamedStatement",
    "NoRowsError",
    "SUPPORTED_DRIVERS",
    "Statement",
    "Transaction",
    "bind_named",
    "compile_named",
    "connect",
    "rebind",
]
