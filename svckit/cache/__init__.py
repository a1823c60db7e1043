"""
Redis cache client.

Connect once per endpoint and inject the returned CacheClient into the code
that needs it:

    client = await connect(RedisConfig(connection="localhost:6379"))
    await client.set("greeting", "hello")
    value = (await client.get("greeting")).as_str()

Typed operations return a Reply; decode it with the Reply methods or the
free functions in svckit.cache.reply. A missing key decodes to NotFoundError.
"""

from ..errors import (
    CacheConnectionError,
    CacheError,
    CommandError,
    CommandTimeoutError,
    DecodeError,
    EncodeError,
    NotFoundError,
)
from .client import DEFAULT_EXPIRE, CacheClient, connect, parse_endpoint
from .pool import IdleBoundedConnectionPool
from .reply import (
    Reply,
    scan_struct,
    to_bool,
    to_bytes,
    to_float,
    to_int,
    to_str,
    to_strings,
    unmarshal,
)

__all__ = [
    "CacheClient",
    "CacheConnectionError",
    "CacheError",
    "CommandError",
    "CommandTimeoutError",
    "DEFAULT_EXPIRE",
    "DecodeError",
    "EncodeError",
    "IdleBoundedConnectionPool",
    "NotFoundError",
    "Reply",
    "connect",
    "parse_endpoint",
    "scan_struct",
    "to_bool",
    "to_bytes",
    "to_float",
    "to_int",
    "to_str",
    "to_strings",
    "unmarshal",
]
