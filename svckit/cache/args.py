"""
Command argument encoding.

Every argument sent to the cache is reduced to bytes by an explicit encoder
for its type; anything without an encoder is rejected before the pool is
touched.
"""

from typing import Any, Callable, Iterable, List, Tuple

from ..errors import EncodeError


def _encode_bytes(value: Any) -> bytes:
    return bytes(value)


def _encode_str(value: str) -> bytes:
    return value.encode("utf-8")


def _encode_bool(value: bool) -> bytes:
    return b"1" if value else b"0"


def _encode_int(value: int) -> bytes:
    return str(value).encode("ascii")


def _encode_float(value: float) -> bytes:
    return repr(value).encode("ascii")


def _encode_none(value: None) -> bytes:
    return b""


# bool is listed before int since it subclasses int
_ENCODERS: Tuple[Tuple[Any, Callable[[Any], bytes]], ...] = (
    ((bytes, bytearray, memoryview), _encode_bytes),
    (str, _encode_str),
    (bool, _encode_bool),
    (int, _encode_int),
    (float, _encode_float),
    (type(None), _encode_none),
)


def encode_arg(value: Any) -> bytes:
    """Encode one command argument."""
    for types, encoder in _ENCODERS:
        if isinstance(value, types):
            return encoder(value)
    raise EncodeError(
        f"unsupported argument type {type(value).__name__}",
        {"type": type(value).__name__},
    )


def encode_args(values: Iterable[Any]) -> List[bytes]:
    return [encode_arg(value) for value in values]


def key_with_members(key: str, members: Iterable[Any]) -> List[Any]:
    """Build the argument list for commands of the form CMD key member..."""
    return [key, *members]


__all__ = ["encode_arg", "encode_args", "key_with_members"]
