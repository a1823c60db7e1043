"""
Command replies and their decoders.

A Reply holds the raw RESP value of one command (bytes, int, list or None)
or the exception that command produced. Decoding is a pure projection of
that stored outcome:

- a stored error is raised unchanged before anything else,
- a None value raises NotFoundError,
- a value of the wrong shape raises DecodeError.

Each decoder is a free function; Reply exposes the same set as methods.
"""

from dataclasses import dataclass
from typing import Any, List, Optional, Type, TypeVar

from pydantic import ValidationError

from .. import structs
from ..errors import DecodeError, NotFoundError

T = TypeVar("T")

_TRUE = frozenset({"1", "t", "T", "TRUE", "true", "True"})
_FALSE = frozenset({"0", "f", "F", "FALSE", "false", "False"})


@dataclass(frozen=True)
class Reply:
    """Outcome of one command."""

    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def err(self) -> Optional[BaseException]:
        return self.error

    def raise_for_error(self) -> "Reply":
        if self.error is not None:
            raise self.error
        return self

    def as_str(self) -> str:
        return to_str(self)

    def as_float(self) -> float:
        return to_float(self)

    def as_int(self) -> int:
        return to_int(self)

    def as_bool(self) -> bool:
        return to_bool(self)

    def as_strings(self) -> List[str]:
        return to_strings(self)

    def as_bytes(self) -> bytes:
        return to_bytes(self)

    def unmarshal(self, model: Optional[Type[T]] = None) -> Any:
        return unmarshal(self, model)

    def scan(self, model: Type[T]) -> T:
        return scan_struct(self, model)


def _value(reply: Reply) -> Any:
    if reply.error is not None:
        raise reply.error
    if reply.value is None:
        raise NotFoundError()
    return reply.value


def _text(value: Any, target: str) -> str:
    try:
        return value.decode("utf-8") if isinstance(value, (bytes, bytearray)) else value
    except UnicodeDecodeError as exc:
        raise DecodeError(target, value, str(exc)) from exc


def to_str(reply: Reply) -> str:
    value = _value(reply)
    if isinstance(value, (bytes, bytearray, str)):
        return _text(value, "str")
    raise DecodeError("str", value)


def to_bytes(reply: Reply) -> bytes:
    value = _value(reply)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode("utf-8")
    raise DecodeError("bytes", value)


def to_int(reply: Reply) -> int:
    value = _value(reply)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, (bytes, bytearray, str)):
        try:
            return int(_text(value, "int"), 10)
        except ValueError as exc:
            raise DecodeError("int", value, str(exc)) from exc
    raise DecodeError("int", value)


def to_float(reply: Reply) -> float:
    value = _value(reply)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, (bytes, bytearray, str)):
        try:
            return float(_text(value, "float"))
        except ValueError as exc:
            raise DecodeError("float", value, str(exc)) from exc
    raise DecodeError("float", value)


def to_bool(reply: Reply) -> bool:
    value = _value(reply)
    if isinstance(value, int):
        return value != 0
    if isinstance(value, (bytes, bytearray, str)):
        text = _text(value, "bool")
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise DecodeError("bool", value, f"invalid syntax {text!r}")
    raise DecodeError("bool", value)


def to_strings(reply: Reply) -> List[str]:
    value = _value(reply)
    if not isinstance(value, (list, tuple)):
        raise DecodeError("list[str]", value)
    result = []
    for item in value:
        if item is None:
            result.append("")
        elif isinstance(item, (bytes, bytearray, str)):
            result.append(_text(item, "list[str]"))
        else:
            raise DecodeError("list[str]", item, "unexpected element type")
    return result


def unmarshal(reply: Reply, model: Optional[Type[T]] = None) -> Any:
    """Decode a JSON payload, into `model` when given."""
    data = to_bytes(reply)
    try:
        return structs.load_json(data, model)
    except (ValueError, ValidationError) as exc:
        raise DecodeError(_target(model, "json"), reply.value, str(exc)) from exc


def scan_struct(reply: Reply, model: Type[T]) -> T:
    """Build `model` from a flat [field, value, ...] reply such as HGETALL."""
    values = to_strings(reply)
    try:
        fields = dict(structs.pairs(values))
    except ValueError as exc:
        raise DecodeError(_target(model, "struct"), reply.value, str(exc)) from exc
    try:
        return structs.load(model, fields)
    except ValidationError as exc:
        raise DecodeError(_target(model, "struct"), reply.value, str(exc)) from exc


def _target(model: Any, default: str) -> str:
    if model is None:
        return default
    return getattr(model, "__name__", str(model))
