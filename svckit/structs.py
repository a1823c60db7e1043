"""
Conversions between structured values and flat field/value data.

Shared by the cache client (struct values, hash flattening, reply scanning)
and the database client (named parameters, row loading).
"""

import dataclasses
import json
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, TypeAdapter
from pydantic_core import to_json

T = TypeVar("T")


def to_mapping(obj: Any) -> Dict[str, Any]:
    """
    Return the top-level fields of a mapping, pydantic model or dataclass.

    Raises TypeError for anything else.
    """
    if isinstance(obj, BaseModel):
        return obj.model_dump()
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: getattr(obj, f.name) for f in dataclasses.fields(obj)}
    if isinstance(obj, Mapping):
        return dict(obj)
    raise TypeError(f"expected a mapping, pydantic model or dataclass, got {type(obj).__name__}")


def flatten(obj: Any) -> List[Any]:
    """
    Flatten a structured value into alternating field/value items.

    None-valued fields are left out so a later scan falls back to the
    field default instead of reading an empty string.
    """
    flat: List[Any] = []
    for key, value in to_mapping(obj).items():
        if value is None:
            continue
        flat.append(key)
        flat.append(value)
    return flat


def pairs(values: List[Any]) -> List[Tuple[Any, Any]]:
    """Group a flat [field, value, ...] list into pairs."""
    if len(values) % 2 != 0:
        raise ValueError("expected an even number of field/value items")
    return list(zip(values[::2], values[1::2]))


@lru_cache(maxsize=256)
def _adapter(model: Any) -> TypeAdapter:
    return TypeAdapter(model)


def load(model: Type[T], data: Any) -> T:
    """Validate python data into a pydantic model, dataclass or any annotated type."""
    return _adapter(model).validate_python(data)


def dump_json(value: Any) -> bytes:
    """Encode a value as JSON bytes."""
    if isinstance(value, BaseModel):
        return value.model_dump_json().encode("utf-8")
    return to_json(value)


def load_json(data: bytes, model: Optional[Type[T]] = None) -> Any:
    """Decode JSON bytes, optionally validating them into a model."""
    if model is None:
        return json.loads(data)
    return _adapter(model).validate_json(data)
