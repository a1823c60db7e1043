"""
Placeholder rewriting for PostgreSQL.

Queries may be written with `?` positional placeholders or `:name` named
placeholders; both are rewritten to PostgreSQL's `$n` form. Quoted text is
never rewritten and `::` casts are kept as they are.
"""

from dataclasses import dataclass
from typing import Any, List, Tuple

from .. import structs
from ..errors import BindError

_QUOTES = ("'", '"')

# Values of these types expand to one placeholder per element (IN lists)
_EXPANDABLE = (list, tuple, set, frozenset)


def rebind(query: str) -> str:
    """Rewrite `?` placeholders to `$1, $2, ...`."""
    out = []
    count = 0
    quote = None
    for ch in query:
        if quote:
            out.append(ch)
            if ch == quote:
                quote = None
        elif ch in _QUOTES:
            quote = ch
            out.append(ch)
        elif ch == "?":
            count += 1
            out.append(f"${count}")
        else:
            out.append(ch)
    return "".join(out)


def _is_name_char(ch: str) -> bool:
    return ch.isalnum() or ch in "_."


@dataclass(frozen=True)
class NamedQuery:
    """A query split around its `:name` placeholders."""

    parts: Tuple[str, ...]
    names: Tuple[str, ...]

    def bind(self, arg: Any) -> Tuple[str, List[Any]]:
        """Return the `$n` query and its positional arguments for `arg`."""
        try:
            values = structs.to_mapping(arg)
        except TypeError as exc:
            raise BindError(str(exc)) from exc

        sql = [self.parts[0]]
        args: List[Any] = []
        for name, part in zip(self.names, self.parts[1:]):
            if name not in values:
                raise BindError(f"could not find name {name} in {type(arg).__name__}",
                                {"name": name})
            value = values[name]
            if isinstance(value, _EXPANDABLE):
                if not value:
                    raise BindError(f"empty sequence bound to {name}", {"name": name})
                placeholders = []
                for item in value:
                    args.append(item)
                    placeholders.append(f"${len(args)}")
                sql.append(", ".join(placeholders))
            else:
                args.append(value)
                sql.append(f"${len(args)}")
            sql.append(part)
        return "".join(sql), args

    def template(self) -> str:
        """The query with one `$n` per name, for preparing ahead of binding."""
        sql = [self.parts[0]]
        for index, part in enumerate(self.parts[1:], start=1):
            sql.append(f"${index}")
            sql.append(part)
        return "".join(sql)


def compile_named(query: str) -> NamedQuery:
    """Split `query` around its `:name` placeholders."""
    parts: List[str] = []
    names: List[str] = []
    buf: List[str] = []
    quote = None
    i, n = 0, len(query)
    while i < n:
        ch = query[i]
        if quote:
            buf.append(ch)
            if ch == quote:
                quote = None
            i += 1
            continue
        if ch in _QUOTES:
            quote = ch
            buf.append(ch)
            i += 1
            continue
        if ch == ":":
            if i + 1 < n and query[i + 1] == ":":
                buf.append("::")
                i += 2
                continue
            j = i + 1
            while j < n and _is_name_char(query[j]):
                j += 1
            if j > i + 1:
                parts.append("".join(buf))
                buf = []
                names.append(query[i + 1:j])
                i = j
                continue
        buf.append(ch)
        i += 1
    parts.append("".join(buf))
    return NamedQuery(tuple(parts), tuple(names))


def bind_named(query: str, arg: Any) -> Tuple[str, List[Any]]:
    return compile_named(query).bind(arg)
