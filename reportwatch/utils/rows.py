"""
Accessors that read a column the same way from an asyncpg row dict or a
pydantic model, so the scorers accept either.
"""

from typing import Any, Mapping


def field_of(obj: Any, name: str) -> Any:
    """``obj[name]`` for mappings, ``obj.name`` otherwise; None when absent."""
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def enum_value(v: Any) -> Any:
    """Plain value of a str Enum member; other values pass through."""
    return getattr(v, "value", v)
