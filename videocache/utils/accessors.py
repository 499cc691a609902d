"""Field access over untyped provider documents.

Adapters declare fallback chains as ordered tuples of accessors;
`first_non_empty` evaluates them in priority order.
"""

import math
import re
from typing import Any, Callable, Iterable

Accessor = Callable[[dict], Any]

_NUMBER_PREFIX = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(万|w|亿)?", re.IGNORECASE)
_UNIT_MULTIPLIERS = {"万": 10_000, "w": 10_000, "亿": 100_000_000}


def dig(doc: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; None when any step is missing."""
    current = doc
    for key in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(key)
        if current is None:
            return None
    return current


def field(path: str) -> Accessor:
    def accessor(doc: dict) -> Any:
        return dig(doc, path)
    accessor.__name__ = f"field[{path}]"
    return accessor


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def first_non_empty(doc: dict, accessors: Iterable[Accessor], default: Any = None) -> Any:
    for accessor in accessors:
        value = accessor(doc)
        if not is_empty(value):
            return value
    return default


def to_int(value: Any, default: int = 0) -> int:
    """Lenient integer parse: numbers, numeric strings and "1.2万"-style counters."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value >= 0 else default
    if isinstance(value, float):
        number = value
    else:
        match = _NUMBER_PREFIX.match(str(value))
        if not match:
            return default
        unit = (match.group(2) or "").lower()
        number = float(match.group(1)) * _UNIT_MULTIPLIERS.get(unit, 1)
    # Counters are non-negative; overflowed or negative values count as missing.
    if not math.isfinite(number) or number < 0:
        return default
    return int(number)


def to_str(value: Any) -> str | None:
    if is_empty(value):
        return None
    return str(value)
