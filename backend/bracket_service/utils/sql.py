"""
Coercion helpers for aggregate query results.

Depending on the select shape, session.exec() hands back COUNT/MAX results
either as a plain scalar or as a 1-tuple/Row.
"""
from typing import Any, Optional


def _unwrap(x: Any) -> Any:
    if isinstance(x, (tuple, list)) or hasattr(x, "_mapping"):
        return x[0]
    return x


def scalar_int(x: Any) -> int:
    """COUNT-style result as int."""
    return int(_unwrap(x))


def optional_int(x: Any) -> Optional[int]:
    """MAX/MIN-style result as int; None when the aggregate ran over no rows."""
    value = _unwrap(x)
    return None if value is None else int(value)
